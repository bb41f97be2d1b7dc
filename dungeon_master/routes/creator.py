"""Character creation wizard endpoints (race → class → stats → name)."""

from fastapi import APIRouter, Depends, HTTPException

from dungeon_master.controller import GameController
from dungeon_master.generator import CharacterClass, CharacterDraft, CreationError, Race

from .deps import get_controller, to_json
from .models import ChooseClass, ChooseRace, FinishCharacter

router = APIRouter()


def _draft(controller: GameController) -> CharacterDraft:
    if controller.draft is None:
        raise HTTPException(409, "No character creation in progress")
    return controller.draft


def _draft_json(draft: CharacterDraft) -> dict:
    return {
        "step": draft.step.value,
        "race": draft.race.value if draft.race else None,
        "class": draft.char_class.value if draft.char_class else None,
        "stats": draft.stats.as_short() if draft.stats else None,
        "derived": draft.derived,
        "name": draft.name,
    }


@router.get("/creator/options")
async def creator_options():
    """Races and classes on offer."""
    return {
        "races": [r.value for r in Race],
        "classes": [c.value for c in CharacterClass],
    }


@router.post("/creator", status_code=201)
async def start_creation(controller: GameController = Depends(get_controller)):
    """Switch to the creator and start a fresh draft."""
    return _draft_json(controller.start_creation())


@router.get("/creator")
async def get_draft(controller: GameController = Depends(get_controller)):
    """Current draft."""
    return _draft_json(_draft(controller))


@router.post("/creator/race")
async def choose_race(body: ChooseRace, controller: GameController = Depends(get_controller)):
    draft = _draft(controller)
    try:
        draft.choose_race(body.race)
    except CreationError as e:
        raise HTTPException(422, str(e))
    return _draft_json(draft)


@router.post("/creator/class")
async def choose_class(body: ChooseClass, controller: GameController = Depends(get_controller)):
    draft = _draft(controller)
    try:
        draft.choose_class(body.char_class)
    except CreationError as e:
        raise HTTPException(422, str(e))
    return _draft_json(draft)


@router.post("/creator/roll")
async def roll_stats(controller: GameController = Depends(get_controller)):
    """Roll (or reroll) ability scores."""
    draft = _draft(controller)
    try:
        draft.roll_stats()
    except CreationError as e:
        raise HTTPException(422, str(e))
    return _draft_json(draft)


@router.get("/creator/name-suggestion")
async def name_suggestion(controller: GameController = Depends(get_controller)):
    """Suggest a name from the pool."""
    draft = _draft(controller)
    try:
        return {"name": draft.suggest_name()}
    except CreationError as e:
        raise HTTPException(422, str(e))


@router.post("/creator/finish", status_code=201)
async def finish_creation(body: FinishCharacter, controller: GameController = Depends(get_controller)):
    """Add the drafted character to the roster and return to the lobby."""
    draft = _draft(controller)
    try:
        draft.set_name(body.name)
        character = controller.complete_creation()
    except CreationError as e:
        raise HTTPException(422, str(e))
    return to_json(character)


@router.post("/creator/cancel")
async def cancel_creation(controller: GameController = Depends(get_controller)):
    controller.cancel_creation()
    return controller.state()
