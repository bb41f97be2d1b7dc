"""Character roster endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from dungeon_master.controller import GameController

from .deps import get_controller, to_json
from .models import UpdateCharacter

router = APIRouter()


@router.get("/characters")
async def list_characters(controller: GameController = Depends(get_controller)):
    """List the local roster."""
    return [to_json(c) for c in controller.characters]


@router.patch("/characters/{character_id}")
async def update_character(
    character_id: str,
    body: UpdateCharacter,
    controller: GameController = Depends(get_controller),
):
    """Edit character fields (panel edits)."""
    try:
        updated = controller.update_character(character_id, **body.model_dump(exclude_none=True))
    except KeyError:
        raise HTTPException(404, "Character not found")
    except ValueError as e:
        raise HTTPException(422, str(e))
    return to_json(updated)


@router.delete("/characters/{character_id}")
async def delete_character(character_id: str, controller: GameController = Depends(get_controller)):
    """Remove a character from the roster."""
    try:
        controller.delete_character(character_id)
    except KeyError:
        raise HTTPException(404, "Character not found")
    return {"ok": True}


@router.post("/characters/{character_id}/select")
async def select_character(character_id: str, controller: GameController = Depends(get_controller)):
    """Choose the character to play."""
    try:
        character = controller.select_character(character_id)
    except KeyError:
        raise HTTPException(404, "Character not found")
    return to_json(character)
