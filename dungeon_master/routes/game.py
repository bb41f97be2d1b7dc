"""Room, join/leave, chat and dice endpoints.

POST /game/messages and POST /game/roll/{die} stream the turn as NDJSON:
one {"event", "message"} line per transcript event, then a closing
{"event": "done", "sent": ..., "error": ..., "roll": ...} line. "sent" is
false when the pipeline refused the turn (another one was already running).
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from dungeon_master.controller import GameController, InvalidTransition
from dungeon_master.dice import parse_die
from dungeon_master.pipeline import TurnResult

from .deps import EventHub, get_controller, get_hub, to_json
from .models import ChatBody, JoinBody, RoomBody

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_idle(controller: GameController) -> None:
    if controller.conversation is None:
        raise HTTPException(409, "Not in a game")
    if controller.busy:
        raise HTTPException(409, "The Dungeon Master is still replying")


def _log_turn_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Turn ended without a reply: %r", exc)


def _stream_turn(hub: EventHub, run: Callable[[], Awaitable[TurnResult]]) -> StreamingResponse:
    queue = hub.subscribe()

    async def turn() -> TurnResult:
        try:
            return await run()
        finally:
            queue.put_nowait(None)

    async def events():
        task = asyncio.create_task(turn())
        # The turn outlives a disconnected client; its outcome is still collected
        task.add_done_callback(_log_turn_failure)
        try:
            while (item := await queue.get()) is not None:
                yield json.dumps(item) + "\n"
            try:
                result = await task
            except InvalidTransition as e:
                result = TurnResult(sent=False, error=str(e))
            yield json.dumps({
                "event": "done",
                "sent": result.sent,
                "error": result.error,
                "roll": to_json(result.roll) if result.roll else None,
            }) + "\n"
        finally:
            hub.unsubscribe(queue)

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.put("/room")
async def set_room(body: RoomBody, controller: GameController = Depends(get_controller)):
    """Set the room code (stored upper-case)."""
    return {"room_code": controller.set_room_code(body.room_code)}


@router.get("/rooms")
async def list_rooms(controller: GameController = Depends(get_controller)):
    """Rooms with a stored transcript."""
    return controller.storage.list_rooms()


@router.post("/game/join")
async def join_game(body: JoinBody, controller: GameController = Depends(get_controller)):
    """Enter the room with the selected character."""
    if body.room_code is not None:
        controller.set_room_code(body.room_code)
    if body.character_id is not None:
        try:
            controller.select_character(body.character_id)
        except KeyError:
            raise HTTPException(404, "Character not found")
    conversation = await controller.join_game()
    if conversation is None:
        raise HTTPException(502, controller.error or "Failed to join game session.")
    return {
        "state": controller.state(),
        "messages": [to_json(m) for m in conversation.messages],
    }


@router.post("/game/leave")
async def leave_game(controller: GameController = Depends(get_controller)):
    controller.leave_game()
    return controller.state()


@router.get("/game/messages")
async def get_messages(controller: GameController = Depends(get_controller)):
    """The active room's transcript."""
    if controller.conversation is None:
        raise HTTPException(409, "Not in a game")
    return [to_json(m) for m in controller.conversation.messages]


@router.post("/game/messages")
async def send_message(
    body: ChatBody,
    controller: GameController = Depends(get_controller),
    hub: EventHub = Depends(get_hub),
):
    """Send the player's message and stream the DM's reply."""
    _require_idle(controller)
    if not body.message.strip():
        raise HTTPException(422, "Message is empty")
    return _stream_turn(hub, lambda: controller.send_message(body.message))


@router.post("/game/roll/{die}")
async def roll_die(
    die: str,
    controller: GameController = Depends(get_controller),
    hub: EventHub = Depends(get_hub),
):
    """Roll a die and send the result to the DM."""
    try:
        dice_type = parse_die(die)
    except ValueError as e:
        raise HTTPException(422, str(e))
    _require_idle(controller)
    return _stream_turn(hub, lambda: controller.roll_die(dice_type))
