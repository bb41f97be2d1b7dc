"""Request dependencies and the transcript event hub."""

import asyncio

from fastapi import Request

from dungeon_master.controller import GameController
from dungeon_master.models import Message


class EventHub:
    """Fans transcript events out to every open streaming response."""

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue] = []

    def publish(self, event: str, message: Message) -> None:
        payload = {
            "event": event,
            "message": message.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        for queue in self._queues:
            queue.put_nowait(payload)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)


def get_controller(request: Request) -> GameController:
    return request.app.state.controller


def get_hub(request: Request) -> EventHub:
    return request.app.state.hub


def to_json(model) -> dict:
    """Serialise a domain model in its stored (camelCase) layout."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
