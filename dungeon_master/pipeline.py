"""Message pipeline — one room's live conversation.

Turn flow (`Conversation.send`):
  1. Reject the turn if another is in flight, the text is blank, or the
     conversation was closed.
  2. Append the USER message.
  3. Append a MODEL placeholder ("...") and register it in `pending`.
  4. Stream the reply; every fragment extends the accumulated text and
     overwrites the placeholder in place (same id, same transcript slot).
  5. On exhaustion the placeholder is final; persist the transcript.

A failed stream keeps whatever text had arrived, persists that, and reports
a connection error. The busy flag is always released.

Dice rolls go through the same path as typed text: the roll becomes the
utterance "[Rolled d20: 15]".

Listeners receive (event, message) for "appended", "updated", "finished"
and "failed". "updated" always carries the placeholder object, so a
listener sees partial-then-complete states of one message id.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass

from dungeon_master import dice
from dungeon_master.llm import ChatSession
from dungeon_master.models import PLACEHOLDER_TEXT, DiceRollResult, DiceType, Message, Role
from dungeon_master.storage import Storage
from dungeon_master.store import StorageError

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "Connection error. Please try again."
SAVE_ERROR = "Could not save the chat history."

Listener = Callable[[str, Message], None]


@dataclass
class TurnResult:
    sent: bool
    message: Message | None = None
    error: str | None = None
    roll: DiceRollResult | None = None


class Conversation:
    """The transcript of one room plus the chat session that extends it.

    Args:
        room_code:  Normalised room code; also the storage key suffix.
        session:    Chat session created for this visit.
        storage:    Where the transcript is persisted.
        transcript: Messages restored from storage, oldest first.
        listener:   Optional callback for transcript events.
        stream:     Use the streaming reply path (default) or single replies.
    """

    def __init__(
        self,
        room_code: str,
        session: ChatSession,
        storage: Storage,
        transcript: list[Message] | None = None,
        listener: Listener | None = None,
        stream: bool = True,
    ) -> None:
        self.room_code = room_code
        self.session = session
        self.messages: list[Message] = list(transcript or [])
        self.pending: dict[str, Message] = {}
        self.busy = False
        self.closed = False
        self._storage = storage
        self._listener = listener
        self._stream = stream

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _emit(self, event: str, message: Message) -> None:
        if self._listener is not None:
            self._listener(event, message)

    def _append(self, message: Message) -> Message:
        self.messages.append(message)
        self._emit("appended", message)
        return message

    def _persist(self) -> str | None:
        try:
            self._storage.save_transcript(self.room_code, self.messages)
        except StorageError:
            logger.warning("Could not persist transcript for room %s", self.room_code, exc_info=True)
            return SAVE_ERROR
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def open(self, utterance: str) -> TurnResult:
        """Ask the DM for an opening narration and append it.

        Provider errors propagate; the caller decides whether the room is usable.
        A failed save is reported in the result's `error`.
        """
        self.busy = True
        try:
            text = await self.session.send(utterance)
        finally:
            self.busy = False
        if self.closed:
            return TurnResult(sent=False)
        message = self._append(Message(role=Role.MODEL, text=text))
        return TurnResult(sent=True, message=message, error=self._persist())

    async def send(self, text: str) -> TurnResult:
        if self.closed or self.busy or not text.strip():
            return TurnResult(sent=False)

        self.busy = True
        try:
            self._append(Message(role=Role.USER, text=text))
            placeholder = self._append(Message(role=Role.MODEL, text=PLACEHOLDER_TEXT))
            self.pending[placeholder.id] = placeholder
            self._persist()
            return await self._complete(placeholder.id, text)
        finally:
            self.busy = False

    async def _complete(self, message_id: str, text: str) -> TurnResult:
        message = self.pending[message_id]
        try:
            if self._stream:
                await self._consume_stream(message_id, text)
            else:
                message.text = await self.session.send(text)
                self._emit("updated", message)
        except Exception:
            logger.exception("Turn failed in room %s", self.room_code)
            self.pending.pop(message_id, None)
            self._emit("failed", message)
            if not self.closed:
                self._persist()
            return TurnResult(sent=True, message=message, error=CONNECTION_ERROR)

        self.pending.pop(message_id, None)
        if self.closed:
            logger.info("Room %s closed mid-turn; reply dropped from storage", self.room_code)
            return TurnResult(sent=True, message=message)
        self._emit("finished", message)
        return TurnResult(sent=True, message=message, error=self._persist())

    async def _consume_stream(self, message_id: str, text: str) -> None:
        accumulated = ""
        stream = self.session.send_stream(text)
        try:
            async for fragment in stream:
                if self.closed:
                    break
                accumulated += fragment
                self.pending[message_id].text = accumulated
                self._emit("updated", self.pending[message_id])
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        if not self.closed:
            self.pending[message_id].text = accumulated

    async def roll(self, die: DiceType, rng: random.Random | None = None) -> TurnResult:
        """Roll a die and send the result as the player's next utterance."""
        if self.closed or self.busy:
            return TurnResult(sent=False)
        result = dice.roll(die, rng)
        turn = await self.send(dice.format_roll(result))
        turn.roll = result
        return turn

    def close(self) -> None:
        """Stop the conversation. An in-flight stream stops at its next fragment."""
        self.closed = True
