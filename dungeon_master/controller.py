"""Mode/session controller — the app's top-level state machine.

Modes and the actions that move between them:

    LOBBY   --create-->    CREATOR
    CREATOR --complete-->  LOBBY     (new character added and selected)
    CREATOR --cancel-->    LOBBY
    LOBBY   --room-->      LOBBY     (set the room code)
    LOBBY   --join-->      GAME      (needs a selected character and a room code)
    any     --leave-->     LOBBY

Anything else raises InvalidTransition.

Joining a room opens a chat session seeded with the DM instruction, the
character sheet and the room code. A room with no stored transcript gets an
opening narration as its first message. A room with a transcript replays it
to the new session as history and appends nothing. If the session cannot be
opened, the controller reports it in `error` and goes back to LOBBY.

`error` holds the one-line advisory the UI shows. Successful transitions
clear it.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from dungeon_master.generator import CharacterDraft
from dungeon_master.llm import ChatLLM, ConfigurationError, history_from_messages
from dungeon_master.models import AppMode, Character, DiceType
from dungeon_master.pipeline import Conversation, Listener, TurnResult
from dungeon_master.prompts import build_system_instruction, opening_utterance
from dungeon_master.storage import Storage
from dungeon_master.store import StorageError

logger = logging.getLogger(__name__)

JOIN_ERROR = "Failed to join game session."
CONFIG_ERROR = "API key missing. Configure GEMINI_API_KEY."
ROSTER_SAVE_ERROR = "Could not save characters."

TRANSITIONS: dict[tuple[AppMode, str], AppMode] = {
    (AppMode.LOBBY, "create"): AppMode.CREATOR,
    (AppMode.CREATOR, "complete"): AppMode.LOBBY,
    (AppMode.CREATOR, "cancel"): AppMode.LOBBY,
    (AppMode.LOBBY, "room"): AppMode.LOBBY,
    (AppMode.LOBBY, "join"): AppMode.GAME,
    (AppMode.LOBBY, "leave"): AppMode.LOBBY,
    (AppMode.CREATOR, "leave"): AppMode.LOBBY,
    (AppMode.GAME, "leave"): AppMode.LOBBY,
}

EDITABLE_FIELDS = {"name", "race", "char_class", "level", "hp", "max_hp", "ac", "notes", "stats"}


class InvalidTransition(RuntimeError):
    """Raised when an action is not allowed in the current mode."""


class GameController:
    def __init__(
        self,
        storage: Storage,
        llm: ChatLLM,
        rng: random.Random | None = None,
        listener: Listener | None = None,
        stream: bool = True,
    ) -> None:
        self.storage = storage
        self.llm = llm
        self.mode = AppMode.LOBBY
        self.characters: list[Character] = storage.load_characters()
        self.selected_id: str | None = None
        self.room_code = ""
        self.conversation: Conversation | None = None
        self.draft: CharacterDraft | None = None
        self.error: str | None = None
        self._visits = 0
        self._opening: Conversation | None = None
        self._rng = rng
        self._listener = listener
        self._stream = stream

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _target(self, action: str) -> AppMode:
        try:
            return TRANSITIONS[(self.mode, action)]
        except KeyError:
            raise InvalidTransition(
                f"Cannot {action} while in {self.mode.value}"
            ) from None

    def _save_roster(self) -> None:
        try:
            self.storage.save_characters(self.characters)
        except StorageError:
            logger.warning("Could not persist character roster", exc_info=True)
            self.error = ROSTER_SAVE_ERROR

    def _find(self, character_id: str) -> Character:
        for c in self.characters:
            if c.id == character_id:
                return c
        raise KeyError(character_id)

    @property
    def selected_character(self) -> Character | None:
        if self.selected_id is None:
            return None
        try:
            return self._find(self.selected_id)
        except KeyError:
            return None

    @property
    def busy(self) -> bool:
        return self.conversation is not None and self.conversation.busy

    # ------------------------------------------------------------------
    # Character creation
    # ------------------------------------------------------------------

    def start_creation(self) -> CharacterDraft:
        self.mode = self._target("create")
        self.draft = CharacterDraft(self._rng)
        self.error = None
        return self.draft

    def cancel_creation(self) -> None:
        self.mode = self._target("cancel")
        self.draft = None

    def complete_creation(self) -> Character:
        target = self._target("complete")
        assert self.draft is not None
        character = self.draft.finish()
        self.characters.append(character)
        self.selected_id = character.id
        self.draft = None
        self.mode = target
        self._save_roster()
        logger.info("Created %s the %s %s", character.name, character.race, character.char_class)
        return character

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def select_character(self, character_id: str) -> Character:
        character = self._find(character_id)
        self.selected_id = character.id
        return character

    def delete_character(self, character_id: str) -> None:
        self._find(character_id)
        self.characters = [c for c in self.characters if c.id != character_id]
        if self.selected_id == character_id:
            self.selected_id = None
        self._save_roster()

    def update_character(self, character_id: str, **fields: Any) -> Character:
        """Apply panel edits. Values are stored as given, without clamping."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit {', '.join(sorted(unknown))}")
        current = self._find(character_id)
        updated = Character.model_validate(current.model_dump() | fields)
        self.characters = [updated if c.id == character_id else c for c in self.characters]
        self._save_roster()
        return updated

    def set_room_code(self, code: str) -> str:
        """Room codes can only change in the lobby."""
        self._target("room")
        self.room_code = code.strip().upper()
        return self.room_code

    # ------------------------------------------------------------------
    # Game
    # ------------------------------------------------------------------

    async def join_game(self) -> Conversation | None:
        """Enter the room. Returns None (and sets `error`) if the session failed.

        Leaving while the session is still being opened makes this join stale:
        its conversation is closed and never becomes the active one.
        """
        target = self._target("join")
        character = self.selected_character
        if character is None or not self.room_code:
            raise InvalidTransition("Select a character and enter a room code to join")

        room = self.room_code
        self._visits += 1
        visit = self._visits
        self.mode = target
        self.error = None
        history = self.storage.load_transcript(room)
        logger.info("Joining room %s as %s (%d stored messages)", room, character.name, len(history))

        try:
            session = await self.llm.create_session(
                build_system_instruction(character, room),
                history_from_messages(history),
            )
            conversation = Conversation(
                room, session, self.storage, history,
                listener=self._listener, stream=self._stream,
            )
            save_error = None
            if not history and visit == self._visits:
                self._opening = conversation
                save_error = (await conversation.open(opening_utterance(character))).error
        except ConfigurationError:
            logger.warning("Cannot join room %s: chat backend not configured", room)
            return self._abort_join(visit, CONFIG_ERROR)
        except Exception:
            logger.exception("Cannot join room %s", room)
            return self._abort_join(visit, JOIN_ERROR)
        finally:
            if self._opening is not None and visit == self._visits:
                self._opening = None

        if visit != self._visits:
            logger.info("Dropping stale session for room %s", room)
            conversation.close()
            return None
        self.conversation = conversation
        self.error = save_error
        return conversation

    def _abort_join(self, visit: int, message: str) -> None:
        if visit != self._visits:
            # Left (and maybe joined again) meanwhile; the mode is not ours to change
            return None
        self.mode = AppMode.LOBBY
        self.conversation = None
        self.error = message
        return None

    def leave_game(self) -> None:
        self.mode = self._target("leave")
        self._visits += 1
        if self._opening is not None:
            self._opening.close()
            self._opening = None
        if self.conversation is not None:
            self.conversation.close()
            self.conversation = None
        self.draft = None

    def _require_conversation(self) -> Conversation:
        if self.mode is not AppMode.GAME or self.conversation is None:
            raise InvalidTransition(f"No active game while in {self.mode.value}")
        return self.conversation

    async def send_message(self, text: str) -> TurnResult:
        result = await self._require_conversation().send(text)
        if result.sent:
            self.error = result.error
        return result

    async def roll_die(self, die: DiceType) -> TurnResult:
        result = await self._require_conversation().roll(die, self._rng)
        if result.sent:
            self.error = result.error
        return result

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def state(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "room_code": self.room_code,
            "selected_id": self.selected_id,
            "error": self.error,
            "busy": self.busy,
            "configured": bool(getattr(self.llm, "configured", True)),
            "draft_step": self.draft.step.value if self.draft else None,
        }
