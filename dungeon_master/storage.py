"""Roster and transcript persistence on top of a key-value store.

All state lives under two kinds of keys:

    dnd_characters        ← JSON array of Character objects
    dnd_chat_{ROOM}       ← JSON array of Message objects for one room

Every save writes a complete snapshot. Loads never raise: missing keys,
unparseable JSON and records that fail validation all read back as an empty
list (logged as a warning). Unknown fields in stored records are ignored and
missing optional fields take their defaults, so older and newer snapshots
load into the current models without a version field.

Room codes are used as-is in keys; callers normalise them first.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from dungeon_master.models import Character, Message
from dungeon_master.store import KeyValueStore, StorageError

logger = logging.getLogger(__name__)

CHARACTERS_KEY = "dnd_characters"
TRANSCRIPT_PREFIX = "dnd_chat_"


def transcript_key(room_code: str) -> str:
    return f"{TRANSCRIPT_PREFIX}{room_code}"


class Storage:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_list(self, key: str, model: type[BaseModel]) -> list[Any]:
        try:
            raw = self._store.get(key)
        except StorageError:
            logger.warning("Could not read %s, treating as empty", key, exc_info=True)
            return []
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Malformed JSON under %s, treating as empty", key)
            return []
        if not isinstance(data, list):
            logger.warning("Expected a JSON array under %s, got %s", key, type(data).__name__)
            return []
        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as e:
            logger.warning("Invalid records under %s, treating as empty: %s", key, e)
            return []

    def _write_list(self, key: str, items: Sequence[BaseModel]) -> None:
        payload = json.dumps(
            [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]
        )
        try:
            self._store.set(key, payload)
        except OSError as e:
            raise StorageError(f"Cannot persist {key}: {e}") from e

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def load_characters(self) -> list[Character]:
        return self._read_list(CHARACTERS_KEY, Character)

    def save_characters(self, characters: Sequence[Character]) -> None:
        """Overwrite the whole roster."""
        self._write_list(CHARACTERS_KEY, characters)

    def get_character(self, character_id: str) -> Character | None:
        for c in self.load_characters():
            if c.id == character_id:
                return c
        return None

    def upsert_character(self, character: Character) -> list[Character]:
        """Replace the character with the same id, or append it. Returns the roster."""
        chars = self.load_characters()
        for i, c in enumerate(chars):
            if c.id == character.id:
                chars[i] = character
                break
        else:
            chars.append(character)
        self.save_characters(chars)
        return chars

    def delete_character(self, character_id: str) -> bool:
        """Remove a character by id. Returns False if it was not in the roster."""
        chars = self.load_characters()
        remaining = [c for c in chars if c.id != character_id]
        if len(remaining) == len(chars):
            return False
        self.save_characters(remaining)
        return True

    # ------------------------------------------------------------------
    # Transcripts
    # ------------------------------------------------------------------

    def load_transcript(self, room_code: str) -> list[Message]:
        return self._read_list(transcript_key(room_code), Message)

    def save_transcript(self, room_code: str, messages: Sequence[Message]) -> None:
        """Overwrite a room's transcript. An empty transcript is never written."""
        if not messages:
            return
        self._write_list(transcript_key(room_code), messages)

    def list_rooms(self) -> list[str]:
        """Room codes that have a stored transcript."""
        return sorted(
            key[len(TRANSCRIPT_PREFIX):]
            for key in self._store.keys()
            if key.startswith(TRANSCRIPT_PREFIX)
        )
