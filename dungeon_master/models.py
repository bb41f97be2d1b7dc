"""Core domain models.

Every layer (storage, pipeline, controller, API) passes these types around.
Pydantic validates them at each data boundary. Field aliases keep the stored
JSON in the camelCase layout older saves already use (`maxHp`, `isError`,
`class`, short ability keys).
"""

from __future__ import annotations

import time
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def ability_modifier(score: int) -> int:
    """floor((score - 10) / 2). Floor division keeps odd low scores right (9 → -1)."""
    return (score - 10) // 2


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class AppMode(str, Enum):
    LOBBY = "LOBBY"
    CREATOR = "CREATOR"
    GAME = "GAME"


class DiceType(str, Enum):
    D4 = "d4"
    D6 = "d6"
    D8 = "d8"
    D10 = "d10"
    D12 = "d12"
    D20 = "d20"
    D100 = "d100"

    @property
    def sides(self) -> int:
        return int(self.value[1:])


ABILITIES = ("str", "dex", "con", "int", "wis", "cha")

# Body of a MODEL message whose reply has not streamed in yet
PLACEHOLDER_TEXT = "..."


class AbilityScores(BaseModel):
    """The six ability scores, stored under their short keys."""

    model_config = ConfigDict(populate_by_name=True)

    strength: int = Field(alias="str")
    dexterity: int = Field(alias="dex")
    constitution: int = Field(alias="con")
    intelligence: int = Field(alias="int")
    wisdom: int = Field(alias="wis")
    charisma: int = Field(alias="cha")

    @classmethod
    def from_short(cls, scores: dict[str, int]) -> AbilityScores:
        return cls.model_validate(scores)

    def as_short(self) -> dict[str, int]:
        return self.model_dump(by_alias=True)


class Character(BaseModel):
    """A player character in the local roster."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    name: str
    race: str
    char_class: str = Field(alias="class")
    level: int = 1
    hp: int
    max_hp: int = Field(alias="maxHp")
    ac: int
    notes: str = ""
    stats: AbilityScores | None = None


class Message(BaseModel):
    """A single entry in a room transcript."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    role: Role
    text: str
    timestamp: int = Field(default_factory=now_ms)
    is_error: bool | None = Field(default=None, alias="isError")


class DiceRollResult(BaseModel):
    die: DiceType
    value: int
    timestamp: int = Field(default_factory=now_ms)
