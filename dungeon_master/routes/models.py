"""Pydantic request models for API endpoints."""

from pydantic import BaseModel


class ChooseRace(BaseModel):
    race: str


class ChooseClass(BaseModel):
    char_class: str


class FinishCharacter(BaseModel):
    name: str = ""


class UpdateCharacter(BaseModel):
    name: str | None = None
    race: str | None = None
    char_class: str | None = None
    level: int | None = None
    hp: int | None = None
    max_hp: int | None = None
    ac: int | None = None
    notes: str | None = None
    stats: dict[str, int] | None = None


class RoomBody(BaseModel):
    room_code: str


class JoinBody(BaseModel):
    room_code: str | None = None
    character_id: str | None = None


class ChatBody(BaseModel):
    message: str
