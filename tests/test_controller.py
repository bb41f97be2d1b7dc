"""Tests for dungeon_master.controller — modes, roster, joining and playing a room."""

import asyncio
import random
import re

import pytest
from fakes import StubLLM, StubSession

from dungeon_master.controller import (
    CONFIG_ERROR,
    JOIN_ERROR,
    ROSTER_SAVE_ERROR,
    GameController,
    InvalidTransition,
)
from dungeon_master.generator import hit_die
from dungeon_master.llm import ConfigurationError, GeminiLLM, LLMError
from dungeon_master.models import AppMode, Character, DiceType, Message, Role, ability_modifier
from dungeon_master.pipeline import SAVE_ERROR
from dungeon_master.prompts import DM_INSTRUCTION
from dungeon_master.storage import Storage
from dungeon_master.store import MemoryStore


def _controller(storage: Storage, llm=None) -> GameController:
    return GameController(storage, llm or StubLLM(), rng=random.Random(2024))


def _create(controller: GameController, race="Elf", cls="Wizard", name="Lyra") -> Character:
    draft = controller.start_creation()
    draft.choose_race(race)
    draft.choose_class(cls)
    draft.roll_stats()
    draft.set_name(name)
    return controller.complete_creation()


def _four_messages() -> list[Message]:
    return [
        Message(role=Role.MODEL, text="You arrive at the crossroads."),
        Message(role=Role.USER, text="I head north."),
        Message(role=Role.MODEL, text="A wolf howls."),
        Message(role=Role.USER, text="[Rolled d20: 14]"),
    ]


# ── Modes ───────────────────────────────────────────────


def test_starts_in_lobby(storage: Storage):
    c = _controller(storage)
    assert c.mode is AppMode.LOBBY
    assert c.characters == []


def test_creator_cancel_returns_to_lobby(storage: Storage):
    c = _controller(storage)
    c.start_creation()
    assert c.mode is AppMode.CREATOR
    c.cancel_creation()
    assert c.mode is AppMode.LOBBY
    assert c.draft is None
    assert storage.load_characters() == []


async def test_join_from_creator_rejected(storage: Storage):
    c = _controller(storage)
    _create(c)
    c.set_room_code("x")
    c.start_creation()
    with pytest.raises(InvalidTransition):
        await c.join_game()
    assert c.mode is AppMode.CREATOR


def test_cancel_from_lobby_rejected(storage: Storage):
    with pytest.raises(InvalidTransition):
        _controller(storage).cancel_creation()


async def test_join_requires_character_and_room(storage: Storage):
    c = _controller(storage)
    c.set_room_code("CAMPAIGN-1")
    with pytest.raises(InvalidTransition):
        await c.join_game()
    _create(c)
    c.set_room_code("   ")
    with pytest.raises(InvalidTransition):
        await c.join_game()
    assert c.mode is AppMode.LOBBY


def test_leave_always_permitted(storage: Storage):
    c = _controller(storage)
    c.leave_game()
    assert c.mode is AppMode.LOBBY
    c.start_creation()
    c.leave_game()
    assert c.mode is AppMode.LOBBY
    assert c.draft is None


def test_room_code_normalised(storage: Storage):
    c = _controller(storage)
    assert c.set_room_code("  campaign-1 ") == "CAMPAIGN-1"
    assert c.room_code == "CAMPAIGN-1"


# ── Roster ──────────────────────────────────────────────


def test_scenario_a_create_wizard(storage: Storage):
    c = _controller(storage)
    created = _create(c, "Elf", "Wizard", "Lyra")

    roster = storage.load_characters()
    assert len(roster) == 1
    [lyra] = roster
    assert lyra.id == created.id
    assert (lyra.name, lyra.race, lyra.char_class) == ("Lyra", "Elf", "Wizard")
    assert lyra.max_hp == 6 + ability_modifier(lyra.stats.constitution)
    assert lyra.ac == 10 + ability_modifier(lyra.stats.dexterity)
    assert lyra.hp == lyra.max_hp
    assert c.mode is AppMode.LOBBY
    assert c.selected_id == lyra.id


def test_roster_restored_on_boot(storage: Storage):
    created = _create(_controller(storage), "Dwarf", "Fighter", "Brom")
    fresh = _controller(storage)
    assert [ch.id for ch in fresh.characters] == [created.id]
    assert fresh.characters[0].max_hp == hit_die("Fighter") + ability_modifier(
        fresh.characters[0].stats.constitution
    )


def test_select_and_delete(storage: Storage):
    c = _controller(storage)
    a = _create(c, name="A")
    b = _create(c, name="B")
    c.select_character(a.id)
    assert c.selected_character.id == a.id
    c.delete_character(a.id)
    assert c.selected_id is None
    assert [ch.id for ch in storage.load_characters()] == [b.id]


def test_unknown_character(storage: Storage):
    c = _controller(storage)
    with pytest.raises(KeyError):
        c.select_character("missing")
    with pytest.raises(KeyError):
        c.delete_character("missing")


def test_update_character_does_not_clamp(storage: Storage):
    c = _controller(storage)
    ch = _create(c)
    updated = c.update_character(ch.id, hp=ch.max_hp + 20, notes="Blessed.")
    assert updated.hp == ch.max_hp + 20
    assert storage.get_character(ch.id).notes == "Blessed."


def test_update_character_rejects_unknown_fields(storage: Storage):
    c = _controller(storage)
    ch = _create(c)
    with pytest.raises(ValueError):
        c.update_character(ch.id, id="other")


def test_roster_save_failure_is_advisory():
    storage = Storage(MemoryStore(quota_bytes=10))
    c = _controller(storage)
    ch = _create(c)
    assert c.error == ROSTER_SAVE_ERROR
    assert c.characters == [ch]
    assert c.mode is AppMode.LOBBY


# ── Joining ─────────────────────────────────────────────


async def test_scenario_b_fresh_room(storage: Storage):
    session = StubSession(reply="Rain lashes the tavern windows.")
    llm = StubLLM(session)
    c = _controller(storage, llm)
    _create(c, "Elf", "Wizard", "Lyra")
    c.set_room_code("campaign-1")

    conv = await c.join_game()

    assert c.mode is AppMode.GAME
    assert c.error is None
    [(instruction, history)] = llm.calls
    assert history == []
    assert instruction.startswith(DM_INSTRUCTION)
    assert "Room Code: CAMPAIGN-1" in instruction
    assert session.sent == ["I am Lyra, a Elf Wizard. I am ready to adventure."]
    assert [(m.role, m.text) for m in conv.messages] == [(Role.MODEL, "Rain lashes the tavern windows.")]
    assert storage.load_transcript("CAMPAIGN-1") == conv.messages


async def test_scenario_c_rejoin(storage: Storage):
    storage.save_transcript("CAMPAIGN-1", _four_messages())
    session = StubSession()
    llm = StubLLM(session)
    c = _controller(storage, llm)
    _create(c)
    c.set_room_code("CAMPAIGN-1")

    conv = await c.join_game()

    [(_, history)] = llm.calls
    assert history == [{"role": m.role.value, "text": m.text} for m in _four_messages()]
    assert session.sent == []
    assert [m.id for m in conv.messages] == [m.id for m in storage.load_transcript("CAMPAIGN-1")]
    assert len(conv.messages) == 4


async def test_rejoin_filters_system_messages(storage: Storage):
    messages = _four_messages() + [Message(role=Role.SYSTEM, text="Reconnected.")]
    storage.save_transcript("ROOM", messages)
    llm = StubLLM()
    c = _controller(storage, llm)
    _create(c)
    c.set_room_code("room")
    conv = await c.join_game()
    assert len(llm.calls[0][1]) == 4
    assert len(conv.messages) == 5


async def test_join_config_error_returns_to_lobby(storage: Storage):
    c = _controller(storage, StubLLM(error=ConfigurationError("API key missing")))
    _create(c)
    c.set_room_code("ROOM")
    assert await c.join_game() is None
    assert c.mode is AppMode.LOBBY
    assert c.conversation is None
    assert c.error == CONFIG_ERROR


async def test_join_with_real_gemini_and_no_key(storage: Storage):
    c = _controller(storage, GeminiLLM(api_key=""))
    _create(c)
    c.set_room_code("ROOM")
    assert await c.join_game() is None
    assert c.error == CONFIG_ERROR
    assert c.state()["configured"] is False


async def test_join_network_error_returns_to_lobby(storage: Storage):
    c = _controller(storage, StubLLM(error=LLMError("unreachable")))
    _create(c)
    c.set_room_code("ROOM")
    assert await c.join_game() is None
    assert c.mode is AppMode.LOBBY
    assert c.error == JOIN_ERROR


async def test_opening_narration_failure_returns_to_lobby(storage: Storage):
    class FailingOpen(StubSession):
        async def send(self, text: str) -> str:
            raise LLMError("timeout")

    c = _controller(storage, StubLLM(FailingOpen()))
    _create(c)
    c.set_room_code("ROOM")
    assert await c.join_game() is None
    assert c.mode is AppMode.LOBBY
    assert c.error == JOIN_ERROR
    assert storage.load_transcript("ROOM") == []


async def test_successful_join_clears_error(storage: Storage):
    llm = StubLLM(error=LLMError("down"))
    c = _controller(storage, llm)
    _create(c)
    c.set_room_code("ROOM")
    await c.join_game()
    assert c.error == JOIN_ERROR
    llm.error = None
    await c.join_game()
    assert c.error is None
    assert c.mode is AppMode.GAME


# ── Playing ─────────────────────────────────────────────


async def _in_game(storage: Storage, session: StubSession) -> GameController:
    c = _controller(storage, StubLLM(session))
    _create(c)
    c.set_room_code("CAMPAIGN-1")
    await c.join_game()
    return c


async def test_send_message(storage: Storage):
    session = StubSession(fragments=["A goblin ", "appears."])
    c = await _in_game(storage, session)
    result = await c.send_message("I enter the cave")
    assert result.error is None
    assert [m.text for m in c.conversation.messages][-2:] == ["I enter the cave", "A goblin appears."]
    assert len(storage.load_transcript("CAMPAIGN-1")) == 3


async def test_scenario_d_roll_d20(storage: Storage):
    session = StubSession(fragments=["Hit."])
    c = await _in_game(storage, session)
    result = await c.roll_die(DiceType.D20)

    user = c.conversation.messages[-2]
    assert user.role is Role.USER
    m = re.fullmatch(r"\[Rolled d20: (\d+)\]", user.text)
    assert m and 1 <= int(m.group(1)) <= 20
    assert session.streamed == [user.text]
    assert result.roll.value == int(m.group(1))


async def test_send_failure_sets_banner(storage: Storage):
    session = StubSession(fail_at=1)
    c = await _in_game(storage, session)
    result = await c.send_message("Hello")
    assert c.error == result.error
    assert c.busy is False
    assert c.mode is AppMode.GAME


async def test_send_outside_game_rejected(storage: Storage):
    c = _controller(storage)
    with pytest.raises(InvalidTransition):
        await c.send_message("hello")
    with pytest.raises(InvalidTransition):
        await c.roll_die(DiceType.D6)


async def test_leave_closes_conversation(storage: Storage):
    c = await _in_game(storage, StubSession())
    conv = c.conversation
    c.leave_game()
    assert c.mode is AppMode.LOBBY
    assert c.conversation is None
    assert conv.closed is True
    with pytest.raises(InvalidTransition):
        await c.send_message("still there?")
    result = await conv.send("still there?")
    assert result.sent is False


def test_state_snapshot(storage: Storage):
    c = _controller(storage)
    c.set_room_code("abc")
    c.start_creation()
    state = c.state()
    assert state["mode"] == "CREATOR"
    assert state["room_code"] == "ABC"
    assert state["draft_step"] == "race"
    assert state["busy"] is False


# ── Room code and overlapping joins ─────────────────────


class GatedLLM(StubLLM):
    """Holds the first create_session call until `gate` is set."""

    def __init__(self, session: StubSession | None = None, error: Exception | None = None) -> None:
        super().__init__(session, error)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.sessions: list[StubSession] = []

    async def create_session(self, system_instruction: str, history: list):
        self.calls.append((system_instruction, history))
        if len(self.calls) == 1:
            self.entered.set()
            await self.gate.wait()
            if self.error is not None:
                raise self.error
        session = StubSession()
        self.sessions.append(session)
        return session


async def _pending_join(storage: Storage, llm: GatedLLM) -> tuple[GameController, asyncio.Task]:
    c = _controller(storage, llm)
    _create(c)
    c.set_room_code("ROOM")
    task = asyncio.create_task(c.join_game())
    await llm.entered.wait()
    return c, task


def test_room_code_only_changes_in_lobby(storage: Storage):
    c = _controller(storage)
    c.set_room_code("first")
    c.start_creation()
    with pytest.raises(InvalidTransition):
        c.set_room_code("second")
    assert c.room_code == "FIRST"


async def test_room_code_locked_in_game(storage: Storage):
    c = await _in_game(storage, StubSession())
    with pytest.raises(InvalidTransition):
        c.set_room_code("elsewhere")
    assert c.room_code == "CAMPAIGN-1"
    assert c.mode is AppMode.GAME


async def test_room_code_locked_while_join_pending(storage: Storage):
    llm = GatedLLM()
    c, task = await _pending_join(storage, llm)
    with pytest.raises(InvalidTransition):
        c.set_room_code("OTHER")

    llm.gate.set()
    conv = await task
    assert c.mode is AppMode.GAME
    assert c.conversation is conv
    assert conv.room_code == "ROOM"


async def test_leave_and_rejoin_while_join_pending(storage: Storage):
    llm = GatedLLM()
    c, first = await _pending_join(storage, llm)
    c.leave_game()
    assert c.mode is AppMode.LOBBY

    second = await c.join_game()
    assert c.mode is AppMode.GAME
    assert c.conversation is second

    llm.gate.set()
    assert await first is None
    assert c.mode is AppMode.GAME
    assert c.conversation is second
    assert second.closed is False
    assert [m.text for m in storage.load_transcript("ROOM")] == ["The adventure begins."]


async def test_stale_join_failure_keeps_lobby(storage: Storage):
    llm = GatedLLM(error=LLMError("down"))
    c, task = await _pending_join(storage, llm)
    c.leave_game()

    llm.gate.set()
    assert await task is None
    assert c.mode is AppMode.LOBBY
    assert c.conversation is None
    assert c.error is None


async def test_stale_join_is_dropped_after_leave(storage: Storage):
    llm = GatedLLM()
    c, task = await _pending_join(storage, llm)
    c.leave_game()

    llm.gate.set()
    assert await task is None
    assert c.mode is AppMode.LOBBY
    assert c.conversation is None
    assert storage.load_transcript("ROOM") == []


async def test_leave_during_opening_narration_closes_it(storage: Storage):
    gate = asyncio.Event()

    class SlowOpening(StubSession):
        async def send(self, text: str) -> str:
            self.started.set()
            await gate.wait()
            return await super().send(text)

    session = SlowOpening()
    c = _controller(storage, StubLLM(session))
    _create(c)
    c.set_room_code("ROOM")
    task = asyncio.create_task(c.join_game())
    await session.started.wait()
    c.leave_game()

    gate.set()
    assert await task is None
    assert c.mode is AppMode.LOBBY
    assert storage.load_transcript("ROOM") == []


async def test_rejoin_after_abandoned_turn_skips_placeholder(storage: Storage):
    gate = asyncio.Event()
    session = StubSession(gate=gate)
    c = await _in_game(storage, session)
    turn = asyncio.create_task(c.send_message("I wait"))
    await session.started.wait()
    c.leave_game()
    gate.set()
    await turn

    llm = StubLLM()
    c.llm = llm
    await c.join_game()
    _, history = llm.calls[-1]
    assert history == [
        {"role": "model", "text": "The adventure begins."},
        {"role": "user", "text": "I wait"},
    ]


# ── Opening narration save failure ──────────────────────


async def test_opening_save_failure_is_advisory():
    storage = Storage(MemoryStore(quota_bytes=1500))
    c = _controller(storage, StubLLM(StubSession(reply="x" * 2000)))
    _create(c)
    assert c.error is None
    c.set_room_code("ROOM")
    conv = await c.join_game()

    assert conv is not None
    assert c.mode is AppMode.GAME
    assert c.error == SAVE_ERROR
    assert [m.text for m in conv.messages] == ["x" * 2000]
    assert storage.load_transcript("ROOM") == []
