"""Dice rolling and the chat notation for roll results."""

from __future__ import annotations

import random

from dungeon_master.models import DiceRollResult, DiceType


def parse_die(label: str) -> DiceType:
    """Accept "d20", "D20" or "20". Raises ValueError for other denominations."""
    text = label.strip().lower()
    if not text.startswith("d"):
        text = f"d{text}"
    try:
        return DiceType(text)
    except ValueError:
        valid = ", ".join(d.value for d in DiceType)
        raise ValueError(f"Unknown die {label!r} (expected one of {valid})") from None


def roll(die: DiceType, rng: random.Random | None = None) -> DiceRollResult:
    rng = rng or random
    return DiceRollResult(die=die, value=rng.randint(1, die.sides))


def roll_pool(count: int, sides: int, rng: random.Random | None = None) -> list[int]:
    rng = rng or random
    return [rng.randint(1, sides) for _ in range(count)]


def format_roll(result: DiceRollResult) -> str:
    """The utterance sent to the game master: "[Rolled d20: 15]"."""
    return f"[Rolled {result.die.value}: {result.value}]"
