"""Character generation — races, classes, ability scores and derived stats.

Ability scores: roll 4d6 six times, drop the lowest die of each group, sort
the six totals descending. The class's two priority abilities take the two
highest totals (in priority order); the other four totals go to the
remaining abilities in canonical order str, dex, con, int, wis, cha.

Priority abilities:
  Barbarian str/con   Bard     cha/dex   Cleric  wis/con   Druid   wis/con
  Fighter   str/con   Monk     dex/wis   Paladin str/cha   Ranger  dex/wis
  Rogue     dex/int   Sorcerer cha/con   Warlock cha/con   Wizard  int/dex
  (anything else)     str/dex

Hit die (first-level max HP before the con modifier):
  6  Wizard, Sorcerer
  12 Barbarian
  10 Fighter, Paladin, Ranger
  8  everything else

max_hp = hit die + con modifier, hp = max_hp, ac = 10 + dex modifier.
These are starting defaults; the character panel may edit them freely.

Creation runs as a four-step draft: RACE → CLASS → STATS → NAME.
"""

from __future__ import annotations

import random
from enum import Enum

from dungeon_master.dice import roll_pool
from dungeon_master.models import ABILITIES, AbilityScores, Character, ability_modifier

DEFAULT_NAME = "Unknown Hero"
DEFAULT_NOTES = "Ready for adventure."

NAME_POOL = [
    "Aelion", "Thorgar", "Elara", "Grimm", "Sylas", "Kaelyn", "Dorn", "Zephyr",
    "Mara", "Kael", "Lyra", "Brom", "Seraphina", "Vaelis", "Isolde", "Ragnar",
]


class CreationError(ValueError):
    """Raised when a draft step is taken out of order or with a bad value."""


class Race(str, Enum):
    HUMAN = "Human"
    ELF = "Elf"
    DWARF = "Dwarf"
    HALFLING = "Halfling"
    DRAGONBORN = "Dragonborn"
    TIEFLING = "Tiefling"
    GNOME = "Gnome"
    HALF_ORC = "Half-Orc"

    @classmethod
    def parse(cls, label: str) -> Race | None:
        return _parse_label(cls, label)


class CharacterClass(str, Enum):
    FIGHTER = "Fighter"
    WIZARD = "Wizard"
    ROGUE = "Rogue"
    CLERIC = "Cleric"
    RANGER = "Ranger"
    PALADIN = "Paladin"
    BARBARIAN = "Barbarian"
    BARD = "Bard"
    DRUID = "Druid"
    MONK = "Monk"
    SORCERER = "Sorcerer"
    WARLOCK = "Warlock"

    @classmethod
    def parse(cls, label: str) -> CharacterClass | None:
        return _parse_label(cls, label)


def _parse_label(enum_cls, label: str):
    wanted = label.strip().lower()
    for member in enum_cls:
        if member.value.lower() == wanted:
            return member
    return None


PRIORITY_ABILITIES: dict[CharacterClass, tuple[str, str]] = {
    CharacterClass.BARBARIAN: ("str", "con"),
    CharacterClass.BARD: ("cha", "dex"),
    CharacterClass.CLERIC: ("wis", "con"),
    CharacterClass.DRUID: ("wis", "con"),
    CharacterClass.FIGHTER: ("str", "con"),
    CharacterClass.MONK: ("dex", "wis"),
    CharacterClass.PALADIN: ("str", "cha"),
    CharacterClass.RANGER: ("dex", "wis"),
    CharacterClass.ROGUE: ("dex", "int"),
    CharacterClass.SORCERER: ("cha", "con"),
    CharacterClass.WARLOCK: ("cha", "con"),
    CharacterClass.WIZARD: ("int", "dex"),
}
DEFAULT_PRIORITY = ("str", "dex")

HIT_DIE: dict[CharacterClass, int] = {
    CharacterClass.WIZARD: 6,
    CharacterClass.SORCERER: 6,
    CharacterClass.BARBARIAN: 12,
    CharacterClass.FIGHTER: 10,
    CharacterClass.PALADIN: 10,
    CharacterClass.RANGER: 10,
}
DEFAULT_HIT_DIE = 8


def _as_class(cls: CharacterClass | str | None) -> CharacterClass | None:
    if cls is None or isinstance(cls, CharacterClass):
        return cls
    return CharacterClass.parse(cls)


def priority_abilities(cls: CharacterClass | str | None) -> tuple[str, str]:
    return PRIORITY_ABILITIES.get(_as_class(cls), DEFAULT_PRIORITY)


def hit_die(cls: CharacterClass | str | None) -> int:
    return HIT_DIE.get(_as_class(cls), DEFAULT_HIT_DIE)


# ── Ability scores ──────────────────────────────────────────


def roll_ability_score(rng: random.Random | None = None) -> int:
    """4d6, drop the lowest."""
    dice = sorted(roll_pool(4, 6, rng))
    return sum(dice[1:])


def roll_ability_scores(rng: random.Random | None = None) -> list[int]:
    """Six 4d6-drop-lowest totals, highest first."""
    return sorted((roll_ability_score(rng) for _ in ABILITIES), reverse=True)


def assign_abilities(rolls: list[int], cls: CharacterClass | str | None) -> AbilityScores:
    """Hand the two best rolls to the class priorities, the rest in canonical order."""
    if len(rolls) != len(ABILITIES):
        raise CreationError(f"Expected {len(ABILITIES)} rolls, got {len(rolls)}")
    ordered = sorted(rolls, reverse=True)
    priorities = priority_abilities(cls)
    scores: dict[str, int] = {}
    for ability, value in zip(priorities, ordered):
        scores[ability] = value
    remaining = iter(ordered[len(priorities):])
    for ability in ABILITIES:
        if ability not in scores:
            scores[ability] = next(remaining)
    return AbilityScores.from_short(scores)


def derive_stats(cls: CharacterClass | str | None, scores: AbilityScores) -> dict[str, int]:
    """Starting hp, max_hp and ac for a class and its scores."""
    max_hp = hit_die(cls) + ability_modifier(scores.constitution)
    return {
        "hp": max_hp,
        "max_hp": max_hp,
        "ac": 10 + ability_modifier(scores.dexterity),
    }


def suggest_name(rng: random.Random | None = None) -> str:
    return (rng or random).choice(NAME_POOL)


# ── Draft (four-step creation) ──────────────────────────────


class DraftStep(str, Enum):
    RACE = "race"
    CLASS = "class"
    STATS = "stats"
    NAME = "name"


class CharacterDraft:
    """A character under construction.

    Steps must be taken in order. `roll_stats()` may be repeated once the
    class is chosen; each reroll replaces the previous scores.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng
        self.step = DraftStep.RACE
        self.race: Race | None = None
        self.char_class: CharacterClass | None = None
        self.stats: AbilityScores | None = None
        self.derived: dict[str, int] | None = None
        self.name = ""

    def _require(self, *steps: DraftStep) -> None:
        if self.step not in steps:
            raise CreationError(f"Cannot do that at step {self.step.value!r}")

    def choose_race(self, label: str) -> Race:
        self._require(DraftStep.RACE)
        race = Race.parse(label)
        if race is None:
            raise CreationError(f"Unknown race {label!r}")
        self.race = race
        self.step = DraftStep.CLASS
        return race

    def choose_class(self, label: str) -> CharacterClass:
        self._require(DraftStep.CLASS)
        cls = CharacterClass.parse(label)
        if cls is None:
            raise CreationError(f"Unknown class {label!r}")
        self.char_class = cls
        self.step = DraftStep.STATS
        return cls

    def roll_stats(self) -> AbilityScores:
        self._require(DraftStep.STATS, DraftStep.NAME)
        rolls = roll_ability_scores(self._rng)
        self.stats = assign_abilities(rolls, self.char_class)
        self.derived = derive_stats(self.char_class, self.stats)
        self.step = DraftStep.NAME
        return self.stats

    def suggest_name(self) -> str:
        self._require(DraftStep.NAME)
        self.name = suggest_name(self._rng)
        return self.name

    def set_name(self, name: str) -> None:
        self._require(DraftStep.NAME)
        self.name = name

    def finish(self) -> Character:
        self._require(DraftStep.NAME)
        assert self.race and self.char_class and self.stats and self.derived
        return Character(
            name=self.name.strip() or DEFAULT_NAME,
            race=self.race.value,
            char_class=self.char_class.value,
            level=1,
            hp=self.derived["hp"],
            max_hp=self.derived["max_hp"],
            ac=self.derived["ac"],
            notes=DEFAULT_NOTES,
            stats=self.stats,
        )


def generate_character(
    race: str, cls: str, name: str = "", rng: random.Random | None = None
) -> Character:
    """Run every draft step in one go."""
    draft = CharacterDraft(rng)
    draft.choose_race(race)
    draft.choose_class(cls)
    draft.roll_stats()
    draft.set_name(name)
    return draft.finish()
