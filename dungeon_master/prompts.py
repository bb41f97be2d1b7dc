"""Game-master system instruction and Handlebars rendering."""

from collections.abc import Callable
from typing import Any

import pybars

from dungeon_master.models import Character

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DM_INSTRUCTION = """You are a world-class Dungeon Master (DM) for a Dungeons & Dragons 5th Edition (D&D 5e) game.
Your goal is to run an immersive, fair, and consistent game.

RESPONSIBILITIES:
1. **Narrative**: Describe the setting, environment, NPCs, and atmosphere vividly. Use sensory details.
2. **Mechanics**:
   - Adhere to D&D 5e rules.
   - Call for Skill Checks (e.g., Athletics, Sleight of Hand) when outcomes are uncertain. The difficulty (DC) depends on the task.
   - Simple actions (opening unlocked doors) succeed automatically. Impossible actions (lifting buildings) fail automatically.
3. **Combat**:
   - Ask for Initiative rolls at the start of combat.
   - Generate rolls for NPCs/monsters.
   - Provide an initiative list at the start of combat.
   - Track HP for all creatures.
   - On player turns, ask for Attack Rolls vs AC. If hit, ask/calculate damage.
   - On NPC turns, decide their action (Attack, Run, etc.) and generate their rolls.
   - A round is 6 seconds.
4. **Consistency**:
   - Do not allow actions that conflict with the setting (e.g., no jukeboxes in fantasy taverns).
   - Maintain consistency (dead NPCs stay dead).

DICE ROLLS:
- Players will click buttons to roll dice.
- You will see messages like "[Rolled d20: 15]".
- **TRUST** these values completely. Do not reroll for the player.
- Use these values to resolve the checks or attacks you called for.

INTERACTION:
- Be concise but descriptive.
- Use bolding for emphasis (e.g., **Initiative Order**).
"""

PLAYER_TEMPLATE = """
CURRENT PLAYER:
You are DMing for a player character named **{{{name}}}** ({{{race}}} {{{char_class}}}).
HP: {{hp}}/{{max_hp}} | AC: {{ac}}.
Room Code: {{{room_code}}} (Use this to seed the consistency of the world if needed).

If this is the start of the chat, set the scene based on a generic fantasy adventure start or resume if context implies it.
"""

OPENING_TEMPLATE = "I am {{{name}}}, a {{{race}}} {{{char_class}}}. I am ready to adventure."


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def player_context(character: Character, room_code: str) -> dict[str, Any]:
    return {
        "name": character.name,
        "race": character.race,
        "char_class": character.char_class,
        "hp": character.hp,
        "max_hp": character.max_hp,
        "ac": character.ac,
        "room_code": room_code,
    }


def build_system_instruction(character: Character, room_code: str) -> str:
    """The fixed DM behaviour followed by this player's sheet and room seed."""
    return DM_INSTRUCTION + render_prompt(PLAYER_TEMPLATE, player_context(character, room_code))


def opening_utterance(character: Character) -> str:
    """What the player "says" to make the DM open a fresh room."""
    return render_prompt(OPENING_TEMPLATE, player_context(character, ""))
