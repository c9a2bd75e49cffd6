"""Handlebars prompt assembly for the three turn phases.

PromptBuilder turns engine data into prompt text. Templates come from
``{prompts_dir}/{name}.hbs`` when that file exists, otherwise from the
built-in defaults in social_npc.templates. Compiled templates are cached by
source string.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pybars

from social_npc.errors import TemplateError
from social_npc.memory import MemorySystem
from social_npc.models import Character, GameState
from social_npc.templates import DEFAULT_TEMPLATES

logger = logging.getLogger(__name__)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

DEFAULT_DIRECTIVE = "What do you do next?"


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context."""
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise TemplateError(f"Template error: {e}") from e


def _memories_json(memories: MemorySystem | None) -> str | None:
    if memories is None:
        return None
    return memories.model_dump_json(indent=2)


def format_transcript(entries: list[dict[str, Any]]) -> str:
    """Render contract transcript entries as readable lines."""
    lines = []
    for entry in entries:
        reality = entry.get("reality", "")
        if reality:
            lines.append(reality)
        for name, detail in (entry.get("details") or {}).items():
            dialogue = (detail or {}).get("dialogue")
            if dialogue:
                lines.append(f'{name}: "{dialogue}"')
    return "\n".join(lines)


class PromptBuilder:
    def __init__(self, prompts_dir: Path | None = None) -> None:
        self._prompts_dir = prompts_dir

    def template(self, name: str) -> str:
        """Return template source: override file first, then built-in default."""
        if self._prompts_dir is not None:
            path = self._prompts_dir / f"{name}.hbs"
            if path.is_file():
                logger.debug("loading template %s from %s", name, path)
                try:
                    return path.read_text()
                except OSError as e:
                    raise TemplateError(f"Cannot read template {path}: {e}") from e
        try:
            return DEFAULT_TEMPLATES[name]
        except KeyError:
            raise TemplateError(f"No template named {name!r}") from None

    def build_intent_prompt(
        self,
        character: Character,
        world: GameState,
        memories: MemorySystem | None = None,
        personality: str | None = None,
        transcript: list[dict[str, Any]] | None = None,
    ) -> str:
        others_here = [
            {"name": other.name, "activity": other.activity}
            for other in world.characters.values()
            if other.name != character.name and other.location == character.location
        ]
        contract_count = sum(
            1 for c in world.contracts.values() if character.name in c.participants
        )
        context = {
            "character": character.model_dump(),
            "personality": personality,
            "memories": _memories_json(memories),
            "others_here": others_here,
            "contract_count": contract_count,
            "transcript": format_transcript(transcript) if transcript else None,
            "directive": character.next_prompt or DEFAULT_DIRECTIVE,
        }
        return render_prompt(self.template("character_intent"), context)

    def build_resolution_prompt(self, input_json: str) -> str:
        return render_prompt(self.template("gm_resolution"), {"input_json": input_json})

    def build_memory_update_prompt(
        self,
        name: str,
        intent_json: str,
        narrative: str,
        present: list[str],
        memories: MemorySystem | None = None,
    ) -> str:
        context = {
            "name": name,
            "memories": _memories_json(memories),
            "intent_json": intent_json,
            "narrative": narrative,
            "present": ", ".join(present),
        }
        return render_prompt(self.template("memory_update"), context)
