"""Character and memory persistence.

The engine talks to storage through the Storage protocol. Two
implementations are provided:

    JsonStorage      — flat JSON and Markdown files under a base directory.
    InMemoryStorage  — dict-backed; for tests and throwaway simulations.

JsonStorage directory layout:

    {base}/
      characters/
        {name}/
          personality.md          ← free-form character description (optional)
          character.json          ← {"location": ..., "activity": ...} seed (optional)
          initial_memories.json   ← MemorySystem seed (optional)
          memories.json           ← current MemorySystem, rewritten every turn
      contracts/
        {id}.json                 ← append-only transcript entries (id slugified if unsafe)
      prompts/
        {template}.hbs            ← prompt template overrides (optional)
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import unicodedata
from pathlib import Path
from typing import Any, Protocol

from social_npc.memory import MemorySystem

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[A-Za-z0-9_.-]+")


class Storage(Protocol):
    def list_characters(self) -> list[str]: ...

    def load_character(self, name: str) -> dict[str, Any]: ...

    def load_personality(self, name: str) -> str | None: ...

    def ensure_memories(self, name: str) -> None: ...

    def load_memories(self, name: str) -> MemorySystem: ...

    def save_memories(self, name: str, memories: MemorySystem) -> None: ...

    def append_transcript(self, contract_id: str, entry: dict[str, Any]) -> None: ...

    def read_transcript(self, contract_id: str) -> list[dict[str, Any]]: ...


def _check_key(key: str) -> str:
    if not key or key in (".", "..") or "/" in key or "\\" in key:
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


def slugify(text: str) -> str:
    """Convert an arbitrary id to a filesystem-safe slug.

    "Tavern/Cards #1" → "tavern-cards-1"
    """
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^a-z0-9_.]+", "-", text)
    text = text.strip("-.")
    return text or "contract"


def transcript_file_name(contract_id: str) -> str:
    """Transcript path of a contract, relative to the data directory.

    Ids that already are safe file names are kept as-is. Any other id is
    slugified and suffixed with a short hash, so distinct ids never share a file.
    """
    if _SAFE_KEY.fullmatch(contract_id) and contract_id not in (".", ".."):
        stem = contract_id
    else:
        digest = hashlib.sha1(contract_id.encode("utf-8")).hexdigest()[:8]
        stem = f"{slugify(contract_id)}-{digest}"
    return f"contracts/{stem}.json"


class JsonStorage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._chars_root = base_path / "characters"
        self._contracts_root = base_path / "contracts"
        self._chars_root.mkdir(parents=True, exist_ok=True)
        self._contracts_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def prompts_dir(self) -> Path:
        return self._base / "prompts"

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _char_dir(self, name: str) -> Path:
        return self._chars_root / _check_key(name)

    def _transcript_file(self, contract_id: str) -> Path:
        return self._base / transcript_file_name(contract_id)

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def create_character(
        self,
        name: str,
        personality: str = "",
        location: str | None = None,
        activity: str | None = None,
        initial_memories: MemorySystem | None = None,
    ) -> None:
        """Write a character folder. Existing files are overwritten."""
        char_dir = self._char_dir(name)
        char_dir.mkdir(parents=True, exist_ok=True)
        if personality:
            (char_dir / "personality.md").write_text(personality)
        seed = {k: v for k, v in (("location", location), ("activity", activity)) if v}
        if seed:
            self._write_json(char_dir / "character.json", seed)
        if initial_memories is not None:
            (char_dir / "initial_memories.json").write_text(
                initial_memories.model_dump_json(indent=2)
            )

    def list_characters(self) -> list[str]:
        return sorted(p.name for p in self._chars_root.iterdir() if p.is_dir())

    def load_character(self, name: str) -> dict[str, Any]:
        path = self._char_dir(name) / "character.json"
        if not path.exists():
            return {}
        return self._read_json(path)

    def load_personality(self, name: str) -> str | None:
        path = self._char_dir(name) / "personality.md"
        if not path.exists():
            return None
        return path.read_text()

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def ensure_memories(self, name: str) -> None:
        """Create memories.json from initial_memories.json, or empty."""
        char_dir = self._char_dir(name)
        path = char_dir / "memories.json"
        if path.exists():
            return
        char_dir.mkdir(parents=True, exist_ok=True)
        initial = char_dir / "initial_memories.json"
        if initial.exists():
            logger.info("seeding memories for %s from initial_memories.json", name)
            memories = MemorySystem.model_validate_json(initial.read_text())
        else:
            logger.info("creating empty memories for %s", name)
            memories = MemorySystem()
        path.write_text(memories.model_dump_json(indent=2))

    def load_memories(self, name: str) -> MemorySystem:
        path = self._char_dir(name) / "memories.json"
        if not path.exists():
            initial = self._char_dir(name) / "initial_memories.json"
            if initial.exists():
                return MemorySystem.model_validate_json(initial.read_text())
            return MemorySystem()
        return MemorySystem.model_validate_json(path.read_text())

    def save_memories(self, name: str, memories: MemorySystem) -> None:
        char_dir = self._char_dir(name)
        char_dir.mkdir(parents=True, exist_ok=True)
        (char_dir / "memories.json").write_text(memories.model_dump_json(indent=2))

    # ------------------------------------------------------------------
    # Contract transcripts (append-only)
    # ------------------------------------------------------------------

    def read_transcript(self, contract_id: str) -> list[dict[str, Any]]:
        path = self._transcript_file(contract_id)
        if not path.exists():
            return []
        return self._read_json(path)

    def append_transcript(self, contract_id: str, entry: dict[str, Any]) -> None:
        entries = self.read_transcript(contract_id)
        entries.append(entry)
        self._write_json(self._transcript_file(contract_id), entries)


class InMemoryStorage:
    """Dict-backed storage. Memories are copied in and out, never shared."""

    def __init__(
        self,
        characters: dict[str, dict[str, Any]] | None = None,
        personalities: dict[str, str] | None = None,
        memories: dict[str, MemorySystem] | None = None,
    ) -> None:
        self.characters: dict[str, dict[str, Any]] = dict(characters or {})
        self.personalities: dict[str, str] = dict(personalities or {})
        self.memories: dict[str, MemorySystem] = {
            k: v.model_copy(deep=True) for k, v in (memories or {}).items()
        }
        self.transcripts: dict[str, list[dict[str, Any]]] = {}
        self.saves: list[str] = []

    def list_characters(self) -> list[str]:
        return sorted(self.characters)

    def load_character(self, name: str) -> dict[str, Any]:
        return dict(self.characters.get(name, {}))

    def load_personality(self, name: str) -> str | None:
        return self.personalities.get(name)

    def ensure_memories(self, name: str) -> None:
        self.memories.setdefault(name, MemorySystem())

    def load_memories(self, name: str) -> MemorySystem:
        memories = self.memories.get(name)
        return memories.model_copy(deep=True) if memories else MemorySystem()

    def save_memories(self, name: str, memories: MemorySystem) -> None:
        self.memories[name] = memories.model_copy(deep=True)
        self.saves.append(name)

    def read_transcript(self, contract_id: str) -> list[dict[str, Any]]:
        return [dict(e) for e in self.transcripts.get(contract_id, [])]

    def append_transcript(self, contract_id: str, entry: dict[str, Any]) -> None:
        self.transcripts.setdefault(contract_id, []).append(entry)
