"""Turn orchestrator — runs one simulation turn end-to-end.

Turn flow:
  1. Intent collection: every character, concurrently, gets an intent prompt
     built from one deep snapshot of the world, asks the LLM, and parses an
     Intent. A character that fails at any step sits the turn out.
  2. GM resolution: one combined request (fresh snapshot + all intents), one
     LLM call, one parsed GmResponse, applied to WorldState as a single
     atomic batch. Any failure here aborts the turn with the world untouched.
  3. Memory update: every character that produced an intent, concurrently,
     gets a memory-update prompt (own intent, GM narrative, who else was at
     the same location after phase 2), asks the LLM, merges the parsed
     MemoryUpdate and saves it. Failures are per character and never undo
     phase 2.

Suspension points are the LLM calls only. WorldState takes its lock inside
synchronous methods, so no lock is held while a call is in flight.
Turns must not overlap: execute_turn() refuses to start while one runs.
"""

from __future__ import annotations

import asyncio
import logging

from social_npc.errors import SocialNpcError
from social_npc.llm import LLM, query
from social_npc.memory import MemoryUpdate
from social_npc.models import (
    NOTHING_HAPPENED,
    ApplyReport,
    Character,
    GameState,
    GmInput,
    GmResponse,
    Intent,
    TurnResult,
)
from social_npc.parser import extract_json
from social_npc.prompts import PromptBuilder
from social_npc.storage import Storage
from social_npc.world import WorldState

logger = logging.getLogger(__name__)

# Failures that cost one character its turn contribution. Storage errors
# surface as OSError, or ValueError for corrupt JSON.
_CHARACTER_FAILURES = (SocialNpcError, OSError, ValueError)


class Engine:
    """Owns the world state and drives turns against an LLM and a storage."""

    def __init__(
        self,
        *,
        storage: Storage,
        llm: LLM,
        world: WorldState | None = None,
        prompts: PromptBuilder | None = None,
        call_timeout: float | None = None,
        default_location: str = "start",
        default_activity: str = "idle",
    ) -> None:
        self.storage = storage
        self.llm = llm
        self.world = world or WorldState()
        self.prompts = prompts or PromptBuilder()
        self._call_timeout = call_timeout
        self._default_location = default_location
        self._default_activity = default_activity
        self._turn = 0
        self._running = False

    @property
    def turn(self) -> int:
        """Number of turns started so far."""
        return self._turn

    # ------------------------------------------------------------------
    # Setup and direct state access
    # ------------------------------------------------------------------

    def load_characters(self) -> list[str]:
        """Add every stored character not yet in the world. Returns the new names."""
        added = []
        for name in self.storage.list_characters():
            if self.world.get_character(name) is not None:
                continue
            seed = self.storage.load_character(name)
            self.storage.ensure_memories(name)
            self.world.add_character(Character(
                name=name,
                location=seed.get("location") or self._default_location,
                activity=seed.get("activity") or self._default_activity,
            ))
            logger.info("Loaded character: %s", name)
            added.append(name)
        logger.info("Loaded %d characters", len(added))
        return added

    def add_character(
        self, name: str, location: str | None = None, activity: str | None = None
    ) -> Character:
        character = Character(
            name=name,
            location=location or self._default_location,
            activity=activity or self._default_activity,
        )
        self.world.add_character(character)
        return character

    def get_state(self) -> GameState:
        return self.world.snapshot()

    def set_character_state(self, name: str, location: str, activity: str) -> None:
        self.world.set_character_state(name, location, activity)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def execute_turn(self) -> TurnResult:
        """Run collect → resolve → update once and return what happened."""
        if self._running:
            raise RuntimeError("A turn is already running on this engine")
        self._running = True
        self._turn += 1
        turn = self._turn
        warnings: list[str] = []
        try:
            logger.info("Starting turn %d", turn)
            intents = await self.collect_intents(warnings)

            try:
                resolution, applied = await self._resolve(intents, warnings)
            except SocialNpcError as e:
                logger.error("Turn %d aborted during GM resolution: %s", turn, e)
                raise

            updated = await self.update_memories(intents, resolution, warnings)
        finally:
            self._running = False

        result = TurnResult(
            turn=turn,
            resolution=resolution,
            intents=intents,
            applied=applied,
            memories_updated=updated,
            warnings=warnings,
        )
        logger.info("Finished turn %d: %s", turn, result.summary())
        return result

    async def run_turns(self, count: int) -> list[TurnResult]:
        return [await self.execute_turn() for _ in range(count)]

    # ------------------------------------------------------------------
    # Phase 1 — intent collection
    # ------------------------------------------------------------------

    async def collect_intents(self, warnings: list[str] | None = None) -> list[Intent]:
        if warnings is None:
            warnings = []
        snapshot = self.world.snapshot()
        if not snapshot.characters:
            logger.debug("No characters to collect intents from")
            return []

        logger.debug("Collecting intents from %d characters in parallel", len(snapshot.characters))
        results = await asyncio.gather(*(
            self._collect_one(character, snapshot, warnings)
            for character in snapshot.characters.values()
        ))
        intents = [intent for intent in results if intent is not None]
        logger.info("Collected %d intents from %d characters", len(intents), len(snapshot.characters))
        return intents

    async def _collect_one(
        self, character: Character, snapshot: GameState, warnings: list[str]
    ) -> Intent | None:
        name = character.name
        stage = f"intent:{name}"
        try:
            memories = self.storage.load_memories(name)
            personality = self.storage.load_personality(name)
            transcript = self._read_transcript(character, warnings)
            prompt = self.prompts.build_intent_prompt(
                character, snapshot, memories, personality, transcript
            )
            response = await query(self.llm, stage, prompt, self._call_timeout)
            intent = extract_json(response, Intent)
        except _CHARACTER_FAILURES as e:
            logger.warning("Failed to collect intent from %s: %s", name, e)
            warnings.append(f"{stage}: {e}")
            return None

        if intent.character != name:
            if intent.character:
                logger.debug("intent from %s claimed to be from %r", name, intent.character)
            intent = intent.model_copy(update={"character": name})
        logger.info("  %s intends: %s", name, intent.action)
        return intent

    def _read_transcript(
        self, character: Character, warnings: list[str]
    ) -> list[dict] | None:
        """Transcript of the character's contract; an unreadable one is left out."""
        contract_id = character.active_contract
        if contract_id is None:
            return None
        try:
            return self.storage.read_transcript(contract_id)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read transcript %s for %s: %s", contract_id, character.name, e)
            warnings.append(f"transcript:{contract_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Phase 2 — GM resolution
    # ------------------------------------------------------------------

    async def resolve_intents(
        self, intents: list[Intent], warnings: list[str] | None = None
    ) -> GmResponse:
        resolution, _ = await self._resolve(intents, [] if warnings is None else warnings)
        return resolution

    async def _resolve(
        self, intents: list[Intent], warnings: list[str]
    ) -> tuple[GmResponse, ApplyReport]:
        if not intents:
            logger.debug("No intents to resolve")
            return GmResponse(narrative=NOTHING_HAPPENED), ApplyReport()

        logger.info("Resolving %d intents with GM", len(intents))
        snapshot = self.world.snapshot()
        gm_input = GmInput(
            characters=snapshot.characters,
            active_contracts=snapshot.contracts,
            intents=intents,
        )
        input_json = gm_input.model_dump_json(indent=2)
        logger.debug("Sending to GM: %s", input_json)

        prompt = self.prompts.build_resolution_prompt(input_json)
        response = await query(self.llm, "gm", prompt, self._call_timeout)
        resolution = extract_json(response, GmResponse)
        logger.info("Reality: %s", resolution.narrative)

        applied = self.world.apply_resolution(resolution)
        warnings.extend(applied.errors)
        self._record_transcripts(resolution, applied, warnings)
        return resolution, applied

    def _record_transcripts(
        self, resolution: GmResponse, applied: ApplyReport, warnings: list[str]
    ) -> None:
        """Append transcript entries of contracts that were created or continued."""
        live = set(applied.created) | set(applied.updated)
        for update in resolution.contract_updates:
            if update.transcript_entry is None or update.id not in live:
                continue
            try:
                self.storage.append_transcript(update.id, update.transcript_entry.model_dump())
            except (OSError, ValueError) as e:
                logger.warning("Failed to record transcript for %s: %s", update.id, e)
                warnings.append(f"transcript:{update.id}: {e}")

    # ------------------------------------------------------------------
    # Phase 3 — memory update
    # ------------------------------------------------------------------

    async def update_memories(
        self,
        intents: list[Intent],
        resolution: GmResponse,
        warnings: list[str] | None = None,
    ) -> list[str]:
        """Update and save memories of every character that acted. Returns their names."""
        if warnings is None:
            warnings = []
        if not intents:
            logger.debug("No intents to process for memory updates")
            return []

        logger.info("Updating memories for %d characters", len(intents))
        jobs = [(intent, self.world.co_located(intent.character)) for intent in intents]
        results = await asyncio.gather(*(
            self._update_one(intent, present, resolution.narrative, warnings)
            for intent, present in jobs
        ))
        return [name for name in results if name is not None]

    async def _update_one(
        self, intent: Intent, present: list[str], narrative: str, warnings: list[str]
    ) -> str | None:
        name = intent.character
        stage = f"memory:{name}"
        try:
            memories = self.storage.load_memories(name)
            prompt = self.prompts.build_memory_update_prompt(
                name, intent.model_dump_json(), narrative, present, memories
            )
            response = await query(self.llm, stage, prompt, self._call_timeout)
            update = extract_json(response, MemoryUpdate)
            memories.merge_update(update)
            self.storage.save_memories(name, memories)
        except _CHARACTER_FAILURES as e:
            logger.warning("Failed to update memories for %s: %s", name, e)
            warnings.append(f"{stage}: {e}")
            return None

        logger.info("  %s: %s", name, update.immediate_self_context)
        return name
