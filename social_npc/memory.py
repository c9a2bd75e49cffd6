"""Hierarchical per-character memory.

Every character owns one MemorySystem:

    self_memories
      immediate_context   latest self-narrative, overwritten every turn
      recent_events       last RECENT_EVENTS_CAPACITY events, oldest evicted first
      core_memories       unbounded, never evicted
    relationships[other_name]
      immediate_context   how the character feels about the other right now
      recent_memories     last RELATIONSHIP_MEMORY_CAPACITY Memory entries
      long_term_summary   replaced wholesale when the backend revises it
      core_memories       unbounded, never evicted, never de-duplicated
      current_sentiment   moment-to-moment valence in [-1, 1]
      overall_bond        long-run valence in [-1, 1]

The LLM answers a memory-update prompt with a MemoryUpdate payload, which
MemorySystem.merge_update() folds in. Merging is not idempotent: applying the
same update twice appends its events twice.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

RECENT_EVENTS_CAPACITY = 10
RELATIONSHIP_MEMORY_CAPACITY = 5


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _present(text: str | None) -> bool:
    return text is not None and text.strip() != ""


# ---------------------------------------------------------------------------
# Stored memory
# ---------------------------------------------------------------------------

class Memory(BaseModel):
    """A single remembered event about another character."""

    event: str
    timestamp: datetime = Field(default_factory=_utcnow)
    emotional_impact: str = ""
    importance: float = 0.5  # 0.0–1.0

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: float) -> float:
        return _clamp(value, 0.0, 1.0)


class SelfMemories(BaseModel):
    immediate_context: str = ""
    recent_events: list[str] = Field(default_factory=list)
    core_memories: list[str] = Field(default_factory=list)

    @field_validator("recent_events")
    @classmethod
    def _trim_recent(cls, events: list[str]) -> list[str]:
        return events[-RECENT_EVENTS_CAPACITY:]

    def add_recent_event(self, event: str) -> None:
        self.recent_events.append(event)
        while len(self.recent_events) > RECENT_EVENTS_CAPACITY:
            self.recent_events.pop(0)

    def add_core_memory(self, memory: str) -> None:
        self.core_memories.append(memory)


class RelationshipMemory(BaseModel):
    immediate_context: str = ""
    recent_memories: list[Memory] = Field(default_factory=list)
    long_term_summary: str = ""
    core_memories: list[str] = Field(default_factory=list)
    current_sentiment: float = 0.0  # -1.0–1.0
    overall_bond: float = 0.0  # -1.0–1.0

    @field_validator("recent_memories")
    @classmethod
    def _trim_recent(cls, memories: list[Memory]) -> list[Memory]:
        return memories[-RELATIONSHIP_MEMORY_CAPACITY:]

    @field_validator("current_sentiment", "overall_bond")
    @classmethod
    def _clamp_valence(cls, value: float) -> float:
        return _clamp(value, -1.0, 1.0)

    def add_memory(self, memory: Memory) -> None:
        self.recent_memories.append(memory)
        while len(self.recent_memories) > RELATIONSHIP_MEMORY_CAPACITY:
            self.recent_memories.pop(0)

    def update_sentiment(self, sentiment: float) -> None:
        self.current_sentiment = _clamp(sentiment, -1.0, 1.0)

    def update_bond(self, bond: float) -> None:
        self.overall_bond = _clamp(bond, -1.0, 1.0)


# ---------------------------------------------------------------------------
# Update payload returned by the backend
# ---------------------------------------------------------------------------

class RelationshipUpdate(BaseModel):
    immediate_context: str
    current_sentiment: float
    new_memory: Memory | None = None
    long_term_summary_update: str | None = None
    potential_core_memory: str | None = None
    overall_bond: float | None = None


class MemoryUpdate(BaseModel):
    """Structured answer to a memory-update prompt."""

    immediate_self_context: str
    new_self_memory: str | None = None
    new_self_core_memory: str | None = None
    relationship_updates: dict[str, RelationshipUpdate] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# MemorySystem
# ---------------------------------------------------------------------------

class MemorySystem(BaseModel):
    self_memories: SelfMemories = Field(default_factory=SelfMemories)
    relationships: dict[str, RelationshipMemory] = Field(default_factory=dict)

    @classmethod
    def with_context(cls, immediate_context: str) -> MemorySystem:
        return cls(self_memories=SelfMemories(immediate_context=immediate_context))

    def get_or_create_relationship(self, other: str) -> RelationshipMemory:
        relationship = self.relationships.get(other)
        if relationship is None:
            relationship = RelationshipMemory()
            self.relationships[other] = relationship
        return relationship

    def update_self_context(self, context: str) -> None:
        self.self_memories.immediate_context = context

    def add_self_event(self, event: str) -> None:
        self.self_memories.add_recent_event(event)

    def merge_update(self, update: MemoryUpdate) -> None:
        """Fold a backend memory update into this memory system.

        Blank optional strings count as absent. Callers must apply a given
        update at most once, since event and memory entries are appended.
        """
        self.update_self_context(update.immediate_self_context)
        if _present(update.new_self_memory):
            self.add_self_event(update.new_self_memory)
        if _present(update.new_self_core_memory):
            self.self_memories.add_core_memory(update.new_self_core_memory)

        for other, rel_update in update.relationship_updates.items():
            relationship = self.get_or_create_relationship(other)
            relationship.immediate_context = rel_update.immediate_context
            relationship.update_sentiment(rel_update.current_sentiment)

            if rel_update.new_memory is not None:
                relationship.add_memory(rel_update.new_memory)
            if _present(rel_update.long_term_summary_update):
                relationship.long_term_summary = rel_update.long_term_summary_update
            if _present(rel_update.potential_core_memory):
                relationship.core_memories.append(rel_update.potential_core_memory)
            if rel_update.overall_bond is not None:
                relationship.update_bond(rel_update.overall_bond)
