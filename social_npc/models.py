"""Core domain models.

All engine phases, prompt builders and storage functions operate on these
types. Pydantic is used for validation and serialisation at every data
boundary; backend responses are validated against the same models.

Fields that the backend fills in accept the historical wire names as well
(``npc`` for ``character``, ``reality`` for ``narrative``, ``contracts`` for
``contract_updates``).
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Character(BaseModel):
    """A simulated character. Mutated only through WorldState."""

    name: str
    location: str = "start"
    activity: str = "idle"
    active_contract: str | None = None
    next_prompt: str | None = None  # GM directive for the next intent prompt


class Contract(BaseModel):
    """A tracked multi-turn interaction between two or more characters.

    Participants never change after creation; regrouping ends the contract
    and creates a new one.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    participants: tuple[str, ...]
    transcript_file: str = ""

    @field_validator("participants")
    @classmethod
    def _dedupe(cls, names: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(names))


class GameState(BaseModel):
    """Plain data view of the world: characters and active contracts."""

    characters: dict[str, Character] = Field(default_factory=dict)
    contracts: dict[str, Contract] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Phase 1 — intents
# ---------------------------------------------------------------------------

class Intent(BaseModel):
    """What one character wants to do this turn, before arbitration."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    character: str = Field("", validation_alias=AliasChoices("character", "npc"))
    thought: str = Field("", validation_alias=AliasChoices("thought", "reason"))
    action: str
    dialogue: str | None = None
    target: str | None = None


# ---------------------------------------------------------------------------
# Phase 2 — GM request and response
# ---------------------------------------------------------------------------

class GmInput(BaseModel):
    characters: dict[str, Character]
    active_contracts: dict[str, Contract]
    intents: list[Intent]


class StateChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    character: str = Field(validation_alias=AliasChoices("character", "npc"))
    location: str
    activity: str


class TranscriptDetail(BaseModel):
    action: str = ""
    dialogue: str | None = None


class TranscriptEntry(BaseModel):
    reality: str = ""
    details: dict[str, TranscriptDetail] = Field(default_factory=dict)


class ContractUpdate(BaseModel):
    """One contract instruction from the GM.

    ``action`` is a free string: unknown actions are rejected
    when the batch is applied, not when the response is parsed.
    """

    id: str
    participants: list[str] = Field(default_factory=list)
    action: str
    transcript_entry: TranscriptEntry | None = None


class GmResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    narrative: str = Field(validation_alias=AliasChoices("narrative", "reality"))
    state_changes: list[StateChange] = Field(default_factory=list)
    contract_updates: list[ContractUpdate] = Field(
        default_factory=list,
        validation_alias=AliasChoices("contract_updates", "contracts"),
    )
    next_prompts: dict[str, str] = Field(default_factory=dict)


NOTHING_HAPPENED = "Nothing happened."


class ApplyReport(BaseModel):
    """What applying a GM response actually changed."""

    moved: list[str] = Field(default_factory=list)
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    ended: list[str] = Field(default_factory=list)
    directed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Turn result
# ---------------------------------------------------------------------------

class TurnResult(BaseModel):
    """Outcome of Engine.execute_turn().

    ``warnings`` lists every per-character failure and skipped mutation of
    the turn; a non-empty list marks the turn as degraded.
    """

    turn: int
    resolution: GmResponse
    intents: list[Intent] = Field(default_factory=list)
    applied: ApplyReport = Field(default_factory=ApplyReport)
    memories_updated: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)

    def summary(self) -> dict[str, Any]:
        return {
            "turn": self.turn,
            "narrative": self.resolution.narrative,
            "intents": len(self.intents),
            "memories_updated": len(self.memories_updated),
            "warnings": len(self.warnings),
        }
