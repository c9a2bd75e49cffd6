"""Shared world state: characters and active contracts behind one lock.

WorldState is the only writer of GameState. Every read that must agree with
a prior write goes through the lock, and the lock is only taken inside the
synchronous methods below, so it is never held across an ``await``.

GM resolutions are applied as one batch: the batch runs against a deep copy,
the invariants are checked, and the copy replaces the live state only if they
hold. Individual bad instructions (unknown character, unknown contract,
unknown action) are skipped and reported without abandoning the batch.
"""

from __future__ import annotations

import logging
import threading

from social_npc.errors import ConsistencyError
from social_npc.models import (
    ApplyReport,
    Character,
    Contract,
    ContractUpdate,
    GameState,
    GmResponse,
    StateChange,
)
from social_npc.storage import transcript_file_name

logger = logging.getLogger(__name__)


def invariant_violations(state: GameState) -> list[str]:
    """Return a description of every broken active-contract reference."""
    problems = []
    for name, character in state.characters.items():
        if name != character.name:
            problems.append(f"character keyed {name!r} is named {character.name!r}")
        cid = character.active_contract
        if cid is None:
            continue
        contract = state.contracts.get(cid)
        if contract is None:
            problems.append(f"{name} references missing contract {cid!r}")
        elif name not in contract.participants:
            problems.append(f"{name} references contract {cid!r} without participating")
    return problems


class WorldState:
    def __init__(self, state: GameState | None = None) -> None:
        self._state = state.model_copy(deep=True) if state else GameState()
        self._lock = threading.Lock()
        problems = invariant_violations(self._state)
        if problems:
            raise ConsistencyError("; ".join(problems))

    @classmethod
    def from_characters(cls, characters: list[Character]) -> WorldState:
        return cls(GameState(characters={c.name: c for c in characters}))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> GameState:
        """Deep point-in-time copy; later mutations are not visible in it."""
        with self._lock:
            return self._state.model_copy(deep=True)

    def character_names(self) -> list[str]:
        with self._lock:
            return list(self._state.characters)

    def get_character(self, name: str) -> Character | None:
        with self._lock:
            character = self._state.characters.get(name)
            return character.model_copy() if character else None

    def co_located(self, name: str) -> list[str]:
        """Names of the other characters at the same location as name."""
        with self._lock:
            me = self._state.characters.get(name)
            if me is None:
                return []
            return [
                other.name
                for other in self._state.characters.values()
                if other.name != name and other.location == me.location
            ]

    # ------------------------------------------------------------------
    # Direct writes
    # ------------------------------------------------------------------

    def add_character(self, character: Character) -> None:
        with self._lock:
            if character.name in self._state.characters:
                raise ConsistencyError(f"Character {character.name!r} already exists")
            if character.active_contract is not None:
                raise ConsistencyError(
                    f"New character {character.name!r} cannot start inside a contract"
                )
            self._state.characters[character.name] = character.model_copy()

    def set_character_state(self, name: str, location: str, activity: str) -> None:
        with self._lock:
            character = self._state.characters.get(name)
            if character is None:
                raise ConsistencyError(f"Character {name!r} not found")
            character.location = location
            character.activity = activity

    # ------------------------------------------------------------------
    # GM resolution
    # ------------------------------------------------------------------

    def apply_resolution(self, resolution: GmResponse) -> ApplyReport:
        """Apply a parsed GM response as one atomic batch.

        Raises ConsistencyError, leaving the live state untouched, if the
        batch as a whole would break an invariant.
        """
        report = ApplyReport()
        with self._lock:
            working = self._state.model_copy(deep=True)

            for change in resolution.state_changes:
                self._step(report, _apply_state_change, working, change, report)
            for update in resolution.contract_updates:
                self._step(report, _apply_contract_update, working, update, report)
            for name, prompt in resolution.next_prompts.items():
                self._step(report, _apply_next_prompt, working, name, prompt, report)

            problems = invariant_violations(working)
            if problems:
                raise ConsistencyError(
                    "GM resolution rejected: " + "; ".join(problems)
                )
            self._state = working
        return report

    @staticmethod
    def _step(report: ApplyReport, fn, *args) -> None:
        try:
            fn(*args)
        except ConsistencyError as e:
            logger.warning("skipped GM instruction: %s", e)
            report.errors.append(str(e))


# ---------------------------------------------------------------------------
# Sub-steps; each mutates the working copy or raises ConsistencyError
# ---------------------------------------------------------------------------

def _apply_state_change(state: GameState, change: StateChange, report: ApplyReport) -> None:
    character = state.characters.get(change.character)
    if character is None:
        raise ConsistencyError(f"State change for unknown character {change.character!r}")
    character.location = change.location
    character.activity = change.activity
    report.moved.append(change.character)
    logger.info("  %s: %s - %s", change.character, change.location, change.activity)


def _apply_contract_update(state: GameState, update: ContractUpdate, report: ApplyReport) -> None:
    action = update.action.strip().lower()

    if action == "create":
        if update.id in state.contracts:
            raise ConsistencyError(f"Contract {update.id!r} already exists")
        participants = list(dict.fromkeys(update.participants))
        unknown = [p for p in participants if p not in state.characters]
        if unknown:
            report.errors.append(
                f"Contract {update.id!r}: dropped unknown participants {unknown}"
            )
            participants = [p for p in participants if p in state.characters]
        if len(participants) < 2:
            raise ConsistencyError(
                f"Contract {update.id!r} needs at least two known participants"
            )
        contract = Contract(
            id=update.id,
            participants=tuple(participants),
            transcript_file=transcript_file_name(update.id),
        )
        state.contracts[contract.id] = contract
        for name in contract.participants:
            state.characters[name].active_contract = contract.id
        report.created.append(contract.id)
        logger.info("  contract created: %s %s", contract.id, list(contract.participants))

    elif action == "update":
        if update.id not in state.contracts:
            raise ConsistencyError(f"Update for unknown contract {update.id!r}")
        report.updated.append(update.id)
        logger.info("  contract updated: %s", update.id)

    elif action == "end":
        contract = state.contracts.pop(update.id, None)
        if contract is None:
            raise ConsistencyError(f"End for unknown contract {update.id!r}")
        for name in contract.participants:
            character = state.characters.get(name)
            if character is not None and character.active_contract == contract.id:
                character.active_contract = None
        report.ended.append(contract.id)
        logger.info("  contract ended: %s", contract.id)

    else:
        raise ConsistencyError(
            f"Unknown contract action {update.action!r} for {update.id!r}"
        )


def _apply_next_prompt(state: GameState, name: str, prompt: str, report: ApplyReport) -> None:
    character = state.characters.get(name)
    if character is None:
        raise ConsistencyError(f"Next prompt for unknown character {name!r}")
    character.next_prompt = prompt
    report.directed.append(name)
