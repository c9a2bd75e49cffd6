"""Tests for social_npc.world — atomic GM application and invariants."""

import pytest

from social_npc.errors import ConsistencyError
from social_npc.models import Character, Contract, GameState, GmResponse
from social_npc.world import WorldState, invariant_violations


@pytest.fixture
def world() -> WorldState:
    return WorldState.from_characters([
        Character(name="Alice", location="tavern", activity="drinking ale"),
        Character(name="Bob", location="tavern", activity="playing cards"),
        Character(name="Carol", location="market", activity="selling bread"),
    ])


def _create(cid: str, *names: str) -> dict:
    return {"id": cid, "participants": list(names), "action": "create"}


def _end(cid: str) -> dict:
    return {"id": cid, "action": "end"}


def _resolution(**fields) -> GmResponse:
    fields.setdefault("narrative", "Something happened.")
    return GmResponse.model_validate(fields)


# ---------------------------------------------------------------------------
# Invariant helper
# ---------------------------------------------------------------------------

class TestInvariantViolations:
    def test_clean_state(self) -> None:
        state = GameState(characters={"Alice": Character(name="Alice")})
        assert invariant_violations(state) == []

    def test_missing_contract(self) -> None:
        state = GameState(characters={"Alice": Character(name="Alice", active_contract="c9")})
        assert invariant_violations(state) == ["Alice references missing contract 'c9'"]

    def test_not_a_participant(self) -> None:
        state = GameState(
            characters={"Alice": Character(name="Alice", active_contract="c1")},
            contracts={"c1": Contract(id="c1", participants=["Bob", "Carol"])},
        )
        assert "without participating" in invariant_violations(state)[0]

    def test_constructor_rejects_broken_state(self) -> None:
        state = GameState(characters={"Alice": Character(name="Alice", active_contract="c9")})
        with pytest.raises(ConsistencyError):
            WorldState(state)


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class TestContracts:
    def test_create_sets_active_contract_on_participants(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Bob")]))
        state = world.snapshot()
        assert report.created == ["c1"]
        assert state.characters["Alice"].active_contract == "c1"
        assert state.characters["Bob"].active_contract == "c1"
        assert state.characters["Carol"].active_contract is None
        assert state.contracts["c1"].participants == ("Alice", "Bob")
        assert invariant_violations(state) == []

    def test_end_clears_participants_and_removes_contract(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Bob")]))
        report = world.apply_resolution(_resolution(contract_updates=[_end("c1")]))
        state = world.snapshot()
        assert report.ended == ["c1"]
        assert state.characters["Alice"].active_contract is None
        assert state.characters["Bob"].active_contract is None
        assert "c1" not in state.contracts
        assert invariant_violations(state) == []

    def test_end_leaves_participant_who_moved_to_another_contract(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Bob")]))
        world.apply_resolution(_resolution(contract_updates=[_create("c2", "Bob", "Carol")]))
        world.apply_resolution(_resolution(contract_updates=[_end("c1")]))
        state = world.snapshot()
        assert state.characters["Alice"].active_contract is None
        assert state.characters["Bob"].active_contract == "c2"
        assert invariant_violations(state) == []

    def test_update_is_structural_noop(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Bob")]))
        before = world.snapshot()
        report = world.apply_resolution(_resolution(contract_updates=[
            {"id": "c1", "participants": ["Alice", "Bob", "Carol"], "action": "update"},
        ]))
        assert report.updated == ["c1"]
        assert world.snapshot() == before

    def test_update_unknown_contract_skipped(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(contract_updates=[{"id": "nope", "action": "update"}]))
        assert report.errors == ["Update for unknown contract 'nope'"]

    def test_end_unknown_contract_skipped(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(contract_updates=[_end("ghost")]))
        assert "unknown contract 'ghost'" in report.errors[0]

    def test_duplicate_create_skipped(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Bob")]))
        report = world.apply_resolution(_resolution(contract_updates=[_create("c1", "Bob", "Carol")]))
        assert "already exists" in report.errors[0]
        assert world.snapshot().contracts["c1"].participants == ("Alice", "Bob")
        assert world.get_character("Carol").active_contract is None

    def test_create_drops_unknown_participants(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Bob", "Zed")]))
        assert report.created == ["c1"]
        assert world.snapshot().contracts["c1"].participants == ("Alice", "Bob")
        assert any("Zed" in e for e in report.errors)

    def test_create_needs_two_known_participants(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(contract_updates=[_create("c1", "Alice", "Zed")]))
        assert report.created == []
        assert "c1" not in world.snapshot().contracts
        assert world.get_character("Alice").active_contract is None

    def test_create_records_safe_transcript_file(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(contract_updates=[_create("tavern/cards", "Alice", "Bob")]))
        contract = world.snapshot().contracts["tavern/cards"]
        assert contract.transcript_file.startswith("contracts/tavern-cards-")
        assert world.get_character("Alice").active_contract == "tavern/cards"

    def test_action_case_insensitive(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(contract_updates=[
            {"id": "c1", "participants": ["Alice", "Bob"], "action": " Create "},
        ]))
        assert report.created == ["c1"]


# ---------------------------------------------------------------------------
# Batch semantics
# ---------------------------------------------------------------------------

class TestApplyResolution:
    def test_state_changes_overwrite(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(state_changes=[
            {"character": "Carol", "location": "tavern", "activity": "looking for a seat"},
        ]))
        carol = world.get_character("Carol")
        assert (carol.location, carol.activity) == ("tavern", "looking for a seat")

    def test_next_prompts_overwrite_directive(self, world: WorldState) -> None:
        world.apply_resolution(_resolution(next_prompts={"Alice": "Bob waves you over."}))
        world.apply_resolution(_resolution(next_prompts={"Alice": "The bard starts a song."}))
        assert world.get_character("Alice").next_prompt == "The bard starts a song."
        assert world.get_character("Bob").next_prompt is None

    def test_unknown_action_does_not_abort_batch(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(
            state_changes=[{"character": "Bob", "location": "tavern", "activity": "dealing"}],
            contract_updates=[
                {"id": "c0", "participants": ["Alice", "Bob"], "action": "pause"},
                _create("c1", "Alice", "Bob"),
            ],
            next_prompts={"Bob": "Alice sits down."},
        ))
        state = world.snapshot()
        assert report.errors == ["Unknown contract action 'pause' for 'c0'"]
        assert state.characters["Bob"].activity == "dealing"
        assert state.characters["Alice"].active_contract == "c1"
        assert state.characters["Bob"].next_prompt == "Alice sits down."

    def test_unknown_character_skipped(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(
            state_changes=[
                {"character": "Zed", "location": "moon", "activity": "floating"},
                {"character": "Alice", "location": "street", "activity": "leaving"},
            ],
            next_prompts={"Zed": "hello?"},
        ))
        assert len(report.errors) == 2
        assert world.get_character("Alice").location == "street"
        assert "Zed" not in world.character_names()

    def test_report_lists_changes(self, world: WorldState) -> None:
        report = world.apply_resolution(_resolution(
            state_changes=[{"character": "Alice", "location": "tavern", "activity": "joining"}],
            contract_updates=[_create("c1", "Alice", "Bob")],
            next_prompts={"Alice": "x", "Bob": "y"},
        ))
        assert report.moved == ["Alice"]
        assert report.created == ["c1"]
        assert report.directed == ["Alice", "Bob"]
        assert report.errors == []


# ---------------------------------------------------------------------------
# Reads and direct writes
# ---------------------------------------------------------------------------

class TestReads:
    def test_snapshot_is_isolated(self, world: WorldState) -> None:
        snap = world.snapshot()
        world.set_character_state("Alice", "street", "walking")
        assert snap.characters["Alice"].location == "tavern"
        snap.characters["Bob"].location = "moon"
        assert world.get_character("Bob").location == "tavern"

    def test_get_character_returns_copy(self, world: WorldState) -> None:
        alice = world.get_character("Alice")
        alice.location = "moon"
        assert world.get_character("Alice").location == "tavern"

    def test_get_unknown_character(self, world: WorldState) -> None:
        assert world.get_character("Zed") is None

    def test_co_located(self, world: WorldState) -> None:
        assert world.co_located("Alice") == ["Bob"]
        assert world.co_located("Carol") == []
        assert world.co_located("Zed") == []


class TestDirectWrites:
    def test_add_character(self, world: WorldState) -> None:
        world.add_character(Character(name="Dave", location="docks"))
        assert "Dave" in world.character_names()

    def test_add_duplicate_rejected(self, world: WorldState) -> None:
        with pytest.raises(ConsistencyError):
            world.add_character(Character(name="Alice"))

    def test_add_inside_contract_rejected(self, world: WorldState) -> None:
        with pytest.raises(ConsistencyError):
            world.add_character(Character(name="Dave", active_contract="c1"))

    def test_set_state_unknown_rejected(self, world: WorldState) -> None:
        with pytest.raises(ConsistencyError, match="not found"):
            world.set_character_state("Zed", "x", "y")
