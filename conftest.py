from pathlib import Path

import pytest

from social_npc.storage import InMemoryStorage, JsonStorage


@pytest.fixture
def tavern_storage() -> InMemoryStorage:
    """Alice and Bob in the tavern, no memories yet."""
    return InMemoryStorage(characters={
        "Alice": {"location": "tavern", "activity": "drinking ale"},
        "Bob": {"location": "tavern", "activity": "playing cards"},
    })


@pytest.fixture
def json_storage(tmp_path: Path) -> JsonStorage:
    return JsonStorage(tmp_path / "data")
