"""Social NPC — a turn engine for LLM-driven characters.

Each turn, every character forms an intent, a single GM resolves all intents
into one outcome, and every acting character's memories are updated.

    from pathlib import Path
    from social_npc import Engine, HttpLLM, JsonStorage

    storage = JsonStorage(Path("data"))
    engine = Engine(storage=storage, llm=HttpLLM("http://localhost:11434",
                    provider_format="ollama", model="llama3.2:latest"))
    engine.load_characters()
    result = await engine.execute_turn()
"""

from social_npc.errors import (  # noqa: F401
    BackendError,
    ConsistencyError,
    ParseError,
    SocialNpcError,
    TemplateError,
)
from social_npc.llm import LLM, EchoLLM, HttpLLM, ScriptedLLM  # noqa: F401
from social_npc.memory import (  # noqa: F401
    Memory,
    MemorySystem,
    MemoryUpdate,
    RelationshipMemory,
    RelationshipUpdate,
    SelfMemories,
)
from social_npc.models import (  # noqa: F401
    ApplyReport,
    Character,
    Contract,
    GameState,
    GmResponse,
    Intent,
    TurnResult,
)
from social_npc.pipeline import Engine  # noqa: F401
from social_npc.storage import InMemoryStorage, JsonStorage, Storage  # noqa: F401
from social_npc.world import WorldState  # noqa: F401
