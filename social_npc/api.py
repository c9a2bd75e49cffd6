"""FastAPI endpoints under /api for driving an Engine over HTTP.

    GET  /api/health
    GET  /api/state                          characters + active contracts
    POST /api/turn                           execute one turn
    GET  /api/characters                     character names
    GET  /api/characters/{name}/memories     stored MemorySystem
    PUT  /api/characters/{name}/state        set location/activity
"""

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel

from social_npc.errors import ConsistencyError, SocialNpcError
from social_npc.pipeline import Engine

router = APIRouter()


class CharacterStateBody(BaseModel):
    location: str
    activity: str


def _engine(request: Request) -> Engine:
    return request.app.state.engine


def _require_character(engine: Engine, name: str) -> None:
    if engine.world.get_character(name) is None:
        raise HTTPException(404, f"Character '{name}' not found")


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/state")
async def get_state(request: Request):
    """Current world state."""
    return _engine(request).get_state().model_dump(mode="json")


@router.post("/turn")
async def execute_turn(request: Request):
    """Run one full turn and return its result."""
    engine = _engine(request)
    try:
        result = await engine.execute_turn()
    except RuntimeError as e:
        raise HTTPException(409, str(e))
    except ConsistencyError as e:
        raise HTTPException(409, str(e))
    except SocialNpcError as e:
        raise HTTPException(502, str(e))
    return result.model_dump(mode="json")


@router.get("/characters")
async def list_characters(request: Request):
    """Names of all characters in the world."""
    return _engine(request).world.character_names()


@router.get("/characters/{name}/memories")
async def get_memories(request: Request, name: str):
    """Stored memories of one character."""
    engine = _engine(request)
    _require_character(engine, name)
    return engine.storage.load_memories(name).model_dump(mode="json")


@router.put("/characters/{name}/state")
async def set_character_state(request: Request, name: str, body: CharacterStateBody):
    """Move a character or change what it is doing."""
    engine = _engine(request)
    _require_character(engine, name)
    engine.set_character_state(name, body.location, body.activity)
    return engine.world.get_character(name).model_dump()


def create_app(engine: Engine) -> FastAPI:
    app = FastAPI(title="Social NPC")
    app.state.engine = engine
    app.include_router(router, prefix="/api")
    return app
