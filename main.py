"""Social NPC — launcher. Runs turns headless or serves the HTTP API."""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))
DEFAULT_DATA_DIR = Path(os.getenv("DATA_DIR", str(ROOT / "data")))


def build_engine(data_dir: Path):
    from social_npc.config import get_config
    from social_npc.llm import HttpLLM
    from social_npc.pipeline import Engine
    from social_npc.prompts import PromptBuilder
    from social_npc.storage import JsonStorage

    config = get_config(data_dir)
    storage = JsonStorage(data_dir)
    engine = Engine(
        storage=storage,
        llm=HttpLLM.from_config(config["llm"]),
        prompts=PromptBuilder(storage.prompts_dir),
        call_timeout=config["engine"]["call_timeout"],
        default_location=config["engine"]["default_location"],
        default_activity=config["engine"]["default_activity"],
    )
    engine.load_characters()
    return engine


async def run_headless(engine, turns: int) -> None:
    for _ in range(turns):
        result = await engine.execute_turn()
        print(f"\n=== Turn {result.turn} ===")
        print(result.resolution.narrative)
        for warning in result.warnings:
            print(f"  ! {warning}")


def main():
    parser = argparse.ArgumentParser(description="Social NPC turn engine")
    parser.add_argument("--data-dir", type=Path, default=DEFAULT_DATA_DIR,
                        help="Data directory with characters/ and prompts/ (default: ./data)")
    parser.add_argument("--turns", type=int, default=1,
                        help="Number of turns to run headless (default: 1)")
    parser.add_argument("--serve", action="store_true",
                        help="Serve the HTTP API instead of running turns")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")
    args = parser.parse_args()

    level = "DEBUG" if args.verbose else os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine = build_engine(args.data_dir)

    if args.serve:
        import uvicorn

        from social_npc.api import create_app

        print(f"Serving on http://localhost:{PORT} ...")
        uvicorn.run(create_app(engine), host=HOST, port=PORT)
        return

    asyncio.run(run_headless(engine, args.turns))


if __name__ == "__main__":
    main()
