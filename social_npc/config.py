"""Engine configuration (LLM connection, engine defaults).

Values are resolved in three layers, later layers winning:

    1. _CONFIG_DEFAULTS below
    2. {data_dir}/config.json
    3. environment variables (the CLI loads .env first via python-dotenv)
"""

import json
import os
from pathlib import Path
from typing import Any

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm": {
        "provider_url": "http://localhost:11434",
        "api_key": "",
        "provider_format": "ollama",
        "model": "llama3.2:latest",
        "timeout": 120.0,
    },
    "engine": {
        "default_location": "start",
        "default_activity": "idle",
        "call_timeout": None,  # per gateway call, seconds; None disables
    },
}

# env var → (section, key, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "LLM_PROVIDER_URL": ("llm", "provider_url", str),
    "LLM_API_KEY": ("llm", "api_key", str),
    "LLM_FORMAT": ("llm", "provider_format", str),
    "LLM_MODEL": ("llm", "model", str),
    "LLM_TIMEOUT": ("llm", "timeout", float),
    "ENGINE_CALL_TIMEOUT": ("engine", "call_timeout", float),
}


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _defaults() -> dict[str, Any]:
    return json.loads(json.dumps(_CONFIG_DEFAULTS))


def get_config(data_dir: Path, env: dict[str, str] | None = None) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and env vars."""
    config = _defaults()
    path = _config_path(data_dir)
    if path.is_file():
        stored = json.loads(path.read_text())
        for section, vals in stored.items():
            if section in config and isinstance(vals, dict):
                config[section].update(vals)

    env = os.environ if env is None else env
    for var, (section, key, convert) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            try:
                config[section][key] = convert(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {var}: {raw!r}") from e
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into the stored config and persist. Returns the stored config."""
    config = _defaults()
    path = _config_path(data_dir)
    if path.is_file():
        for section, vals in json.loads(path.read_text()).items():
            if section in config and isinstance(vals, dict):
                config[section].update(vals)
    for section, vals in fields.items():
        if section in config and isinstance(vals, dict):
            config[section].update(vals)
    data_dir.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2))
    return config
