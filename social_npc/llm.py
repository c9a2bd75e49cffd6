"""LLM client — the inference gateway between the engine and a model backend.

The engine injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` identifies which phase is calling and for whom:

    "intent:<name>"   Phase 1, one call per character
    "gm"              Phase 2, exactly one call per turn
    "memory:<name>"   Phase 3, one call per acting character

Implementations may use it for logging or routing; HttpLLM only logs it.

Three implementations are provided:

    HttpLLM      — real HTTP client for KoboldCpp, OpenAI-compatible and
                   Ollama backends. Selected by provider_format.
    EchoLLM      — returns the prompt back unchanged. Useful for smoke-testing
                   the wiring without a running model.
    ScriptedLLM  — deterministic answers keyed by stage; the scripted
                   stand-in for the model in tests and demos.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Literal, Protocol

import httpx

from social_npc.errors import BackendError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


async def query(llm: LLM, stage: str, prompt: str, timeout: float | None = None) -> str:
    """Call llm, turning a timeout or cancellation deadline into BackendError."""
    if timeout is None:
        return await llm(stage, prompt)
    try:
        return await asyncio.wait_for(llm(stage, prompt), timeout)
    except asyncio.TimeoutError as e:
        raise BackendError(f"LLM call for {stage} timed out after {timeout}s") from e


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai", "ollama"]


class HttpLLM:
    """Async HTTP client for text-completion backends.

    Supported formats:
      "koboldcpp"  — POST /api/v1/generate  {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     — POST /v1/completions   {"model": ..., "prompt": ...}
                     Response: {"choices": [{"text": "..."}]}
      "ollama"     — POST /api/generate     {"model": ..., "prompt": ..., "stream": false}
                     Response: {"response": "..."}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier, used by the openai and ollama formats.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_config(cls, llm_config: Mapping[str, object]) -> HttpLLM:
        """Build a client from the "llm" section of the engine config."""
        return cls(
            provider_url=str(llm_config["provider_url"]),
            api_key=str(llm_config.get("api_key") or ""),
            provider_format=llm_config.get("provider_format", "koboldcpp"),
            model=str(llm_config.get("model") or ""),
            timeout=float(llm_config.get("timeout", 120.0)),
        )

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {"prompt": prompt}
            if self._model:
                body["model"] = self._model
            return url, body

        if self._format == "ollama":
            url = f"{self._base_url}/api/generate"
            return url, {"model": self._model, "prompt": prompt, "stream": False}

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        return url, {"prompt": prompt}

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise BackendError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        if self._format == "ollama":
            text = data.get("response")
            if not isinstance(text, str):
                raise BackendError("Unexpected response format from Ollama backend")
            return text

        # koboldcpp
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise BackendError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise BackendError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise BackendError(f"LLM backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM — returns the prompt unchanged; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    The output won't be valid JSON for any phase, so every intent is dropped
    and the turn resolves to "nothing happened" — which is exactly what a
    wiring check needs.
    """

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


# ---------------------------------------------------------------------------
# ScriptedLLM — deterministic answers keyed by stage
# ---------------------------------------------------------------------------

Script = str | BaseException | Callable[[str], str]


class ScriptedLLM:
    """Answers each stage from a fixed script instead of a model.

    A script entry may be:
      str            — returned as-is every time the stage is called
      BaseException  — raised (e.g. BackendError to simulate an outage)
      callable       — called with the prompt; its return value is the answer
      list           — consumed one element per call, each element one of the
                       above; an exhausted list raises BackendError

    Stages missing from the script fall back to ``default``; with no default
    they raise BackendError. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        script: Mapping[str, Script | list[Script]],
        default: Script | None = None,
    ) -> None:
        self._script = {
            stage: list(entry) if isinstance(entry, list) else entry
            for stage, entry in script.items()
        }
        self._default = default
        self.calls: list[tuple[str, str]] = []

    def _next(self, stage: str) -> Script | None:
        entry = self._script.get(stage, self._default)
        if isinstance(entry, list):
            if not entry:
                raise BackendError(f"Script for {stage} is exhausted")
            return entry.pop(0)
        return entry

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        entry = self._next(stage)
        if entry is None:
            raise BackendError(f"No scripted response for {stage}")
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            return entry(prompt)
        return entry

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]
