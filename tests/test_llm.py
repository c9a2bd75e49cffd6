"""Tests for social_npc.llm — HttpLLM, EchoLLM, ScriptedLLM and query()."""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from social_npc.errors import BackendError
from social_npc.llm import EchoLLM, HttpLLM, ScriptedLLM, query


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


# ---------------------------------------------------------------------------
# EchoLLM
# ---------------------------------------------------------------------------

class TestEchoLLM:
    async def test_returns_prompt_unchanged(self) -> None:
        llm = EchoLLM()
        assert await llm("gm", "hello world") == "hello world"

    async def test_stage_name_ignored(self) -> None:
        llm = EchoLLM()
        assert await llm("gm", "x") == await llm("intent:Alice", "x")


# ---------------------------------------------------------------------------
# HttpLLM — KoboldCpp format
# ---------------------------------------------------------------------------

class TestHttpLLMKoboldCpp:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:5001", api_key="")

    async def test_happy_path(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": '{"action": "wave"}'}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("intent:Alice", "What do you do next?")
        assert result == '{"action": "wave"}'

    async def test_posts_to_correct_url(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("gm", "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"
        assert mock_post.call_args.kwargs["json"] == {"prompt": "prompt"}

    async def test_bearer_token_sent_when_api_key_set(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001", api_key="secret")
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("gm", "prompt")
        assert mock_post.call_args.kwargs["headers"].get("Authorization") == "Bearer secret"

    async def test_no_auth_header_when_no_api_key(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("gm", "prompt")
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    async def test_trailing_slash_stripped_from_url(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001/")
        mock_post = AsyncMock(return_value=_mock_response({"results": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("gm", "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"

    async def test_connect_error_raises_backend_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(BackendError, match="Cannot connect"):
                await llm("gm", "prompt")

    async def test_timeout_raises_backend_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(BackendError, match="timed out"):
                await llm("gm", "prompt")

    async def test_http_error_raises_backend_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=503))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(BackendError, match="HTTP 503"):
                await llm("gm", "prompt")

    async def test_malformed_response_raises_backend_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(BackendError, match="Unexpected response format"):
                await llm("gm", "prompt")

    async def test_non_json_body_raises_backend_error(self, llm: HttpLLM) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(BackendError, match="non-JSON"):
                await llm("gm", "prompt")


# ---------------------------------------------------------------------------
# HttpLLM — OpenAI and Ollama formats
# ---------------------------------------------------------------------------

class TestHttpLLMOpenAI:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(
            provider_url="http://localhost:8080",
            provider_format="openai",
            model="mistral-7b",
        )

    async def test_request_and_response(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"choices": [{"text": "A stormy night."}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("gm", "prompt")
        assert result == "A stormy night."
        assert mock_post.call_args[0][0] == "http://localhost:8080/v1/completions"
        assert mock_post.call_args.kwargs["json"]["model"] == "mistral-7b"

    async def test_malformed_response_raises_backend_error(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "kobold format accidentally"}]}
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response(body))):
            with pytest.raises(BackendError, match="Unexpected response format"):
                await llm("gm", "prompt")


class TestHttpLLMOllama:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(
            provider_url="http://localhost:11434",
            provider_format="ollama",
            model="llama3.2:latest",
        )

    async def test_request_and_response(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"response": "{}", "done": True}))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("gm", "prompt")
        assert result == "{}"
        assert mock_post.call_args[0][0] == "http://localhost:11434/api/generate"
        assert mock_post.call_args.kwargs["json"] == {
            "model": "llama3.2:latest", "prompt": "prompt", "stream": False,
        }

    async def test_malformed_response_raises_backend_error(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response({"error": "x"}))):
            with pytest.raises(BackendError, match="Ollama"):
                await llm("gm", "prompt")


class TestFromConfig:
    async def test_builds_client_from_llm_section(self) -> None:
        llm = HttpLLM.from_config({
            "provider_url": "http://localhost:11434/",
            "api_key": "",
            "provider_format": "ollama",
            "model": "llama3.2:latest",
            "timeout": 30,
        })
        mock_post = AsyncMock(return_value=_mock_response({"response": "ok"}))
        with patch("httpx.AsyncClient.post", mock_post):
            assert await llm("gm", "p") == "ok"
        assert mock_post.call_args[0][0] == "http://localhost:11434/api/generate"


# ---------------------------------------------------------------------------
# ScriptedLLM
# ---------------------------------------------------------------------------

class TestScriptedLLM:
    async def test_fixed_answer_per_stage(self) -> None:
        llm = ScriptedLLM({"gm": "resolved", "intent:Alice": "wave"})
        assert await llm("gm", "p") == "resolved"
        assert await llm("gm", "p") == "resolved"
        assert await llm("intent:Alice", "p") == "wave"

    async def test_list_consumed_in_order(self) -> None:
        llm = ScriptedLLM({"gm": ["one", "two"]})
        assert await llm("gm", "p") == "one"
        assert await llm("gm", "p") == "two"
        with pytest.raises(BackendError, match="exhausted"):
            await llm("gm", "p")

    async def test_exception_raised(self) -> None:
        llm = ScriptedLLM({"gm": BackendError("down")})
        with pytest.raises(BackendError, match="down"):
            await llm("gm", "p")

    async def test_callable_receives_prompt(self) -> None:
        llm = ScriptedLLM({"gm": lambda prompt: prompt.upper()})
        assert await llm("gm", "abc") == "ABC"

    async def test_unknown_stage_without_default(self) -> None:
        llm = ScriptedLLM({})
        with pytest.raises(BackendError, match="No scripted response"):
            await llm("gm", "p")

    async def test_default_used_for_unknown_stage(self) -> None:
        llm = ScriptedLLM({}, default="fallback")
        assert await llm("memory:Bob", "p") == "fallback"

    async def test_calls_recorded(self) -> None:
        llm = ScriptedLLM({}, default="x")
        await llm("intent:Alice", "p1")
        await llm("gm", "p2")
        assert llm.calls == [("intent:Alice", "p1"), ("gm", "p2")]
        assert llm.stages() == ["intent:Alice", "gm"]


# ---------------------------------------------------------------------------
# query() timeout wrapper
# ---------------------------------------------------------------------------

class _SlowLLM:
    async def __call__(self, stage: str, prompt: str) -> str:
        await asyncio.sleep(5)
        return "too late"


async def test_query_without_timeout_passes_through() -> None:
    assert await query(ScriptedLLM({"gm": "ok"}), "gm", "p") == "ok"


async def test_query_timeout_raises_backend_error() -> None:
    with pytest.raises(BackendError, match="timed out"):
        await query(_SlowLLM(), "intent:Alice", "p", timeout=0.01)
