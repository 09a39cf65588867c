"""Tests for aleph_engine.llm — HttpLLM and EchoLLM."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from aleph_engine.llm import EchoLLM, HttpLLM, LLMError


# ---------------------------------------------------------------------------
# EchoLLM
# ---------------------------------------------------------------------------

class TestEchoLLM:
    async def test_returns_prompt_unchanged(self) -> None:
        llm = EchoLLM()
        assert await llm("primary", "hello world") == "hello world"

    async def test_system_ignored(self) -> None:
        llm = EchoLLM()
        assert await llm("primary", "x", system="rules") == "x"


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
# HttpLLM: OpenAI-compatible chat format (default)
# ---------------------------------------------------------------------------

class TestHttpLLMOpenAI:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:8080", model="gemini-pro")

    async def test_happy_path(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": '{"narrative": []}'}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("primary", "Continue.")
        assert result == '{"narrative": []}'

    async def test_posts_to_chat_completions(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:8080/v1/chat/completions"

    async def test_system_and_user_messages(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "the turn", system="the rules")
        sent = mock_post.call_args.kwargs["json"]
        assert sent["messages"] == [
            {"role": "system", "content": "the rules"},
            {"role": "user", "content": "the turn"},
        ]
        assert sent["model"] == "gemini-pro"
        assert sent["response_format"] == {"type": "json_object"}

    async def test_no_system_message_when_empty(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "the turn")
        sent = mock_post.call_args.kwargs["json"]
        assert [m["role"] for m in sent["messages"]] == ["user"]

    async def test_model_omitted_when_unset(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:8080")
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "prompt")
        assert "model" not in mock_post.call_args.kwargs["json"]

    async def test_malformed_response_raises_llm_error(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "kobold format accidentally"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm("primary", "prompt")

    async def test_null_content_raises_llm_error(self, llm: HttpLLM) -> None:
        body = {"choices": [{"message": {"content": None}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="no content"):
                await llm("primary", "prompt")


# ---------------------------------------------------------------------------
# HttpLLM: KoboldCpp format
# ---------------------------------------------------------------------------

class TestHttpLLMKoboldCpp:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:5001", provider_format="koboldcpp")

    async def test_happy_path(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "The heat is unbearable."}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("primary", "Describe the plaza.")
        assert result == "The heat is unbearable."

    async def test_posts_to_generate(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"

    async def test_system_prepended_to_prompt(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "the turn", system="the rules")
        assert mock_post.call_args.kwargs["json"] == {"prompt": "the rules\n\nthe turn"}

    async def test_bearer_token_sent_when_api_key_set(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001", api_key="secret",
                      provider_format="koboldcpp")
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "prompt")
        assert mock_post.call_args.kwargs["headers"].get("Authorization") == "Bearer secret"

    async def test_no_auth_header_when_no_api_key(self, llm: HttpLLM) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "prompt")
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    async def test_trailing_slash_stripped_from_url(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001/", provider_format="koboldcpp")
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("primary", "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"

    async def test_malformed_response_raises_llm_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await llm("primary", "prompt")


# ---------------------------------------------------------------------------
# HttpLLM: transport failures
# ---------------------------------------------------------------------------

class TestHttpLLMErrors:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(provider_url="http://localhost:8080")

    async def test_connect_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Cannot connect"):
                await llm("primary", "prompt")

    async def test_timeout(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="timed out"):
                await llm("primary", "prompt")

    async def test_http_status(self, llm: HttpLLM) -> None:
        bad_resp = MagicMock()
        bad_resp.status_code = 503
        bad_resp.raise_for_status.side_effect = httpx.HTTPStatusError(
            "", request=MagicMock(), response=bad_resp
        )
        mock_post = AsyncMock(return_value=bad_resp)
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="HTTP 503"):
                await llm("primary", "prompt")

    async def test_other_transport_error(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ReadError("reset by peer"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="request failed"):
                await llm("primary", "prompt")

    async def test_non_json_body(self, llm: HttpLLM) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("not json")
        mock_post = AsyncMock(return_value=resp)
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="non-JSON"):
                await llm("primary", "prompt")


# ---------------------------------------------------------------------------
# HttpLLM: bodies of the wrong shape
# ---------------------------------------------------------------------------

class TestHttpLLMShapes:
    async def _call(self, llm: HttpLLM, body: object) -> str:
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            return await llm("primary", "prompt")

    async def test_openai_array_body(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:8080")
        with pytest.raises(LLMError, match="Unexpected response format"):
            await self._call(llm, ["oops"])

    async def test_openai_choice_not_an_object(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:8080")
        with pytest.raises(LLMError, match="Unexpected response format"):
            await self._call(llm, {"choices": ["oops"]})

    async def test_openai_non_text_content(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:8080")
        with pytest.raises(LLMError, match="non-text"):
            await self._call(llm, {"choices": [{"message": {"content": {"narrative": []}}}]})

    async def test_koboldcpp_null_text(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001", provider_format="koboldcpp")
        with pytest.raises(LLMError, match="no content"):
            await self._call(llm, {"results": [{"text": None}]})

    async def test_koboldcpp_array_body(self) -> None:
        llm = HttpLLM(provider_url="http://localhost:5001", provider_format="koboldcpp")
        with pytest.raises(LLMError, match="Unexpected response format"):
            await self._call(llm, [{"text": "x"}])
