"""LLM client — HTTP connection to a text-generation backend.

The gateway injects LLM callables matching the protocol:

    async def __call__(self, stage: str, prompt: str, system: str = "") -> str: ...

`stage` identifies the caller ("primary", "fallback"). Implementations may
use it for logging; the simplest implementation ignores it. `system` carries
the fixed narrative ruleset; backends without a system role get it
prepended to the prompt.

    HttpLLM   talks to a KoboldCpp or OpenAI-compatible chat server,
              picked by provider_format.
    EchoLLM   hands the prompt back; wiring checks without a model.

Production code builds one HttpLLM per model (primary and fallback) from
config and hands both to the GenerationGateway. Tests use StubLLM instead.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str, system: str = "") -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "koboldcpp"  — POST /api/v1/generate        {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     — POST /v1/chat/completions    {"model": ..., "messages": [...]}
                     Response: {"choices": [{"message": {"content": "..."}}]}
                     JSON output is requested through response_format.

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model identifier, sent only by the openai format.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str, system: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            body: dict = {
                "messages": messages,
                "response_format": {"type": "json_object"},
            }
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp has no system role
        url = f"{self._base_url}/api/v1/generate"
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        return url, {"prompt": full_prompt}

    def _parse_response(self, data: object) -> str:
        """Extract the completion text from the response body.

        Anything other than the expected shape with a string completion
        raises LLMError.
        """
        if self._format == "openai":
            backend = "OpenAI-compatible backend"
            choices = data.get("choices") if isinstance(data, dict) else None
            first = choices[0] if isinstance(choices, list) and choices else None
            message = first.get("message") if isinstance(first, dict) else None
            if not isinstance(message, dict):
                raise LLMError(f"Unexpected response format from {backend}")
            content = message.get("content")
        else:
            backend = "KoboldCpp backend"
            results = data.get("results") if isinstance(data, dict) else None
            first = results[0] if isinstance(results, list) and results else None
            if not isinstance(first, dict) or "text" not in first:
                raise LLMError(f"Unexpected response format from {backend}")
            content = first["text"]

        if content is None:
            raise LLMError(f"{backend} returned no content")
        if not isinstance(content, str):
            raise LLMError(f"{backend} returned non-text content")
        return content

    async def __call__(self, stage: str, prompt: str, system: str = "") -> str:
        url, body = self._build_request(prompt, system)
        logger.debug(
            "llm call stage=%s model=%s url=%s prompt_len=%d",
            stage, self._model, url, len(prompt),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM: returns the prompt unchanged; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    The output is never a valid reply, so a session wired to EchoLLM always
    lands on the degraded reply. Handy for checking that the turn cycle
    survives a useless generator.
    """

    async def __call__(self, stage: str, prompt: str, system: str = "") -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
