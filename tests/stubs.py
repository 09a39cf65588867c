"""Test doubles shared across the suite."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from aleph_engine.gateway import GenerationGateway
from aleph_engine.llm import LLMError


class StubLLM:
    """Returns canned responses in order and records every call.

    A response that is an Exception instance is raised instead of returned.
    Once the list runs out the last response repeats.
    """

    def __init__(self, *responses: str | Exception) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, str]] = []

    async def __call__(self, stage: str, prompt: str, system: str = "") -> str:
        self.calls.append({"stage": stage, "prompt": prompt, "system": system})
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class BlockingLLM:
    """Hangs until release() is called, then answers with `response`."""

    def __init__(self, response: str) -> None:
        self._response = response
        self._event = asyncio.Event()
        self.calls = 0

    def release(self) -> None:
        self._event.set()

    async def __call__(self, stage: str, prompt: str, system: str = "") -> str:
        self.calls += 1
        await self._event.wait()
        return self._response


def reply(**overrides: Any) -> dict[str, Any]:
    """A valid generator reply as a dict; keyword arguments replace keys."""
    data: dict[str, Any] = {
        "narrative": [
            {
                "sender": "BORGES",
                "lines": [">the heat does not move", ">neither do I"],
                "timestamp": "February 15, 1929, 10:05 AM",
            }
        ],
        "choices": [
            {"id": "wait", "text": "Keep staring at the ad", "sentiment": "passive"},
            {"id": "vow", "text": "Swear to remember her", "sentiment": "obsessive"},
        ],
        "statUpdates": {"sanityChange": 0},
        "completedObjectiveIds": [],
        "newObjectives": [],
        "gameOver": False,
    }
    data.update(overrides)
    return data


def reply_json(**overrides: Any) -> str:
    return json.dumps(reply(**overrides))


def gateway_for(*responses: str | Exception) -> tuple[GenerationGateway, StubLLM, StubLLM]:
    """Gateway whose primary answers with `responses` and whose fallback always fails."""
    primary = StubLLM(*responses)
    fallback = StubLLM(LLMError("fallback down"))
    return GenerationGateway(primary=primary, fallback=fallback), primary, fallback
