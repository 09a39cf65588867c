"""Spoken narration — the speech collaborator and the reveal loop that uses it.

Nothing here touches session state except the reveal cursor, and speech
failures never do even that: a segment that cannot be spoken is simply
revealed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from aleph_engine.models import Sender, StorySegment
from aleph_engine.session import Session

logger = logging.getLogger(__name__)

Playback = Callable[[bytes], Awaitable[None]]


class Speech(Protocol):
    async def __call__(self, text: str, sender: Sender, tone: str | None) -> bytes | None: ...


class HttpSpeech:
    """Client for an OpenAI-compatible /v1/audio/speech endpoint.

    Each sender gets its own voice; the segment's tone, when present, is sent
    as free-form voice instructions.
    """

    VOICES: dict[Sender, str] = {
        Sender.NARRATOR: "onyx",
        Sender.ANTAGONIST: "fable",
        Sender.SYSTEM: "alloy",
        Sender.PLAYER: "echo",
    }

    def __init__(
        self, url: str, api_key: str = "", model: str = "", timeout: float = 60.0
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    async def __call__(self, text: str, sender: Sender, tone: str | None) -> bytes | None:
        body: dict = {"input": text, "voice": self.VOICES[sender]}
        if self._model:
            body["model"] = self._model
        if tone:
            body["instructions"] = tone
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(self._url, json=body, headers=headers)
            resp.raise_for_status()
        return resp.content or None


def spoken_text(segment: StorySegment) -> str:
    """Segment lines without their greentext markers."""
    return " ".join(line.lstrip(">").strip() for line in segment.lines if line.strip())


class Narrator:
    """Reveals unseen segments one at a time, speaking each before moving on.

    stop() cuts the current utterance short, reveals that segment at once
    and leaves the rest to be revealed by whoever paces the text.
    """

    def __init__(self, session: Session, speech: Speech, playback: Playback) -> None:
        self._session = session
        self._speech = speech
        self._playback = playback
        self._current: asyncio.Task | None = None
        self.enabled = True

    async def _speak(self, segment: StorySegment) -> None:
        text = spoken_text(segment)
        if not text:
            return
        try:
            audio = await self._speech(text, segment.sender, segment.tone)
            if audio:
                await self._playback(audio)
        except Exception as e:
            logger.warning("Speech failed for segment %s: %s", segment.id, e)

    async def play(self) -> int:
        """Narrate until everything is revealed or narration is stopped."""
        revealed = 0
        while self.enabled and not self._session.fully_revealed:
            segment = self._session.state.transcript[self._session.shown]
            self._current = asyncio.get_running_loop().create_task(self._speak(segment))
            # wait() does not re-raise when stop() cancels the utterance
            await asyncio.wait({self._current})
            self._current = None
            self._session.acknowledge()
            revealed += 1
        return revealed

    def stop(self) -> None:
        self.enabled = False
        if self._current is not None and not self._current.done():
            self._current.cancel()
