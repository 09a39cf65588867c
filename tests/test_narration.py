"""Tests for aleph_engine.narration — speech client and the reveal loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from aleph_engine.models import Sender, StorySegment
from aleph_engine.narration import HttpSpeech, Narrator, spoken_text
from aleph_engine.session import Session

from stubs import gateway_for, reply_json


def test_spoken_text_strips_markers() -> None:
    seg = StorySegment(id="s", sender=Sender.NARRATOR, lines=[">be me", "", ">>oh god"])
    assert spoken_text(seg) == "be me oh god"


class TestHttpSpeech:
    async def test_voice_per_sender_and_tone(self) -> None:
        resp = MagicMock()
        resp.content = b"mp3"
        resp.raise_for_status = MagicMock()
        mock_post = AsyncMock(return_value=resp)
        speech = HttpSpeech(url="http://tts/v1/audio/speech", model="tts-1")
        with patch("httpx.AsyncClient.post", mock_post):
            audio = await speech("WELCOME", Sender.ANTAGONIST, "pompous")
        assert audio == b"mp3"
        assert mock_post.call_args.kwargs["json"] == {
            "input": "WELCOME", "voice": "fable", "model": "tts-1", "instructions": "pompous",
        }

    async def test_empty_audio_is_none(self) -> None:
        resp = MagicMock()
        resp.content = b""
        resp.raise_for_status = MagicMock()
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            assert await HttpSpeech(url="http://tts")("x", Sender.SYSTEM, None) is None


class FakeSpeech:
    def __init__(self, fail: bool = False) -> None:
        self.spoken: list[str] = []
        self.fail = fail

    async def __call__(self, text: str, sender: Sender, tone: str | None) -> bytes | None:
        self.spoken.append(text)
        if self.fail:
            raise RuntimeError("no voice")
        return text.encode()


async def _session_with_unrevealed() -> Session:
    gw, _, _ = gateway_for(reply_json(narrative=[
        {"sender": "BORGES", "lines": [">one"], "timestamp": "t1"},
        {"sender": "SYSTEM", "lines": ["two"], "timestamp": "t2"},
    ]))
    session = Session(gw)
    await session.submit_action("Wait")
    return session


class TestNarrator:
    async def test_plays_unrevealed_segments_in_order(self) -> None:
        session = await _session_with_unrevealed()
        speech = FakeSpeech()
        played: list[bytes] = []

        async def playback(audio: bytes) -> None:
            played.append(audio)

        narrator = Narrator(session, speech, playback)
        assert await narrator.play() == 2
        assert speech.spoken == ["one", "two"]
        assert played == [b"one", b"two"]
        assert session.fully_revealed
        assert session.current_time == "t2"

    async def test_speech_failure_still_reveals(self) -> None:
        session = await _session_with_unrevealed()
        before = session.state.model_copy(deep=True)
        narrator = Narrator(session, FakeSpeech(fail=True), AsyncMock())
        assert await narrator.play() == 2
        assert session.fully_revealed
        assert session.state == before

    async def test_stop_cuts_utterance_and_reveals_it(self) -> None:
        session = await _session_with_unrevealed()
        shown = session.shown
        started = asyncio.Event()

        async def endless_playback(audio: bytes) -> None:
            started.set()
            await asyncio.Event().wait()

        narrator = Narrator(session, FakeSpeech(), endless_playback)
        task = asyncio.create_task(narrator.play())
        await started.wait()
        narrator.stop()
        assert await task == 1
        assert session.shown == shown + 1
        assert not session.fully_revealed
        assert not narrator.enabled
