"""FastAPI endpoints under /api.

One process serves one session, kept on app.state.session. A turn that is
rejected (game over, turn in flight, unknown choice) answers 409 with the
reason and leaves the session untouched.
"""

import logging

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from aleph_engine.export import export_transcript
from aleph_engine.narration import spoken_text
from aleph_engine.session import Session, TurnResult
from aleph_engine.story import LANGUAGE_PRESETS

logger = logging.getLogger(__name__)

router = APIRouter()


class ActionBody(BaseModel):
    text: str
    sentiment: str | None = None


class SettingsBody(BaseModel):
    language: str | None = None


def new_session(app: FastAPI) -> Session:
    """Fresh session wired from the app's collaborators."""
    state = app.state
    return Session(
        state.gateway,
        assets=state.assets,
        history_window=state.config.history_window,
        language=state.storage.get_language(),
    )


def _session(request: Request) -> Session:
    return request.app.state.session


def _turn_response(session: Session, result: TurnResult) -> dict:
    if not result.accepted:
        raise HTTPException(409, result.reason)
    return {"turn": result.model_dump(mode="json"), "session": session.view()}


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/session")
async def get_session(request: Request):
    """Current session view: state, visible time, scene, objectives, choices."""
    return _session(request).view()


@router.post("/session/actions")
async def submit_action(request: Request, body: ActionBody):
    """Run one turn for a free-form (or tagged) player action."""
    session = _session(request)
    result = await session.submit_action(body.text, body.sentiment)
    return _turn_response(session, result)


@router.post("/session/choices/{choice_id}")
async def choose(request: Request, choice_id: str):
    """Run one turn for one of the offered choices."""
    session = _session(request)
    result = await session.choose(choice_id)
    return _turn_response(session, result)


@router.post("/session/reveal")
async def reveal(request: Request, all: bool = False):
    """Acknowledge the segment being shown (or every segment) and reveal on."""
    session = _session(request)
    shown = session.reveal_all() if all else session.acknowledge()
    return {"shown": shown, "current_time": session.current_time}


@router.post("/session/reset")
async def reset(request: Request):
    """Throw the session away and start from the opening."""
    request.app.state.session = new_session(request.app)
    return request.app.state.session.view()


@router.get("/session/export", response_class=PlainTextResponse)
async def export(request: Request, upto: int | None = None):
    """Markdown transcript, optionally only up to segment index `upto`."""
    session = _session(request)
    if upto is not None and not 0 <= upto < len(session.state.transcript):
        raise HTTPException(404, "Segment index out of range")
    return export_transcript(session.state.transcript, session.state.obsession, upto)


@router.get("/session/segments/{segment_id}/speech")
async def speech(request: Request, segment_id: str):
    """Spoken audio for one segment, if a speech backend is configured."""
    speak = request.app.state.speech
    if speak is None:
        raise HTTPException(404, "Speech is not configured")
    session = _session(request)
    segment = next((s for s in session.state.transcript if s.id == segment_id), None)
    if segment is None:
        raise HTTPException(404, "Segment not found")
    try:
        audio = await speak(spoken_text(segment), segment.sender, segment.tone)
    except Exception as e:
        logger.warning("Speech failed for segment %s: %s", segment_id, e)
        audio = None
    if not audio:
        raise HTTPException(404, "No audio for this segment")
    return Response(content=audio, media_type="audio/mpeg")


@router.get("/settings")
async def get_settings(request: Request):
    """Language preference and the preset list."""
    return {
        "language": request.app.state.storage.get_language(),
        "language_presets": LANGUAGE_PRESETS,
    }


@router.patch("/settings")
async def update_settings(request: Request, body: SettingsBody):
    """Update the language preference; the running session follows it."""
    storage = request.app.state.storage
    if body.language is not None:
        try:
            language = storage.set_language(body.language)
        except ValueError as e:
            raise HTTPException(400, str(e))
        _session(request).language = language
    return await get_settings(request)
