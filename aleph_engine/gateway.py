"""Generation gateway — one structured reply per turn, whatever happens.

Attempt order for every turn:
  1. primary model    (higher quality)
  2. fallback model   (exactly one attempt)
  3. degraded reply   (fixed "connection severed" content, no model involved)

A failure is anything that keeps a usable reply from coming back: transport
errors (LLMError), output that is not JSON or breaks the reply schema
(ReplyError), a call that outlives the configured timeout, or any other
exception an LLM implementation lets out.
generate() never raises; the session always gets something it can render.
"""

from __future__ import annotations

import asyncio
import json
import logging

from pydantic import BaseModel, ValidationError

from aleph_engine.llm import LLM, LLMError
from aleph_engine.models import (
    GenerationReply,
    NarrativeItem,
    Objective,
    ReplyChoice,
    Sender,
    Sentiment,
)
from aleph_engine.prompts import (
    SYSTEM_RULES,
    TURN_TEMPLATE,
    PromptError,
    build_context,
    render_prompt,
)
from aleph_engine.scenes import UNKNOWN_TIME, Scene
from aleph_engine.story import DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)

DEGRADED_LINES = [">the connection to the aleph is severed", ">time collapses"]
RETRY_CHOICE_TEXT = "Attempt to re-perceive the universe"


class ReplyError(ValueError):
    """Raised when generator output is not a valid reply."""


class GenerationRequest(BaseModel):
    """Everything the generator is told about the current turn."""

    scene: Scene
    history: list[str]
    action: str
    sentiment: Sentiment | None = None
    obsession: int
    visit_count: int
    objectives: list[Objective]
    language: str = DEFAULT_LANGUAGE


class GatewayReply(BaseModel):
    reply: GenerationReply
    source: str  # "primary" | "fallback" | "degraded"

    @property
    def degraded(self) -> bool:
        return self.source == "degraded"


def degraded_reply() -> GenerationReply:
    """The fixed safe reply used when every generation attempt failed."""
    return GenerationReply(
        narrative=[
            NarrativeItem(
                sender=Sender.SYSTEM,
                lines=list(DEGRADED_LINES),
                timestamp=UNKNOWN_TIME,
            )
        ],
        choices=[
            ReplyChoice(id="retry", text=RETRY_CHOICE_TEXT, sentiment=Sentiment.PASSIVE)
        ],
        game_over=False,
    )


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned


def parse_reply(text: str) -> GenerationReply:
    """Parse and validate raw generator output.

    Missing narrative or choices lists, unparsable JSON and schema violations
    raise ReplyError. A narrative item without a timestamp is repaired with
    UNKNOWN_TIME instead of being rejected.
    """
    if not isinstance(text, str):
        raise ReplyError(f"Generator returned {type(text).__name__}, not text")
    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        raise ReplyError(f"Generator returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ReplyError(f"Generator reply must be a JSON object, got {type(data).__name__}")
    for key in ("narrative", "choices"):
        if not isinstance(data.get(key), list):
            raise ReplyError(f"Generator reply is missing the {key!r} list")
    try:
        reply = GenerationReply.model_validate(data)
    except ValidationError as e:
        raise ReplyError(f"Generator reply breaks the schema: {e.error_count()} error(s)") from e

    for item in reply.narrative:
        if not item.timestamp or not item.timestamp.strip():
            logger.warning("Narrative item without timestamp — using %r", UNKNOWN_TIME)
            item.timestamp = UNKNOWN_TIME
    return reply


class GenerationGateway:
    """Primary/fallback invocation of the narrative generator.

    Args:
        primary:  LLM tried first on every turn.
        fallback: LLM tried once when the primary fails.
        timeout:  Seconds allowed per attempt. None waits forever, which
                  lets a hung call hold the turn open indefinitely.
    """

    def __init__(self, primary: LLM, fallback: LLM, timeout: float | None = None) -> None:
        self._primary = primary
        self._fallback = fallback
        self._timeout = timeout

    def build_prompt(self, request: GenerationRequest) -> str:
        return render_prompt(
            TURN_TEMPLATE,
            build_context(
                scene=request.scene,
                history=request.history,
                action=request.action,
                sentiment=request.sentiment,
                obsession=request.obsession,
                visit_count=request.visit_count,
                objectives=request.objectives,
                language=request.language,
            ),
        )

    async def _attempt(self, stage: str, llm: LLM, prompt: str) -> GenerationReply:
        call = llm(stage, prompt, system=SYSTEM_RULES)
        if self._timeout is None:
            text = await call
        else:
            text = await asyncio.wait_for(call, timeout=self._timeout)
        return parse_reply(text)

    async def generate(self, request: GenerationRequest) -> GatewayReply:
        try:
            prompt = self.build_prompt(request)
        except PromptError as e:
            logger.warning("Prompt rendering failed: %s; using degraded reply", e)
            return GatewayReply(reply=degraded_reply(), source="degraded")

        for stage, llm in (("primary", self._primary), ("fallback", self._fallback)):
            try:
                reply = await self._attempt(stage, llm, prompt)
            except (LLMError, ReplyError) as e:
                logger.warning("Generation failed stage=%s: %s", stage, e)
                continue
            except asyncio.TimeoutError:
                logger.warning("Generation timed out stage=%s after %ss", stage, self._timeout)
                continue
            except Exception as e:
                # cancellation is a BaseException and still propagates
                logger.warning(
                    "Generation failed unexpectedly stage=%s: %r", stage, e, exc_info=True
                )
                continue
            logger.debug("Generation ok stage=%s items=%d", stage, len(reply.narrative))
            return GatewayReply(reply=reply, source=stage)

        logger.warning("All generation attempts failed — using degraded reply")
        return GatewayReply(reply=degraded_reply(), source="degraded")
