"""Session state machine — runs one player turn end-to-end.

Turn flow (submit_action):
  1. Reject the call if the game is over or a turn is already in flight.
  2. Append the player segment, raise the in-flight gate, clear the choices.
  3. Send the last few transcript segments, the stats, the ledger and the
     resolved scene to the generation gateway.
  4. Reconcile the reply into a new state (reconcile() below).
  5. Lower the gate, publish the state, start asset fetches for the new
     segments in the background.

The in-flight flag is the only mutual exclusion. It is checked and raised
before the first await, so on a single event loop two submissions can
never overlap.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field

from aleph_engine import ledger
from aleph_engine.assets import AssetEnricher, AssetSource
from aleph_engine.gateway import GenerationGateway, GenerationRequest, degraded_reply
from aleph_engine.models import (
    AssetPatch,
    Choice,
    GenerationReply,
    Objective,
    Sender,
    Sentiment,
    SessionState,
    StorySegment,
    clamp_obsession,
)
from aleph_engine.scenes import UNKNOWN_TIME, Scene, resolve_scene, visible_time
from aleph_engine.story import (
    DEFAULT_LANGUAGE,
    INITIAL_CHOICES,
    INITIAL_OBJECTIVES,
    intro_segment,
    room_actions,
)

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 8

BOREDOM_LINES = [">OBSESSION LEVEL CRITICAL", ">BOREDOM EXCEEDED LIMITS", ">YOU LEFT THE HOUSE"]
BOREDOM_TIMESTAMP = "The End of Meaning"


class TurnResult(BaseModel):
    accepted: bool
    reason: str = ""
    segments: list[StorySegment] = Field(default_factory=list)
    notifications: list[str] = Field(default_factory=list)  # transient, never stored
    scene_before: str | None = None
    scene_after: str | None = None
    source: str | None = None  # which gateway path produced the reply

    @property
    def degraded(self) -> bool:
        return self.source == "degraded"


class Reconciled(BaseModel):
    state: SessionState
    segments: list[StorySegment]
    notifications: list[str]


def new_session_state() -> SessionState:
    """The opening of every session."""
    return SessionState(
        transcript=[intro_segment()],
        objectives=[o.model_copy() for o in INITIAL_OBJECTIVES],
        choices=[c.model_copy() for c in INITIAL_CHOICES],
    )


def new_segment_id() -> str:
    return f"seg-{uuid.uuid4().hex[:12]}"


def player_segment(text: str, transcript: list[StorySegment]) -> StorySegment:
    """The player's decision, stamped with the moment it answers."""
    last = transcript[-1].timestamp if transcript else None
    return StorySegment(
        id=new_segment_id(),
        sender=Sender.PLAYER,
        lines=[f">I decided to: {text}"],
        timestamp=last or UNKNOWN_TIME,
    )


def context_window(transcript: list[StorySegment], size: int = HISTORY_WINDOW) -> list[str]:
    """The most recent segments as compact one-line summaries."""
    recent = transcript[-size:] if size > 0 else []
    return [
        f"[{s.timestamp or 'N/A'}] {s.sender.value}: {' '.join(s.lines)}"
        for s in recent
    ]


def boredom_segment() -> StorySegment:
    return StorySegment(
        id=new_segment_id(),
        sender=Sender.SYSTEM,
        lines=list(BOREDOM_LINES),
        timestamp=BOREDOM_TIMESTAMP,
    )


def _unique_choices(reply: GenerationReply) -> list[Choice]:
    """Reply choices with every id filled in and distinct.

    Generator ids are kept as given unless an earlier choice already took
    them; missing and clashing ids get a numbered fallback.
    """
    taken = {c.id for c in reply.choices if c.id}
    seen: set[str] = set()
    choices: list[Choice] = []
    for i, c in enumerate(reply.choices):
        choice_id = c.id
        if not choice_id or choice_id in seen:
            base = choice_id or f"choice-{i + 1}"
            candidate, n = base, 1
            while candidate in seen or (candidate != c.id and candidate in taken):
                n += 1
                candidate = f"{base}-{n}"
            choice_id = candidate
        seen.add(choice_id)
        choices.append(Choice(id=choice_id, text=c.text, sentiment=c.sentiment))
    return choices


def reconcile(state: SessionState, reply: GenerationReply) -> Reconciled:
    """Fold one generator reply into a new session state.

    Pure: `state` is left untouched. New objectives are added before
    completions are applied, so a reply may complete an objective it
    introduces. Obsession reaching 0 ends the game even if the reply says
    otherwise.
    """
    segments = [
        StorySegment(
            id=new_segment_id(),
            sender=item.sender,
            lines=list(item.lines),
            timestamp=item.timestamp or UNKNOWN_TIME,
            image_prompt=item.image_prompt or None,
            sound_prompt=item.sound_prompt or None,
            tone=item.tone,
        )
        for item in reply.narrative
    ]
    choices = _unique_choices(reply)

    obsession = clamp_obsession(state.obsession + reply.sanity_change)
    # One ritual visit per turn at most, and the counter never goes back.
    visit_count = state.visit_count + max(0, min(1, reply.visit_count_change))

    objectives, added = ledger.add_new(state.objectives, reply.new_objectives)
    objectives, completed = ledger.complete(objectives, reply.completed_objective_ids)

    game_over = state.game_over or reply.game_over
    if obsession <= 0 and not reply.game_over:
        logger.info("Obsession exhausted — forcing game over")
        segments.append(boredom_segment())
        game_over = True

    new_state = state.model_copy(update={
        "transcript": [*state.transcript, *segments],
        "objectives": objectives,
        "choices": choices,
        "obsession": obsession,
        "visit_count": visit_count,
        "game_over": game_over,
    })
    return Reconciled(state=new_state, segments=segments, notifications=added + completed)


class Session:
    """One play session: owns the state and runs the turn cycle.

    Args:
        gateway:        Produces a reply for every turn.
        state:          Starting state. Defaults to a fresh opening.
        assets:         Optional source for illustrations and ambient sound.
        history_window: How many recent segments the generator sees.
        language:       Target language for generated text.
    """

    def __init__(
        self,
        gateway: GenerationGateway,
        state: SessionState | None = None,
        *,
        assets: AssetSource | None = None,
        history_window: int = HISTORY_WINDOW,
        language: str = DEFAULT_LANGUAGE,
    ) -> None:
        self._gateway = gateway
        self.state = state or new_session_state()
        self.history_window = history_window
        self.language = language
        self.shown = min(1, len(self.state.transcript))
        self._enricher = AssetEnricher(assets, self.apply_patch) if assets else None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def scene(self) -> Scene:
        return resolve_scene(self.state.objectives, self.state.visit_count)

    @property
    def current_time(self) -> str:
        return visible_time(self.state.transcript, self.shown)

    @property
    def fully_revealed(self) -> bool:
        return self.shown >= len(self.state.transcript)

    @property
    def current_objective(self) -> Objective | None:
        return ledger.current_objective(self.state.objectives)

    @property
    def pending_assets(self) -> int:
        return self._enricher.pending if self._enricher else 0

    def available_choices(self) -> list[Choice]:
        """Active choices plus any room actions the latest narration offers."""
        if self.state.thinking or self.state.game_over:
            return []
        last_narration = next(
            (s for s in reversed(self.state.transcript) if s.sender == Sender.NARRATOR),
            None,
        )
        extra = [c for c in room_actions(last_narration)
                 if all(c.id != own.id for own in self.state.choices)]
        return [*self.state.choices, *extra]

    def view(self) -> dict[str, Any]:
        """Read model for presentation layers."""
        return {
            "state": self.state.model_dump(mode="json"),
            "shown": self.shown,
            "fully_revealed": self.fully_revealed,
            "current_time": self.current_time,
            "scene": self.scene.id,
            "objectives": ledger.tracker(self.state.objectives),
            "choices": [c.model_dump(mode="json") for c in self.available_choices()],
            "language": self.language,
        }

    # ------------------------------------------------------------------
    # Reveal cursor: presentation pacing only, never changes state
    # ------------------------------------------------------------------

    def acknowledge(self) -> int:
        """One segment finished typing or speaking; reveal the next."""
        if self.shown < len(self.state.transcript):
            self.shown += 1
        return self.shown

    def reveal_all(self) -> int:
        self.shown = len(self.state.transcript)
        return self.shown

    # ------------------------------------------------------------------
    # Asset patches
    # ------------------------------------------------------------------

    def apply_patch(self, patch: AssetPatch) -> bool:
        """Attach a resolved asset to its segment, at most once per field."""
        field = "image_url" if patch.kind == "image" else "sound_url"
        transcript = self.state.transcript
        for i, segment in enumerate(transcript):
            if segment.id != patch.segment_id:
                continue
            if getattr(segment, field):
                return False
            transcript[i] = segment.model_copy(update={field: patch.url})
            return True
        logger.warning("Asset patch for unknown segment %s ignored", patch.segment_id)
        return False

    async def drain_assets(self) -> None:
        if self._enricher:
            await self._enricher.drain()

    # ------------------------------------------------------------------
    # Turn cycle
    # ------------------------------------------------------------------

    def _reject(self, reason: str) -> TurnResult:
        logger.info("Action rejected: %s", reason)
        return TurnResult(accepted=False, reason=reason)

    async def choose(self, choice_id: str) -> TurnResult:
        """Play one of the available choices."""
        for choice in self.available_choices():
            if choice.id == choice_id:
                return await self.submit_action(choice.text, choice.sentiment)
        return self._reject(f"unknown choice {choice_id!r}")

    async def submit_action(
        self, text: str, sentiment: Sentiment | str | None = None
    ) -> TurnResult:
        """Run one full turn for a player action.

        `sentiment` is None for free-form input; any other value is coerced
        onto the closed sentiment set.
        """
        if self.state.game_over:
            return self._reject("game over")
        if self.state.thinking:
            return self._reject("turn in flight")
        text = text.strip()
        if not text:
            return self._reject("empty action")
        mood = None if sentiment is None else Sentiment.coerce(sentiment)

        scene_before = self.scene
        player = player_segment(text, self.state.transcript)
        self.state = self.state.model_copy(update={
            "transcript": [*self.state.transcript, player],
            "thinking": True,
            "choices": [],
        })
        self.shown = len(self.state.transcript)
        logger.info("Turn started scene=%s sentiment=%s", scene_before.id, mood)

        try:
            reconciled, source = await self._run_generation(scene_before, text, mood)
            self.state = reconciled.state.model_copy(update={"thinking": False})
        finally:
            # cancellation included: the gate never stays raised
            if self.state.thinking:
                self.state = self.state.model_copy(update={"thinking": False})

        scene_after = self.scene
        if scene_after.id != scene_before.id:
            logger.info("Scene changed %s -> %s", scene_before.id, scene_after.id)
        if self.state.game_over:
            logger.info("Game over after %d segments", len(self.state.transcript))

        if self._enricher:
            self._enricher.schedule(reconciled.segments)

        return TurnResult(
            accepted=True,
            segments=[player, *reconciled.segments],
            notifications=reconciled.notifications,
            scene_before=scene_before.id,
            scene_after=scene_after.id,
            source=source,
        )

    async def _run_generation(
        self, scene: Scene, text: str, mood: Sentiment | None
    ) -> tuple[Reconciled, str]:
        """Ask for a reply and fold it in; any failure yields the degraded turn."""
        try:
            request = GenerationRequest(
                scene=scene,
                history=context_window(self.state.transcript, self.history_window),
                action=text,
                sentiment=mood,
                obsession=self.state.obsession,
                visit_count=self.state.visit_count,
                objectives=self.state.objectives,
                language=self.language,
            )
            result = await self._gateway.generate(request)
            reply, source = result.reply, result.source
        except Exception as e:
            logger.warning("Generation raised %r; using degraded reply", e, exc_info=True)
            reply, source = degraded_reply(), "degraded"

        try:
            return reconcile(self.state, reply), source
        except Exception as e:
            if source == "degraded":
                raise
            logger.warning("Reply could not be reconciled %r; using degraded reply", e,
                           exc_info=True)
            return reconcile(self.state, degraded_reply()), "degraded"
