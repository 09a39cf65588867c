"""Scene registry, scene resolution and the in-fiction clock.

Scenes are a fixed, strictly ordered table. Which one applies is decided by
an ordered cascade over the objective ledger and the visit counter: the
first predicate that matches wins. Both inputs only move forward (objectives
never un-complete, the counter never decreases), so the resolved scene never
moves backwards either.

The engine never computes in-fiction time itself. It forwards a dilation
rule to the generator and trusts the timestamps that come back.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from aleph_engine.ledger import is_completed
from aleph_engine.models import Objective, Sentiment, StorySegment
from aleph_engine.story import COUSIN, SALON, SESSION_START, VOW

UNKNOWN_TIME = "Unknown Time"

# Annual birthday visits to Garay Street before the salon opens up.
VISIT_TARGET = 12


class Scene(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    context: str
    permitted: tuple[str, ...] = ()
    forbidden: tuple[str, ...] = ()


THE_VOW = Scene(
    id="the_vow",
    title="Plaza Constitución, February 1929",
    context=(
        "Beatriz Viterbo has just died. Borges stands in Plaza Constitución and "
        "watches a worker paste a new cigarette ad over the old one. The universe "
        "is already moving on from her. The only way forward is the Vow."
    ),
    permitted=(
        "Advance time only by minutes or hours unless the Vow is taken.",
        "Show the horror of the mundane in real time: heat, tobacco, sticky asphalt.",
        "Lower obsession when the player is passive or mundane.",
        "If the Vow is taken, jump to April 30, 1929 and complete vow_dedication.",
    ),
    forbidden=(
        "Do not introduce Carlos Argentino Daneri.",
        "Do not move the story to Garay Street before the Vow is taken.",
    ),
)

THE_VISITS = Scene(
    id="the_visits",
    title="Garay Street, every April 30th",
    context=(
        "Every year on Beatriz's birthday Borges visits the house on Garay Street "
        "to pay his respects. Each visit is the same ritual, a little more worn."
    ),
    permitted=(
        "Each completed birthday visit sets statUpdates.visitCountChange to 1.",
        "Jump time by a year between visits when the player stays devoted.",
        "Let time drag within a single visit when the player is passive.",
    ),
    forbidden=(
        "Never set visitCountChange above 1 in a single reply.",
        "Do not skip ahead to the salon, the cousin or the cellar.",
    ),
)

THE_SALON = Scene(
    id="the_salon",
    title="The salon on Garay Street",
    context=(
        "The visits have become routine. Borges waits in the cluttered little "
        "room, surrounded by portraits of Beatriz at every age."
    ),
    permitted=(
        "Describe the portraits and the cluttered little room in detail.",
        "Complete waiting_room once Borges has entered the salon and examined the portraits.",
    ),
    forbidden=(
        "Do not reveal or mention the Aleph before waiting_room is complete.",
        "Do not let Carlos Argentino appear before waiting_room is complete.",
    ),
)

THE_COUSIN = Scene(
    id="the_cousin",
    title="Carlos Argentino Daneri",
    context=(
        "Carlos Argentino, Beatriz's first cousin, is not expecting Borges. The "
        "visit is unannounced and awkward; he is polite only out of social habit."
    ),
    permitted=(
        "Carlos speaks pompously, with rhymes and ALL-CAPS emphasis.",
        "Rude, boring or hasty moves make time drag for hours.",
        "Flattery and obsession make time flow; Borges is invited back weeks later.",
    ),
    forbidden=(
        "Carlos must not welcome Borges warmly.",
        "Do not reveal the cellar before carlos_encounter is complete.",
    ),
)

THE_ALEPH = Scene(
    id="the_aleph",
    title="The cellar",
    context=(
        "Borges has endured the cousin. The poem, his trust and the cellar stair "
        "are what remain between him and the Aleph."
    ),
    permitted=(
        "High obsession (80+) allows Borges to see the Aleph.",
    ),
)

SCENES: tuple[Scene, ...] = (THE_VOW, THE_VISITS, THE_SALON, THE_COUSIN, THE_ALEPH)
SCENES_BY_ID: dict[str, Scene] = {s.id: s for s in SCENES}


def resolve_scene(ledger: Sequence[Objective], visit_count: int) -> Scene:
    """Pick the scene for the current progress. First match wins."""
    ledger = list(ledger)
    if not is_completed(ledger, VOW):
        return THE_VOW
    if visit_count < VISIT_TARGET:
        return THE_VISITS
    if not is_completed(ledger, SALON):
        return THE_SALON
    if not is_completed(ledger, COUSIN):
        return THE_COUSIN
    return THE_ALEPH


def scene_index(scene: Scene) -> int:
    return SCENES.index(scene)


def visible_time(transcript: Sequence[StorySegment], shown: int | None = None) -> str:
    """Timestamp of the latest revealed segment that carries one."""
    visible = transcript if shown is None else transcript[:max(0, shown)]
    for segment in reversed(visible):
        if segment.timestamp:
            return segment.timestamp
    return SESSION_START


_TIME_RULES: dict[Sentiment, str] = {
    Sentiment.OBSESSIVE: (
        "The action is obsessive. Jump far forward in time: weeks, months or years."
    ),
    Sentiment.PASSIVE: (
        "The action is passive. Time stagnates: advance by seconds or minutes only."
    ),
    Sentiment.AGGRESSIVE: (
        "The action is aggressive. Time drags: advance by minutes or hours."
    ),
    Sentiment.INTELLECTUAL: (
        "The action is intellectual. Advance time moderately: hours or days."
    ),
}

_FREE_FORM_RULE = (
    "The player wrote a free-form action. Judge it: devotion jumps time forward, "
    "passivity or mundanity keeps the clock crawling."
)


def time_rule(sentiment: Sentiment | None) -> str:
    """The time-dilation directive for an action of the given sentiment."""
    if sentiment is None:
        return _FREE_FORM_RULE
    return _TIME_RULES[sentiment]
