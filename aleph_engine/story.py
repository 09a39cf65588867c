"""Fixed story content: the opening of a session and its checklist."""

from __future__ import annotations

from aleph_engine.models import Choice, Objective, Sender, Sentiment, StorySegment

SESSION_START = "February 15, 1929"

INTRO_LINES: list[str] = [
    ">be me",
    ">scorching February morning",
    ">Beahtreez Veetairboh just died",
    ">imperious agony, no sentimentality, no fear",
    ">walking through Plahsah Consteetooseeon",
    ">notice they changed the cigarette ad on the iron panels",
    ">this pisses me off",
    ">realize the universe is already moving on from her",
    ">this is just the first change in an infinite series",
    ">oh god",
]

# Objective ids the scene cascade depends on.
VOW = "vow_dedication"
SALON = "waiting_room"
COUSIN = "carlos_encounter"

INITIAL_OBJECTIVES: list[Objective] = [
    Objective(
        id=VOW,
        label="The Vow",
        description="The world is changing. Resist it. Consecrate yourself to her "
        "memory before you forget.",
    ),
    Objective(
        id="visit_april",
        label="The Visit (April 30th)",
        description="You MUST visit Garay Street on her birthday. This requires the Vow.",
    ),
    Objective(
        id=SALON,
        label="The Salon",
        description="Enter the cluttered salon and examine the portraits.",
    ),
    Objective(
        id=COUSIN,
        label="The Cousin",
        description="Survive the initial social encounter with Carlos Argentino.",
    ),
    Objective(
        id="the_poem",
        label="The Poem",
        description='Endure the reading of his poem "The Earth".',
    ),
    Objective(
        id="gain_trust",
        label="The Confidant",
        description="Flatter Carlos sufficiently to learn his secret.",
    ),
    Objective(
        id="unlock_cellar",
        label="The Descent",
        description="Secure the invitation to the cellar to see the Aleph.",
    ),
]

INITIAL_CHOICES: list[Choice] = [
    Choice(id="vow", text="Consecrate myself to her memory (Refuse the change)",
           sentiment=Sentiment.OBSESSIVE),
    Choice(id="accept", text="Accept the universe moves on (Move on)",
           sentiment=Sentiment.PASSIVE),
    Choice(id="analyze", text="Analyze the semiotics of the cigarette ad",
           sentiment=Sentiment.INTELLECTUAL),
]


def intro_segment() -> StorySegment:
    return StorySegment(
        id="intro-1",
        sender=Sender.NARRATOR,
        lines=list(INTRO_LINES),
        timestamp=SESSION_START,
    )


# ---------------------------------------------------------------------------
# Room actions: offered while the narrator is describing the salon
# ---------------------------------------------------------------------------

ROOM_TRIGGERS = ("portraits", "cluttered little room")

ROOM_ACTIONS: list[Choice] = [
    Choice(id="room-desk", text="Examine the details of the cluttered desk",
           sentiment=Sentiment.INTELLECTUAL),
    Choice(id="room-books", text="Inspect the uncut pages of the books I brought her",
           sentiment=Sentiment.PASSIVE),
    Choice(id="room-dust", text="Focus on the scent of the room",
           sentiment=Sentiment.OBSESSIVE),
]


def room_actions(segment: StorySegment | None) -> list[Choice]:
    """Extra actions for a narrator segment that describes the salon."""
    if segment is None or segment.sender != Sender.NARRATOR:
        return []
    text = " ".join(segment.lines).lower()
    if any(trigger in text for trigger in ROOM_TRIGGERS):
        return [c.model_copy() for c in ROOM_ACTIONS]
    return []


LANGUAGE_PRESETS: list[str] = [
    "English", "Spanish (Rioplatense)", "Portuguese (Brazil)",
    "French", "German", "Italian",
    "Japanese", "Latin", "Klingon",
]

DEFAULT_LANGUAGE = "English"
