"""Core domain models.

Session state, transcript segments and the generator reply contract.
Pydantic is used for validation and serialisation at every data boundary;
the reply models carry the generator's camelCase wire names as aliases.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

OBSESSION_MIN = 0
OBSESSION_MAX = 100


class Sender(str, Enum):
    NARRATOR = "NARRATOR"
    ANTAGONIST = "ANTAGONIST"
    SYSTEM = "SYSTEM"
    PLAYER = "PLAYER"

    @classmethod
    def coerce(cls, value: object) -> Sender:
        """Map an untrusted sender tag onto the closed set.

        Accepts the cast names the generator is prompted with (BORGES is the
        narrating voice, CARLOS the antagonist). Anything else narrates.
        """
        if isinstance(value, Sender):
            return value
        key = str(value or "").strip().upper()
        if key in _SENDER_ALIASES:
            return _SENDER_ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            logger.warning("Unrecognised sender %r — treated as narrator", value)
            return cls.NARRATOR


_SENDER_ALIASES = {
    "BORGES": Sender.NARRATOR,
    "CARLOS": Sender.ANTAGONIST,
}


class Sentiment(str, Enum):
    PASSIVE = "passive"
    AGGRESSIVE = "aggressive"
    INTELLECTUAL = "intellectual"
    OBSESSIVE = "obsessive"

    @classmethod
    def coerce(cls, value: object) -> Sentiment:
        """Unknown or missing sentiments are passive."""
        if isinstance(value, Sentiment):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            if value:
                logger.warning("Unrecognised sentiment %r — treated as passive", value)
            return cls.PASSIVE


AssetKind = Literal["image", "sound"]


class StorySegment(BaseModel):
    """One entry in the append-only transcript.

    Only the two asset URL fields may change after creation, and each of
    them at most once (prompt → resolved asset).
    """

    id: str
    sender: Sender
    lines: list[str]
    timestamp: str | None = None
    image_prompt: str | None = None
    image_url: str | None = None
    sound_prompt: str | None = None
    sound_url: str | None = None
    tone: str | None = None  # consumed by the speech collaborator only

    @field_validator("sender", mode="before")
    @classmethod
    def _coerce_sender(cls, v: object) -> Sender:
        return Sender.coerce(v)


class Choice(BaseModel):
    """An option offered to the player for the next turn."""

    id: str
    text: str
    sentiment: Sentiment = Sentiment.PASSIVE

    @field_validator("sentiment", mode="before")
    @classmethod
    def _coerce_sentiment(cls, v: object) -> Sentiment:
        return Sentiment.coerce(v)


class Objective(BaseModel):
    id: str
    label: str
    description: str = ""
    completed: bool = False


class SessionState(BaseModel):
    """The aggregate root of one play session."""

    transcript: list[StorySegment] = Field(default_factory=list)
    objectives: list[Objective] = Field(default_factory=list)
    choices: list[Choice] = Field(default_factory=list)
    obsession: int = OBSESSION_MAX
    visit_count: int = 0
    game_over: bool = False
    thinking: bool = False  # a turn is in flight

    @field_validator("obsession")
    @classmethod
    def _clamp_obsession(cls, v: int) -> int:
        return clamp_obsession(v)

    @field_validator("visit_count")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        return max(0, v)


class AssetPatch(BaseModel):
    """A resolved asset waiting to be attached to a segment by id."""

    segment_id: str
    kind: AssetKind
    url: str


def clamp_obsession(value: int) -> int:
    return max(OBSESSION_MIN, min(OBSESSION_MAX, int(value)))


# ---------------------------------------------------------------------------
# Generator reply contract
# ---------------------------------------------------------------------------

class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NarrativeItem(_Wire):
    sender: Sender = Sender.NARRATOR
    lines: list[str]
    timestamp: str | None = None
    image_prompt: str | None = Field(default=None, alias="imagePrompt")
    sound_prompt: str | None = Field(default=None, alias="musicPrompt")
    tone: str | None = None

    @field_validator("sender", mode="before")
    @classmethod
    def _coerce_sender(cls, v: object) -> Sender:
        return Sender.coerce(v)

    @field_validator("lines", mode="before")
    @classmethod
    def _single_line(cls, v: object) -> object:
        # A bare string is one line, not a list of characters.
        return [v] if isinstance(v, str) else v


class ReplyChoice(_Wire):
    id: str = ""
    text: str
    sentiment: Sentiment = Sentiment.PASSIVE

    @field_validator("sentiment", mode="before")
    @classmethod
    def _coerce_sentiment(cls, v: object) -> Sentiment:
        return Sentiment.coerce(v)


class StatUpdates(_Wire):
    sanity_change: int = Field(default=0, alias="sanityChange")
    visit_count_change: int = Field(default=0, alias="visitCountChange")

    @field_validator("sanity_change", "visit_count_change", mode="before")
    @classmethod
    def _missing_is_zero(cls, v: object) -> object:
        return 0 if v is None else v


class GenerationReply(_Wire):
    """The structured reply of one generation call."""

    narrative: list[NarrativeItem]
    choices: list[ReplyChoice]
    stat_updates: StatUpdates | None = Field(default=None, alias="statUpdates")
    completed_objective_ids: list[str] = Field(
        default_factory=list, alias="completedObjectiveIds"
    )
    new_objectives: list[Objective] = Field(default_factory=list, alias="newObjectives")
    game_over: bool = Field(default=False, alias="gameOver")

    @field_validator("completed_objective_ids", "new_objectives", mode="before")
    @classmethod
    def _null_is_empty(cls, v: object) -> object:
        return [] if v is None else v

    @field_validator("game_over", mode="before")
    @classmethod
    def _null_is_false(cls, v: object) -> object:
        return False if v is None else v

    @property
    def sanity_change(self) -> int:
        return self.stat_updates.sanity_change if self.stat_updates else 0

    @property
    def visit_count_change(self) -> int:
        return self.stat_updates.visit_count_change if self.stat_updates else 0
