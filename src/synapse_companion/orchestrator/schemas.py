"""
Pydantic schemas for the orchestrator module.

Defines the conversation data model: turns, emotions, coarse application
state and the derived emotion log.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


# Fact key (lowercase, underscore-delimited) -> fact value.
UserProfile = dict[str, str]


class Emotion(str, Enum):
    """Emotional tone detected in a user message."""

    NEUTRAL = "NEUTRAL"
    JOYFUL = "JOYFUL"
    CALM = "CALM"
    ANGRY = "ANGRY"
    SAD = "SAD"
    SURPRISED = "SURPRISED"

    @property
    def label(self) -> str:
        """Human-readable label ("Joyful")."""
        return self.value.capitalize()


class Speaker(str, Enum):
    """Who produced a conversation turn."""

    USER = "user"
    AGENT = "agent"


class AppState(str, Enum):
    """Coarse status of the companion, driving front-end affordances."""

    IDLE = "IDLE"
    LISTENING = "LISTENING"
    THINKING = "THINKING"
    SPEAKING = "SPEAKING"
    ERROR = "ERROR"


class InputMode(str, Enum):
    """Active front-end mode. Replies are spoken only in VOICE mode."""

    VOICE = "VOICE"
    TEXT = "TEXT"
    PROFILE = "PROFILE"


class Turn(BaseModel):
    """A single turn in the conversation transcript.

    The agent turn that is currently streaming has its ``text`` updated in
    place as fragments arrive.
    """

    turn_id: UUID = Field(default_factory=uuid4, description="Unique turn identifier")
    speaker: Speaker = Field(..., description="Who produced the turn")
    text: str = Field(default="", description="Turn text")
    emotion: Emotion | None = Field(
        default=None,
        description="Emotion detected for the user message this agent turn answers",
    )
    timestamp: datetime = Field(default_factory=_now_utc, description="When the turn started")


class InitialAnalysis(BaseModel):
    """Result of the single-shot emotion and language classification."""

    emotion: Emotion = Field(..., description="Primary emotion of the user message")
    language_code: str = Field(..., description="BCP-47 language code, e.g. en-US")


class EmotionLogEntry(BaseModel):
    """A user message paired with the emotion detected for it."""

    user_message: str = Field(..., description="Text of the user turn")
    emotion: Emotion = Field(..., description="Emotion detected for that turn")
