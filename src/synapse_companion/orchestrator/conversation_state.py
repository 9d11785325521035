"""
Conversation state management.

Owns the transcript and the remembered user profile. The turn coordinator
is the only writer; front ends read copies.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from synapse_companion.orchestrator.schemas import (
    Emotion,
    EmotionLogEntry,
    Speaker,
    Turn,
    UserProfile,
)

logger = logging.getLogger(__name__)

_KEY_SEPARATORS_RE = re.compile(r"[^0-9a-z]+")


def normalize_fact_key(key: str) -> str:
    """Normalize a fact key to lowercase, underscore-delimited form.

    ``"Pet Dog-Name"`` becomes ``"pet_dog_name"``.
    """
    return _KEY_SEPARATORS_RE.sub("_", (key or "").strip().lower()).strip("_")


def format_profile_key(key: str) -> str:
    """Turn a fact key into a display label (``pet_dog_name`` -> ``Pet Dog Name``)."""
    return " ".join(part.capitalize() for part in key.split("_") if part)


def derive_emotion_log(transcript: Iterable[Turn]) -> list[EmotionLogEntry]:
    """
    Derive the emotion log from a transcript.

    Every agent turn that carries an emotion is paired with the nearest
    preceding user turn. Agent turns with no preceding user turn are skipped.

    Args:
        transcript: Ordered conversation turns.

    Returns:
        Emotion log entries in transcript order.
    """
    entries: list[EmotionLogEntry] = []
    last_user_text: str | None = None
    for turn in transcript:
        if turn.speaker == Speaker.USER:
            last_user_text = turn.text
        elif turn.emotion is not None and last_user_text is not None:
            entries.append(EmotionLogEntry(user_message=last_user_text, emotion=turn.emotion))
    return entries


class ConversationState:
    """
    The transcript, the derived emotion log, and the user profile.

    Mutation happens only through the methods below, which the turn
    coordinator calls from its sequential turn logic.
    """

    def __init__(self, profile: Mapping[str, str] | None = None) -> None:
        """
        Initialize conversation state.

        Args:
            profile: Previously persisted user profile, if any.
        """
        self._turns: list[Turn] = []
        self._profile: UserProfile = dict(profile or {})

    @property
    def transcript(self) -> list[Turn]:
        """Get all conversation turns."""
        return self._turns.copy()

    @property
    def last_turn(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    @property
    def emotion_log(self) -> list[EmotionLogEntry]:
        """Emotion log recomputed from the current transcript."""
        return derive_emotion_log(self._turns)

    @property
    def profile(self) -> UserProfile:
        """Get a copy of the user profile."""
        return dict(self._profile)

    def add_user_turn(self, text: str) -> Turn:
        """
        Append a user turn.

        Args:
            text: Finalized user text.

        Returns:
            The created Turn.
        """
        turn = Turn(speaker=Speaker.USER, text=text)
        self._turns.append(turn)
        return turn

    def add_agent_turn(self, emotion: Emotion | None = None, text: str = "") -> Turn:
        """
        Append an agent turn, empty by default so it can stream in place.

        Args:
            emotion: Emotion detected for the user message being answered.
            text: Initial text.

        Returns:
            The created Turn.
        """
        turn = Turn(speaker=Speaker.AGENT, text=text, emotion=emotion)
        self._turns.append(turn)
        return turn

    def set_turn_text(self, turn: Turn, text: str) -> None:
        """Replace the text of a turn in the transcript."""
        turn.text = text

    def discard_if_empty(self, turn: Turn | None) -> bool:
        """
        Remove ``turn`` if it is the trailing turn and still has no text.

        Args:
            turn: Agent turn of a cancelled session.

        Returns:
            True if the turn was removed.
        """
        if turn is None or not self._turns:
            return False
        if self._turns[-1] is turn and turn.text == "":
            self._turns.pop()
            return True
        return False

    def merge_profile(self, facts: Mapping[str, Any] | None) -> bool:
        """
        Merge extracted facts into the profile (last write wins per key).

        Keys are normalized; blank keys and blank values are ignored.

        Args:
            facts: Extracted facts.

        Returns:
            True if the profile changed.
        """
        if not facts:
            return False

        changed = False
        for raw_key, raw_value in facts.items():
            key = normalize_fact_key(str(raw_key))
            value = str(raw_value).strip() if raw_value is not None else ""
            if not key or not value:
                logger.debug(f"Skipping blank fact {raw_key!r}={raw_value!r}")
                continue
            if self._profile.get(key) != value:
                self._profile[key] = value
                changed = True
        return changed

    def replace_profile(self, profile: Mapping[str, str]) -> None:
        """Replace the whole profile, e.g. after loading it from storage."""
        self._profile = dict(profile)

    def clear_profile(self) -> None:
        """Forget everything remembered about the user."""
        self._profile = {}
