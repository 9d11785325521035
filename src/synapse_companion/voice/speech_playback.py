"""Queued speech playback.

Wraps a text-to-speech capability behind a FIFO queue of utterances:

speak() -> queue -> engine.say() -> speaker

cancel() empties the queue and silences whatever is playing. Every
utterance's completion awaitable resolves on natural end, on error, and on
cancellation, so callers waiting on speech never hang.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

PREMIUM_VOICE_KEYWORDS = ("neural", "natural", "premium", "enhanced", "hd", "wavenet", "pro", "high")
_PREFERRED_VENDORS = ("google", "microsoft")


@dataclass(frozen=True)
class Voice:
    voice_id: str
    name: str
    language: str  # BCP-47, e.g. en-US
    local_service: bool = True


class SynthesisEngine(ABC):
    """Platform text-to-speech capability."""

    @abstractmethod
    def voices(self) -> list[Voice]:
        """Voices currently available on this engine."""
        ...

    @abstractmethod
    async def say(self, text: str, *, voice: Voice | None, language: str) -> None:
        """Speak ``text`` and return when playback has finished."""
        ...

    def stop(self) -> None:
        """Silence the utterance in progress, if any."""


def _normalize_language(code: str | None) -> str:
    return (code or "").strip().replace("_", "-").lower()


def _is_premium(voice: Voice) -> bool:
    name = voice.name.lower()
    return any(keyword in name for keyword in PREMIUM_VOICE_KEYWORDS)


def voices_for_language(voices: Sequence[Voice], language: str | None) -> list[Voice]:
    """Voices whose language tag matches exactly, else those sharing the primary subtag."""
    wanted = _normalize_language(language)
    if not wanted:
        return []
    exact = [v for v in voices if _normalize_language(v.language) == wanted]
    if exact:
        return exact
    primary = wanted.split("-", 1)[0]
    return [v for v in voices if _normalize_language(v.language).split("-", 1)[0] == primary]


def resolve_voice(
    voices: Sequence[Voice],
    *,
    voice_id: str | None = None,
    language_hint: str | None = None,
) -> Voice | None:
    """
    Pick the voice for an utterance.

    Order: the explicit ``voice_id`` if still available; otherwise the best
    voice for ``language_hint``, preferring network voices (Google, then
    Microsoft, then any) and premium-sounding voices over basic local ones;
    otherwise the first voice for that language; otherwise None, meaning
    the engine default.
    """
    if voice_id:
        for voice in voices:
            if voice.voice_id == voice_id:
                return voice

    candidates = voices_for_language(voices, language_hint)
    if not candidates:
        return None

    network = [v for v in candidates if not v.local_service]
    for vendor in _PREFERRED_VENDORS:
        for voice in network:
            if vendor in voice.name.lower():
                return voice
    if network:
        return network[0]

    for voice in candidates:
        if _is_premium(voice):
            return voice
    return candidates[0]


def pick_default_voice(voices: Sequence[Voice]) -> Voice | None:
    """Default selection: an English Google voice, else any English voice, else the first."""
    english = [v for v in voices if _normalize_language(v.language).startswith("en")]
    for voice in english:
        if "google" in voice.name.lower():
            return voice
    if english:
        return english[0]
    return voices[0] if voices else None


def describe_voice(voice: Voice) -> str:
    """One-line description, e.g. ``Language: en-US • Type: Neural • Network``."""
    name = voice.name.lower()
    found = [k.capitalize() for k in PREMIUM_VOICE_KEYWORDS if k in name]
    parts = [f"Language: {voice.language}"]
    if found:
        parts.append(f"Type: {', '.join(found)}")
    parts.append("Local" if voice.local_service else "Network")
    return " • ".join(parts)


@dataclass(eq=False)
class _Utterance:
    text: str
    language: str
    voice_id: str | None
    on_end: Callable[[], None] | None
    done: asyncio.Future[None]
    finished: bool = field(default=False)


class SpeechPlayer:
    """
    FIFO speech queue over a SynthesisEngine.

    With no engine the player degrades to a no-op: every utterance resolves
    immediately.
    """

    def __init__(self, engine: SynthesisEngine | None = None) -> None:
        self._engine = engine
        self._queue: deque[_Utterance] = deque()
        self._current: _Utterance | None = None
        self._current_task: asyncio.Task[None] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._warned_unavailable = False

    @property
    def available(self) -> bool:
        return self._engine is not None

    @property
    def voices(self) -> list[Voice]:
        if self._engine is None:
            return []
        try:
            return self._engine.voices()
        except Exception as e:
            logger.warning(f"[VOICE][TTS] could not list voices: {e}")
            return []

    @property
    def is_speaking(self) -> bool:
        """True while anything is queued or playing."""
        return self._current is not None or bool(self._queue)

    def speak(
        self,
        text: str,
        *,
        language_hint: str = "en-US",
        voice_id: str | None = None,
        on_end: Callable[[], None] | None = None,
    ) -> asyncio.Future[None]:
        """
        Enqueue one utterance.

        Args:
            text: Text to speak.
            language_hint: BCP-47 language of the text.
            voice_id: Explicitly selected voice, if any.
            on_end: Called once when the utterance ends, fails or is cancelled.

        Returns:
            A future resolved under the same conditions as ``on_end``.
        """
        loop = asyncio.get_running_loop()
        utterance = _Utterance(
            text=text,
            language=language_hint,
            voice_id=voice_id,
            on_end=on_end,
            done=loop.create_future(),
        )

        if self._engine is None or not text.strip():
            if self._engine is None and not self._warned_unavailable:
                logger.info("[VOICE][TTS] playback unavailable; replies will not be spoken")
                self._warned_unavailable = True
            self._finish(utterance)
            return utterance.done

        self._queue.append(utterance)
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return utterance.done

    def cancel(self) -> None:
        """Empty the queue and silence the current utterance. Safe when idle."""
        pending = list(self._queue)
        self._queue.clear()

        current = self._current
        if self._current_task is not None and not self._current_task.done():
            self._current_task.cancel()
        if current is not None and self._engine is not None:
            try:
                self._engine.stop()
            except Exception as e:
                logger.warning(f"[VOICE][TTS] engine stop failed: {e}")
        self._current = None

        if current is not None:
            self._finish(current)
        for utterance in pending:
            self._finish(utterance)

        if current is not None or pending:
            logger.info(f"[VOICE][TTS] cancelled queue dropped={len(pending)}")

    async def wait_idle(self) -> None:
        """Wait until the queue has drained."""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    async def aclose(self) -> None:
        self.cancel()
        await self.wait_idle()

    async def _drain(self) -> None:
        assert self._engine is not None
        while self._queue:
            utterance = self._queue.popleft()
            self._current = utterance
            voice = resolve_voice(
                self.voices,
                voice_id=utterance.voice_id,
                language_hint=utterance.language,
            )
            language = voice.language if voice else utterance.language
            task = asyncio.ensure_future(self._engine.say(utterance.text, voice=voice, language=language))
            self._current_task = task

            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"[VOICE][TTS] utterance failed: {task.exception()}")

            if self._current is utterance:
                self._current = None
            self._current_task = None
            self._finish(utterance)

    def _finish(self, utterance: _Utterance) -> None:
        if utterance.finished:
            return
        utterance.finished = True
        if not utterance.done.done():
            utterance.done.set_result(None)
        if utterance.on_end is not None:
            try:
                utterance.on_end()
            except Exception:
                logger.exception("[VOICE][TTS] on_end callback failed")
