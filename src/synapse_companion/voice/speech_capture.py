"""Continuous speech capture segmented into user turns.

mic -> RecognitionEngine (interim + final results) -> pause detection -> turn text

A RecognitionEngine produces recognition results; SpeechCapture accumulates
the final ones and emits a single turn once the speaker has paused.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

import numpy as np

from synapse_companion.errors import CapabilityUnavailableError
from synapse_companion.voice.audio_io import AudioIO
from synapse_companion.voice.stt import WhisperSTT

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_SECONDS = 1.5
UNSUPPORTED_MESSAGE = "Speech recognition is not supported on this device."


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool


class RecognitionEngine(ABC):
    """Platform speech-to-text capability."""

    @abstractmethod
    def listen(self) -> AsyncIterator[RecognitionResult]:
        """
        Listen continuously.

        Returns:
            Async iterator of interim and final results. It ends after
            ``finish()`` once pending audio has been recognized.

        Raises:
            CapabilityUnavailableError: If the device cannot be used.
        """
        ...

    async def finish(self) -> None:
        """Ask ``listen()`` to wrap up pending audio and end."""


class SpeechCapture:
    """
    Turns a stream of recognition results into finalized user turns.

    Interim results replace ``interim_text``; final results accumulate until
    ``pause_seconds`` pass without new results, then the accumulated text is
    emitted through ``on_turn``. Whitespace-only turns are never emitted.
    Capability failures stop listening and set a dismissible ``error``.
    """

    def __init__(
        self,
        engine: RecognitionEngine | None,
        *,
        pause_seconds: float = DEFAULT_PAUSE_SECONDS,
        on_turn: Callable[[str], None] | None = None,
        on_interim: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        finish_timeout: float = 30.0,
    ) -> None:
        self._engine = engine
        self._pause_seconds = pause_seconds
        self._finish_timeout = finish_timeout
        self.on_turn = on_turn
        self.on_interim = on_interim
        self.on_error = on_error

        self._listening = False
        self._stopping = False
        self._segments: list[str] = []
        self._interim_text = ""
        self._error: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._pause_task: asyncio.Task[None] | None = None

    @property
    def available(self) -> bool:
        return self._engine is not None

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def interim_text(self) -> str:
        return self._interim_text

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def pending_text(self) -> str:
        """Final text accumulated for the turn being spoken."""
        return " ".join(self._segments).strip()

    def clear_error(self) -> None:
        self._error = None

    def start(self) -> bool:
        """
        Begin continuous listening.

        Returns:
            True if listening started (or was already active).
        """
        if self._listening:
            return True

        self._error = None
        if self._engine is None:
            self._set_error(UNSUPPORTED_MESSAGE)
            return False

        self._segments.clear()
        self._set_interim("")
        self._stopping = False
        self._listening = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("[VOICE][STT] listening")
        return True

    async def stop(self, *, flush: bool = True) -> None:
        """
        Stop listening.

        Args:
            flush: Emit pending text as one final turn (otherwise drop it).
        """
        task = self._task
        if task is None:
            self._listening = False
            return

        self._stopping = True
        self._cancel_pause_timer()
        if not task.done():
            try:
                await self._engine.finish()  # type: ignore[union-attr]
            except Exception as e:
                logger.warning(f"[VOICE][STT] engine finish failed: {e}")
            done, _ = await asyncio.wait({task}, timeout=self._finish_timeout)
            if not done:
                task.cancel()
                await asyncio.wait({task})

        self._task = None
        self._listening = False
        self._stopping = False
        if flush:
            self._flush()
        else:
            self._segments.clear()
            self._set_interim("")
        logger.info("[VOICE][STT] stopped")

    async def _run(self) -> None:
        assert self._engine is not None
        try:
            async for result in self._engine.listen():
                self._on_result(result)
        except asyncio.CancelledError:
            raise
        except CapabilityUnavailableError as e:
            logger.error(f"[VOICE][STT] capability error: {e}")
            self._segments.clear()
            self._set_error(str(e))
        except Exception as e:
            logger.exception("[VOICE][STT] recognition failed")
            self._segments.clear()
            self._set_error(f"Speech service failed: {e}")
        else:
            # Recognition ended on its own: keep what was said.
            if not self._stopping:
                self._flush()
        finally:
            self._cancel_pause_timer()
            self._listening = False

    def _on_result(self, result: RecognitionResult) -> None:
        if result.is_final:
            text = result.text.strip()
            if text:
                self._segments.append(text)
            self._set_interim("")
        else:
            self._set_interim(result.text)

        if not self._stopping:
            self._restart_pause_timer()

    def _restart_pause_timer(self) -> None:
        self._cancel_pause_timer()
        self._pause_task = asyncio.get_running_loop().create_task(self._pause_elapsed())

    def _cancel_pause_timer(self) -> None:
        if self._pause_task is not None and not self._pause_task.done():
            self._pause_task.cancel()
        self._pause_task = None

    async def _pause_elapsed(self) -> None:
        await asyncio.sleep(self._pause_seconds)
        self._pause_task = None
        self._flush()

    def _flush(self) -> None:
        text = self.pending_text
        self._segments.clear()
        self._set_interim("")
        if not text:
            return
        logger.info(f"[VOICE][STT] turn chars={len(text)}")
        if self.on_turn is not None:
            self.on_turn(text)

    def _set_interim(self, text: str) -> None:
        if text == self._interim_text:
            return
        self._interim_text = text
        if self.on_interim is not None:
            self.on_interim(text)

    def _set_error(self, message: str) -> None:
        self._error = message
        self._listening = False
        if self.on_error is not None:
            self.on_error(message)


@dataclass(frozen=True)
class MicrophoneConfig:
    speech_rms_threshold: float = 0.01
    segment_silence_ms: int = 600
    max_segment_s: float = 20.0
    # Transcribe in-progress speech this often for interim results (None disables).
    interim_interval_s: float | None = None
    min_transcript_chars: int = 2
    # Confidence heuristics (faster-whisper):
    min_avg_logprob: float = -1.2
    max_no_speech_prob: float = 0.9


class MicrophoneRecognizer(RecognitionEngine):
    """
    Offline recognizer: sounddevice capture, RMS voice activity, faster-whisper.

    Each stretch of speech followed by ``segment_silence_ms`` of silence is
    transcribed and reported as one final result.
    """

    def __init__(self, audio: AudioIO, stt: WhisperSTT, config: MicrophoneConfig | None = None) -> None:
        self._audio = audio
        self._stt = stt
        self._config = config or MicrophoneConfig()
        self._queue: asyncio.Queue[np.ndarray | None] | None = None

    @property
    def config(self) -> MicrophoneConfig:
        return self._config

    async def listen(self) -> AsyncIterator[RecognitionResult]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self._queue = queue

        def on_block(block: np.ndarray) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, block)

        await self._audio.start_capture(on_block)

        sample_rate = self._audio.config.sample_rate
        block_ms = self._audio.config.block_ms
        speech: list[np.ndarray] = []
        silence_ms = 0
        last_interim = time.monotonic()
        try:
            while True:
                block = await queue.get()
                if block is None:
                    break

                rms = float(np.sqrt(np.mean(np.square(block)))) if block.size else 0.0
                if rms >= self._config.speech_rms_threshold:
                    speech.append(block)
                    silence_ms = 0
                elif speech:
                    speech.append(block)
                    silence_ms += block_ms
                else:
                    continue

                seconds = sum(len(b) for b in speech) / sample_rate
                if silence_ms >= self._config.segment_silence_ms or seconds >= self._config.max_segment_s:
                    text = await self._transcribe(speech)
                    speech = []
                    silence_ms = 0
                    if text:
                        yield RecognitionResult(text=text, is_final=True)
                elif (
                    self._config.interim_interval_s is not None
                    and time.monotonic() - last_interim >= self._config.interim_interval_s
                ):
                    last_interim = time.monotonic()
                    text = await self._transcribe(speech)
                    if text:
                        yield RecognitionResult(text=text, is_final=False)

            if speech:
                text = await self._transcribe(speech)
                if text:
                    yield RecognitionResult(text=text, is_final=True)
        finally:
            self._queue = None
            await self._audio.stop_capture()

    async def finish(self) -> None:
        if self._queue is not None:
            self._queue.put_nowait(None)

    async def _transcribe(self, blocks: list[np.ndarray]) -> str:
        result = await self._stt.transcribe_array(np.concatenate(blocks))
        text = result.text.strip()
        if len(text) < self._config.min_transcript_chars:
            return ""
        if result.no_speech_prob is not None and result.no_speech_prob >= self._config.max_no_speech_prob:
            logger.info(f"[VOICE][STT] dropped no_speech_prob={result.no_speech_prob:.2f}")
            return ""
        if result.avg_logprob is not None and result.avg_logprob <= self._config.min_avg_logprob:
            logger.info(f"[VOICE][STT] dropped avg_logprob={result.avg_logprob:.2f}")
            return ""
        logger.info(f"[VOICE][STT] segment chars={len(text)} lang={result.language}")
        return text
