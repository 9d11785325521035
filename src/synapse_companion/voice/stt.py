"""Offline transcription of captured speech segments with faster-whisper."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import numpy as np

from synapse_companion.errors import CapabilityUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    device: str = "cpu"  # cpu|cuda|auto
    compute_type: str | None = None  # e.g. int8, float16
    language: str | None = None
    vad_filter: bool = True


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    language: str | None = None
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


class WhisperSTT:
    """faster-whisper wrapper."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()
        self._model = None

    @property
    def config(self) -> STTConfig:
        return self._config

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise CapabilityUnavailableError(
                "faster-whisper is required for speech recognition. Install with: pip install -e '.[voice]'"
            ) from e

        device = self._config.device
        if device == "auto":
            device = "cpu"

        kwargs = {}
        if self._config.compute_type:
            kwargs["compute_type"] = self._config.compute_type

        logger.info(f"[VOICE][STT] loading model size={self._config.model_size} device={device}")
        self._model = WhisperModel(self._config.model_size, device=device, **kwargs)
        return self._model

    def _transcribe(self, audio: np.ndarray) -> TranscriptionResult:
        model = self._load_model()
        segments, info = model.transcribe(
            audio,
            language=self._config.language,
            vad_filter=self._config.vad_filter,
        )
        text_parts: list[str] = []
        for s in segments:
            if s.text:
                text_parts.append(s.text.strip())
        text = " ".join(t for t in text_parts if t).strip()
        return TranscriptionResult(
            text=text,
            language=getattr(info, "language", None),
            avg_logprob=getattr(info, "avg_logprob", None),
            no_speech_prob=getattr(info, "no_speech_prob", None),
        )

    async def transcribe_array(self, audio: np.ndarray) -> TranscriptionResult:
        """Transcribe float32 mono samples at 16 kHz."""
        samples = np.asarray(audio, dtype=np.float32)
        return await asyncio.to_thread(self._transcribe, samples)
