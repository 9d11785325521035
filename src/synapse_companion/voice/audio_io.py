"""Microphone and speaker access for the voice front end.

Knows nothing about turns or replies: it delivers fixed-size float32 blocks
from the default input device and plays WAV files that can be cut off
mid-utterance when the user interrupts.
"""

from __future__ import annotations

import asyncio
import logging
import wave
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from synapse_companion.errors import CapabilityUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    block_ms: int = 100
    playback_timeout_s: float = 120.0


class AudioIO:
    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._input_stream: Any = None

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    def _require_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except (ImportError, OSError) as e:  # pragma: no cover
            raise CapabilityUnavailableError(
                "sounddevice is required for voice mode. Install with: pip install -e '.[voice]'. "
                "If you see 'PortAudio library not found', install PortAudio "
                "(Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
            ) from e

    async def start_capture(self, on_block: Callable[[np.ndarray], None]) -> None:
        """Start continuous mic capture; ``on_block`` receives float32 mono blocks.

        The callback runs on the audio thread.
        """
        sd = self._require_sounddevice()
        blocksize = int(self._config.sample_rate * self._config.block_ms / 1000)

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            on_block(indata[:, 0].copy())

        try:
            self._input_stream = sd.InputStream(
                samplerate=self._config.sample_rate,
                channels=self._config.channels,
                dtype="float32",
                blocksize=blocksize,
                callback=callback,
            )
            await asyncio.to_thread(self._input_stream.start)
        except Exception as e:
            self._input_stream = None
            raise CapabilityUnavailableError(f"Microphone unavailable: {e}") from e

    async def stop_capture(self) -> None:
        if self._input_stream is None:
            return
        stream = self._input_stream
        self._input_stream = None
        await asyncio.to_thread(stream.stop)
        await asyncio.to_thread(stream.close)

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        wav_path = Path(wav_path)
        with wave.open(str(wav_path), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            if sampwidth != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16)
        if n_channels > 1:
            audio = audio.reshape(-1, n_channels)
        else:
            audio = audio.reshape(-1, 1)
        return audio, sr

    async def play_wav(self, wav_path: str | Path) -> None:
        """Play a WAV file to completion (or until ``stop_playback``)."""
        sd = self._require_sounddevice()

        audio, sr = self.read_wav(wav_path)
        audio_f32 = audio.astype(np.float32) / 32768.0
        if audio_f32.shape[1] == 1:
            audio_f32 = audio_f32.squeeze(-1)

        sd.play(audio_f32, samplerate=sr, blocking=False)
        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=self._config.playback_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[VOICE][AUDIO] playback timed out wav={wav_path}")
            self.stop_playback()
        except asyncio.CancelledError:
            self.stop_playback()
            raise

    def stop_playback(self) -> None:
        try:
            sd = self._require_sounddevice()
        except CapabilityUnavailableError:
            return
        sd.stop()
