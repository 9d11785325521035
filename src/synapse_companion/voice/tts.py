"""Text-to-speech (offline).

Default implementation uses `piper` via subprocess if available. Voices are
Piper ``*.onnx`` models; each model's ``.onnx.json`` sidecar names its
language.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from synapse_companion.errors import CapabilityUnavailableError
from synapse_companion.voice.audio_io import AudioIO
from synapse_companion.voice.speakable import to_speakable
from synapse_companion.voice.speech_playback import SynthesisEngine, Voice

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # default voice, path to *.onnx
    voices_dir: str | None = None  # extra *.onnx voices
    speaker_id: int | None = None
    max_chars_per_chunk: int = 350
    timeout_s: float = 60.0


class PiperTTS:
    def __init__(self, config: TTSConfig | None = None) -> None:
        self._config = config or TTSConfig()
        self._validated_piper_path: str | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self) -> tuple[bool, str]:
        try:
            _ = self._require_piper()
            return True, "ok"
        except CapabilityUnavailableError as e:
            return False, str(e)

    def _looks_like_piper_tts(self, piper_path: str) -> bool:
        try:
            r = subprocess.run(
                [piper_path, "--help"],
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            return False

        out = (r.stdout or "").lower()
        return ("--model" in out or "--output_file" in out) and "application options" not in out

    def _require_piper(self) -> str:
        if self._validated_piper_path:
            return self._validated_piper_path

        p = shutil.which(self._config.piper_bin)
        if not p:  # pragma: no cover
            raise CapabilityUnavailableError(
                "piper CLI not found. Install piper (binary) and ensure it's on PATH, "
                "or set PIPER_BIN to its path."
            )
        if not self._looks_like_piper_tts(p):  # pragma: no cover
            raise CapabilityUnavailableError(
                "Found a `piper` binary, but it does not look like the Piper TTS CLI "
                "(common on Linux: /usr/bin/piper is a GTK app). Set PIPER_BIN to the Piper TTS binary."
            )

        self._validated_piper_path = p
        return p

    def list_voices(self) -> list[Voice]:
        """Discover voices from the default model and the voices directory."""
        paths: list[Path] = []
        if self._config.model_path:
            paths.append(Path(self._config.model_path))
        if self._config.voices_dir:
            voices_dir = Path(self._config.voices_dir)
            if voices_dir.is_dir():
                paths.extend(sorted(voices_dir.glob("*.onnx")))

        voices: list[Voice] = []
        seen: set[str] = set()
        for path in paths:
            voice_id = str(path.resolve())
            if voice_id in seen or not path.exists():
                continue
            seen.add(voice_id)
            voices.append(_voice_from_model(path))
        return voices

    def _chunk_text(self, text: str) -> list[str]:
        t = (text or "").strip()
        if not t:
            return []

        # Split on sentence-ish boundaries, then re-pack into chunks.
        parts = [p.strip() for p in re.split(r"(?<=[.!?])\s+", t) if p.strip()]
        chunks: list[str] = []
        current = ""
        for p in parts:
            if not current:
                current = p
                continue
            if len(current) + 1 + len(p) <= self._config.max_chars_per_chunk:
                current = current + " " + p
            else:
                chunks.append(current)
                current = p
        if current:
            chunks.append(current)

        # Long runs without sentence boundaries are cut hard.
        result: list[str] = []
        for chunk in chunks:
            for i in range(0, len(chunk), self._config.max_chars_per_chunk):
                result.append(chunk[i : i + self._config.max_chars_per_chunk])
        return result

    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        *,
        model_path: str | None = None,
    ) -> list[Path]:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        piper_bin = self._require_piper()
        model = model_path or self._config.model_path
        if not model:  # pragma: no cover
            raise CapabilityUnavailableError(
                "Piper model path not configured. Set PIPER_MODEL=/path/to/voice.onnx."
            )

        chunks = self._chunk_text(text)
        wavs: list[Path] = []

        async def _run_one(chunk: str, wav_path: Path) -> None:
            cmd = [piper_bin, "--model", str(model), "--output_file", str(wav_path)]
            if self._config.speaker_id is not None:
                cmd += ["--speaker", str(self._config.speaker_id)]

            def _call() -> None:
                try:
                    subprocess.run(
                        cmd,
                        input=chunk,
                        text=True,
                        check=True,
                        stdout=subprocess.DEVNULL,
                        stderr=subprocess.PIPE,
                        timeout=self._config.timeout_s,
                    )
                except subprocess.TimeoutExpired as e:  # pragma: no cover
                    raise RuntimeError(
                        f"piper timed out after {self._config.timeout_s:.1f}s. model={model!s}."
                    ) from e
                except subprocess.CalledProcessError as e:  # pragma: no cover
                    stderr = (e.stderr or "").strip()
                    raise RuntimeError(
                        f"piper failed (exit={e.returncode}). model={model!s}. stderr={stderr or '<empty>'}"
                    ) from e

            await asyncio.to_thread(_call)

        for idx, chunk in enumerate(chunks):
            wav_path = out_dir / f"{base_name}_{idx:02d}.wav"
            await _run_one(chunk, wav_path)
            wavs.append(wav_path)

        return wavs


def _voice_from_model(path: Path) -> Voice:
    """Build a Voice from a Piper model and its ``.onnx.json`` sidecar."""
    language = "en-US"
    name = path.stem
    sidecar = path.with_name(path.name + ".json")
    if sidecar.exists():
        try:
            meta = json.loads(sidecar.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable Piper voice config {sidecar}: {e}")
        else:
            code = ((meta.get("language") or {}).get("code") or "").replace("_", "-")
            if code:
                language = code
            dataset = meta.get("dataset")
            quality = (meta.get("audio") or {}).get("quality")
            if dataset:
                name = f"{dataset} ({quality})" if quality else str(dataset)
    return Voice(voice_id=str(path.resolve()), name=name, language=language, local_service=True)


class PiperSynthesisEngine(SynthesisEngine):
    """SynthesisEngine that renders with Piper and plays through AudioIO."""

    def __init__(self, tts: PiperTTS, audio: AudioIO) -> None:
        self._tts = tts
        self._audio = audio
        self._voices: list[Voice] | None = None
        self._stopped = False

    @property
    def tts(self) -> PiperTTS:
        return self._tts

    def voices(self) -> list[Voice]:
        if self._voices is None:
            self._voices = self._tts.list_voices()
        return list(self._voices)

    async def say(self, text: str, *, voice: Voice | None, language: str) -> None:
        self._stopped = False
        speakable = to_speakable(text)
        if not speakable:
            logger.info("[VOICE][TTS] skipped reason=no_speakable_text")
            return

        model_path = voice.voice_id if voice else None
        with tempfile.TemporaryDirectory(prefix="synapse_tts_") as tmp:
            wavs = await self._tts.synthesize_to_wavs(speakable, out_dir=tmp, base_name="utt", model_path=model_path)
            excerpt = speakable[:80].replace("\n", " ")
            logger.info(f"[VOICE][TTS] speak len={len(speakable)} lang={language} text=\"{excerpt}\"")
            for wav in wavs:
                if self._stopped:
                    break
                await self._audio.play_wav(wav)

    def stop(self) -> None:
        self._stopped = True
        self._audio.stop_playback()
