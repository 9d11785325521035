import asyncio
import json
from pathlib import Path

from synapse_companion.voice.speakable import to_speakable
from synapse_companion.voice.speech_playback import Voice
from synapse_companion.voice.tts import PiperSynthesisEngine, PiperTTS, TTSConfig


class FakeAudio:
    def __init__(self) -> None:
        self.played: list[str] = []
        self.stops = 0

    async def play_wav(self, wav_path: str | Path) -> None:
        self.played.append(Path(wav_path).name)

    def stop_playback(self) -> None:
        self.stops += 1


class FakeTTS(PiperTTS):
    def __init__(self, config: TTSConfig | None = None) -> None:
        super().__init__(config)
        self.calls: list[tuple[str, str | None]] = []

    async def synthesize_to_wavs(self, text, out_dir, base_name, *, model_path=None):
        self.calls.append((text, model_path))
        return [Path(out_dir) / f"{base_name}_{i:02d}.wav" for i, _ in enumerate(self._chunk_text(text))]


def test_to_speakable_strips_markdown():
    text = "## Hey\n- **I'm so sorry** for your loss.\n- See [this guide](https://example.com/grief)."
    assert to_speakable(text) == "Hey I'm so sorry for your loss. See this guide."


def test_to_speakable_skips_json_and_code_fences():
    assert to_speakable('{"name": "Ann"}') == ""
    assert to_speakable("{broken") == ""
    assert to_speakable("Here:\n```python\nprint('hi')\n```\nDone.") == "Here: Done."
    assert to_speakable("   ") == ""


def test_chunk_text_packs_sentences_under_limit():
    tts = PiperTTS(TTSConfig(max_chars_per_chunk=20))
    assert tts._chunk_text("One two. Three four. Five.") == ["One two. Three four.", "Five."]
    assert tts._chunk_text("x" * 45) == ["x" * 20, "x" * 20, "x" * 5]
    assert tts._chunk_text("  ") == []


def test_list_voices_reads_piper_sidecars(tmp_path):
    voices_dir = tmp_path / "voices"
    voices_dir.mkdir()
    (voices_dir / "es_ES-davefx-medium.onnx").write_bytes(b"")
    (voices_dir / "es_ES-davefx-medium.onnx.json").write_text(
        json.dumps({"language": {"code": "es_ES"}, "dataset": "davefx", "audio": {"quality": "medium"}}),
        encoding="utf-8",
    )
    default = tmp_path / "en_US-lessac-low.onnx"
    default.write_bytes(b"")

    tts = PiperTTS(TTSConfig(model_path=str(default), voices_dir=str(voices_dir)))
    voices = tts.list_voices()

    assert [(v.name, v.language) for v in voices] == [
        ("en_US-lessac-low", "en-US"),
        ("davefx (medium)", "es-ES"),
    ]
    assert all(v.local_service for v in voices)


def test_engine_speaks_cleaned_text_with_selected_model():
    audio = FakeAudio()
    tts = FakeTTS()
    engine = PiperSynthesisEngine(tts, audio)  # type: ignore[arg-type]
    voice = Voice("/voices/es.onnx", "davefx (medium)", "es-ES", local_service=True)

    asyncio.run(engine.say("**Lo siento mucho.**", voice=voice, language="es-ES"))

    assert tts.calls == [("Lo siento mucho.", "/voices/es.onnx")]
    assert audio.played == ["utt_00.wav"]


def test_engine_skips_unspeakable_text():
    audio = FakeAudio()
    tts = FakeTTS()
    engine = PiperSynthesisEngine(tts, audio)  # type: ignore[arg-type]

    asyncio.run(engine.say('{"emotion": "SAD"}', voice=None, language="en-US"))

    assert tts.calls == []
    assert audio.played == []
    engine.stop()
    assert audio.stops == 1
