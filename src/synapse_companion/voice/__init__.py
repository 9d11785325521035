"""Local voice subsystem.

Speech capture and playback for the companion:

mic -> recognition -> turn coordinator -> synthesis -> speaker

Both sides are optional: without a recognizer or synthesis engine the
companion still works in text mode.
"""

from synapse_companion.voice.audio_io import AudioIO, AudioIOConfig
from synapse_companion.voice.speech_capture import (
    MicrophoneConfig,
    MicrophoneRecognizer,
    RecognitionEngine,
    RecognitionResult,
    SpeechCapture,
)
from synapse_companion.voice.speech_playback import (
    SpeechPlayer,
    SynthesisEngine,
    Voice,
    describe_voice,
    pick_default_voice,
    resolve_voice,
)
from synapse_companion.voice.stt import STTConfig, TranscriptionResult, WhisperSTT
from synapse_companion.voice.tts import PiperSynthesisEngine, PiperTTS, TTSConfig

__all__ = [
    "AudioIO",
    "AudioIOConfig",
    "MicrophoneConfig",
    "MicrophoneRecognizer",
    "PiperSynthesisEngine",
    "PiperTTS",
    "RecognitionEngine",
    "RecognitionResult",
    "STTConfig",
    "SpeechCapture",
    "SpeechPlayer",
    "SynthesisEngine",
    "TTSConfig",
    "TranscriptionResult",
    "Voice",
    "WhisperSTT",
    "describe_voice",
    "pick_default_voice",
    "resolve_voice",
]
