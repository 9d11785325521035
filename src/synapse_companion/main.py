"""
Main entry point for the Synapse companion application.
"""

import argparse
import asyncio
import logging
import sys

from synapse_companion.config import Settings, get_settings
from synapse_companion.io.text_interface import ConversationInterface, TextInterface
from synapse_companion.io.voice_interface import VoiceInterface
from synapse_companion.memory.credentials import SessionCredentials
from synapse_companion.memory.profile_store import create_profile_store
from synapse_companion.models.llm_client import GeminiClient
from synapse_companion.orchestrator.conversation_state import ConversationState
from synapse_companion.orchestrator.schemas import InputMode
from synapse_companion.orchestrator.turn_coordinator import TurnCoordinator
from synapse_companion.voice.audio_io import AudioIO, AudioIOConfig
from synapse_companion.voice.speech_capture import MicrophoneRecognizer, SpeechCapture
from synapse_companion.voice.speech_playback import SpeechPlayer
from synapse_companion.voice.stt import STTConfig, WhisperSTT
from synapse_companion.voice.tts import PiperSynthesisEngine, PiperTTS, TTSConfig


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_speech(settings: Settings) -> tuple[SpeechPlayer, SpeechCapture, PiperSynthesisEngine | None]:
    """
    Build speech playback and capture from settings.

    Missing pieces degrade: without Piper replies are not spoken, and
    recognition failures surface as a capture error when listening starts.

    Returns:
        The player, the capture, and the synthesis engine if one is usable.
    """
    logger = logging.getLogger(__name__)
    audio = AudioIO(AudioIOConfig())

    tts = PiperTTS(
        TTSConfig(
            piper_bin=settings.piper_bin,
            model_path=settings.piper_model,
            voices_dir=settings.piper_voices_dir,
            timeout_s=settings.piper_timeout,
        )
    )
    engine: PiperSynthesisEngine | None = None
    ok, reason = tts.is_available()
    if not ok:
        logger.warning(f"[VOICE][TTS] disabled: {reason}")
    elif not tts.list_voices():
        logger.warning("[VOICE][TTS] disabled: no Piper voice configured (PIPER_MODEL / PIPER_VOICES_DIR)")
    else:
        engine = PiperSynthesisEngine(tts, audio)

    stt = WhisperSTT(
        STTConfig(
            model_size=settings.stt_model_size,
            device=settings.stt_device,
            language=settings.stt_language,
        )
    )
    capture = SpeechCapture(
        MicrophoneRecognizer(audio, stt),
        pause_seconds=settings.speech_pause_seconds,
    )
    return SpeechPlayer(engine), capture, engine


async def run_companion(settings: Settings, mode: str = "text") -> None:
    """
    Run an interactive conversation.

    This is the main async entry point that wires all components together
    and runs the chosen front end.
    """
    logger = logging.getLogger(__name__)
    logger.info("Initializing Synapse companion...")
    logger.debug(f"Using model: {settings.gemini_model}")

    credentials = SessionCredentials(settings.gemini_api_key)
    client = GeminiClient(
        credentials,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout=settings.llm_timeout,
    )
    profile_store = create_profile_store(
        profile_path=settings.profile_path,
        database_url=settings.database_url,
    )

    interface: ConversationInterface
    if mode == "voice":
        player, capture, engine = build_speech(settings)
        coordinator = TurnCoordinator(
            client,
            ConversationState(),
            player=player,
            capture=capture,
            profile_store=profile_store,
            credentials=credentials,
            input_mode=InputMode.VOICE,
        )
        interface = VoiceInterface(coordinator, engine=engine)
    else:
        coordinator = TurnCoordinator(
            client,
            ConversationState(),
            profile_store=profile_store,
            credentials=credentials,
            input_mode=InputMode.TEXT,
        )
        interface = TextInterface(coordinator)

    await coordinator.load_profile()
    logger.info("Starting conversation...")
    try:
        await interface.run()
    finally:
        await coordinator.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="synapse-companion")
    parser.add_argument(
        "--mode",
        choices=["text", "voice"],
        default="text",
        help="Run in text or voice mode",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the application."""
    setup_logging()
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)

    try:
        asyncio.run(run_companion(get_settings(), args.mode))
    except KeyboardInterrupt:
        print("\nConversation ended by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
