#!/usr/bin/env python

import argparse
import asyncio
import os

from synapse_companion.config import get_settings
from synapse_companion.main import run_companion, setup_logging


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Talk to the Synapse companion by voice")

    p.add_argument(
        "--pause-seconds",
        type=float,
        default=float(os.getenv("SPEECH_PAUSE_SECONDS", "1.5") or "1.5"),
        help="Silence that ends a turn (default: SPEECH_PAUSE_SECONDS or 1.5)",
    )

    # STT
    p.add_argument(
        "--stt-model",
        default=os.getenv("STT_MODEL_SIZE", "small"),
        help="faster-whisper model size (default: STT_MODEL_SIZE or 'small')",
    )
    p.add_argument(
        "--stt-device",
        default=os.getenv("STT_DEVICE", "cpu"),
        choices=["cpu", "cuda", "auto"],
        help="STT device (default: STT_DEVICE or 'cpu')",
    )
    p.add_argument(
        "--stt-language",
        default=os.getenv("STT_LANGUAGE", None),
        help="Force the recognition language (default: STT_LANGUAGE or auto-detect)",
    )

    # TTS
    p.add_argument(
        "--piper-bin",
        default=os.getenv("PIPER_BIN", "piper"),
        help="Path/name of Piper TTS binary (default: PIPER_BIN or 'piper')",
    )
    p.add_argument(
        "--piper-model",
        default=os.getenv("PIPER_MODEL", None),
        help="Path to the default Piper .onnx voice (default: PIPER_MODEL)",
    )
    p.add_argument(
        "--piper-voices-dir",
        default=os.getenv("PIPER_VOICES_DIR", None),
        help="Directory of extra Piper .onnx voices (default: PIPER_VOICES_DIR)",
    )
    p.add_argument(
        "--piper-timeout",
        type=float,
        default=float(os.getenv("PIPER_TIMEOUT", "60") or "60"),
        help="Timeout (seconds) per Piper synthesis chunk (default: PIPER_TIMEOUT or 60)",
    )

    return p


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    settings = get_settings().model_copy(
        update={
            "speech_pause_seconds": args.pause_seconds,
            "stt_model_size": args.stt_model,
            "stt_device": args.stt_device,
            "stt_language": args.stt_language,
            "piper_bin": args.piper_bin,
            "piper_model": args.piper_model,
            "piper_voices_dir": args.piper_voices_dir,
            "piper_timeout": args.piper_timeout,
        }
    )
    await run_companion(settings, mode="voice")


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
