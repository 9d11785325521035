"""Voice-based conversation interface.

This file stays intentionally thin: listening, turn segmentation and speech
live in `synapse_companion.voice.*`; the turn coordinator decides what
happens with each turn.

Pressing Enter on an empty line is the single record/interrupt control.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from uuid import UUID

from synapse_companion.io.text_interface import TextInterface
from synapse_companion.orchestrator.schemas import AppState, Speaker
from synapse_companion.orchestrator.turn_coordinator import TurnCoordinator
from synapse_companion.voice.tts import PiperSynthesisEngine


class VoiceInterface(TextInterface):
    def __init__(self, coordinator: TurnCoordinator, *, engine: PiperSynthesisEngine | None = None) -> None:
        super().__init__(coordinator)
        self._engine = engine
        self._printed_turns: set[UUID] = set()
        self._forward_capture_error: Callable[[str], None] | None = None

        coordinator.on_state_change = self._on_state_change
        capture = coordinator.capture
        if capture is not None:
            capture.on_interim = self._on_interim
            self._forward_capture_error = capture.on_error
            capture.on_error = self._on_capture_error

    async def run(self) -> None:
        self._print_banner("Voice Mode")
        self._report_voice()
        if self._coordinator.capture is None or not self._coordinator.capture.available:
            print("Microphone input: DISABLED. Type your messages instead.")
        print("Press Enter to start or stop listening, or to interrupt me while I speak.")
        print("You can also type a message. /help lists commands.\n")

        if not await self.ensure_api_key():
            return

        while True:
            line = await self._get_input("")
            if line is None:
                break
            line = line.strip()
            if not line:
                await self._coordinator.toggle_recording()
                self._print_status()
                continue
            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue

            await self._coordinator.submit_text(line)
            if not await self.ensure_api_key():
                break

    def _report_voice(self) -> None:
        if self._engine is None:
            print("Companion voice: DISABLED. Set PIPER_MODEL=/path/to/voice.onnx and PIPER_BIN=/path/to/piper.")
            return
        ok, reason = self._engine.tts.is_available()
        if ok:
            piper_path = shutil.which(self._engine.tts.config.piper_bin)
            print(f"Companion voice: ENABLED (piper='{piper_path}', voices={len(self._engine.voices())})")
        else:
            print(f"Companion voice: DISABLED. Reason: {reason}")

    def _print_status(self) -> None:
        capture = self._coordinator.capture
        if capture is not None and capture.is_listening:
            print("[Listening... press Enter to stop]")
        elif self._coordinator.app_state == AppState.IDLE:
            print("[Idle]")

    def _on_state_change(self, app_state: AppState) -> None:
        if app_state == AppState.THINKING:
            turn = self._coordinator.state.last_turn
            if turn is not None and turn.speaker == Speaker.USER:
                print(f"You: {turn.text}")
            print("[Thinking...]")
        elif app_state in (AppState.IDLE, AppState.ERROR):
            turn = self._last_agent_turn()
            if turn is not None and turn.text and turn.turn_id not in self._printed_turns:
                self._printed_turns.add(turn.turn_id)
                print(f"\n{self._format_agent_turn(turn)}\n")

    def _on_interim(self, text: str) -> None:
        if text:
            print(f"  ... {text}")

    def _on_capture_error(self, message: str) -> None:
        print(f"[Microphone] {message}")
        if self._forward_capture_error is not None:
            self._forward_capture_error(message)
