"""
Text-based conversation interface.

Provides a command-line REPL: typed lines become user turns, slash commands
show or change the companion's state.
"""

import asyncio
from abc import ABC, abstractmethod

from synapse_companion.models.prompts import COMPANION_NAME
from synapse_companion.orchestrator.conversation_state import format_profile_key
from synapse_companion.orchestrator.schemas import AppState, InputMode, Speaker, Turn
from synapse_companion.orchestrator.turn_coordinator import TurnCoordinator
from synapse_companion.voice.speech_playback import describe_voice

HELP_TEXT = """Commands:
  /profile        show what I remember about you
  /forget         erase everything I remember about you
  /log            show the emotion log
  /voices         list available voices
  /voice <n|id>   choose the voice for spoken replies
  /mode <m>       switch mode: voice, text or profile
  /help           show this help
  /quit           leave"""

QUIT_COMMANDS = ("/quit", "/exit")


class ConversationInterface(ABC):
    """Abstract base class for conversation interfaces."""

    @abstractmethod
    async def run(self) -> None:
        """Run the conversation interface."""
        ...

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """
        Send a message to the user.

        Args:
            message: Message to display.
        """
        ...

    @abstractmethod
    async def receive_input(self) -> str | None:
        """
        Receive input from the user.

        Returns:
            User's input string, or None at end of input.
        """
        ...


class TextInterface(ConversationInterface):
    """
    Command-line text interface.

    Each line is submitted as a user turn and the reply is printed once the
    turn has finished.
    """

    def __init__(self, coordinator: TurnCoordinator) -> None:
        """
        Initialize the text interface.

        Args:
            coordinator: Turn coordinator driving the conversation.
        """
        self._coordinator = coordinator

    @property
    def coordinator(self) -> TurnCoordinator:
        return self._coordinator

    async def run(self) -> None:
        """Run the interactive conversation."""
        self._print_banner("Text Mode")
        print("Type a message and press Enter. /help lists commands.\n")

        if not await self.ensure_api_key():
            return

        while True:
            line = await self.receive_input()
            if line is None:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue

            await self._coordinator.submit_text(line)
            await self.show_reply()
            if not await self.ensure_api_key():
                break

    async def send_message(self, message: str) -> None:
        """
        Display a message to the terminal.

        Args:
            message: Message to display.
        """
        print(f"\n{message}\n")

    async def receive_input(self) -> str | None:
        """
        Get input from the terminal.

        Returns:
            User's input string, or None at end of input.
        """
        return await self._get_input("You: ")

    async def _get_input(self, prompt: str) -> str | None:
        # input() blocks, so it runs off the event loop to keep turns and speech moving.
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return None

    async def ensure_api_key(self) -> bool:
        """
        Prompt for an API key until one is set.

        Returns:
            False if the user gave up (end of input).
        """
        credentials = self._coordinator.credentials
        if credentials is None or credentials.is_set:
            return True

        print("A Gemini API key is required. It is kept in memory for this session only.")
        while not credentials.is_set:
            key = await self._get_input("Gemini API key: ")
            if key is None:
                return False
            try:
                credentials.set(key)
            except ValueError:
                print("The API key cannot be empty.")
        return True

    async def show_reply(self) -> None:
        """Print the latest agent turn."""
        turn = self._last_agent_turn()
        if turn is None:
            return
        await self.send_message(self._format_agent_turn(turn))

    async def handle_command(self, line: str) -> bool:
        """
        Run a slash command.

        Args:
            line: The command line, starting with ``/``.

        Returns:
            False when the user asked to quit.
        """
        command, _, argument = line.partition(" ")
        command = command.lower()
        argument = argument.strip()

        if command in QUIT_COMMANDS:
            print("Goodbye.")
            return False
        if command == "/help":
            print(HELP_TEXT)
        elif command == "/profile":
            self._show_profile()
        elif command == "/forget":
            await self._forget()
        elif command == "/log":
            self._show_emotion_log()
        elif command == "/voices":
            self._show_voices()
        elif command == "/voice":
            self._select_voice(argument)
        elif command == "/mode":
            await self._switch_mode(argument)
        else:
            print(f"Unknown command {command}. /help lists commands.")
        return True

    def _print_banner(self, mode: str) -> None:
        print("\n" + "=" * 60)
        print(f"{COMPANION_NAME}: emotionally intelligent companion ({mode})")
        print("=" * 60 + "\n")

    def _last_agent_turn(self) -> Turn | None:
        turn = self._coordinator.state.last_turn
        if turn is not None and turn.speaker == Speaker.AGENT:
            return turn
        return None

    def _format_agent_turn(self, turn: Turn) -> str:
        if self._coordinator.app_state == AppState.ERROR:
            return f"{COMPANION_NAME} (error): {turn.text}"
        if turn.emotion is not None:
            return f"{COMPANION_NAME} [{turn.emotion.label}]: {turn.text}"
        return f"{COMPANION_NAME}: {turn.text}"

    def _show_profile(self) -> None:
        profile = self._coordinator.profile
        if not profile:
            print("I haven't learned anything about you yet. Tell me about yourself!")
            return
        print("What I remember about you:")
        for key, value in sorted(profile.items()):
            print(f"  {format_profile_key(key)}: {value}")

    async def _forget(self) -> None:
        answer = await self._get_input(
            "Are you sure you want to erase all of my memories about you? This cannot be undone. [y/N] "
        )
        if (answer or "").strip().lower() in {"y", "yes"}:
            self._coordinator.clear_profile()
            print("Done. I've forgotten everything I knew about you.")
        else:
            print("Okay, keeping my memories.")

    def _show_emotion_log(self) -> None:
        entries = self._coordinator.emotion_log
        if not entries:
            print("No emotions logged yet.")
            return
        for entry in entries:
            print(f"  [{entry.emotion.label}] {entry.user_message}")

    def _show_voices(self) -> None:
        voices = self._coordinator.player.voices
        if not voices:
            print("No voices available; replies will not be spoken.")
            return
        selected = self._coordinator.voice_id
        for idx, voice in enumerate(voices, start=1):
            marker = "*" if voice.voice_id == selected else " "
            print(f" {marker}{idx:2d}. {voice.name} ({describe_voice(voice)})")

    def _select_voice(self, argument: str) -> None:
        voices = self._coordinator.player.voices
        if not argument:
            print("Usage: /voice <number|id>")
            return
        if argument.isdigit() and 1 <= int(argument) <= len(voices):
            voice = voices[int(argument) - 1]
        else:
            voice = next((v for v in voices if v.voice_id == argument), None)
        if voice is None:
            print(f"No voice {argument!r}. /voices lists them.")
            return
        self._coordinator.set_voice(voice.voice_id)
        print(f"Voice set to {voice.name}.")

    async def _switch_mode(self, argument: str) -> None:
        try:
            mode = InputMode(argument.upper())
        except ValueError:
            print("Usage: /mode voice|text|profile")
            return
        await self._coordinator.set_input_mode(mode)
        print(f"Mode: {mode.value.lower()}")
        if mode == InputMode.PROFILE:
            self._show_profile()
