"""
Turn coordinator.

Drives one user turn end to end: classification, streamed reply, sentence
flushes to speech playback, and fact extraction. At most one TurnSession is
active; starting a turn or interrupting cancels the previous one before any
further state changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from synapse_companion.errors import (
    CancellationSignal,
    CompanionError,
    ConnectivityError,
    CredentialError,
    LanguageServiceError,
)
from synapse_companion.orchestrator.conversation_state import ConversationState
from synapse_companion.orchestrator.schemas import (
    AppState,
    Emotion,
    EmotionLogEntry,
    InputMode,
    Turn,
    UserProfile,
)
from synapse_companion.orchestrator.segmentation import split_complete_sentences
from synapse_companion.orchestrator.turn_session import TurnSession
from synapse_companion.voice.speech_playback import SpeechPlayer, pick_default_voice

if TYPE_CHECKING:
    from synapse_companion.memory.credentials import SessionCredentials
    from synapse_companion.memory.profile_store import ProfileStore
    from synapse_companion.models.llm_client import LanguageIntelligenceClient
    from synapse_companion.voice.speech_capture import SpeechCapture

DEFAULT_LANGUAGE = "en-US"


class TurnCoordinator:
    """
    Coordinates user turns between speech, the language model and state.

    Front ends raise control events (``submit_text``, ``toggle_recording``,
    ``interrupt``, ``set_voice``, ``set_input_mode``, ``clear_profile``) and
    read ``app_state``, ``emotion``, ``transcript``, ``emotion_log`` and
    ``profile``. Transcript and profile are only mutated from here.
    """

    def __init__(
        self,
        client: LanguageIntelligenceClient,
        state: ConversationState | None = None,
        *,
        player: SpeechPlayer | None = None,
        capture: SpeechCapture | None = None,
        profile_store: ProfileStore | None = None,
        credentials: SessionCredentials | None = None,
        input_mode: InputMode = InputMode.VOICE,
    ) -> None:
        """
        Initialize the turn coordinator.

        Args:
            client: Language intelligence client.
            state: Conversation state (a fresh one if None).
            player: Speech playback queue (a silent one if None).
            capture: Speech capture; its finalized turns start new turns.
            profile_store: Where profile changes are persisted.
            credentials: Session credential, cleared on credential failures.
            input_mode: Initial front-end mode.
        """
        self._logger = logging.getLogger(__name__)
        self._client = client
        self._state = state or ConversationState()
        self._player = player or SpeechPlayer()
        self._capture = capture
        self._profile_store = profile_store
        self._credentials = credentials
        self._input_mode = input_mode

        self._app_state = AppState.IDLE
        self._emotion = Emotion.NEUTRAL
        self._voice_id: str | None = None
        self._session: TurnSession | None = None
        self._generation = 0
        self._last_error: CompanionError | None = None

        self._turn_tasks: set[asyncio.Task[None]] = set()
        self._persist_tasks: set[asyncio.Task[None]] = set()
        self._persist_lock = asyncio.Lock()

        # Called with the new AppState on every transition.
        self.on_state_change: Callable[[AppState], None] | None = None

        if capture is not None:
            if capture.on_turn is None:
                capture.on_turn = self.start_turn
            if capture.on_error is None:
                capture.on_error = self._on_capture_error

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def app_state(self) -> AppState:
        return self._app_state

    @property
    def emotion(self) -> Emotion:
        """Working emotion of the turn in flight (NEUTRAL when idle)."""
        return self._emotion

    @property
    def transcript(self) -> list[Turn]:
        return self._state.transcript

    @property
    def emotion_log(self) -> list[EmotionLogEntry]:
        return self._state.emotion_log

    @property
    def profile(self) -> UserProfile:
        return self._state.profile

    @property
    def input_mode(self) -> InputMode:
        return self._input_mode

    @property
    def player(self) -> SpeechPlayer:
        return self._player

    @property
    def capture(self) -> SpeechCapture | None:
        return self._capture

    @property
    def credentials(self) -> SessionCredentials | None:
        return self._credentials

    @property
    def active_session(self) -> TurnSession | None:
        return self._session

    @property
    def last_error(self) -> CompanionError | None:
        """The failure behind the most recent ERROR state, if any."""
        return self._last_error

    @property
    def is_processing(self) -> bool:
        """True while a turn is thinking or speaking (the control acts as interrupt)."""
        return self._app_state in (AppState.THINKING, AppState.SPEAKING)

    @property
    def voice_id(self) -> str | None:
        """Selected voice; defaults to the preferred available voice."""
        if self._voice_id is None:
            default = pick_default_voice(self._player.voices)
            if default is not None:
                self._voice_id = default.voice_id
        return self._voice_id

    # ------------------------------------------------------------------
    # Control events
    # ------------------------------------------------------------------

    async def submit_text(self, text: str) -> None:
        """Process typed text as a user turn and wait for it to finish."""
        await self.process_turn(text)

    def start_turn(self, text: str) -> asyncio.Task[None] | None:
        """
        Schedule a user turn without waiting for it.

        The active session is cancelled immediately, before the new turn
        is scheduled.

        Args:
            text: Finalized user text.

        Returns:
            The task processing the turn, or None for blank text.
        """
        if not (text or "").strip():
            return None
        self._supersede()
        task = asyncio.get_running_loop().create_task(self._process_scheduled(text, self._generation))
        self._turn_tasks.add(task)
        task.add_done_callback(self._turn_tasks.discard)
        return task

    def interrupt(self) -> None:
        """
        Stop the turn in flight immediately.

        Cancels the session token, silences playback and resets to IDLE /
        NEUTRAL without waiting for in-flight requests to return; their
        results are ignored.
        """
        self._generation += 1
        session = self._session
        self._session = None
        if session is not None:
            session.cancel()
            self._state.discard_if_empty(session.agent_turn)
            self._logger.info(f"Interrupted turn {session.session_id}")
        self._player.cancel()
        self._emotion = Emotion.NEUTRAL
        self._set_app_state(AppState.IDLE)

    async def toggle_recording(self) -> None:
        """Interrupt while processing; otherwise start or stop listening."""
        if self.is_processing:
            self.interrupt()
            return

        if self._capture is None:
            self._logger.warning("Speech capture is not configured")
            return

        if self._capture.is_listening:
            await self._capture.stop()
            if self._app_state == AppState.LISTENING:
                self._set_app_state(AppState.IDLE)
            return

        self._capture.clear_error()
        if self._app_state == AppState.ERROR:
            # LISTENING is only entered from IDLE.
            self._set_app_state(AppState.IDLE)
        if self._capture.start():
            self._set_app_state(AppState.LISTENING)

    def set_voice(self, voice_id: str | None) -> None:
        """Select the voice used for replies (None restores the default)."""
        if voice_id is not None and all(v.voice_id != voice_id for v in self._player.voices):
            self._logger.warning(f"Voice {voice_id!r} is not available; falling back when speaking")
        self._voice_id = voice_id

    async def set_input_mode(self, mode: InputMode) -> None:
        """Switch front-end mode: silences speech, stops listening, returns to IDLE."""
        if mode == self._input_mode:
            return
        self.interrupt()
        if self._capture is not None and self._capture.is_listening:
            await self._capture.stop(flush=False)
        self._input_mode = mode
        self._logger.info(f"Input mode set to {mode.value}")

    def clear_profile(self) -> None:
        """Forget everything remembered about the user."""
        self._state.clear_profile()
        self._schedule_persistence(clear=True)
        self._logger.info("User profile cleared")

    async def load_profile(self) -> UserProfile:
        """Load the persisted profile into the conversation state."""
        if self._profile_store is None:
            return self._state.profile
        try:
            profile = await self._profile_store.load()
        except Exception as e:
            self._logger.error(f"Failed to load user profile: {e}")
            profile = {}
        self._state.replace_profile(profile)
        self._logger.info(f"Loaded {len(profile)} profile facts")
        return self._state.profile

    async def wait_for_persistence(self) -> None:
        """Wait for scheduled profile writes to finish."""
        while self._persist_tasks:
            await asyncio.wait(set(self._persist_tasks))

    async def aclose(self) -> None:
        """Stop everything and release collaborators."""
        self.interrupt()
        if self._capture is not None and self._capture.is_listening:
            await self._capture.stop(flush=False)
        if self._turn_tasks:
            await asyncio.wait(set(self._turn_tasks))
        await self.wait_for_persistence()
        await self._player.aclose()
        await self._client.close()
        if self._profile_store is not None:
            await self._profile_store.close()

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    async def process_turn(self, text: str) -> None:
        """
        Run one user turn to completion, cancellation or failure.

        Language-intelligence failures never propagate: they put the
        coordinator into ERROR and are written into the agent turn.

        Args:
            text: Finalized user text.
        """
        user_text = (text or "").strip()
        if not user_text:
            return

        self._supersede()
        self._state.add_user_turn(user_text)
        session = TurnSession(user_text)
        self._session = session
        self._last_error = None
        self._set_app_state(AppState.THINKING)
        self._logger.info(f"Processing turn {session.session_id} ({len(user_text)} chars)")

        try:
            await self._run_session(session)
        except CancellationSignal:
            self._unwind_cancelled(session)
            return
        except CompanionError as e:
            if session.cancelled:
                self._unwind_cancelled(session)
                return
            self._fail(session, e)
            return
        except Exception as e:
            if session.cancelled:
                self._unwind_cancelled(session)
                return
            self._logger.exception(f"Unexpected failure in turn {session.session_id}")
            self._fail(session, ConnectivityError(f"{type(e).__name__}: {e}"))
            return

        if self._session is session:
            self._session = None
            self._emotion = Emotion.NEUTRAL
            self._set_app_state(AppState.IDLE)
        self._logger.info(f"Completed turn {session.session_id}")

    async def _run_session(self, session: TurnSession) -> None:
        token = session.token

        analysis = await self._client.classify(session.user_text)
        token.raise_if_cancelled()
        session.analysis = analysis
        self._emotion = analysis.emotion
        session.agent_turn = self._state.add_agent_turn(emotion=analysis.emotion)
        language = analysis.language_code or DEFAULT_LANGUAGE
        self._logger.debug(f"Classified turn emotion={analysis.emotion.value} language={language}")

        stream = await self._client.stream_response(
            session.user_text,
            analysis.emotion,
            language,
            self._state.profile,
        )
        try:
            token.raise_if_cancelled()
            self._set_app_state(AppState.SPEAKING)
            async for fragment in stream:
                token.raise_if_cancelled()
                full = session.append_fragment(fragment)
                self._state.set_turn_text(session.agent_turn, full)

                complete, _ = split_complete_sentences(session.unspoken)
                if complete:
                    self._speak(session.take_unspoken(len(complete)), language)
            token.raise_if_cancelled()
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        remainder = session.take_unspoken()
        if remainder.strip():
            done = self._speak(remainder, language)
            if done is not None:
                await done
                token.raise_if_cancelled()

        facts = await self._extract_facts(session)
        token.raise_if_cancelled()
        if facts and self._state.merge_profile(facts):
            self._logger.info(f"Learned {len(facts)} profile facts")
            self._schedule_persistence()

    async def _extract_facts(self, session: TurnSession) -> Mapping[str, str] | None:
        session.token.raise_if_cancelled()
        try:
            return await self._client.extract_facts(session.user_text)
        except LanguageServiceError as e:
            self._logger.warning(f"Fact extraction failed, treating as no facts: {e}")
            return None
        except Exception as e:
            self._logger.exception(f"Unexpected fact extraction failure, treating as no facts: {e}")
            return None

    def _speak(self, text: str, language: str) -> asyncio.Future[None] | None:
        if self._input_mode != InputMode.VOICE:
            return None
        return self._player.speak(text, language_hint=language, voice_id=self.voice_id)

    async def _process_scheduled(self, text: str, generation: int) -> None:
        if generation != self._generation:
            self._logger.debug("Dropping scheduled turn superseded before it started")
            return
        await self.process_turn(text)

    def _supersede(self) -> None:
        """Cancel and discard the active session, if any."""
        self._generation += 1
        previous = self._session
        if previous is None:
            return
        self._session = None
        previous.cancel()
        self._player.cancel()
        self._state.discard_if_empty(previous.agent_turn)
        self._logger.info(f"Superseded turn {previous.session_id}")

    def _unwind_cancelled(self, session: TurnSession) -> None:
        if self._session is not session:
            # Already superseded or interrupted; nothing of this session may write.
            self._logger.debug(f"Turn {session.session_id} unwound after cancellation")
            return
        self._session = None
        self._state.discard_if_empty(session.agent_turn)
        self._emotion = Emotion.NEUTRAL
        self._set_app_state(AppState.IDLE)

    def _fail(self, session: TurnSession, error: CompanionError) -> None:
        self._logger.error(f"Turn {session.session_id} failed: {type(error).__name__}: {error}")
        if isinstance(error, CredentialError) and self._credentials is not None:
            self._credentials.clear()

        message = error.user_message
        if session.agent_turn is None:
            session.agent_turn = self._state.add_agent_turn(text=message)
        else:
            self._state.set_turn_text(session.agent_turn, message)

        self._session = None
        self._last_error = error
        self._emotion = Emotion.NEUTRAL
        self._set_app_state(AppState.ERROR)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_app_state(self, app_state: AppState) -> None:
        if app_state == self._app_state:
            return
        self._logger.debug(f"State {self._app_state.value} -> {app_state.value}")
        self._app_state = app_state
        if self.on_state_change is not None:
            self.on_state_change(app_state)

    def _on_capture_error(self, message: str) -> None:
        self._logger.warning(f"Speech capture stopped: {message}")
        if self._app_state == AppState.LISTENING:
            self._set_app_state(AppState.IDLE)

    def _schedule_persistence(self, *, clear: bool = False) -> None:
        if self._profile_store is None:
            return
        snapshot = self._state.profile
        task = asyncio.get_running_loop().create_task(self._persist(snapshot, clear=clear))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    async def _persist(self, snapshot: UserProfile, *, clear: bool) -> None:
        assert self._profile_store is not None
        # Writes land in the order they were scheduled.
        async with self._persist_lock:
            try:
                if clear:
                    await self._profile_store.clear()
                else:
                    await self._profile_store.save(snapshot)
            except Exception as e:
                self._logger.error(f"Failed to persist user profile: {e}")
