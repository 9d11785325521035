"""
Tests for the turn coordinator.

A scripted language client and recording synthesis engine stand in for the
network and the speakers, so every turn runs deterministically.
"""

import asyncio
from collections.abc import AsyncIterator, Mapping

import pytest

from synapse_companion.errors import (
    CONNECTIVITY_MESSAGE,
    CREDENTIAL_MESSAGE,
    RATE_LIMIT_MESSAGE,
    CapabilityUnavailableError,
    ConnectivityError,
    CredentialError,
    ExtractionError,
    RateLimitError,
)
from synapse_companion.memory import ProfileStore, SessionCredentials
from synapse_companion.models.llm_client import LanguageIntelligenceClient
from synapse_companion.orchestrator import ConversationState, TurnCoordinator
from synapse_companion.orchestrator.schemas import (
    AppState,
    Emotion,
    InitialAnalysis,
    InputMode,
    Speaker,
)
from synapse_companion.voice.speech_capture import (
    RecognitionEngine,
    RecognitionResult,
    SpeechCapture,
)
from synapse_companion.voice.speech_playback import SpeechPlayer, SynthesisEngine, Voice

LOST_DOG = "I just lost my dog, I'm devastated"


class ScriptedClient(LanguageIntelligenceClient):
    """Language client that replays a script and can pause at chosen points."""

    def __init__(
        self,
        *,
        emotion: Emotion = Emotion.SAD,
        language: str = "en-US",
        fragments: list[str] | None = None,
        facts: dict[str, str] | None = None,
    ) -> None:
        self.analysis = InitialAnalysis(emotion=emotion, language_code=language)
        self.fragments = fragments if fragments is not None else ["I'm here for you."]
        self.facts = facts
        self.classify_error: Exception | None = None
        self.stream_error: Exception | None = None
        self.extract_error: Exception | None = None

        # Texts whose classification waits for ``classify_gate``.
        self.hold_classify: set[str] = set()
        self.classify_gate = asyncio.Event()
        # Index of the fragment the stream waits before (None streams freely).
        self.pause_before: int | None = None
        self.stream_paused = asyncio.Event()
        self.stream_gate = asyncio.Event()
        # Texts whose fact extraction waits for ``extract_gate``.
        self.hold_extract: set[str] = set()
        self.extract_started = asyncio.Event()
        self.extract_gate = asyncio.Event()
        self.facts_for: dict[str, dict[str, str]] = {}

        self.classify_calls: list[str] = []
        self.stream_requests: list[tuple[str, Emotion, str, dict[str, str]]] = []
        self.extract_calls: list[str] = []
        self.closed = False

    async def classify(self, text: str) -> InitialAnalysis:
        self.classify_calls.append(text)
        if text in self.hold_classify:
            await self.classify_gate.wait()
        if self.classify_error is not None:
            raise self.classify_error
        return self.analysis

    async def stream_response(
        self,
        text: str,
        emotion: Emotion,
        language_code: str,
        profile: Mapping[str, str],
    ) -> AsyncIterator[str]:
        self.stream_requests.append((text, emotion, language_code, dict(profile)))
        if self.stream_error is not None:
            raise self.stream_error
        return self._stream()

    async def _stream(self) -> AsyncIterator[str]:
        for index, fragment in enumerate(self.fragments):
            if index == self.pause_before:
                self.stream_paused.set()
                await self.stream_gate.wait()
            yield fragment

    async def extract_facts(self, text: str) -> dict[str, str] | None:
        self.extract_calls.append(text)
        if text in self.hold_extract:
            self.extract_started.set()
            await self.extract_gate.wait()
        if self.extract_error is not None:
            raise self.extract_error
        return self.facts_for.get(text, self.facts)

    async def close(self) -> None:
        self.closed = True


class RecordingEngine(SynthesisEngine):
    def __init__(self, voices: list[Voice] | None = None) -> None:
        self._voices = voices or []
        self.spoken: list[str] = []
        self.voices_used: list[str | None] = []

    def voices(self) -> list[Voice]:
        return list(self._voices)

    async def say(self, text: str, *, voice: Voice | None, language: str) -> None:
        self.spoken.append(text)
        self.voices_used.append(voice.voice_id if voice else None)

    def stop(self) -> None:
        pass


class BlockingEngine(RecordingEngine):
    """Holds every utterance until released, like a long spoken sentence."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def say(self, text: str, *, voice: Voice | None, language: str) -> None:
        await super().say(text, voice=voice, language=language)
        self.started.set()
        await self.release.wait()


class MemoryStore(ProfileStore):
    def __init__(self, profile: dict[str, str] | None = None, *, fail_load: bool = False) -> None:
        self.profile = dict(profile or {})
        self.fail_load = fail_load
        self.saved: list[dict[str, str]] = []
        self.clears = 0
        self.closed = False

    async def load(self) -> dict[str, str]:
        if self.fail_load:
            raise OSError("disk unavailable")
        return dict(self.profile)

    async def save(self, profile: Mapping[str, str]) -> None:
        self.profile = dict(profile)
        self.saved.append(dict(profile))

    async def clear(self) -> None:
        self.profile = {}
        self.clears += 1

    async def close(self) -> None:
        self.closed = True


class QueueRecognizer(RecognitionEngine):
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    async def listen(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def finish(self) -> None:
        self.queue.put_nowait(None)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


def make_coordinator(
    client: ScriptedClient,
    *,
    engine: RecordingEngine | None = None,
    **kwargs,
) -> tuple[TurnCoordinator, list[AppState]]:
    coordinator = TurnCoordinator(client, player=SpeechPlayer(engine or RecordingEngine()), **kwargs)
    states: list[AppState] = []
    coordinator.on_state_change = states.append
    return coordinator, states


class TestTurnFlow:
    @pytest.mark.asyncio
    async def test_grieving_user_gets_sad_reply_spoken_by_sentence(self) -> None:
        client = ScriptedClient(fragments=["I'm so sorry", " for your loss.", " That's incredibly hard."])
        engine = RecordingEngine()
        coordinator, states = make_coordinator(client, engine=engine)

        await coordinator.submit_text(LOST_DOG)
        await coordinator.player.wait_idle()

        transcript = coordinator.transcript
        assert [t.speaker for t in transcript] == [Speaker.USER, Speaker.AGENT]
        assert transcript[0].text == LOST_DOG
        assert transcript[1].text == "I'm so sorry for your loss. That's incredibly hard."
        assert transcript[1].emotion == Emotion.SAD

        assert engine.spoken == ["I'm so sorry for your loss.", " That's incredibly hard."]
        assert "".join(engine.spoken) == transcript[1].text

        log = coordinator.emotion_log
        assert [(e.user_message, e.emotion) for e in log] == [(LOST_DOG, Emotion.SAD)]

        assert states == [AppState.THINKING, AppState.SPEAKING, AppState.IDLE]
        assert coordinator.emotion == Emotion.NEUTRAL
        assert coordinator.active_session is None
        assert client.extract_calls == [LOST_DOG]

    @pytest.mark.asyncio
    async def test_unterminated_remainder_is_spoken_and_awaited(self) -> None:
        client = ScriptedClient(emotion=Emotion.JOYFUL, fragments=["Congratulations!", " Tell me more"])
        engine = RecordingEngine()
        coordinator, _ = make_coordinator(client, engine=engine)

        await coordinator.submit_text("I got the job")

        assert engine.spoken == ["Congratulations!", " Tell me more"]
        assert coordinator.app_state == AppState.IDLE

    @pytest.mark.asyncio
    async def test_stream_request_carries_emotion_language_and_profile(self) -> None:
        client = ScriptedClient(emotion=Emotion.CALM, language="es-ES")
        coordinator, _ = make_coordinator(client)
        coordinator.state.merge_profile({"name": "Ana"})

        await coordinator.submit_text("Hola, estoy tranquila")

        assert client.stream_requests == [("Hola, estoy tranquila", Emotion.CALM, "es-ES", {"name": "Ana"})]

    @pytest.mark.asyncio
    async def test_blank_text_is_ignored(self) -> None:
        client = ScriptedClient()
        coordinator, states = make_coordinator(client)

        await coordinator.submit_text("   ")
        assert coordinator.start_turn("") is None

        assert coordinator.transcript == []
        assert client.classify_calls == []
        assert states == []

    @pytest.mark.asyncio
    async def test_text_mode_never_speaks(self) -> None:
        client = ScriptedClient(fragments=["Hello.", " Nice to meet you."])
        engine = RecordingEngine()
        coordinator, _ = make_coordinator(client, engine=engine, input_mode=InputMode.TEXT)

        await coordinator.submit_text("Hi")
        await coordinator.player.wait_idle()

        assert engine.spoken == []
        assert coordinator.transcript[-1].text == "Hello. Nice to meet you."

    @pytest.mark.asyncio
    async def test_default_voice_is_used_for_replies(self) -> None:
        voices = [
            Voice("local-en", "English Basic", "en-US", local_service=True),
            Voice("google-en", "Google US English", "en-US", local_service=False),
        ]
        engine = RecordingEngine(voices)
        coordinator, _ = make_coordinator(ScriptedClient(), engine=engine)

        assert coordinator.voice_id == "google-en"
        await coordinator.submit_text("Hi")
        assert engine.voices_used == ["google-en"]

        coordinator.set_voice("local-en")
        await coordinator.submit_text("Hi again")
        assert engine.voices_used[-1] == "local-en"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_interrupt_while_speaking_keeps_partial_text(self) -> None:
        client = ScriptedClient(fragments=["Hello there.", " More words."])
        client.pause_before = 1
        coordinator, _ = make_coordinator(client)

        task = coordinator.start_turn("Hi")
        await asyncio.wait_for(client.stream_paused.wait(), timeout=1)
        assert coordinator.app_state == AppState.SPEAKING
        assert coordinator.is_processing

        coordinator.interrupt()

        assert coordinator.app_state == AppState.IDLE
        assert coordinator.emotion == Emotion.NEUTRAL
        assert coordinator.active_session is None
        assert not coordinator.player.is_speaking

        client.stream_gate.set()
        await asyncio.wait_for(task, timeout=1)  # type: ignore[arg-type]

        assert coordinator.transcript[-1].text == "Hello there."
        assert coordinator.app_state == AppState.IDLE
        assert client.extract_calls == []

    @pytest.mark.asyncio
    async def test_interrupt_before_first_fragment_leaves_no_empty_turn(self) -> None:
        client = ScriptedClient(fragments=["Too late."])
        client.pause_before = 0
        coordinator, _ = make_coordinator(client)

        task = coordinator.start_turn("Hi")
        await asyncio.wait_for(client.stream_paused.wait(), timeout=1)
        coordinator.interrupt()
        client.stream_gate.set()
        await asyncio.wait_for(task, timeout=1)  # type: ignore[arg-type]

        assert [t.speaker for t in coordinator.transcript] == [Speaker.USER]
        assert coordinator.emotion_log == []

    @pytest.mark.asyncio
    async def test_interrupt_when_idle_is_harmless(self) -> None:
        coordinator, _ = make_coordinator(ScriptedClient())
        coordinator.interrupt()
        assert coordinator.app_state == AppState.IDLE
        assert coordinator.transcript == []

    @pytest.mark.asyncio
    async def test_new_turn_supersedes_turn_in_flight(self) -> None:
        client = ScriptedClient(fragments=["Second reply."])
        client.hold_classify.add("First message")
        coordinator, _ = make_coordinator(client)

        first = coordinator.start_turn("First message")
        await asyncio.sleep(0)
        assert client.classify_calls == ["First message"]

        second = coordinator.start_turn("Second message")
        await asyncio.wait_for(second, timeout=1)  # type: ignore[arg-type]

        client.classify_gate.set()
        await asyncio.wait_for(first, timeout=1)  # type: ignore[arg-type]

        transcript = coordinator.transcript
        assert [(t.speaker, t.text) for t in transcript] == [
            (Speaker.USER, "First message"),
            (Speaker.USER, "Second message"),
            (Speaker.AGENT, "Second reply."),
        ]
        assert client.extract_calls == ["Second message"]
        assert coordinator.app_state == AppState.IDLE

    @pytest.mark.asyncio
    async def test_turn_superseded_before_it_starts_is_dropped(self) -> None:
        client = ScriptedClient()
        coordinator, _ = make_coordinator(client)

        first = coordinator.start_turn("Never mind")
        second = coordinator.start_turn("Actually, hello")
        await asyncio.wait_for(asyncio.gather(first, second), timeout=1)  # type: ignore[arg-type]

        assert client.classify_calls == ["Actually, hello"]
        assert [t.text for t in coordinator.transcript if t.speaker == Speaker.USER] == ["Actually, hello"]

    @pytest.mark.asyncio
    async def test_switching_input_mode_interrupts(self) -> None:
        client = ScriptedClient(fragments=["Hello.", " Again."])
        client.pause_before = 1
        coordinator, _ = make_coordinator(client)

        task = coordinator.start_turn("Hi")
        await asyncio.wait_for(client.stream_paused.wait(), timeout=1)
        await coordinator.set_input_mode(InputMode.TEXT)

        assert coordinator.input_mode == InputMode.TEXT
        assert coordinator.app_state == AppState.IDLE
        client.stream_gate.set()
        await asyncio.wait_for(task, timeout=1)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_interrupt_during_trailing_speech_skips_extraction(self) -> None:
        client = ScriptedClient(fragments=["Hello there.", " Take care"])
        engine = BlockingEngine()
        coordinator, _ = make_coordinator(client, engine=engine)

        task = coordinator.start_turn("Bye for now")
        await asyncio.wait_for(engine.started.wait(), timeout=1)
        assert coordinator.app_state == AppState.SPEAKING
        assert coordinator.transcript[-1].text == "Hello there. Take care"

        coordinator.interrupt()
        await asyncio.wait_for(task, timeout=1)  # type: ignore[arg-type]
        engine.release.set()

        assert client.extract_calls == []
        assert coordinator.app_state == AppState.IDLE
        assert coordinator.transcript[-1].text == "Hello there. Take care"
        assert not coordinator.player.is_speaking

    @pytest.mark.asyncio
    async def test_facts_of_superseded_turn_are_never_merged(self) -> None:
        client = ScriptedClient(fragments=["Nice to meet you."])
        client.hold_extract.add("My name is Ann")
        client.facts_for["My name is Ann"] = {"name": "Ann"}
        store = MemoryStore()
        coordinator, _ = make_coordinator(client, profile_store=store)

        first = coordinator.start_turn("My name is Ann")
        await asyncio.wait_for(client.extract_started.wait(), timeout=1)

        second = coordinator.start_turn("What's the weather like?")
        await asyncio.wait_for(second, timeout=1)  # type: ignore[arg-type]

        client.extract_gate.set()
        await asyncio.wait_for(first, timeout=1)  # type: ignore[arg-type]
        await coordinator.wait_for_persistence()

        assert client.extract_calls == ["My name is Ann", "What's the weather like?"]
        assert coordinator.profile == {}
        assert store.saved == []
        assert coordinator.app_state == AppState.IDLE
        assert [t.text for t in coordinator.transcript] == [
            "My name is Ann",
            "Nice to meet you.",
            "What's the weather like?",
            "Nice to meet you.",
        ]


class TestFailures:
    @pytest.mark.asyncio
    async def test_unexpected_stream_failure_ends_in_error(self) -> None:
        client = ScriptedClient()
        client.stream_error = RuntimeError("boom")
        coordinator, states = make_coordinator(client)

        await coordinator.submit_text("hello")

        assert coordinator.app_state == AppState.ERROR
        assert states[-1] == AppState.ERROR
        assert coordinator.active_session is None
        assert coordinator.transcript[-1].text == CONNECTIVITY_MESSAGE
        assert isinstance(coordinator.last_error, ConnectivityError)

    @pytest.mark.asyncio
    async def test_unexpected_failure_in_scheduled_turn_is_contained(self) -> None:
        client = ScriptedClient()
        client.classify_error = RuntimeError("boom")
        coordinator, _ = make_coordinator(client)

        task = coordinator.start_turn("hello")
        await asyncio.wait_for(task, timeout=1)  # type: ignore[arg-type]

        assert task.exception() is None  # type: ignore[union-attr]
        assert coordinator.app_state == AppState.ERROR
        assert coordinator.transcript[-1].text == CONNECTIVITY_MESSAGE

    @pytest.mark.asyncio
    async def test_unexpected_extraction_failure_is_not_an_error(self) -> None:
        client = ScriptedClient()
        client.extract_error = RuntimeError("boom")
        coordinator, _ = make_coordinator(client)

        await coordinator.submit_text("My name is Ann")

        assert coordinator.app_state == AppState.IDLE
        assert coordinator.profile == {}

    @pytest.mark.asyncio
    async def test_recording_after_error_passes_through_idle(self) -> None:
        client = ScriptedClient()
        client.classify_error = ConnectivityError("offline")
        capture = SpeechCapture(QueueRecognizer())
        coordinator, states = make_coordinator(client, capture=capture)

        await coordinator.submit_text("Hi")
        assert coordinator.app_state == AppState.ERROR

        await coordinator.toggle_recording()

        assert states[-3:] == [AppState.ERROR, AppState.IDLE, AppState.LISTENING]
        await coordinator.toggle_recording()
        assert coordinator.app_state == AppState.IDLE

    @pytest.mark.asyncio
    async def test_classification_failure_adds_placeholder_turn(self) -> None:
        client = ScriptedClient()
        client.classify_error = ConnectivityError("connection refused")
        coordinator, states = make_coordinator(client)

        await coordinator.submit_text("Hello?")

        transcript = coordinator.transcript
        assert [t.speaker for t in transcript] == [Speaker.USER, Speaker.AGENT]
        assert transcript[1].text == CONNECTIVITY_MESSAGE
        assert transcript[1].emotion is None
        assert coordinator.app_state == AppState.ERROR
        assert states[-1] == AppState.ERROR
        assert isinstance(coordinator.last_error, ConnectivityError)
        assert coordinator.emotion_log == []
        assert client.stream_requests == []

    @pytest.mark.asyncio
    async def test_rate_limit_while_starting_stream_fills_agent_turn(self) -> None:
        client = ScriptedClient(emotion=Emotion.ANGRY)
        client.stream_error = RateLimitError("HTTP 429")
        coordinator, _ = make_coordinator(client)

        await coordinator.submit_text("This is so frustrating")

        agent = coordinator.transcript[-1]
        assert agent.text == RATE_LIMIT_MESSAGE
        assert agent.emotion == Emotion.ANGRY
        assert coordinator.app_state == AppState.ERROR

    @pytest.mark.asyncio
    async def test_credential_failure_clears_session_key(self) -> None:
        client = ScriptedClient()
        client.classify_error = CredentialError("API key not valid")
        credentials = SessionCredentials("bad-key")
        coordinator, _ = make_coordinator(client, credentials=credentials)

        await coordinator.submit_text("Hi")

        assert credentials.api_key is None
        assert coordinator.transcript[-1].text == CREDENTIAL_MESSAGE
        assert coordinator.app_state == AppState.ERROR

    @pytest.mark.asyncio
    async def test_next_turn_recovers_from_error(self) -> None:
        client = ScriptedClient()
        client.classify_error = ConnectivityError("offline")
        coordinator, _ = make_coordinator(client)

        await coordinator.submit_text("Hi")
        client.classify_error = None
        await coordinator.submit_text("Hi again")

        assert coordinator.app_state == AppState.IDLE
        assert coordinator.last_error is None

    @pytest.mark.asyncio
    async def test_extraction_failure_is_not_an_error(self) -> None:
        client = ScriptedClient()
        client.extract_error = ExtractionError("not a flat object")
        store = MemoryStore()
        coordinator, _ = make_coordinator(client, profile_store=store)

        await coordinator.submit_text("My name is Ann")
        await coordinator.wait_for_persistence()

        assert coordinator.app_state == AppState.IDLE
        assert coordinator.profile == {}
        assert store.saved == []


class TestProfile:
    @pytest.mark.asyncio
    async def test_learned_facts_are_merged_and_persisted(self) -> None:
        client = ScriptedClient(facts={"name": "Ann", "pet_dog_name": "Max"})
        store = MemoryStore()
        coordinator, _ = make_coordinator(client, profile_store=store)

        await coordinator.submit_text("I'm Ann and my dog Max ran away")
        await coordinator.wait_for_persistence()

        assert coordinator.profile == {"name": "Ann", "pet_dog_name": "Max"}
        assert store.saved == [{"name": "Ann", "pet_dog_name": "Max"}]

    @pytest.mark.asyncio
    async def test_empty_facts_leave_profile_untouched(self) -> None:
        client = ScriptedClient(facts={})
        store = MemoryStore()
        state = ConversationState({"name": "Ann"})
        coordinator, _ = make_coordinator(client, state=state, profile_store=store)

        await coordinator.submit_text("How are you?")
        await coordinator.wait_for_persistence()

        assert coordinator.profile == {"name": "Ann"}
        assert store.saved == []

    @pytest.mark.asyncio
    async def test_unchanged_facts_are_not_rewritten(self) -> None:
        client = ScriptedClient(facts={"name": "Ann"})
        store = MemoryStore()
        state = ConversationState({"name": "Ann"})
        coordinator, _ = make_coordinator(client, state=state, profile_store=store)

        await coordinator.submit_text("It's Ann again")
        await coordinator.wait_for_persistence()
        assert store.saved == []

    @pytest.mark.asyncio
    async def test_load_and_clear_profile(self) -> None:
        store = MemoryStore({"name": "Ann"})
        coordinator, _ = make_coordinator(ScriptedClient(), profile_store=store)

        assert await coordinator.load_profile() == {"name": "Ann"}
        assert coordinator.profile == {"name": "Ann"}

        coordinator.clear_profile()
        assert coordinator.profile == {}
        await coordinator.wait_for_persistence()
        assert store.clears == 1

    @pytest.mark.asyncio
    async def test_unreadable_store_loads_empty_profile(self) -> None:
        store = MemoryStore({"name": "Ann"}, fail_load=True)
        coordinator, _ = make_coordinator(ScriptedClient(), profile_store=store)
        assert await coordinator.load_profile() == {}


class TestRecording:
    @pytest.mark.asyncio
    async def test_spoken_turn_is_processed_after_pause(self) -> None:
        recognizer = QueueRecognizer()
        capture = SpeechCapture(recognizer, pause_seconds=0.05)
        client = ScriptedClient(fragments=["I'm so sorry."])
        coordinator, states = make_coordinator(client, capture=capture)

        await coordinator.toggle_recording()
        assert coordinator.app_state == AppState.LISTENING
        assert capture.is_listening

        recognizer.queue.put_nowait(RecognitionResult(LOST_DOG, is_final=True))
        await wait_until(lambda: client.extract_calls == [LOST_DOG] and coordinator.app_state == AppState.IDLE)

        assert coordinator.transcript[0].text == LOST_DOG
        assert states[:3] == [AppState.LISTENING, AppState.THINKING, AppState.SPEAKING]
        assert capture.is_listening

        await coordinator.toggle_recording()
        assert not capture.is_listening
        assert coordinator.app_state == AppState.IDLE

    @pytest.mark.asyncio
    async def test_toggle_while_processing_interrupts(self) -> None:
        client = ScriptedClient()
        client.hold_classify.add("Hi")
        capture = SpeechCapture(QueueRecognizer())
        coordinator, _ = make_coordinator(client, capture=capture)

        task = coordinator.start_turn("Hi")
        await asyncio.sleep(0)
        assert coordinator.app_state == AppState.THINKING

        await coordinator.toggle_recording()

        assert coordinator.app_state == AppState.IDLE
        assert not capture.is_listening
        client.classify_gate.set()
        await asyncio.wait_for(task, timeout=1)  # type: ignore[arg-type]
        assert [t.speaker for t in coordinator.transcript] == [Speaker.USER]

    @pytest.mark.asyncio
    async def test_capture_failure_returns_to_idle(self) -> None:
        recognizer = QueueRecognizer()
        capture = SpeechCapture(recognizer)
        coordinator, _ = make_coordinator(ScriptedClient(), capture=capture)

        await coordinator.toggle_recording()
        recognizer.queue.put_nowait(CapabilityUnavailableError("Microphone permission denied"))
        await wait_until(lambda: not capture.is_listening)

        assert coordinator.app_state == AppState.IDLE
        assert capture.error == "Microphone permission denied"

    @pytest.mark.asyncio
    async def test_unsupported_capture_stays_idle(self) -> None:
        capture = SpeechCapture(None)
        coordinator, _ = make_coordinator(ScriptedClient(), capture=capture)

        await coordinator.toggle_recording()

        assert coordinator.app_state == AppState.IDLE
        assert capture.error is not None


@pytest.mark.asyncio
async def test_aclose_releases_collaborators() -> None:
    client = ScriptedClient()
    store = MemoryStore()
    coordinator, _ = make_coordinator(client, profile_store=store)

    await coordinator.aclose()

    assert client.closed
    assert store.closed
