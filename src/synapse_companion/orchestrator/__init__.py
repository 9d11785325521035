"""
Orchestrator module for turn coordination and conversation state.
"""

from synapse_companion.orchestrator.schemas import (
    AppState,
    Emotion,
    EmotionLogEntry,
    InitialAnalysis,
    InputMode,
    Speaker,
    Turn,
    UserProfile,
)
from synapse_companion.orchestrator.conversation_state import (
    ConversationState,
    derive_emotion_log,
    format_profile_key,
)
from synapse_companion.orchestrator.segmentation import split_complete_sentences
from synapse_companion.orchestrator.turn_session import CancellationToken, TurnSession
from synapse_companion.orchestrator.turn_coordinator import TurnCoordinator

__all__ = [
    "AppState",
    "CancellationToken",
    "ConversationState",
    "Emotion",
    "EmotionLogEntry",
    "InitialAnalysis",
    "InputMode",
    "Speaker",
    "Turn",
    "TurnCoordinator",
    "TurnSession",
    "UserProfile",
    "derive_emotion_log",
    "format_profile_key",
    "split_complete_sentences",
]
