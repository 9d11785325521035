"""
IO module for conversation interfaces.

Provides text and voice front ends over the turn coordinator.
"""

from synapse_companion.io.text_interface import ConversationInterface, TextInterface
from synapse_companion.io.voice_interface import VoiceInterface

__all__ = ["ConversationInterface", "TextInterface", "VoiceInterface"]
