"""
Synapse Companion.

An emotionally aware conversational companion: it listens, infers the
user's emotional tone, streams an empathetic reply from a hosted language
model, speaks it aloud, and remembers facts about the user.
"""

__version__ = "0.1.0"
