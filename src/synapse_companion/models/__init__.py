"""
Models module for the hosted language-intelligence client.

Provides the client abstraction, the Gemini REST implementation and the
prompts it sends.
"""

from synapse_companion.models.llm_client import (
    DEFAULT_GEMINI_MODEL,
    GeminiClient,
    LanguageIntelligenceClient,
    classify_http_failure,
)

__all__ = [
    "DEFAULT_GEMINI_MODEL",
    "GeminiClient",
    "LanguageIntelligenceClient",
    "classify_http_failure",
]
