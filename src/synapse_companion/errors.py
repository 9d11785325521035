"""
Error taxonomy.

Language-intelligence failures carry a user-facing sentence that the turn
coordinator writes into the agent turn instead of propagating raw exceptions
to the front ends.
"""

RATE_LIMIT_MESSAGE = (
    "I'm feeling a bit overwhelmed right now. Please give me a moment before trying again."
)
CREDENTIAL_MESSAGE = "The API key is not configured correctly. Please check the setup."
CONNECTIVITY_MESSAGE = "I'm having trouble connecting to my thoughts. Please try again later."


class CompanionError(Exception):
    """Base class for all application errors."""

    user_message: str = CONNECTIVITY_MESSAGE

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class LanguageServiceError(CompanionError):
    """Failure talking to the hosted language model."""


class CredentialError(LanguageServiceError):
    """The API key is missing or was rejected."""

    user_message = CREDENTIAL_MESSAGE


class RateLimitError(LanguageServiceError):
    """The provider is rate limiting or overloaded. Not retried automatically."""

    user_message = RATE_LIMIT_MESSAGE


class ConnectivityError(LanguageServiceError):
    """Any other transport-level failure."""


class AnalysisError(LanguageServiceError):
    """The emotion/language classification response was malformed."""


class ExtractionError(LanguageServiceError):
    """The fact-extraction response was malformed."""


class CapabilityUnavailableError(CompanionError):
    """Speech capture or playback is not available on this platform."""

    user_message = "Speech is not available on this device."


class CancellationSignal(Exception):
    """Raised inside a turn once its session has been cancelled.

    Not a user-visible error: the turn unwinds silently.
    """
