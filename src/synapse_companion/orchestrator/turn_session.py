"""
Turn session management.

A TurnSession is the cancellable execution context for processing one user
turn. Cancellation is cooperative: the coordinator checks the token after
every suspension point and unwinds once it is set.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from synapse_companion.errors import CancellationSignal
from synapse_companion.orchestrator.schemas import InitialAnalysis, Turn


class CancellationToken:
    """A one-way cancellation flag shared by everything a turn awaits."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        """Check whether cancellation has been requested."""
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        """
        Unwind the current turn if it has been cancelled.

        Raises:
            CancellationSignal: If cancellation was requested.
        """
        if self._cancelled:
            raise CancellationSignal()


class TurnSession:
    """
    Mutable state of one in-flight turn.

    Holds the cancellation token, the full accumulated response, the
    unspoken-text buffer awaiting sentence boundaries, and the agent turn
    this session is writing into.
    """

    def __init__(self, user_text: str) -> None:
        """
        Initialize a turn session.

        Args:
            user_text: Finalized user text that started the turn.
        """
        self._session_id: UUID = uuid4()
        self._user_text = user_text
        self._token = CancellationToken()
        self._full_response: str = ""
        self._unspoken: str = ""
        self._analysis: InitialAnalysis | None = None
        self._agent_turn: Turn | None = None

    @property
    def session_id(self) -> UUID:
        return self._session_id

    @property
    def user_text(self) -> str:
        return self._user_text

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def full_response(self) -> str:
        """Everything streamed so far, in delivery order."""
        return self._full_response

    @property
    def unspoken(self) -> str:
        """Streamed text not yet handed to speech playback."""
        return self._unspoken

    @property
    def analysis(self) -> InitialAnalysis | None:
        return self._analysis

    @analysis.setter
    def analysis(self, value: InitialAnalysis) -> None:
        self._analysis = value

    @property
    def agent_turn(self) -> Turn | None:
        """The agent turn this session streams into, once appended."""
        return self._agent_turn

    @agent_turn.setter
    def agent_turn(self, turn: Turn) -> None:
        self._agent_turn = turn

    def cancel(self) -> None:
        """Cancel the session's token."""
        self._token.cancel()

    def append_fragment(self, fragment: str) -> str:
        """
        Record a streamed fragment.

        Args:
            fragment: Incremental piece of model output.

        Returns:
            The full accumulated response after this fragment.
        """
        self._full_response += fragment
        self._unspoken += fragment
        return self._full_response

    def take_unspoken(self, length: int | None = None) -> str:
        """
        Remove and return the first ``length`` characters of the unspoken buffer.

        Args:
            length: Number of characters to take (None for everything).

        Returns:
            The removed text.
        """
        if length is None:
            length = len(self._unspoken)
        taken, self._unspoken = self._unspoken[:length], self._unspoken[length:]
        return taken
