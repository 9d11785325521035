"""Session-scoped credential holder.

The API key lives in memory for the lifetime of the process only. It is
cleared when the provider rejects it so the front end can prompt again.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class SessionCredentials:
    """In-memory API key for the language-intelligence transport."""

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = (api_key or "").strip() or None

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @property
    def is_set(self) -> bool:
        return self._api_key is not None

    def set(self, api_key: str) -> None:
        """
        Store a new API key for this session.

        Raises:
            ValueError: If the key is blank.
        """
        key = (api_key or "").strip()
        if not key:
            raise ValueError("API key must not be empty")
        self._api_key = key
        logger.info("API key set for this session")

    def clear(self) -> None:
        if self._api_key is not None:
            logger.warning("Clearing session API key")
        self._api_key = None
