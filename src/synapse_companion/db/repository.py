"""
Repository pattern for database operations.

Provides a clean abstraction over SQLAlchemy for key-value persistence.
"""

from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from synapse_companion.db.models import StoredValueModel


class StoredValueRepository:
    """Repository for key-value operations."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    async def get(self, key: str) -> Any | None:
        """
        Get the value stored under a key.

        Args:
            key: Storage key.

        Returns:
            The stored value if found, None otherwise.
        """
        row = await self._session.get(StoredValueModel, key)
        return row.value if row is not None else None

    async def put(self, key: str, value: Any) -> None:
        """
        Create or overwrite the value stored under a key.

        Args:
            key: Storage key.
            value: JSON-serializable value.
        """
        row = await self._session.get(StoredValueModel, key)
        if row is None:
            self._session.add(StoredValueModel(key=key, value=value))
        else:
            row.value = value
        await self._session.flush()

    async def remove(self, key: str) -> None:
        """
        Delete the value stored under a key, if any.

        Args:
            key: Storage key.
        """
        await self._session.execute(delete(StoredValueModel).where(StoredValueModel.key == key))
        await self._session.flush()
