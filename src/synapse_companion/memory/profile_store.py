"""
Profile persistence.

The user profile is a flat string-to-string mapping stored as one blob
under a stable key. Two backends are provided: a JSON key-value file and
a SQLAlchemy database.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from synapse_companion.db.models import Base
from synapse_companion.db.repository import StoredValueRepository

logger = logging.getLogger(__name__)

USER_PROFILE_STORAGE_KEY = "synapse-ai-user-profile"


def _as_profile(value: Any) -> dict[str, str]:
    """Coerce a stored blob to a profile, dropping anything that is not a flat string map."""
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if isinstance(v, (str, int, float, bool))}


class ProfileStore(ABC):
    """Abstract base class for profile persistence."""

    @abstractmethod
    async def load(self) -> dict[str, str]:
        """
        Load the persisted profile.

        Returns:
            The profile, or an empty mapping if none was stored.
        """
        ...

    @abstractmethod
    async def save(self, profile: Mapping[str, str]) -> None:
        """
        Persist the whole profile, replacing what was stored.

        Args:
            profile: Profile to store.
        """
        ...

    async def clear(self) -> None:
        """Forget the stored profile."""
        await self.save({})

    async def close(self) -> None:
        """Release resources."""


class FileProfileStore(ProfileStore):
    """
    JSON key-value file.

    The file holds an object of storage keys; the profile lives under
    ``USER_PROFILE_STORAGE_KEY`` and other keys are preserved on write.
    """

    def __init__(self, path: str | Path, *, key: str = USER_PROFILE_STORAGE_KEY) -> None:
        self._path = Path(path)
        self._key = key

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self._path)

    async def load(self) -> dict[str, str]:
        try:
            data = await asyncio.to_thread(self._read_all)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load user profile from {self._path}: {e}")
            return {}
        return _as_profile(data.get(self._key))

    async def save(self, profile: Mapping[str, str]) -> None:
        snapshot = dict(profile)

        def _update() -> None:
            try:
                data = self._read_all()
            except json.JSONDecodeError:
                logger.warning(f"Overwriting unreadable profile file {self._path}")
                data = {}
            data[self._key] = snapshot
            self._write_all(data)

        await asyncio.to_thread(_update)
        logger.debug(f"Saved {len(snapshot)} profile facts to {self._path}")


class DatabaseProfileStore(ProfileStore):
    """
    SQLAlchemy-backed store.

    Works with any async driver URL, e.g. ``sqlite+aiosqlite:///data/synapse.db``.
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
        key: str = USER_PROFILE_STORAGE_KEY,
    ) -> None:
        if engine is None and not database_url:
            raise ValueError("DatabaseProfileStore needs a database_url or an engine")
        self._engine = engine or create_async_engine(database_url)  # type: ignore[arg-type]
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        self._key = key
        self._schema_ready = False

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._schema_ready = True

    async def load(self) -> dict[str, str]:
        await self._ensure_schema()
        async with self._sessions() as session:
            value = await StoredValueRepository(session).get(self._key)
        return _as_profile(value)

    async def save(self, profile: Mapping[str, str]) -> None:
        await self._ensure_schema()
        async with self._sessions() as session:
            async with session.begin():
                await StoredValueRepository(session).put(self._key, dict(profile))
        logger.debug(f"Saved {len(profile)} profile facts to database")

    async def clear(self) -> None:
        await self._ensure_schema()
        async with self._sessions() as session:
            async with session.begin():
                await StoredValueRepository(session).remove(self._key)

    async def close(self) -> None:
        await self._engine.dispose()


def create_profile_store(
    *,
    profile_path: str | Path,
    database_url: str | None = None,
) -> ProfileStore:
    """
    Build the configured profile store.

    Args:
        profile_path: JSON file used when no database is configured.
        database_url: SQLAlchemy async URL; takes precedence when set.

    Returns:
        A ProfileStore.
    """
    if database_url:
        logger.info("Using database profile store")
        return DatabaseProfileStore(database_url)
    logger.info(f"Using file profile store at {profile_path}")
    return FileProfileStore(profile_path)
