"""
Memory module: durable user profile and session credentials.
"""

from synapse_companion.memory.credentials import SessionCredentials
from synapse_companion.memory.profile_store import (
    USER_PROFILE_STORAGE_KEY,
    DatabaseProfileStore,
    FileProfileStore,
    ProfileStore,
    create_profile_store,
)

__all__ = [
    "USER_PROFILE_STORAGE_KEY",
    "DatabaseProfileStore",
    "FileProfileStore",
    "ProfileStore",
    "SessionCredentials",
    "create_profile_store",
]
