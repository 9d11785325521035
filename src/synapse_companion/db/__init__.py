"""
Database module for persistence.

Provides SQLAlchemy models and the repository used by the database-backed
profile store.
"""

from synapse_companion.db.models import Base, StoredValueModel
from synapse_companion.db.repository import StoredValueRepository

__all__ = [
    "Base",
    "StoredValueModel",
    "StoredValueRepository",
]
