"""
Storage layer for mailing list subscribers.

Uses SQLite (embedded, single file).
"""

from mailinglist.storage.database import (
    DuplicateEmailError,
    EmailDatabase,
    SchemaInitializationError,
    StorageError,
)

__all__ = [
    "DuplicateEmailError",
    "EmailDatabase",
    "SchemaInitializationError",
    "StorageError",
]
