"""
Mailing List - subscriber store with a JSON API.

Keeps one record per email address, tracks when the subscriber confirmed,
and opts subscribers out instead of deleting them.

Key Features:
    - Create, read and upsert subscriber records
    - Soft-delete (opt-out) that never removes rows
    - Paginated listing of active subscribers
    - SQLite storage, FastAPI JSON API

Example:
    >>> from mailinglist import get_settings
    >>> settings = get_settings()
    >>> print(settings.database.db)
"""

from mailinglist.config import get_settings

__all__ = ["get_settings"]
