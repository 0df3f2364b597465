"""
Subscriber storage using SQLite.

One table, `emails`, with one row per address. Rows are never deleted:
unsubscribing sets `opt_out`. Confirmation time is stored as unix seconds,
0 meaning "not confirmed".
"""

import sqlite3
from pathlib import Path

from pydantic import ValidationError

from mailinglist.models.email import EmailBatchQuery, EmailEntry, from_unix, to_unix
from mailinglist.observability.logging import OperationContext, get_logger

# Largest value an SQLite INTEGER can hold
SQLITE_MAX_INTEGER = 2**63 - 1

logger = get_logger(__name__)


class StorageError(Exception):
    """Backing store failure (I/O, malformed row, unexpected constraint)."""


class DuplicateEmailError(StorageError):
    """Email address is already subscribed."""

    def __init__(self, email: str):
        super().__init__("Email address is already subscribed")
        self.email = email


class SchemaInitializationError(StorageError):
    """Schema could not be created; the service cannot start."""


class EmailDatabase:
    """
    Mailing list subscriber storage.

    Holds a single SQLite connection for the lifetime of the process.
    SQLite serializes writers itself, so no locking is done here.
    Every mutation is one statement committed on its own.
    """

    def __init__(self, db_path: str = "list.db"):
        """
        Initialize subscriber database.

        Args:
            db_path: Path to SQLite database file (":memory:" for a private in-memory store)
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # Connection will be created lazily
        self._conn: sqlite3.Connection | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """
        Create the subscriber table if it does not exist.

        Idempotent - safe to call multiple times.

        Raises:
            SchemaInitializationError: Schema could not be created
        """
        if self._initialized:
            return

        logger.info("Initializing subscriber database", db_path=self.db_path)

        try:
            conn = self._get_connection()
            if self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")

            # AUTOINCREMENT guarantees ids of opted-out rows are never handed out again
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS emails (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    confirmed_at INTEGER NOT NULL DEFAULT 0,
                    opt_out INTEGER NOT NULL DEFAULT 0,

                    CHECK (opt_out IN (0, 1))
                )
            """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_emails_opt_out ON emails(opt_out, id)")
            conn.commit()

        except (sqlite3.Error, StorageError) as e:
            logger.error("Failed to initialize database", error=str(e))
            raise SchemaInitializationError(f"Failed to initialize database: {e}") from e

        self._initialized = True
        logger.info("Subscriber database initialized successfully")

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection (creates if needed)."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run one mutating statement and commit, rolling back on failure."""
        conn = self._get_connection()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        return cursor

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except (sqlite3.Error, OverflowError) as e:
            raise StorageError(f"Query failed: {e}") from e

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> EmailEntry:
        """
        Build an EmailEntry from an (id, email, confirmed_at, opt_out) row.

        Raises:
            StorageError: Row cannot be decoded
        """
        try:
            return EmailEntry(
                id=row["id"],
                email=row["email"],
                confirmed_at=from_unix(row["confirmed_at"]),
                opt_out=bool(row["opt_out"]),
            )
        except (TypeError, ValueError, OverflowError, ValidationError) as e:
            raise StorageError(f"Malformed subscriber row: {e}") from e

    async def create_email(self, email: str) -> None:
        """
        Subscribe a new address (unconfirmed, not opted out).

        Args:
            email: Address to add, matched exactly

        Raises:
            DuplicateEmailError: Address already exists
            StorageError: Any other database failure
        """
        try:
            self._execute(
                "INSERT INTO emails (email, confirmed_at, opt_out) VALUES (?, 0, 0)",
                (email,),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                logger.warning("Subscriber creation failed: already exists", email=email)
                raise DuplicateEmailError(email) from e
            raise StorageError(f"Failed to create subscriber: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create subscriber: {e}") from e

        logger.info("Created subscriber", email=email)

    async def get_email(self, email: str) -> EmailEntry | None:
        """
        Get subscriber by address.

        Args:
            email: Address to look up, matched exactly

        Returns:
            EmailEntry or None if not found
        """
        rows = self._query(
            """
            SELECT id, email, confirmed_at, opt_out
            FROM emails
            WHERE email = ?
            """,
            (email,),
        )
        if not rows:
            return None

        return self._row_to_entry(rows[0])

    async def update_email(self, entry: EmailEntry) -> None:
        """
        Upsert a subscriber.

        Creates the row if the address is new. Otherwise only `confirmed_at`
        and `opt_out` change; `id` and `email` are kept.

        Args:
            entry: Subscriber state to store (entry.id is ignored)

        Raises:
            StorageError: Database failure
        """
        confirmed_at = to_unix(entry.confirmed_at)
        try:
            self._execute(
                """
                INSERT INTO emails (email, confirmed_at, opt_out)
                VALUES (?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                    confirmed_at = excluded.confirmed_at,
                    opt_out = excluded.opt_out
                """,
                (entry.email, confirmed_at, 1 if entry.opt_out else 0),
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update subscriber: {e}") from e

        logger.info(
            "Updated subscriber",
            email=entry.email,
            confirmed=entry.is_confirmed,
            opt_out=entry.opt_out,
        )

    async def opt_out_email(self, email: str) -> None:
        """
        Opt a subscriber out of all mailings.

        This is the only way to "delete" a subscriber; the row is kept.
        Unknown addresses are a no-op, not an error.

        Args:
            email: Address to opt out, matched exactly

        Raises:
            StorageError: Database failure
        """
        try:
            cursor = self._execute(
                """
                UPDATE emails
                SET opt_out = 1
                WHERE email = ?
                """,
                (email,),
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to opt out subscriber: {e}") from e

        if cursor.rowcount > 0:
            logger.info("Subscriber opted out", email=email)
        else:
            logger.debug("Opt-out for unknown subscriber ignored", email=email)

    async def get_email_batch(self, params: EmailBatchQuery) -> list[EmailEntry]:
        """
        Page through subscribers that have not opted out, oldest first.

        Args:
            params: 1-indexed page and page size; page < 1 is treated as 1

        Returns:
            list[EmailEntry]: Up to `count` entries, empty past the last page

        Raises:
            StorageError: Database failure or an undecodable row (no partial results)
        """
        if params.count <= 0 or params.offset + params.count > SQLITE_MAX_INTEGER:
            return []

        with OperationContext("get_email_batch", page=params.page, count=params.count):
            rows = self._query(
                """
                SELECT id, email, confirmed_at, opt_out
                FROM emails
                WHERE opt_out = 0
                ORDER BY id ASC
                LIMIT ? OFFSET ?
                """,
                (params.count, params.offset),
            )
            return [self._row_to_entry(row) for row in rows]

    async def get_stats(self) -> dict[str, int]:
        """
        Subscriber counts.

        Returns:
            dict: total, active, opted_out and confirmed counts
        """
        rows = self._query(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN opt_out = 0 THEN 1 ELSE 0 END), 0) AS active,
                COALESCE(SUM(CASE WHEN opt_out = 1 THEN 1 ELSE 0 END), 0) AS opted_out,
                COALESCE(SUM(CASE WHEN confirmed_at != 0 THEN 1 ELSE 0 END), 0) AS confirmed
            FROM emails
            """
        )
        row = rows[0]
        return {
            "total": row["total"],
            "active": row["active"],
            "opted_out": row["opted_out"],
            "confirmed": row["confirmed"],
        }

    async def ping(self) -> None:
        """Verify the database answers a trivial query."""
        self._query("SELECT 1")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
