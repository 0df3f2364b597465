"""
Tests for the subscriber storage layer.

Covers create / read / upsert / opt-out / batch semantics against a real
SQLite file per test.
"""

from datetime import UTC, datetime

import pytest

from mailinglist.models.email import UNCONFIRMED, EmailBatchQuery, EmailEntry
from mailinglist.storage.database import (
    DuplicateEmailError,
    EmailDatabase,
    SchemaInitializationError,
    StorageError,
)

CONFIRMED_AT = datetime(2024, 3, 1, 12, 30, 15, tzinfo=UTC)


def _count_rows(db: EmailDatabase, email: str) -> int:
    conn = db._get_connection()
    return conn.execute("SELECT COUNT(*) FROM emails WHERE email = ?", (email,)).fetchone()[0]


class TestInitialize:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, email_db):
        await email_db.initialize()
        await email_db.create_email("a@x.com")

        # Second handle on an existing schema must not fail or wipe data
        other = EmailDatabase(db_path=email_db.db_path)
        await other.initialize()
        entry = await other.get_email("a@x.com")
        other.close()

        assert entry is not None
        assert entry.email == "a@x.com"

    @pytest.mark.asyncio
    async def test_initialize_failure_is_reported(self, tmp_path):
        # A directory cannot be opened as a database file
        db = EmailDatabase(db_path=str(tmp_path))

        with pytest.raises(SchemaInitializationError):
            await db.initialize()

        db.close()

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        db = EmailDatabase(db_path=":memory:")
        await db.initialize()
        await db.create_email("mem@x.com")

        assert (await db.get_email("mem@x.com")) is not None

        db.close()


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_sets_defaults(self, email_db):
        await email_db.create_email("a@x.com")

        entry = await email_db.get_email("a@x.com")

        assert entry is not None
        assert entry.id == 1
        assert entry.email == "a@x.com"
        assert entry.confirmed_at == UNCONFIRMED
        assert entry.is_confirmed is False
        assert entry.opt_out is False

    @pytest.mark.asyncio
    async def test_duplicate_create_raises_and_keeps_one_row(self, email_db):
        await email_db.create_email("a@x.com")

        with pytest.raises(DuplicateEmailError) as exc_info:
            await email_db.create_email("a@x.com")

        assert exc_info.value.email == "a@x.com"
        assert isinstance(exc_info.value, StorageError)
        assert _count_rows(email_db, "a@x.com") == 1

    @pytest.mark.asyncio
    async def test_create_does_not_reset_opted_out_subscriber(self, email_db):
        await email_db.create_email("a@x.com")
        await email_db.opt_out_email("a@x.com")

        with pytest.raises(DuplicateEmailError):
            await email_db.create_email("a@x.com")

        entry = await email_db.get_email("a@x.com")
        assert entry.opt_out is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", ["ab", "x" * 400 + "@x.com"])
    async def test_any_stored_address_reads_back(self, email_db, email):
        await email_db.create_email(email)
        await email_db.create_email("good@x.com")

        entry = await email_db.get_email(email)
        batch = await email_db.get_email_batch(EmailBatchQuery(page=1, count=10))

        assert entry is not None
        assert entry.email == email
        assert [e.email for e in batch] == [email, "good@x.com"]

    @pytest.mark.asyncio
    async def test_create_without_schema_raises_storage_error(self, tmp_path):
        db = EmailDatabase(db_path=str(tmp_path / "empty.db"))

        with pytest.raises(StorageError):
            await db.create_email("a@x.com")

        db.close()


class TestGet:
    @pytest.mark.asyncio
    async def test_missing_email_returns_none(self, email_db):
        assert await email_db.get_email("nobody@x.com") is None

    @pytest.mark.asyncio
    async def test_matching_is_exact(self, email_db):
        await email_db.create_email("Alice@x.com")

        assert await email_db.get_email("alice@x.com") is None
        assert await email_db.get_email("Alice@x.com ") is None

        # Different case is a different subscriber
        await email_db.create_email("alice@x.com")
        assert _count_rows(email_db, "Alice@x.com") == 1
        assert _count_rows(email_db, "alice@x.com") == 1


class TestUpdate:
    @pytest.mark.asyncio
    async def test_upsert_creates_missing_email(self, email_db):
        await email_db.update_email(
            EmailEntry(email="new@x.com", confirmed_at=CONFIRMED_AT, opt_out=False)
        )

        entry = await email_db.get_email("new@x.com")

        assert entry is not None
        assert entry.confirmed_at == CONFIRMED_AT
        assert entry.opt_out is False

    @pytest.mark.asyncio
    async def test_upsert_changes_only_confirmation_and_opt_out(self, email_db):
        await email_db.create_email("first@x.com")
        await email_db.create_email("a@x.com")
        before = await email_db.get_email("a@x.com")

        await email_db.update_email(
            EmailEntry(id=999, email="a@x.com", confirmed_at=CONFIRMED_AT, opt_out=True)
        )

        after = await email_db.get_email("a@x.com")
        assert after.id == before.id == 2
        assert after.email == "a@x.com"
        assert after.confirmed_at == CONFIRMED_AT
        assert after.opt_out is True
        assert _count_rows(email_db, "a@x.com") == 1

    @pytest.mark.asyncio
    async def test_upsert_can_opt_back_in(self, email_db):
        await email_db.create_email("a@x.com")
        await email_db.opt_out_email("a@x.com")

        await email_db.update_email(
            EmailEntry(email="a@x.com", confirmed_at=CONFIRMED_AT, opt_out=False)
        )

        entry = await email_db.get_email("a@x.com")
        assert entry.opt_out is False

    @pytest.mark.asyncio
    async def test_upsert_truncates_to_seconds(self, email_db):
        await email_db.update_email(
            EmailEntry(
                email="a@x.com",
                confirmed_at=datetime(2024, 3, 1, 12, 30, 15, 987654, tzinfo=UTC),
            )
        )

        entry = await email_db.get_email("a@x.com")
        assert entry.confirmed_at == CONFIRMED_AT


class TestOptOut:
    @pytest.mark.asyncio
    async def test_opt_out_keeps_row_and_confirmation(self, email_db):
        await email_db.update_email(EmailEntry(email="a@x.com", confirmed_at=CONFIRMED_AT))

        await email_db.opt_out_email("a@x.com")

        entry = await email_db.get_email("a@x.com")
        assert entry is not None
        assert entry.email == "a@x.com"
        assert entry.confirmed_at == CONFIRMED_AT
        assert entry.opt_out is True

    @pytest.mark.asyncio
    async def test_opt_out_unknown_email_is_noop(self, email_db):
        await email_db.opt_out_email("nobody@x.com")

        assert await email_db.get_email("nobody@x.com") is None

    @pytest.mark.asyncio
    async def test_opt_out_twice_stays_opted_out(self, email_db):
        await email_db.create_email("a@x.com")

        await email_db.opt_out_email("a@x.com")
        await email_db.opt_out_email("a@x.com")

        entry = await email_db.get_email("a@x.com")
        assert entry.opt_out is True


class TestBatch:
    @pytest.mark.asyncio
    async def test_pages_in_id_order(self, email_db):
        for email in ["1@x.com", "2@x.com", "3@x.com", "4@x.com"]:
            await email_db.create_email(email)

        page1 = await email_db.get_email_batch(EmailBatchQuery(page=1, count=2))
        page2 = await email_db.get_email_batch(EmailBatchQuery(page=2, count=2))
        page3 = await email_db.get_email_batch(EmailBatchQuery(page=3, count=2))

        assert [e.id for e in page1] == [1, 2]
        assert [e.id for e in page2] == [3, 4]
        assert page3 == []

    @pytest.mark.asyncio
    async def test_opted_out_subscribers_are_excluded(self, email_db):
        for email in ["1@x.com", "2@x.com", "3@x.com", "4@x.com", "5@x.com"]:
            await email_db.create_email(email)
        await email_db.opt_out_email("2@x.com")
        await email_db.update_email(EmailEntry(email="4@x.com", opt_out=True))

        seen = []
        for page in range(1, 5):
            batch = await email_db.get_email_batch(EmailBatchQuery(page=page, count=1))
            assert all(not e.opt_out for e in batch)
            seen.extend(e.email for e in batch)

        assert seen == ["1@x.com", "3@x.com", "5@x.com"]

    @pytest.mark.asyncio
    async def test_page_below_one_is_clamped(self, email_db):
        for email in ["1@x.com", "2@x.com", "3@x.com"]:
            await email_db.create_email(email)

        for page in (0, -3):
            batch = await email_db.get_email_batch(EmailBatchQuery(page=page, count=2))
            assert [e.id for e in batch] == [1, 2]

    @pytest.mark.asyncio
    async def test_non_positive_count_returns_empty(self, email_db):
        await email_db.create_email("1@x.com")

        assert await email_db.get_email_batch(EmailBatchQuery(page=1, count=0)) == []
        assert await email_db.get_email_batch(EmailBatchQuery(page=1, count=-1)) == []

    @pytest.mark.asyncio
    async def test_page_past_integer_range_returns_empty(self, email_db):
        await email_db.create_email("1@x.com")

        batch = await email_db.get_email_batch(EmailBatchQuery(page=10**19, count=10))

        assert batch == []

    @pytest.mark.asyncio
    async def test_oversized_query_parameter_raises_storage_error(self, email_db):
        with pytest.raises(StorageError):
            email_db._query("SELECT id FROM emails WHERE id = ?", (10**19,))

    @pytest.mark.asyncio
    async def test_malformed_row_aborts_batch(self, email_db):
        await email_db.create_email("good@x.com")
        conn = email_db._get_connection()
        conn.execute(
            "INSERT INTO emails (email, confirmed_at, opt_out) VALUES (?, ?, 0)",
            ("bad@x.com", "not-a-timestamp"),
        )
        conn.commit()

        with pytest.raises(StorageError):
            await email_db.get_email_batch(EmailBatchQuery(page=1, count=10))

        # Single-row reads of intact rows still work
        assert (await email_db.get_email("good@x.com")) is not None


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_on_empty_database(self, email_db):
        assert await email_db.get_stats() == {
            "total": 0,
            "active": 0,
            "opted_out": 0,
            "confirmed": 0,
        }

    @pytest.mark.asyncio
    async def test_stats_counts_states(self, email_db):
        await email_db.create_email("1@x.com")
        await email_db.update_email(EmailEntry(email="2@x.com", confirmed_at=CONFIRMED_AT))
        await email_db.create_email("3@x.com")
        await email_db.opt_out_email("3@x.com")

        assert await email_db.get_stats() == {
            "total": 3,
            "active": 2,
            "opted_out": 1,
            "confirmed": 1,
        }


@pytest.mark.asyncio
async def test_subscriber_lifecycle(email_db):
    """create -> get -> upsert(confirm + opt out) -> get"""
    await email_db.create_email("a@x.com")

    entry = await email_db.get_email("a@x.com")
    assert entry.opt_out is False
    assert entry.confirmed_at == UNCONFIRMED

    await email_db.update_email(
        EmailEntry(email="a@x.com", confirmed_at=CONFIRMED_AT, opt_out=True)
    )

    entry = await email_db.get_email("a@x.com")
    assert entry.confirmed_at == CONFIRMED_AT
    assert entry.opt_out is True
