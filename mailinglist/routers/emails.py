"""
Subscriber API endpoints.

JSON wrapper around the storage layer:
- POST   /api/v1/emails                    subscribe
- GET    /api/v1/emails/{email}            read one subscriber
- PUT    /api/v1/emails/{email}            confirm / opt out (upsert)
- POST   /api/v1/emails/{email}/confirm    confirm an existing subscriber now
- POST   /api/v1/emails/{email}/opt-out    unsubscribe (rows are never deleted)
- GET    /api/v1/emails?page=&count=       page through active subscribers

Storage errors are mapped to HTTP status codes by the handlers in main.py.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from mailinglist.config import get_settings
from mailinglist.models.email import (
    UNCONFIRMED,
    EmailBatchQuery,
    EmailCreate,
    EmailEntry,
    EmailUpdate,
)
from mailinglist.storage.database import EmailDatabase, StorageError

router = APIRouter(prefix="/api/v1/emails", tags=["Emails"])

# Keeps (page - 1) * count well inside the SQLite integer range
MAX_PAGE = 1_000_000_000


# Response models
class EmailResponse(BaseModel):
    """Subscriber record."""

    id: int
    email: str
    confirmed_at: str | None  # None while unconfirmed
    opt_out: bool


class EmailBatchResponse(BaseModel):
    """One page of active subscribers."""

    page: int
    count: int
    emails: list[EmailResponse]


def get_email_db(request: Request) -> EmailDatabase:
    """
    Subscriber database opened by the application lifespan.

    Tests substitute their own store through app.dependency_overrides.
    """
    email_db = getattr(request.app.state, "email_db", None)
    if email_db is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscriber database not initialized",
        )
    return email_db


def _to_response(entry: EmailEntry) -> EmailResponse:
    return EmailResponse(
        id=entry.id,
        email=entry.email,
        confirmed_at=entry.confirmed_at.isoformat() if entry.is_confirmed else None,
        opt_out=entry.opt_out,
    )


def _checked_email(email: str) -> str:
    try:
        return EmailCreate(email=email).email
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e


async def _load(db: EmailDatabase, email: str) -> EmailEntry:
    entry = await db.get_email(email)
    if entry is None:
        # Only reachable if the row vanished between write and read
        raise StorageError("Subscriber missing after write")
    return entry


@router.post(
    "",
    response_model=EmailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_email(
    email_data: EmailCreate,
    db: EmailDatabase = Depends(get_email_db),
) -> EmailResponse:
    """
    Subscribe a new address.

    Raises:
        409: Address already subscribed
    """
    await db.create_email(email_data.email)
    return _to_response(await _load(db, email_data.email))


@router.get(
    "",
    response_model=EmailBatchResponse,
)
async def get_email_batch(
    page: int = Query(default=1, ge=1, le=MAX_PAGE, description="1-indexed page number"),
    count: int = Query(default=10, ge=1, description="Page size"),
    db: EmailDatabase = Depends(get_email_db),
) -> EmailBatchResponse:
    """
    Page through subscribers that have not opted out, in subscription order.

    Raises:
        422: page outside 1..MAX_PAGE, count < 1 or count above the configured maximum
    """
    max_page_size = get_settings().service.max_page_size
    if count > max_page_size:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"count must be at most {max_page_size}",
        )

    entries = await db.get_email_batch(EmailBatchQuery(page=page, count=count))

    return EmailBatchResponse(
        page=page,
        count=count,
        emails=[_to_response(entry) for entry in entries],
    )


@router.get(
    "/{email}",
    response_model=EmailResponse,
)
async def get_email(
    email: str,
    db: EmailDatabase = Depends(get_email_db),
) -> EmailResponse:
    """
    Get one subscriber.

    Raises:
        404: Address not subscribed
    """
    entry = await db.get_email(email)

    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Email not found",
        )

    return _to_response(entry)


@router.put(
    "/{email}",
    response_model=EmailResponse,
)
async def update_email(
    email: str,
    update_data: EmailUpdate,
    db: EmailDatabase = Depends(get_email_db),
) -> EmailResponse:
    """
    Set confirmation time and opt-out flag, creating the subscriber if needed.
    """
    entry = EmailEntry(
        email=_checked_email(email),
        confirmed_at=update_data.confirmed_at or UNCONFIRMED,
        opt_out=update_data.opt_out,
    )
    await db.update_email(entry)
    return _to_response(await _load(db, email))


@router.post(
    "/{email}/opt-out",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def opt_out_email(
    email: str,
    db: EmailDatabase = Depends(get_email_db),
) -> None:
    """
    Opt a subscriber out. Unknown addresses are accepted as a no-op.
    """
    await db.opt_out_email(email)


@router.post(
    "/{email}/confirm",
    response_model=EmailResponse,
)
async def confirm_email(
    email: str,
    db: EmailDatabase = Depends(get_email_db),
) -> EmailResponse:
    """
    Mark an existing subscriber as confirmed now, keeping its opt-out flag.

    Raises:
        404: Address not subscribed
    """
    entry = await db.get_email(email)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Email not found",
        )

    entry.confirmed_at = datetime.now(UTC)
    await db.update_email(entry)
    return _to_response(await _load(db, email))
