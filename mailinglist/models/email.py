"""
Subscriber data models.

One `EmailEntry` per subscribed address. `confirmed_at` equal to the unix
epoch means the address has not been confirmed yet.
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field, field_validator

UNCONFIRMED = datetime.fromtimestamp(0, UTC)


def to_unix(value: datetime) -> int:
    """Encode a timestamp as whole seconds since the epoch (naive = UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    # Floor division rounds pre-epoch fractions down, not toward zero
    return (value - UNCONFIRMED) // timedelta(seconds=1)


def from_unix(seconds: int) -> datetime:
    """Decode seconds since the epoch into an aware UTC datetime."""
    return datetime.fromtimestamp(int(seconds), UTC)


def validate_email_address(v: str) -> str:
    """Basic email validation."""
    # Addresses are stored and matched exactly as given; no case folding.
    if "@" not in v or "." not in v.split("@")[-1]:
        raise ValueError("Invalid email format")
    if v != v.strip():
        raise ValueError("Email must not have leading or trailing whitespace")
    return v


class EmailEntry(BaseModel):
    """
    Mailing list subscriber.

    `id` is assigned by the store and ignored on upsert. `email` is whatever
    the store holds; format rules apply to `EmailCreate` input only.
    """

    id: int | None = Field(default=None, description="Store-assigned identifier")
    email: str = Field(..., description="Subscriber address, matched exactly")
    confirmed_at: datetime = Field(
        default=UNCONFIRMED, description="Confirmation time (epoch = unconfirmed)"
    )
    opt_out: bool = Field(default=False, description="Excluded from all mailings")

    @field_validator("confirmed_at")
    @classmethod
    def normalize_confirmed_at(cls, v: datetime) -> datetime:
        """Stored with one-second resolution, so keep it that way in memory."""
        return from_unix(to_unix(v))

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at != UNCONFIRMED


class EmailCreate(BaseModel):
    """Schema for subscribing a new address."""

    email: str = Field(..., min_length=3, max_length=320)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        return validate_email_address(v)


class EmailUpdate(BaseModel):
    """Schema for confirming or opting out an address (upsert)."""

    confirmed_at: datetime | None = Field(
        default=None, description="Confirmation time, null to leave unconfirmed"
    )
    opt_out: bool = Field(default=False)


class EmailBatchQuery(BaseModel):
    """Pagination window for batch reads (page is 1-indexed)."""

    page: int = Field(default=1, description="1-indexed page number")
    count: int = Field(default=10, description="Maximum number of rows per page")

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.count
