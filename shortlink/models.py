"""SQLAlchemy ORM models for the shortlink service.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ target (TEXT NOT NULL)
    ├─ owner_id (VARCHAR(64) NULL, INDEXED)
    ├─ is_custom (BOOLEAN DEFAULT FALSE)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ active (BOOLEAN DEFAULT TRUE)
    ├─ metadata (JSON DEFAULT {})
    ├─ created_at (TIMESTAMPTZ)
    ├─ updated_at (TIMESTAMPTZ, ON UPDATE)
    └─ expires_at (TIMESTAMPTZ, INDEXED)

How to Use
===========
**Step 1 — Import**::
    from shortlink.models import ShortLink

**Step 2 — Build a new link**::
    link = ShortLink.new(code="abc123", target="https://example.com", retention_days=30)

**Step 3 — Check resolvability**::
    if link.is_resolvable():
        ...

Key Behaviours
===============
- ``code`` carries the uniqueness constraint for generated and custom codes alike.
- A link resolves only while ``active`` and before ``expires_at``.
- ``click_count`` starts at 0 and is only ever changed by an atomic SQL increment.
- SQLite hands back naive datetimes; they are treated as UTC.

Classes:
    ShortLink:  A short code mapped to a target URL with click tracking.
"""

import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["ShortLink", "utcnow", "as_utc"]

# Fields an owner may change after creation.
MUTABLE_FIELDS = frozenset({"target", "active", "expires_at", "meta"})


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True, default=None)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    @classmethod
    def new(
        cls,
        code: str,
        target: str,
        retention_days: int,
        owner_id: str | None = None,
        is_custom: bool = False,
        expires_at: datetime.datetime | None = None,
        meta: dict | None = None,
    ) -> "ShortLink":
        created_at = utcnow()
        return cls(
            code=code,
            target=target,
            owner_id=owner_id,
            is_custom=is_custom,
            click_count=0,
            active=True,
            meta=dict(meta or {}),
            created_at=created_at,
            updated_at=created_at,
            expires_at=expires_at or created_at + datetime.timedelta(days=retention_days),
        )

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        now = now or utcnow()
        return as_utc(now) >= as_utc(self.expires_at)

    def is_resolvable(self, now: datetime.datetime | None = None) -> bool:
        return bool(self.active) and not self.is_expired(now)

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}', clicks={self.click_count}, active={self.active})>"
