"""SQLAlchemy ORM models for the URL shortener application.

Data Model Layout
=================
::
    urls table
    ├─ id (VARCHAR(32) PRIMARY KEY, uuid4 hex)
    ├─ short_code (VARCHAR(32) UNIQUE, INDEXED)
    ├─ original_url (VARCHAR(2048) UNIQUE, INDEXED, normalized)
    ├─ short_url (VARCHAR(2100))
    ├─ clicks (INTEGER DEFAULT 0)
    └─ created_at (TIMESTAMPTZ)

    retired_codes table
    ├─ short_code (VARCHAR(32) PRIMARY KEY)
    └─ retired_at (TIMESTAMPTZ)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import URL

**Step 2 — Query URLs**::
    result = await db.execute(select(URL).where(URL.short_code == "abc123"))
    url = result.scalar_one_or_none()

**Step 3 — Increment clicks atomically**::
    await db.execute(update(URL).where(URL.id == url_id).values(clicks=URL.clicks + 1))

Key Behaviours
===============
- The two unique indexes are the only schema-level invariants; a racing
  insert surfaces as IntegrityError and is resolved by the shortening service.
- created_at is set in Python so newest-first ordering is stable across backends.
- clicks starts at 0 and is only changed by the redirect path.

Classes:
    URL:  Represents a shortened URL mapping with click tracking.
"""

import datetime
import uuid

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["URL", "RetiredCode", "new_record_id", "utcnow"]


def new_record_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class URL(Base):
    __tablename__ = "urls"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_record_id)
    short_code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(String(2048), unique=True, index=True, nullable=False)
    short_url: Mapped[str] = mapped_column(String(2100), nullable=False)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )

    def __repr__(self) -> str:
        return f"<URL(id={self.id}, short_code='{self.short_code}', clicks={self.clicks})>"


class RetiredCode(Base):
    """Short codes of deleted records; the issuer treats them as taken."""

    __tablename__ = "retired_codes"

    short_code: Mapped[str] = mapped_column(String(32), primary_key=True)
    retired_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
