"""
PeopleDesk Backend — User SQLAlchemy Model
============================================

What:  ORM model for the `users` table, the owner of a profile picture.
Why:   The profile-picture pipeline writes exactly one thing to the owner
       record: the four-field picture reference below. Everything else
       about users (departments, roles, payroll) lives in other services.

Reference columns:
    profile_picture_path         Relative path of the primary asset
    profile_picture_url          Public URL of the primary asset
    profile_picture_filename     Stored filename (<uuid>.jpg)
    profile_picture_uploaded_at  When the reference was linked (UTC)

    All four are NULL together or set together. The thumbnail path is
    derived from profile_picture_path, so it has no column.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from peopledesk.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier (UUID4)",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When this user was created (UTC)",
    )

    # ── Profile Picture Reference ─────────────────────────────────────────
    profile_picture_path: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        default=None,
        comment="Relative path from storage root to the primary picture",
    )
    profile_picture_url: Mapped[Optional[str]] = mapped_column(
        String(512),
        nullable=True,
        default=None,
    )
    profile_picture_filename: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        default=None,
    )
    profile_picture_uploaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    # Reconciliation reads every referenced path
    __table_args__ = (
        Index("idx_users_profile_picture_path", profile_picture_path),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
