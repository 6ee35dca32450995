"""
PeopleDesk Backend — Owner Record Repository
==============================================

What:  The pipeline's only window onto user records: read the current
       profile-picture reference, swap it, and list every referenced path.
Why:   An abstract interface keeps the orchestrator free of SQL and lets
       tests substitute an in-memory owner store (same reason the services
       layer hides providers behind ABCs).
How:   `SqlUserRepository` runs each call in its own short transaction.
       The link is a compare-and-swap: the UPDATE only matches while the
       stored path still equals what the caller read before uploading, so
       a concurrent upload cannot be silently overwritten.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from peopledesk.exceptions import (
    DatabaseError,
    LinkFailedError,
    NotFoundError,
    StaleReferenceError,
)
from peopledesk.models.user import User
from peopledesk.schemas.profile_picture import ProfilePictureReference

logger = logging.getLogger(__name__)


class ProfilePictureRepository(ABC):
    """
    Contract for the owner-record collaborator.

    All lookups and updates are point operations keyed by owner id. The
    only schema knowledge is the four reference fields.
    """

    @abstractmethod
    async def get_reference(self, owner_id: uuid.UUID) -> Optional[ProfilePictureReference]:
        """
        Current reference of `owner_id`, or None when the owner has no picture.

        Raises:
            NotFoundError: no such owner
            DatabaseError: the read failed
        """
        ...

    @abstractmethod
    async def swap_reference(
        self,
        owner_id: uuid.UUID,
        expected_path: Optional[str],
        reference: Optional[ProfilePictureReference],
    ) -> None:
        """
        Replace the reference, but only if the stored path is still
        `expected_path` (None meaning "no picture"). Passing
        `reference=None` clears all four fields.

        Raises:
            NotFoundError: no such owner
            StaleReferenceError: the stored path changed since it was read
            LinkFailedError: the write failed or did not commit
        """
        ...

    @abstractmethod
    async def list_referenced_paths(self) -> Set[str]:
        """Every primary path currently referenced by any owner."""
        ...


class SqlUserRepository(ProfilePictureRepository):
    """SQLAlchemy implementation over the `users` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_reference(self, owner_id: uuid.UUID) -> Optional[ProfilePictureReference]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(
                        User.id,
                        User.profile_picture_path,
                        User.profile_picture_url,
                        User.profile_picture_filename,
                        User.profile_picture_uploaded_at,
                    ).where(User.id == owner_id)
                )
                row = result.one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to read profile picture of user %s: %s", owner_id, e)
            raise DatabaseError(
                message="Could not load the user's profile picture. Please try again.",
                context={"user_id": str(owner_id), "error_type": type(e).__name__},
            ) from e

        if row is None:
            raise NotFoundError(resource="user", resource_id=str(owner_id))
        if row.profile_picture_path is None:
            return None
        return ProfilePictureReference(
            path=row.profile_picture_path,
            url=row.profile_picture_url,
            filename=row.profile_picture_filename,
            uploaded_at=row.profile_picture_uploaded_at,
        )

    async def swap_reference(
        self,
        owner_id: uuid.UUID,
        expected_path: Optional[str],
        reference: Optional[ProfilePictureReference],
    ) -> None:
        values = {
            "profile_picture_path": reference.path if reference else None,
            "profile_picture_url": reference.url if reference else None,
            "profile_picture_filename": reference.filename if reference else None,
            "profile_picture_uploaded_at": reference.uploaded_at if reference else None,
        }
        if expected_path is None:
            current = User.profile_picture_path.is_(None)
        else:
            current = User.profile_picture_path == expected_path

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(User)
                        .where(User.id == owner_id, current)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    matched = result.rowcount
                    owner_exists = True
                    if matched == 0:
                        owner_exists = (
                            await session.execute(select(User.id).where(User.id == owner_id))
                        ).first() is not None
        except SQLAlchemyError as e:
            logger.error("Failed to update profile picture of user %s: %s", owner_id, e)
            raise LinkFailedError(
                context={"user_id": str(owner_id), "error_type": type(e).__name__},
            ) from e

        if matched == 0:
            if not owner_exists:
                raise NotFoundError(resource="user", resource_id=str(owner_id))
            raise StaleReferenceError(
                context={"user_id": str(owner_id), "expected_path": expected_path},
            )

    async def list_referenced_paths(self) -> Set[str]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(User.profile_picture_path).where(
                        User.profile_picture_path.is_not(None)
                    )
                )
                return set(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to list referenced profile pictures: %s", e)
            raise DatabaseError(context={"error_type": type(e).__name__}) from e
