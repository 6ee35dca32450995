"""
PeopleDesk Backend — Profile Picture Service (Upload Orchestrator)
====================================================================

What:  Turns one untrusted upload into a linked profile picture, all or
       nothing.
How:   Composes the validator, path allocator, transformer, asset store and
       owner-record repository into a per-request state machine.
Who:   Called by the profile-picture routes and the maintenance command.

Orchestration Flow (POST /api/users/{id}/profile-picture):
    ┌──────────┐   ┌───────────┐   ┌────────────────┐   ┌──────────────────┐   ┌────────┐
    │ Received │──▶│ Validated │──▶│ PrimaryWritten │──▶│ ThumbnailWritten │──▶│ Linked │
    └──────────┘   └───────────┘   └────────────────┘   └──────────────────┘   └────────┘
         │               │                  │                     │
         └───────────────┴──────────────────┴─────────────────────┴──▶ Failed

    Files are written first and the owner reference is committed last.
    The reference write is the commit point:
      - before it: any failure deletes this attempt's files (newest first)
        and the owner's reference is untouched
      - after it: the previous picture's files are deleted

Concurrency:
    Uploads and removals for the same owner are serialized by an in-process
    per-owner lock, and the link itself is a compare-and-swap against the
    reference read before the files were written. A writer that loses the
    swap (another process got there first) gets StaleReferenceError and its
    files are rolled back instead of being orphaned.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional

from peopledesk.config import settings
from peopledesk.exceptions import InvalidInputError, NotFoundError
from peopledesk.schemas.profile_picture import (
    ImageAssetResponse,
    ProfilePictureReference,
    ProfilePictureResponse,
    ReconciliationResponse,
    StorageStatsResponse,
)
from peopledesk.services.asset_store import AssetStore
from peopledesk.services.image_transformer import ImageTransformer, RenderedImage
from peopledesk.services.image_validator import ImageValidator
from peopledesk.services.storage_paths import (
    StoragePathAllocator,
    thumbnail_relative_path,
)
from peopledesk.services.user_repository import ProfilePictureRepository

logger = logging.getLogger(__name__)


class UploadState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PRIMARY_WRITTEN = "primary_written"
    THUMBNAIL_WRITTEN = "thumbnail_written"
    LINKED = "linked"
    FAILED = "failed"


@dataclass
class UploadRequest:
    """One upload as handed over by the transport layer. Never persisted."""

    owner_id: uuid.UUID
    content: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class UploadAttempt:
    """Progress of one upload: its state and every file it has written."""

    owner_id: uuid.UUID
    state: UploadState = UploadState.RECEIVED
    written: List[str] = field(default_factory=list)

    def advance(self, state: UploadState) -> None:
        logger.debug(
            "Upload for user %s: %s → %s", self.owner_id, self.state.value, state.value
        )
        self.state = state


class OwnerLocks:
    """
    Per-owner asyncio locks, created on demand and dropped when unused.

    Only coordinates requests inside one process; across processes the
    compare-and-swap link is what keeps owners consistent.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, owner_id: uuid.UUID) -> AsyncIterator[None]:
        key = str(owner_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class ProfilePictureService:
    """
    Upload, inspect, remove and reconcile profile pictures.

    Stateless apart from the owner lock table; each call gets its own
    UploadAttempt.
    """

    def __init__(
        self,
        repository: ProfilePictureRepository,
        store: Optional[AssetStore] = None,
        allocator: Optional[StoragePathAllocator] = None,
        validator: Optional[ImageValidator] = None,
        transformer: Optional[ImageTransformer] = None,
        category: Optional[str] = None,
        orphan_grace_period: Optional[timedelta] = None,
        locks: Optional[OwnerLocks] = None,
    ):
        self.repository = repository
        self.store = store or AssetStore()
        self.allocator = allocator or StoragePathAllocator(storage_root=str(self.store.storage_root))
        self.validator = validator or ImageValidator()
        self.transformer = transformer or ImageTransformer(self.store)
        self.category = category or settings.profile_picture_category
        self.orphan_grace_period = orphan_grace_period or timedelta(
            seconds=settings.orphan_grace_period_seconds
        )
        self.locks = locks or OwnerLocks()

    # ══════════════════════════════════════════════════════════════════════
    # Upload
    # ══════════════════════════════════════════════════════════════════════

    async def upload(self, request: UploadRequest) -> ProfilePictureResponse:
        """
        Validate, normalize, store and link a new profile picture.

        Error Recovery:
            Validation fails     → InvalidInputError, nothing written
            Owner unknown        → NotFoundError, nothing written
            Transform fails      → ProcessingFailedError, files rolled back
            Disk write fails     → StorageUnavailableError, files rolled back
            Reference write fails→ LinkFailedError / StaleReferenceError,
                                   files rolled back

        Returns:
            ProfilePictureResponse describing the new primary and thumbnail.
        """
        attempt = UploadAttempt(owner_id=request.owner_id)
        logger.info(
            "Profile picture upload received for user %s (%d bytes)",
            request.owner_id,
            len(request.content),
        )

        # ── Received → Validated ──────────────────────────────────────────
        try:
            validation = self.validator.ensure_valid(
                request.content,
                filename=request.filename,
                content_type=request.content_type,
            )
        except InvalidInputError as e:
            attempt.advance(UploadState.FAILED)
            logger.info("Upload for user %s rejected: %s", request.owner_id, e.code)
            raise
        attempt.advance(UploadState.VALIDATED)
        logger.info(
            "Upload for user %s validated: %s %dx%d",
            request.owner_id,
            validation.format,
            validation.width,
            validation.height,
        )

        async with self.locks.hold(request.owner_id):
            previous = await self.repository.get_reference(request.owner_id)

            try:
                reference, primary, thumbnail = await self._write_and_link(
                    attempt, request, previous
                )
            except (Exception, asyncio.CancelledError) as e:
                attempt.advance(UploadState.FAILED)
                await self._rollback(attempt, e)
                raise

        # ── Replacement: only once the new reference is committed ─────────
        if previous is not None and previous.path != reference.path:
            await self._delete_picture_files(previous.path, reason="replaced")

        logger.info("Profile picture linked for user %s: %s", request.owner_id, reference.path)
        return self._build_response(
            request.owner_id,
            reference,
            primary=primary,
            thumbnail=thumbnail,
        )

    async def _write_and_link(
        self,
        attempt: UploadAttempt,
        request: UploadRequest,
        previous: Optional[ProfilePictureReference],
    ):
        # ── Validated → PrimaryWritten ────────────────────────────────────
        primary_path = self.allocator.allocate(self.category)
        attempt.written.append(primary_path.relative_path)
        primary = await self.transformer.transform_primary(
            request.content, primary_path.absolute_path
        )
        attempt.advance(UploadState.PRIMARY_WRITTEN)

        # ── PrimaryWritten → ThumbnailWritten ─────────────────────────────
        # Derived from the primary output, so both show the same crop
        thumbnail_path = self.allocator.thumbnail_for(primary_path)
        attempt.written.append(thumbnail_path.relative_path)
        thumbnail = await self.transformer.transform_thumbnail(
            primary_path.absolute_path, thumbnail_path.absolute_path
        )
        attempt.advance(UploadState.THUMBNAIL_WRITTEN)

        # ── ThumbnailWritten → Linked (commit point) ──────────────────────
        reference = ProfilePictureReference(
            path=primary_path.relative_path,
            url=self.allocator.public_url(primary_path.relative_path),
            filename=primary_path.filename,
            uploaded_at=datetime.now(timezone.utc),
        )
        await self.repository.swap_reference(
            request.owner_id,
            expected_path=previous.path if previous else None,
            reference=reference,
        )
        attempt.advance(UploadState.LINKED)
        return reference, primary, thumbnail

    async def _rollback(self, attempt: UploadAttempt, error: BaseException) -> None:
        """
        Delete every file this attempt wrote, newest first.

        Best effort: a failed delete is logged and never replaces `error`.
        """
        if not attempt.written:
            return
        logger.warning(
            "Rolling back upload for user %s after %s (%d file(s))",
            attempt.owner_id,
            type(error).__name__,
            len(attempt.written),
        )
        for relative_path in reversed(attempt.written):
            try:
                await self.store.delete(relative_path)
            except Exception as cleanup_error:
                logger.warning(
                    "Rollback could not delete %s: %s", relative_path, cleanup_error
                )

    async def _delete_picture_files(self, primary_path: str, reason: str) -> None:
        """Best-effort removal of a primary asset and its thumbnail."""
        for relative_path in (thumbnail_relative_path(primary_path), primary_path):
            try:
                await self.store.delete(relative_path)
            except Exception as e:
                logger.warning(
                    "Could not delete %s picture file %s (now orphaned): %s",
                    reason,
                    relative_path,
                    e,
                )

    # ══════════════════════════════════════════════════════════════════════
    # Lookup & Removal
    # ══════════════════════════════════════════════════════════════════════

    async def get_profile_picture(self, owner_id: uuid.UUID) -> ProfilePictureResponse:
        """
        Current picture of `owner_id`, with on-disk size and modification time.

        Raises:
            NotFoundError: unknown owner, or owner without a picture
        """
        reference = await self.repository.get_reference(owner_id)
        if reference is None:
            raise NotFoundError(resource="profile picture", resource_id=str(owner_id))

        exists = await self.store.exists(reference.path)
        size = last_modified = None
        if exists:
            stat = await self.store.stat_for(reference.path)
            size, last_modified = stat.size, stat.last_modified
        else:
            logger.warning(
                "User %s references a missing picture file: %s", owner_id, reference.path
            )
        return self._build_response(
            owner_id,
            reference,
            exists=exists,
            size=size,
            last_modified=last_modified,
        )

    async def remove(self, owner_id: uuid.UUID) -> None:
        """
        Clear the owner's reference, then delete the files.

        The reference goes first: if deleting files then fails they are
        orphaned, but the owner never points at a missing file.

        Raises:
            NotFoundError: unknown owner, or owner without a picture
        """
        async with self.locks.hold(owner_id):
            reference = await self.repository.get_reference(owner_id)
            if reference is None:
                raise NotFoundError(resource="profile picture", resource_id=str(owner_id))
            await self.repository.swap_reference(
                owner_id, expected_path=reference.path, reference=None
            )
        logger.info("Profile picture reference cleared for user %s", owner_id)
        await self._delete_picture_files(reference.path, reason="removed")

    # ══════════════════════════════════════════════════════════════════════
    # Maintenance
    # ══════════════════════════════════════════════════════════════════════

    async def storage_stats(self) -> StorageStatsResponse:
        stats = await asyncio.to_thread(self.store.storage_stats, self.category)
        return StorageStatsResponse(**stats)

    async def reconcile_orphans(self, now: Optional[datetime] = None) -> ReconciliationResponse:
        """
        Delete stored files that no owner references.

        Files younger than the grace period are skipped: they may belong to
        an upload that has written its files but not yet linked them.
        Temporary files left by interrupted writes are never referenced, so
        they are swept by the same rule.
        References are read before the walk, so any file linked afterwards
        is necessarily inside the grace period.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.orphan_grace_period

        referenced = set()
        for path in await self.repository.list_referenced_paths():
            referenced.add(path)
            referenced.add(thumbnail_relative_path(path))

        files = await asyncio.to_thread(
            lambda: list(self.store.iter_files(self.category, include_temporary=True))
        )
        result = ReconciliationResponse(scanned=len(files), referenced=0, deleted=0, skipped_recent=0)
        for stored in files:
            if stored.relative_path in referenced:
                result.referenced += 1
            elif stored.last_modified > cutoff:
                result.skipped_recent += 1
            else:
                try:
                    await self.store.delete(stored.relative_path)
                    result.deleted += 1
                except Exception as e:
                    result.failed += 1
                    logger.warning("Reconciliation could not delete %s: %s", stored.relative_path, e)

        logger.info(
            "Orphan reconciliation: scanned=%d referenced=%d deleted=%d skipped_recent=%d failed=%d",
            result.scanned,
            result.referenced,
            result.deleted,
            result.skipped_recent,
            result.failed,
        )
        return result

    # ══════════════════════════════════════════════════════════════════════
    # Helpers
    # ══════════════════════════════════════════════════════════════════════

    def _build_response(
        self,
        owner_id: uuid.UUID,
        reference: ProfilePictureReference,
        primary: Optional[RenderedImage] = None,
        thumbnail: Optional[RenderedImage] = None,
        exists: bool = True,
        size: Optional[int] = None,
        last_modified: Optional[datetime] = None,
    ) -> ProfilePictureResponse:
        thumb_path = thumbnail_relative_path(reference.path)
        return ProfilePictureResponse(
            user_id=str(owner_id),
            picture=ImageAssetResponse(
                path=reference.path,
                url=reference.url,
                filename=reference.filename,
                width=primary.width if primary else None,
                height=primary.height if primary else None,
                size=primary.byte_size if primary else size,
            ),
            thumbnail=ImageAssetResponse(
                path=thumb_path,
                url=self.allocator.public_url(thumb_path),
                filename=thumb_path.rsplit("/", 1)[-1],
                width=thumbnail.width if thumbnail else None,
                height=thumbnail.height if thumbnail else None,
                size=thumbnail.byte_size if thumbnail else None,
            ),
            uploaded_at=reference.uploaded_at,
            exists=exists,
            last_modified=last_modified,
        )
