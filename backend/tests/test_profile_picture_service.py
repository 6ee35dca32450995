"""
PeopleDesk Backend — Profile Picture Service Tests
====================================================

What:  End-to-end orchestration against a real temporary storage root and
       the in-memory owner store from conftest.

Test Strategy:
    ✅ Successful upload: both assets stored, reference linked
    ✅ Rejected upload: no filesystem side effects
    ✅ Every failure after the first write rolls back this attempt's files
       and leaves the owner reference untouched
    ✅ Replacement deletes the previous picture only after linking
    ✅ Concurrent writer (lost compare-and-swap) → StaleReferenceError
    ✅ Removal, lookup, storage statistics, orphan reconciliation
"""

import asyncio
import os
import re
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image

from peopledesk.exceptions import (
    InvalidInputError,
    LinkFailedError,
    NotFoundError,
    ProcessingFailedError,
    StaleReferenceError,
    StorageUnavailableError,
)
from peopledesk.schemas.profile_picture import ProfilePictureReference
from peopledesk.services.profile_picture_service import OwnerLocks, UploadRequest

PRIMARY_PATTERN = re.compile(r"^profile-pictures/\d{4}/\d{2}/([0-9a-f]{32})\.jpg$")


def request_for(owner_id, content, filename="me.png", content_type="image/png"):
    return UploadRequest(
        owner_id=owner_id, content=content, filename=filename, content_type=content_type
    )


def image_size(path: Path):
    with Image.open(path) as img:
        return img.size


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_stores_both_assets_and_links(
        self, service, repository, owner_id, make_image, temp_storage
    ):
        result = await service.upload(request_for(owner_id, make_image(640, 480)))

        match = PRIMARY_PATTERN.match(result.picture.path)
        assert match
        assert result.thumbnail.path == result.picture.path.replace(
            match.group(1), f"thumb_{match.group(1)}"
        )
        assert image_size(Path(temp_storage) / result.picture.path) == (300, 300)
        assert image_size(Path(temp_storage) / result.thumbnail.path) == (100, 100)
        assert (result.picture.width, result.thumbnail.width) == (300, 100)

        reference = repository.references[owner_id]
        assert reference.path == result.picture.path
        assert reference.url == f"/api/files/{result.picture.path}"
        assert reference.filename == f"{match.group(1)}.jpg"
        assert reference.uploaded_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_any_supported_format_normalized_to_jpeg(
        self, service, owner_id, make_image, temp_storage
    ):
        gif = make_image(120, 90, fmt="GIF", mode="P", color=7)
        result = await service.upload(request_for(owner_id, gif, "me.gif", "image/gif"))

        with Image.open(Path(temp_storage) / result.picture.path) as img:
            assert img.format == "JPEG"

    @pytest.mark.asyncio
    async def test_rejected_upload_has_no_side_effects(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        with pytest.raises(InvalidInputError) as exc_info:
            await service.upload(request_for(owner_id, make_image(10, 10)))

        assert exc_info.value.code == "image_too_small"
        assert storage_snapshot() == []
        assert repository.references[owner_id] is None
        assert repository.swap_calls == []

    @pytest.mark.asyncio
    async def test_text_file_renamed_jpg_rejected(self, service, owner_id, storage_snapshot):
        with pytest.raises(InvalidInputError) as exc_info:
            await service.upload(
                request_for(owner_id, b"not an image at all" * 20, "photo.jpg", "image/jpeg")
            )

        assert exc_info.value.code == "invalid_image"
        assert storage_snapshot() == []

    @pytest.mark.asyncio
    async def test_unknown_owner_writes_nothing(self, service, make_image, storage_snapshot):
        with pytest.raises(NotFoundError):
            await service.upload(request_for(uuid.uuid4(), make_image()))

        assert storage_snapshot() == []


class TestRollback:
    @pytest.mark.asyncio
    async def test_link_failure_rolls_back_both_files(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        repository.fail_swap = LinkFailedError()

        with pytest.raises(LinkFailedError):
            await service.upload(request_for(owner_id, make_image()))

        assert storage_snapshot() == []
        assert repository.references[owner_id] is None

    @pytest.mark.asyncio
    async def test_link_failure_keeps_previous_picture(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        first = await service.upload(request_for(owner_id, make_image()))
        before = storage_snapshot()

        repository.fail_swap = LinkFailedError()
        with pytest.raises(LinkFailedError):
            await service.upload(request_for(owner_id, make_image(200, 200)))

        assert storage_snapshot() == before
        assert repository.references[owner_id].path == first.picture.path

    @pytest.mark.asyncio
    async def test_thumbnail_failure_removes_primary(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        with patch.object(
            service.transformer,
            "transform_thumbnail",
            AsyncMock(side_effect=ProcessingFailedError()),
        ):
            with pytest.raises(ProcessingFailedError):
                await service.upload(request_for(owner_id, make_image()))

        assert storage_snapshot() == []
        assert repository.swap_calls == []

    @pytest.mark.asyncio
    async def test_storage_failure_on_thumbnail_write(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        original_write = service.store.write
        calls = []

        async def fail_second_write(data, absolute_path):
            calls.append(absolute_path)
            if len(calls) == 2:
                raise StorageUnavailableError()
            return await original_write(data, absolute_path)

        with patch.object(service.store, "write", side_effect=fail_second_write):
            with pytest.raises(StorageUnavailableError):
                await service.upload(request_for(owner_id, make_image()))

        assert len(calls) == 2
        assert storage_snapshot() == []
        assert repository.references[owner_id] is None

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        with patch.object(
            repository, "swap_reference", AsyncMock(side_effect=asyncio.CancelledError())
        ):
            with pytest.raises(asyncio.CancelledError):
                await service.upload(request_for(owner_id, make_image()))

        assert storage_snapshot() == []

    @pytest.mark.asyncio
    async def test_rollback_delete_failure_keeps_original_error(
        self, service, repository, owner_id, make_image
    ):
        repository.fail_swap = LinkFailedError()

        with patch.object(
            service.store, "delete", AsyncMock(side_effect=StorageUnavailableError())
        ):
            with pytest.raises(LinkFailedError):
                await service.upload(request_for(owner_id, make_image()))


class TestReplacement:
    @pytest.mark.asyncio
    async def test_replacement_deletes_previous_files(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        first = await service.upload(request_for(owner_id, make_image()))
        second = await service.upload(request_for(owner_id, make_image(300, 500)))

        assert first.picture.path != second.picture.path
        assert storage_snapshot() == sorted([second.picture.path, second.thumbnail.path])
        assert repository.references[owner_id].path == second.picture.path

    @pytest.mark.asyncio
    async def test_previous_delete_failure_does_not_fail_upload(
        self, service, repository, owner_id, make_image
    ):
        await service.upload(request_for(owner_id, make_image()))

        with patch.object(
            service.store, "delete", AsyncMock(side_effect=StorageUnavailableError())
        ):
            second = await service.upload(request_for(owner_id, make_image()))

        assert repository.references[owner_id].path == second.picture.path

    @pytest.mark.asyncio
    async def test_concurrent_writer_loses_with_stale_reference(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        foreign = ProfilePictureReference(
            path="profile-pictures/2026/01/" + "f" * 32 + ".jpg",
            url="/api/files/profile-pictures/2026/01/" + "f" * 32 + ".jpg",
            filename="f" * 32 + ".jpg",
            uploaded_at=datetime.now(timezone.utc),
        )

        def other_process_links_first():
            repository.references[owner_id] = foreign

        repository.before_swap = other_process_links_first

        with pytest.raises(StaleReferenceError):
            await service.upload(request_for(owner_id, make_image()))

        assert storage_snapshot() == []
        assert repository.references[owner_id] == foreign

    @pytest.mark.asyncio
    async def test_concurrent_uploads_for_one_owner_serialize(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        results = await asyncio.gather(
            service.upload(request_for(owner_id, make_image(100, 100))),
            service.upload(request_for(owner_id, make_image(200, 200))),
        )

        final = repository.references[owner_id].path
        winner = next(r for r in results if r.picture.path == final)
        assert storage_snapshot() == sorted([winner.picture.path, winner.thumbnail.path])
        assert len(service.locks) == 0


class TestOwnerLocks:
    @pytest.mark.asyncio
    async def test_lock_table_empties_after_use(self):
        locks = OwnerLocks()
        owner = uuid.uuid4()
        async with locks.hold(owner):
            assert len(locks) == 1
        assert len(locks) == 0


class TestLookupAndRemoval:
    @pytest.mark.asyncio
    async def test_get_profile_picture_reports_file_info(
        self, service, owner_id, make_image
    ):
        uploaded = await service.upload(request_for(owner_id, make_image()))

        info = await service.get_profile_picture(owner_id)

        assert info.exists
        assert info.picture.path == uploaded.picture.path
        assert info.picture.size == uploaded.picture.size
        assert info.thumbnail.path == uploaded.thumbnail.path
        assert info.last_modified is not None

    @pytest.mark.asyncio
    async def test_get_profile_picture_missing_file(
        self, service, owner_id, make_image, temp_storage
    ):
        uploaded = await service.upload(request_for(owner_id, make_image()))
        os.remove(Path(temp_storage) / uploaded.picture.path)

        info = await service.get_profile_picture(owner_id)

        assert info.exists is False
        assert info.picture.size is None

    @pytest.mark.asyncio
    async def test_get_profile_picture_without_picture(self, service, owner_id):
        with pytest.raises(NotFoundError):
            await service.get_profile_picture(owner_id)

    @pytest.mark.asyncio
    async def test_remove_clears_reference_and_files(
        self, service, repository, owner_id, make_image, storage_snapshot
    ):
        await service.upload(request_for(owner_id, make_image()))

        await service.remove(owner_id)

        assert repository.references[owner_id] is None
        assert storage_snapshot() == []

    @pytest.mark.asyncio
    async def test_remove_without_picture(self, service, owner_id):
        with pytest.raises(NotFoundError):
            await service.remove(owner_id)


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_storage_stats(self, service, owner_id, make_image):
        uploaded = await service.upload(request_for(owner_id, make_image()))

        stats = await service.storage_stats()

        assert stats.total_files == 2
        assert stats.total_size == uploaded.picture.size + uploaded.thumbnail.size

    @pytest.mark.asyncio
    async def test_reconcile_deletes_only_old_unreferenced_files(
        self, service, owner_id, make_image, temp_storage, storage_snapshot
    ):
        uploaded = await service.upload(request_for(owner_id, make_image()))

        month = Path(temp_storage) / "profile-pictures" / "2025" / "12"
        month.mkdir(parents=True)
        old_orphan = month / ("a" * 32 + ".jpg")
        old_orphan.write_bytes(b"orphan")
        long_ago = (datetime.now(timezone.utc) - timedelta(days=2)).timestamp()
        os.utime(old_orphan, (long_ago, long_ago))
        recent_orphan = month / ("b" * 32 + ".jpg")
        recent_orphan.write_bytes(b"in flight")

        result = await service.reconcile_orphans()

        assert (result.scanned, result.referenced, result.deleted, result.skipped_recent) == (
            4,
            2,
            1,
            1,
        )
        assert not old_orphan.exists()
        assert recent_orphan.exists()
        assert uploaded.picture.path in storage_snapshot()
        assert uploaded.thumbnail.path in storage_snapshot()

    @pytest.mark.asyncio
    async def test_reconcile_sweeps_stale_temporary_files(self, service, temp_storage):
        month = Path(temp_storage) / "profile-pictures" / "2026" / "03"
        month.mkdir(parents=True)
        crashed = month / (".tmp-" + "c" * 32 + "-" + "d" * 32 + ".jpg")
        crashed.write_bytes(b"partial")
        long_ago = (datetime.now(timezone.utc) - timedelta(days=2)).timestamp()
        os.utime(crashed, (long_ago, long_ago))
        in_flight = month / (".tmp-" + "e" * 32 + "-" + "f" * 32 + ".jpg")
        in_flight.write_bytes(b"still writing")

        result = await service.reconcile_orphans()

        assert (result.scanned, result.deleted, result.skipped_recent) == (2, 1, 1)
        assert not crashed.exists()
        assert in_flight.exists()

    @pytest.mark.asyncio
    async def test_reconcile_on_empty_storage(self, service):
        result = await service.reconcile_orphans()
        assert result.scanned == 0
        assert result.deleted == 0
