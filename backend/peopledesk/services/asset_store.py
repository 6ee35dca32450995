"""
PeopleDesk Backend — Asset Store
==================================

What:  Owns the physical write, delete and stat of stored image files.
Why:   Centralizes all file system mutations so the rest of the pipeline
       deals only in relative paths.
How:   Writes go to a hidden temporary sibling and are renamed into place,
       so a reader never observes a truncated asset. Deletes are idempotent.
Who:   Used by the Image Transformer (writes), ProfilePictureService
       (rollback, replacement, removal, reconciliation) and AssetReader.

The store never looks at owner records. It operates purely on the paths
it is given, and refuses relative paths that resolve outside its root.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

import aiofiles
import aiofiles.os

from peopledesk.config import settings
from peopledesk.exceptions import (
    InvalidInputError,
    NotFoundError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".tmp-"

SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def is_temporary(relative_path: str) -> bool:
    """True for the in-flight sibling `write` creates before renaming into place."""
    return PurePosixPath(relative_path).name.startswith(TEMP_PREFIX)


@dataclass(frozen=True)
class AssetStat:
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class StoredFile:
    """A file found while walking the store (reconciliation, statistics)."""

    relative_path: str
    size: int
    last_modified: datetime


def format_file_size(num_bytes: int) -> str:
    """
    Human readable size: 0 Bytes, 512 Bytes, 1.5 KB, 2 MB, 3.25 GB.

    Two decimals at most, trailing zeros dropped.
    """
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{round(value, 2)}"
    if text.endswith(".0"):
        text = text[:-2]
    return f"{text} {SIZE_UNITS[unit]}"


class AssetStore:
    """Filesystem-backed store rooted at `storage_root`."""

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()

    # ── Path Resolution ───────────────────────────────────────────────────

    def absolute_path(self, relative_path: str) -> Path:
        """
        Map a stored relative path to its absolute location.

        Raises:
            InvalidInputError if the path is absolute or escapes the root
            (e.g. "../../etc/passwd").
        """
        relative = PurePosixPath(relative_path)
        if not relative_path or relative.is_absolute() or ".." in relative.parts:
            raise InvalidInputError(message="Invalid file path", code="invalid_path")
        candidate = self.storage_root.joinpath(*relative.parts).resolve()
        if not candidate.is_relative_to(self.storage_root):
            raise InvalidInputError(message="Invalid file path", code="invalid_path")
        return candidate

    def relative_path(self, absolute_path: Path) -> str:
        return absolute_path.resolve().relative_to(self.storage_root).as_posix()

    # ── Write ─────────────────────────────────────────────────────────────

    async def write(self, data: bytes, absolute_path: Path) -> int:
        """
        Atomically write `data` to `absolute_path`.

        How:     write a temporary sibling, fsync, then os.replace() it into
                 place. The temporary file is removed on any failure.
        Returns: Number of bytes written.

        Raises:
            StorageUnavailableError if the directory or file cannot be written.
        """
        absolute_path = Path(absolute_path)
        temp_path = absolute_path.with_name(
            f"{TEMP_PREFIX}{uuid.uuid4().hex}-{absolute_path.name}"
        )
        try:
            await aiofiles.os.makedirs(absolute_path.parent, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
                await f.flush()
                await aiofiles.os.wrap(os.fsync)(f.fileno())
            await aiofiles.os.replace(temp_path, absolute_path)
        except OSError as e:
            logger.error("Failed to write asset %s: %s", absolute_path, e)
            await self._discard(temp_path)
            raise StorageUnavailableError(
                message="Failed to save the image. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            ) from e
        except BaseException:
            # Cancellation mid-write: never leave the temporary behind
            await self._discard(temp_path)
            raise

        logger.info("Asset stored: %s (%d bytes)", absolute_path.name, len(data))
        return len(data)

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove temporary file %s: %s", path, e)

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete(self, relative_path: str) -> bool:
        """
        Delete a stored asset. Deleting a missing file is not an error.

        Returns: True if a file was removed, False if it was already gone.

        Raises:
            StorageUnavailableError for any other OS failure. Callers doing
            best-effort cleanup log this instead of propagating it.
        """
        path = self.absolute_path(relative_path)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.debug("Delete: asset already gone: %s", relative_path)
            return False
        except OSError as e:
            raise StorageUnavailableError(
                message="Failed to delete the image.",
                context={"path": relative_path, "os_error": str(e)},
            ) from e
        logger.info("Asset deleted: %s", relative_path)
        return True

    # ── Inspection ────────────────────────────────────────────────────────

    async def exists(self, relative_path: str) -> bool:
        try:
            path = self.absolute_path(relative_path)
        except InvalidInputError:
            return False
        return await aiofiles.os.path.isfile(path)

    async def stat_for(self, relative_path: str) -> AssetStat:
        """
        Size and modification time of a stored asset.

        Raises:
            NotFoundError if the asset does not exist.
        """
        path = self.absolute_path(relative_path)
        try:
            st = await aiofiles.os.stat(path)
        except FileNotFoundError:
            raise NotFoundError(resource="file", context={"path": relative_path})
        return AssetStat(
            size=st.st_size,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    # ── Enumeration ───────────────────────────────────────────────────────

    def iter_files(self, category: str, include_temporary: bool = False) -> Iterator[StoredFile]:
        """
        Walk every committed asset under `category`.

        Temporary files from in-progress (or crashed) writes are skipped
        unless `include_temporary` is set; reconciliation sweeps them.
        """
        base = self.storage_root / category
        if not base.is_dir():
            return
        for dirpath, _dirnames, filenames in os.walk(base):
            for name in filenames:
                if is_temporary(name) and not include_temporary:
                    continue
                path = Path(dirpath) / name
                try:
                    st = path.stat()
                except FileNotFoundError:
                    continue
                yield StoredFile(
                    relative_path=self.relative_path(path),
                    size=st.st_size,
                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                )

    def storage_stats(self, category: str) -> dict:
        """
        Totals for everything stored under `category`.

        Returns:
            {"total_files", "total_size", "total_size_formatted", "directories"}
        """
        base = self.storage_root / category
        total_files = 0
        total_size = 0
        directories = 0
        if base.is_dir():
            for _dirpath, dirnames, _filenames in os.walk(base):
                directories += len(dirnames)
            for stored in self.iter_files(category):
                total_files += 1
                total_size += stored.size
        return {
            "total_files": total_files,
            "total_size": total_size,
            "total_size_formatted": format_file_size(total_size),
            "directories": directories,
        }

    def is_writable(self) -> bool:
        """Health probe: the storage root exists (or can be created) and is writable."""
        try:
            self.storage_root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.storage_root, os.W_OK)
