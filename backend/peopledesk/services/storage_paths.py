"""
PeopleDesk Backend — Storage Path Allocator
=============================================

What:  Derives collision-free, date-partitioned locations for new assets.
How:   <storage_root>/<category>/<year>/<month>/<uuid>.jpg, where the
       year/month reflect upload time (UTC) and the token is a random
       128-bit UUID4.
Who:   The only component that constructs storage paths. Callers outside
       the services layer only ever see the relative path or public URL.

Directory Structure:
    storage/
    └── profile-pictures/
        └── 2026/
            └── 10/
                ├── 3f2b...e91c.jpg         (primary)
                └── thumb_3f2b...e91c.jpg   (thumbnail)

The thumbnail shares the primary's token and differs by prefix, so it is
always derivable from the primary's relative path and never needs its own
column on the owner record.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from peopledesk.config import settings
from peopledesk.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

ASSET_EXTENSION = ".jpg"
THUMBNAIL_PREFIX = "thumb_"


@dataclass(frozen=True)
class StoragePath:
    """
    A freshly allocated asset location.

    relative_path: POSIX path from the storage root (persisted, put in URLs)
    absolute_path: Filesystem path used for I/O
    token:         The random identifier embedded in the filename
    """

    relative_path: str
    absolute_path: Path
    token: str

    @property
    def filename(self) -> str:
        return PurePosixPath(self.relative_path).name


class StoragePathAllocator:
    """
    Allocates unique asset paths and owns directory creation.

    `ensure_directory` is the single idempotent "make sure it exists"
    operation; no other component checks for or creates directories.
    """

    def __init__(
        self,
        storage_root: Optional[str] = None,
        public_url_prefix: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.public_url_prefix = "/" + (public_url_prefix or settings.public_url_prefix).strip("/")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def ensure_directory(self, directory: Path) -> None:
        """
        Create `directory` (and parents) if missing.

        Concurrent creation by another request is success, not an error.

        Raises:
            StorageUnavailableError if the directory cannot be created.
        """
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Could not create storage directory %s: %s", directory, e)
            raise StorageUnavailableError(
                context={"directory": str(directory), "os_error": str(e)},
            ) from e

    def allocate(self, category: str) -> StoragePath:
        """
        Allocate a new primary asset path under `category`.

        Returns: StoragePath with both relative and absolute forms.
        Side effect: the year/month directory is created if needed.
        """
        now = self._clock()
        token = uuid.uuid4().hex
        relative = PurePosixPath(
            category, f"{now:%Y}", f"{now:%m}", f"{token}{ASSET_EXTENSION}"
        )
        storage_path = StoragePath(
            relative_path=str(relative),
            absolute_path=self.storage_root.joinpath(*relative.parts),
            token=token,
        )
        self.ensure_directory(storage_path.absolute_path.parent)
        logger.debug("Allocated storage path %s", storage_path.relative_path)
        return storage_path

    def thumbnail_for(self, primary: StoragePath) -> StoragePath:
        """Allocate the thumbnail location that belongs to `primary`."""
        relative = thumbnail_relative_path(primary.relative_path)
        storage_path = StoragePath(
            relative_path=relative,
            absolute_path=self.storage_root.joinpath(*PurePosixPath(relative).parts),
            token=primary.token,
        )
        self.ensure_directory(storage_path.absolute_path.parent)
        return storage_path

    def public_url(self, relative_path: str) -> str:
        """Public URL under which the Asset Reader serves `relative_path`."""
        return f"{self.public_url_prefix}/{relative_path}"


def thumbnail_relative_path(primary_relative_path: str) -> str:
    """Relative path of the thumbnail derived from a primary asset path."""
    primary = PurePosixPath(primary_relative_path)
    return str(primary.with_name(f"{THUMBNAIL_PREFIX}{primary.name}"))
