"""
PeopleDesk Backend — Asset Reader
===================================

What:  Resolves a stored relative path to bytes plus content metadata for
       the file-serving route.
How:   Stat first (NotFound if the file is gone; it may have been deleted
       between reference lookup and serving), then stream in chunks.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Mapping

import aiofiles

from peopledesk.exceptions import NotFoundError
from peopledesk.services.asset_store import AssetStore, is_temporary

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES: Mapping[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def content_type_for(relative_path: str) -> str:
    """Content type from the extension; unknown extensions are served as binary."""
    return CONTENT_TYPES.get(PurePosixPath(relative_path).suffix.lower(), DEFAULT_CONTENT_TYPE)


async def _iter_file(path: Path, relative_path: str) -> AsyncIterator[bytes]:
    try:
        async with aiofiles.open(path, "rb") as f:
            while chunk := await f.read(CHUNK_SIZE):
                yield chunk
    except FileNotFoundError:
        # Removed after resolve(); the response has already started
        logger.warning("Asset disappeared while streaming: %s", relative_path)


@dataclass
class ResolvedAsset:
    content_type: str
    size: int
    last_modified: datetime
    byte_stream: AsyncIterator[bytes]


class AssetReader:
    def __init__(self, store: AssetStore):
        self.store = store

    async def resolve(self, relative_path: str) -> ResolvedAsset:
        """
        Raises:
            NotFoundError: nothing is stored at `relative_path`, or it names
                a temporary file that is still being written
            InvalidInputError: the path escapes the storage root
        """
        path = self.store.absolute_path(relative_path)
        if is_temporary(relative_path) or not await self.store.exists(relative_path):
            raise NotFoundError(resource="file", context={"path": relative_path})
        stat = await self.store.stat_for(relative_path)
        return ResolvedAsset(
            content_type=content_type_for(relative_path),
            size=stat.size,
            last_modified=stat.last_modified,
            byte_stream=_iter_file(path, relative_path),
        )
