"""
PeopleDesk Backend — Stored File Route
========================================

What:  GET /api/files/{file_path} streams a stored image.
Who:   Called by <img> tags that reference a profile picture or thumbnail URL.

Security:
    - Paths are resolved by AssetStore, which rejects anything escaping
      the storage root (400 invalid_path)
    - Only files under the storage root are ever read

Caching:
    Stored paths are never reused (every upload gets a fresh UUID), so
    responses are marked immutable.
"""

import logging
from email.utils import format_datetime

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from peopledesk.config import settings
from peopledesk.dependencies import get_asset_reader
from peopledesk.schemas.profile_picture import ErrorResponse
from peopledesk.services.asset_reader import AssetReader

logger = logging.getLogger(__name__)

router = APIRouter(prefix=settings.public_url_prefix, tags=["Files"])


@router.get(
    "/{file_path:path}",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"image/jpeg": {}}, "description": "Image bytes"},
        400: {"description": "Invalid path", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
    summary="Serve a stored image",
)
async def serve_file(
    file_path: str,
    reader: AssetReader = Depends(get_asset_reader),
) -> StreamingResponse:
    asset = await reader.resolve(file_path)
    return StreamingResponse(
        asset.byte_stream,
        media_type=asset.content_type,
        headers={
            "Content-Length": str(asset.size),
            "Last-Modified": format_datetime(asset.last_modified, usegmt=True),
            "Cache-Control": f"public, max-age={settings.asset_cache_max_age}, immutable",
        },
    )
