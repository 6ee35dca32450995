"""
PeopleDesk Backend — Profile Picture Route Handlers
=====================================================

What:  POST / GET / DELETE /api/users/{user_id}/profile-picture
Why:   HTTP entry point for the profile-picture pipeline.
How:   Enforces the transport-level upload rules, then delegates to
       ProfilePictureService. Authentication is applied upstream.

Request Flow (POST):
    1. Content-Length above the ceiling → 400 file_too_large, body unread
    2. Multipart form parsed (Starlette spools file parts to temp files)
    3. Exactly one file, in the `profile_picture` field:
         none                → 400 missing_file
         wrong field name    → 400 unexpected_field
         more than one       → 400 too_many_files
         spooled size > max  → 400 file_too_large
    4. ProfilePictureService.upload(): validate → transform → store → link
    5. Always: form closed, which deletes the spooled temp files
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response
from starlette.datastructures import FormData, UploadFile
from starlette.requests import ClientDisconnect

from peopledesk.config import settings
from peopledesk.dependencies import get_profile_picture_service
from peopledesk.exceptions import InvalidInputError
from peopledesk.schemas.profile_picture import ErrorResponse, ProfilePictureResponse
from peopledesk.services.profile_picture_service import (
    ProfilePictureService,
    UploadRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Profile Pictures"])

# Room for multipart boundaries and part headers on top of the file itself
MULTIPART_OVERHEAD = 64 * 1024

_UPLOAD_REQUEST_BODY = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "required": [settings.upload_field_name],
                    "properties": {
                        settings.upload_field_name: {
                            "type": "string",
                            "format": "binary",
                            "description": "Image file (JPEG, PNG, GIF or WEBP, max 5MB)",
                        }
                    },
                }
            }
        },
    }
}


def _file_too_large() -> InvalidInputError:
    max_mb = settings.max_upload_size / (1024 * 1024)
    return InvalidInputError(
        message=f"File size too large. Maximum size is {max_mb:.0f}MB.",
        code="file_too_large",
        details={"max_size": settings.max_upload_size},
    )


def _reject_oversized_body(request: Request) -> None:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.max_upload_size + MULTIPART_OVERHEAD:
        raise _file_too_large()


def _single_upload(form: FormData) -> UploadFile:
    """Pick the one file the request is allowed to carry."""
    files: List[tuple] = [
        (name, value) for name, value in form.multi_items() if isinstance(value, UploadFile)
    ]
    field = settings.upload_field_name
    if len(files) > 1:
        raise InvalidInputError(
            message="Too many files. Only one file is allowed.",
            code="too_many_files",
            details={"files": len(files)},
        )
    if not files:
        raise InvalidInputError(
            message=f'No file provided. Use "{field}" as the field name.',
            code="missing_file",
        )
    name, upload = files[0]
    if name != field:
        raise InvalidInputError(
            message=f'Unexpected field name. Use "{field}" as the field name.',
            code="unexpected_field",
            details={"field": name},
        )
    if upload.size is not None and upload.size > settings.max_upload_size:
        raise _file_too_large()
    return upload


@router.post(
    "/{user_id}/profile-picture",
    status_code=201,
    response_model=ProfilePictureResponse,
    responses={
        201: {"description": "Profile picture stored and linked", "model": ProfilePictureResponse},
        400: {"description": "Invalid upload", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
        409: {"description": "Changed concurrently", "model": ErrorResponse},
        422: {"description": "Image could not be processed", "model": ErrorResponse},
        500: {"description": "Storage or database failure", "model": ErrorResponse},
    },
    summary="Upload or replace a user's profile picture",
    openapi_extra=_UPLOAD_REQUEST_BODY,
)
async def upload_profile_picture(
    user_id: UUID,
    request: Request,
    service: ProfilePictureService = Depends(get_profile_picture_service),
) -> ProfilePictureResponse:
    """
    Store a new profile picture: normalized 300×300 JPEG plus a 100×100
    thumbnail. The previous picture, if any, is deleted once the new one
    is linked.
    """
    _reject_oversized_body(request)

    try:
        form = await request.form()
    except ClientDisconnect:
        logger.info("Client disconnected during upload for user %s", user_id)
        raise

    try:
        upload = _single_upload(form)
        content = await upload.read()
        logger.info(
            "Received profile picture upload: user=%s filename=%s size=%d bytes",
            user_id,
            upload.filename or "unknown",
            len(content),
        )
        return await service.upload(
            UploadRequest(
                owner_id=user_id,
                content=content,
                filename=upload.filename,
                content_type=upload.content_type,
            )
        )
    finally:
        await form.close()


@router.get(
    "/{user_id}/profile-picture",
    response_model=ProfilePictureResponse,
    responses={404: {"description": "User or picture not found", "model": ErrorResponse}},
    summary="Get a user's profile picture reference",
)
async def get_profile_picture(
    user_id: UUID,
    service: ProfilePictureService = Depends(get_profile_picture_service),
) -> ProfilePictureResponse:
    return await service.get_profile_picture(user_id)


@router.delete(
    "/{user_id}/profile-picture",
    status_code=204,
    responses={404: {"description": "User or picture not found", "model": ErrorResponse}},
    summary="Remove a user's profile picture",
)
async def delete_profile_picture(
    user_id: UUID,
    service: ProfilePictureService = Depends(get_profile_picture_service),
) -> Response:
    await service.remove(user_id)
    return Response(status_code=204)
