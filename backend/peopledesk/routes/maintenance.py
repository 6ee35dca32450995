"""
PeopleDesk Backend — Maintenance Routes
=========================================

What:  Operator endpoints for profile-picture storage.
       - GET  /api/maintenance/storage-stats
       - POST /api/maintenance/profile-pictures/reconcile
Who:   Operators and scheduled jobs. The same operations are available
       from the command line (python -m peopledesk.maintenance).
"""

from fastapi import APIRouter, Depends

from peopledesk.dependencies import get_profile_picture_service
from peopledesk.schemas.profile_picture import (
    ErrorResponse,
    ReconciliationResponse,
    StorageStatsResponse,
)
from peopledesk.services.profile_picture_service import ProfilePictureService

router = APIRouter(prefix="/api/maintenance", tags=["Maintenance"])


@router.get(
    "/storage-stats",
    response_model=StorageStatsResponse,
    summary="File count and total size of stored profile pictures",
)
async def storage_stats(
    service: ProfilePictureService = Depends(get_profile_picture_service),
) -> StorageStatsResponse:
    return await service.storage_stats()


@router.post(
    "/profile-pictures/reconcile",
    response_model=ReconciliationResponse,
    responses={500: {"description": "Owner records unavailable", "model": ErrorResponse}},
    summary="Delete stored files no user references",
    description=(
        "Walks the profile-picture directory and deletes files that no user "
        "references and that are older than the configured grace period."
    ),
)
async def reconcile_profile_pictures(
    service: ProfilePictureService = Depends(get_profile_picture_service),
) -> ReconciliationResponse:
    return await service.reconcile_orphans()
