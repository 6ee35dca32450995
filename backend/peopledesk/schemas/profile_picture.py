"""
PeopleDesk Backend — Pydantic Request/Response Schemas
=======================================================

What:  Pydantic models for the profile-picture API contract and for the
       reference value passed between the orchestrator and the owner-record
       repository.
Why:   Strict serialization and OpenAPI doc generation; the API never
       exposes absolute filesystem paths.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Domain Values
# ══════════════════════════════════════════════════════════════════════════


class ProfilePictureReference(BaseModel):
    """
    The pointer stored on an owner record.

    An owner without a picture has no reference at all (None), rather than
    a reference with null fields; the repository maps the four NULL
    columns to None.
    """
    path: str = Field(description="Relative storage path of the primary image")
    url: str = Field(description="Public URL of the primary image")
    filename: str = Field(description="Stored filename of the primary image")
    uploaded_at: datetime = Field(description="When the picture was linked (UTC)")

    model_config = {"frozen": True}


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ImageAssetResponse(BaseModel):
    """One stored image (primary or thumbnail)."""
    path: str = Field(description="Relative storage path (opaque to clients)")
    url: str = Field(description="URL serving the image bytes")
    filename: str
    width: Optional[int] = None
    height: Optional[int] = None
    size: Optional[int] = Field(default=None, description="Size in bytes")


class ProfilePictureResponse(BaseModel):
    """
    Returned by POST (201) and GET on /api/users/{user_id}/profile-picture.

    `exists` reports whether the primary file is currently on disk; it can
    be false briefly if an administrator removed files by hand.
    """
    user_id: str
    picture: ImageAssetResponse
    thumbnail: ImageAssetResponse
    uploaded_at: datetime
    exists: bool = True
    last_modified: Optional[datetime] = None


class StorageStatsResponse(BaseModel):
    total_files: int
    total_size: int
    total_size_formatted: str
    directories: int


class ReconciliationResponse(BaseModel):
    """Outcome of one orphan reconciliation sweep."""
    scanned: int = Field(description="Files examined under the category")
    referenced: int = Field(description="Files still referenced by an owner")
    deleted: int = Field(description="Unreferenced files removed")
    skipped_recent: int = Field(description="Unreferenced files inside the grace period")
    failed: int = Field(default=0, description="Unreferenced files that could not be removed")


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "file_too_large",
            "message": "File size too large. Maximum size is 5MB.",
            "details": {"max_size": 5242880},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    storage: str = Field(description="Storage root: writable, unavailable")
    storage_stats: Optional[StorageStatsResponse] = None
    uptime_seconds: float = Field(description="Seconds since service started")
