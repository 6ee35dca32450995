"""
PeopleDesk Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for the profile-picture pipeline.
Why:   Each failure class maps to one HTTP status and one machine-readable
       error code, and carries a message that is safe to show to the caller.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses.
Who:   Raised by services and routes; caught by global handlers.

Exception Hierarchy:
    PeopleDeskError (base)
    ├── InvalidInputError        → 400 Bad Request (client can fix)
    ├── NotFoundError            → 404 Not Found
    ├── StorageUnavailableError  → 500 Internal Server Error
    ├── ProcessingFailedError    → 422 Unprocessable Entity
    ├── LinkFailedError          → 500 Internal Server Error
    │   └── StaleReferenceError  → 409 Conflict
    └── DatabaseError            → 500 Internal Server Error

Messages never contain filesystem paths. Paths, OS errors and driver
errors go into `context`, which is logged server-side only.
"""

from typing import Any, Dict, Optional


class PeopleDeskError(Exception):
    """
    Base exception for all PeopleDesk application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class InvalidInputError(PeopleDeskError):
    """
    Raised when an upload fails validation.

    What:    The client sent something that can be corrected: oversized body,
             wrong number of files, undecodable bytes, out-of-policy format
             or dimensions.
    HTTP:    400 Bad Request
    When:    Always before any filesystem side effect.

    `code` distinguishes the failure for API consumers, e.g.
    "file_too_large" or "too_many_files". `details` is returned to the
    client, so only put policy values in it (limits, detected format).

    Example response:
        {
            "error": "image_too_small",
            "message": "Image too small. Minimum dimensions: 50x50px",
            "details": {"width": 10, "height": 10, "min_dimension": 50}
        }
    """

    def __init__(
        self,
        message: str = "Invalid upload",
        code: str = "invalid_input",
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.code = code
        self.details = details or {}


class NotFoundError(PeopleDeskError):
    """
    Raised when a requested resource does not exist.

    When:    Unknown owner, owner without a picture, or an asset that was
             deleted between reference lookup and byte serving.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class StorageUnavailableError(PeopleDeskError):
    """
    Raised when directory or file I/O fails.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error

    Never retried automatically. The orchestrator rolls back whatever this
    request already wrote before the error reaches the caller.
    """

    def __init__(
        self,
        message: str = "Image storage is currently unavailable. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ProcessingFailedError(PeopleDeskError):
    """
    Raised when decoding, resizing or encoding fails mid-transform,
    including when a stage exceeds its time budget.

    HTTP:    422 Unprocessable Entity
    """

    def __init__(
        self,
        message: str = "The image could not be processed. Please try a different image.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class LinkFailedError(PeopleDeskError):
    """
    Raised when the owner record could not be updated after both assets
    were written.

    HTTP:    500 Internal Server Error

    This is the one failure where files were created successfully and must
    then be deleted because the commit step failed.
    """

    def __init__(
        self,
        message: str = "The profile picture could not be saved. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StaleReferenceError(LinkFailedError):
    """
    Raised when the owner's reference changed while this upload was in
    flight (the compare-and-swap link lost to a concurrent request).

    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = (
            "The profile picture was changed by another request. "
            "Please reload and try again."
        ),
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(PeopleDeskError):
    """
    Raised when reading the owner record fails unexpectedly.

    HTTP:    500 Internal Server Error

    The message returned to the client is always generic; driver details
    are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
