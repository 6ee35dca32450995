"""
PeopleDesk Backend — Image Validator
======================================

What:  Decides whether an uploaded byte string is a genuine, size-bounded
       image within policy.
Why:   Client-supplied filenames and MIME types are trivially spoofed
       (rename notes.txt → notes.jpg). Only the content is trusted.
How:   Checks run cheapest-first so hostile input is rejected before we pay
       for a decode:
         1. Byte-size ceiling         O(1), no parsing at all
         2. Declared type sanity      O(1), declared MIME + extension
         3. Format identification     Pillow matches the file signature and
                                      reads the header only
         4. Dimension policy          from the header, before any pixels
         5. Full decode               Pillow decodes every pixel
Who:   Called by ProfilePictureService before any filesystem side effect.

Policy:
    Formats:     JPEG, PNG, GIF, WEBP
    Dimensions:  50px ≤ width, height ≤ 5000px
    Size:        ≤ 5MB
"""

import io
import logging
import warnings
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, Mapping, Optional

from PIL import Image, UnidentifiedImageError

from peopledesk.config import settings
from peopledesk.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

# ── Accepted Formats ──────────────────────────────────────────────────────
# Pillow format name → canonical MIME type
SUPPORTED_FORMATS: Mapping[str, str] = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

# Declared extensions we accept at the sanity stage. Content decides the
# real format; this only rejects uploads that claim to be something else.
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


@dataclass
class ValidationResult:
    """
    Outcome of validating one upload.

    `code` and `reason` are set when rejected; width/height/format are set
    whenever the header could be read.
    """

    accepted: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def mime_type(self) -> Optional[str]:
        return SUPPORTED_FORMATS.get(self.format or "")


def _reject(code: str, reason: str, **details: Any) -> ValidationResult:
    return ValidationResult(
        accepted=False,
        code=code,
        reason=reason,
        width=details.get("width"),
        height=details.get("height"),
        format=details.get("format"),
        details=details,
    )


class ImageValidator:
    """
    Pure inspection of candidate uploads. No side effects.

    `validate()` reports a ValidationResult; `ensure_valid()` raises
    InvalidInputError for a rejection, which is what the orchestrator uses.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        min_dimension: Optional[int] = None,
        max_dimension: Optional[int] = None,
    ):
        self.max_size = max_size or settings.max_upload_size
        self.min_dimension = min_dimension or settings.min_image_dimension
        self.max_dimension = max_dimension or settings.max_image_dimension

    def validate(
        self,
        data: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> ValidationResult:
        # ── Stage 1: size ceiling (cheapest) ──────────────────────────────
        size = len(data)
        if size == 0:
            return _reject("invalid_image", "The uploaded file is empty.")
        if size > self.max_size:
            max_mb = self.max_size / (1024 * 1024)
            return _reject(
                "file_too_large",
                f"File size too large. Maximum size is {max_mb:.0f}MB.",
                size=size,
                max_size=self.max_size,
            )

        # ── Stage 2: declared type sanity ─────────────────────────────────
        if content_type and not content_type.lower().startswith("image/"):
            return _reject(
                "unsupported_type",
                "Invalid file type. Only JPEG, PNG, GIF and WEBP images are allowed.",
                declared_type=content_type,
            )
        if filename:
            ext = PurePath(filename).suffix.lower()
            if ext and ext not in ALLOWED_EXTENSIONS:
                return _reject(
                    "unsupported_type",
                    "Invalid file extension. Only .jpg, .jpeg, .png, .gif and .webp files are allowed.",
                    extension=ext,
                )

        # ── Stage 3-5: identify, measure, decode ──────────────────────────
        return self._inspect_content(data)

    def _too_large(self, **details: Any) -> ValidationResult:
        return _reject(
            "image_too_large",
            (
                f"Image too large. Maximum dimensions: "
                f"{self.max_dimension}x{self.max_dimension}px"
            ),
            max_dimension=self.max_dimension,
            **details,
        )

    def _inspect_content(self, data: bytes) -> ValidationResult:
        try:
            with warnings.catch_warnings():
                # Oversized inputs are rejected by our own dimension policy;
                # Pillow's bomb warning would only add noise.
                warnings.simplefilter("ignore", Image.DecompressionBombWarning)
                with Image.open(io.BytesIO(data)) as img:
                    fmt = (img.format or "").upper()
                    width, height = img.size

                    if fmt not in SUPPORTED_FORMATS:
                        return _reject(
                            "unsupported_format",
                            f"Unsupported image format: {fmt or 'unknown'}",
                            format=fmt or None,
                        )

                    if width < self.min_dimension or height < self.min_dimension:
                        return _reject(
                            "image_too_small",
                            (
                                f"Image too small. Minimum dimensions: "
                                f"{self.min_dimension}x{self.min_dimension}px"
                            ),
                            width=width,
                            height=height,
                            format=fmt,
                            min_dimension=self.min_dimension,
                        )

                    if width > self.max_dimension or height > self.max_dimension:
                        return self._too_large(width=width, height=height, format=fmt)

                    # Dimensions are bounded now, so a full decode is safe.
                    # Catches truncated and corrupt pixel data the header hides.
                    img.load()
        except Image.DecompressionBombError as e:
            # Raised by Image.open itself, so the header size is not available
            logger.info("Upload rejected: decompression bomb (%s)", e)
            return self._too_large()
        except UnidentifiedImageError as e:
            logger.info("Upload rejected: content is not a decodable image (%s)", e)
            return _reject("invalid_image", "File is not a valid image.")
        except (OSError, ValueError, SyntaxError) as e:
            logger.info("Upload rejected: image data is corrupt (%s)", e)
            return _reject("invalid_image", "File is not a valid image.")

        return ValidationResult(accepted=True, width=width, height=height, format=fmt)

    def ensure_valid(
        self,
        data: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate and raise on rejection.

        Raises:
            InvalidInputError carrying the rejection code and policy details.
        """
        result = self.validate(data, filename=filename, content_type=content_type)
        if not result.accepted:
            raise InvalidInputError(
                message=result.reason or "Invalid image",
                code=result.code or "invalid_image",
                details=result.details,
            )
        return result
