"""
PeopleDesk Backend — Image Transformer
========================================

What:  Produces the canonical primary image (300×300) and its thumbnail
       (100×100) from a validated source.
How:   Pillow, on a small dedicated thread pool, awaited under a wall-clock
       timeout:
         1. Decode, apply EXIF orientation, take the first frame
         2. Flatten transparency onto white, convert to RGB
         3. Center-anchored "cover" fit: scale to fill, crop the overflow
            (never letterboxed, never stretched)
         4. Encode as progressive JPEG (quality 85 primary, 80 thumbnail)
       The encoded bytes are handed to the AssetStore for an atomic write.
       The timeout bounds the request, not the render: a render that overruns
       keeps its pool thread until Pillow returns. The pool size caps how
       many such renders can run at once.
Who:   Called by ProfilePictureService after validation.

Every upload, whatever its input format, ends up as one format at one
size. The thumbnail is derived from the primary *output*, so both are
crops of exactly the same region.
"""

import asyncio
import io
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import aiofiles
from PIL import Image, ImageOps

from peopledesk.config import settings
from peopledesk.exceptions import ProcessingFailedError
from peopledesk.services.asset_store import AssetStore

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "JPEG"
BACKGROUND_COLOR = (255, 255, 255)

ImageSource = Union[bytes, Path]

# Shared by every transformer. Renders queued here beyond the pool size wait,
# and are dropped if their request times out before they start.
RENDER_EXECUTOR = ThreadPoolExecutor(
    max_workers=settings.transform_workers, thread_name_prefix="image-render"
)


@dataclass(frozen=True)
class RenderedImage:
    data: bytes
    width: int
    height: int

    @property
    def byte_size(self) -> int:
        return len(self.data)


def _to_rgb(img: Image.Image) -> Image.Image:
    """Convert to RGB, compositing any transparency onto a white background."""
    if img.mode == "P":
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, BACKGROUND_COLOR)
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def render_cover(data: bytes, size: int, quality: int) -> RenderedImage:
    """
    Decode `data`, cover-fit it to size×size and encode as progressive JPEG.

    Blocking and CPU bound; run it through `ImageTransformer`, which puts
    it on the render pool under a timeout.
    """
    with Image.open(io.BytesIO(data)) as source:
        source.seek(0)
        img = ImageOps.exif_transpose(source)
        img = _to_rgb(img)
        fitted = ImageOps.fit(
            img,
            (size, size),
            method=Image.Resampling.LANCZOS,
            centering=(0.5, 0.5),
        )

    out = io.BytesIO()
    fitted.save(
        out,
        format=OUTPUT_FORMAT,
        quality=quality,
        progressive=True,
        optimize=True,
    )
    return RenderedImage(data=out.getvalue(), width=fitted.width, height=fitted.height)


class ImageTransformer:
    """
    Renders and persists the normalized representations of an upload.

    A failed transform leaves no destination file behind: rendering finishes
    in memory before anything is written, and the store's write is atomic.
    """

    def __init__(
        self,
        store: AssetStore,
        primary_size: Optional[int] = None,
        primary_quality: Optional[int] = None,
        thumbnail_size: Optional[int] = None,
        thumbnail_quality: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        executor: Optional[Executor] = None,
    ):
        self.store = store
        self.executor = executor or RENDER_EXECUTOR
        self.primary_size = primary_size or settings.primary_image_size
        self.primary_quality = primary_quality or settings.primary_image_quality
        self.thumbnail_size = thumbnail_size or settings.thumbnail_size
        self.thumbnail_quality = thumbnail_quality or settings.thumbnail_quality
        self.timeout_seconds = timeout_seconds or settings.transform_timeout_seconds

    async def _load(self, source: ImageSource) -> bytes:
        if isinstance(source, bytes):
            return source
        try:
            async with aiofiles.open(source, "rb") as f:
                return await f.read()
        except OSError as e:
            raise ProcessingFailedError(
                context={"source": str(source), "os_error": str(e)},
            ) from e

    async def _render(self, stage: str, data: bytes, size: int, quality: int) -> RenderedImage:
        """Run `render_cover` on the render pool under the stage timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self.executor, render_cover, data, size, quality),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("%s transform exceeded %.1fs", stage, self.timeout_seconds)
            raise ProcessingFailedError(
                message="Processing the image took too long. Please try a smaller image.",
                context={"stage": stage, "timeout_seconds": self.timeout_seconds},
            ) from e
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            logger.error("%s transform failed: %s", stage, e)
            raise ProcessingFailedError(
                context={"stage": stage, "error": f"{type(e).__name__}: {e}"},
            ) from e

    async def transform_primary(self, source: ImageSource, dest_path: Path) -> RenderedImage:
        """
        Write the canonical display image for `source` to `dest_path`.

        Returns: RenderedImage with width, height and encoded byte size.

        Raises:
            ProcessingFailedError on decode/encode failure or timeout.
            StorageUnavailableError if the write fails.
        """
        data = await self._load(source)
        rendered = await self._render(
            "primary", data, self.primary_size, self.primary_quality
        )
        await self.store.write(rendered.data, dest_path)
        return rendered

    async def transform_thumbnail(
        self,
        source: ImageSource,
        dest_path: Path,
        size: Optional[int] = None,
    ) -> RenderedImage:
        """
        Write a size×size thumbnail of `source` to `dest_path`.

        `source` should be the primary output, not the uploaded bytes.
        """
        data = await self._load(source)
        rendered = await self._render(
            "thumbnail", data, size or self.thumbnail_size, self.thumbnail_quality
        )
        await self.store.write(rendered.data, dest_path)
        return rendered
