"""
Transform Library

Pure Pillow functions mapping an image to a new image, plus the Transformer
that binds them to their fixed parameters and dispatches by Operation.
"""

from typing import Tuple

from PIL import Image

from src.core.config import settings
from src.core.exceptions import DecodeError
from src.core.logging import get_logger
from src.modules.imagery.models import Operation

logger = get_logger(__name__)


def resize(image: Image.Image, width: int, height: int) -> Image.Image:
    """Scale to exactly width x height."""
    return image.resize((width, height), Image.Resampling.LANCZOS)


def thumbnail(image: Image.Image, max_width: int, max_height: int) -> Image.Image:
    """Fit inside max_width x max_height, preserving aspect ratio."""
    thumb = image.copy()
    thumb.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
    return thumb


def watermark(image: Image.Image, overlay: Image.Image, margin: int = 10) -> Image.Image:
    """Composite `overlay` over `image`, anchored `margin` px from the bottom-right corner."""
    base = image.convert("RGBA")
    mark = overlay.convert("RGBA")

    left = base.width - mark.width - margin
    top = base.height - mark.height - margin
    # Only the part of the overlay that lands on the canvas is composited
    src_x, src_y = max(-left, 0), max(-top, 0)
    dest_x, dest_y = max(left, 0), max(top, 0)
    width = min(mark.width - src_x, base.width - dest_x)
    height = min(mark.height - src_y, base.height - dest_y)

    if width > 0 and height > 0:
        visible = mark.crop((src_x, src_y, src_x + width, src_y + height))
        base.alpha_composite(visible, dest=(dest_x, dest_y))

    if image.mode in ("RGBA", "LA", "P"):
        return base
    return base.convert("RGB")


class Transformer:
    """Applies an Operation with the pipeline's fixed parameters."""

    def __init__(
        self,
        watermark_image: Image.Image,
        resize_to: Tuple[int, int] = (1024, 768),
        thumbnail_to: Tuple[int, int] = (128, 128),
        watermark_margin: int = 10
    ):
        self.watermark_image = watermark_image
        self.resize_to = resize_to
        self.thumbnail_to = thumbnail_to
        self.watermark_margin = watermark_margin

    @classmethod
    def from_settings(cls) -> "Transformer":
        """Load the watermark overlay from WATERMARK_PATH."""
        try:
            with Image.open(settings.WATERMARK_PATH) as overlay:
                overlay.load()
                watermark_image = overlay.copy()
        except (FileNotFoundError, OSError) as e:
            raise DecodeError(
                f"Failed to load watermark image {settings.WATERMARK_PATH}: {e}",
                details={"path": settings.WATERMARK_PATH}
            ) from e

        logger.info("watermark_loaded", path=settings.WATERMARK_PATH, size=watermark_image.size)

        return cls(
            watermark_image,
            resize_to=(settings.RESIZE_WIDTH, settings.RESIZE_HEIGHT),
            thumbnail_to=(settings.THUMBNAIL_WIDTH, settings.THUMBNAIL_HEIGHT),
            watermark_margin=settings.WATERMARK_MARGIN
        )

    def apply(self, operation: Operation, image: Image.Image) -> Image.Image:
        if operation is Operation.RESIZE:
            return resize(image, *self.resize_to)
        if operation is Operation.THUMBNAIL:
            return thumbnail(image, *self.thumbnail_to)
        if operation is Operation.WATERMARK:
            return watermark(image, self.watermark_image, self.watermark_margin)
        raise ValueError(f"Unhandled operation: {operation!r}")
