"""
Page rasterization with PyMuPDF.

Turns one PDF page into an RGB bitmap at a given render scale. The bitmap size
is floor(page_width * scale) x floor(page_height * scale) so that geometry
mapping back to PDF points is exact and deterministic.
"""

import io
import logging
import math
from dataclasses import dataclass
from typing import Optional

import cv2
import fitz  # PyMuPDF
import numpy as np
from PIL import Image

from redactor_errors import RenderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageBitmap:
    """An RGB raster of one page; ``pixels`` has shape (height, width, 3)."""

    pixels: np.ndarray
    width: int
    height: int
    scale: float
    page_number: int = 1

    def gray(self) -> np.ndarray:
        """Grayscale copy of the page as uint8 (height, width)."""
        return cv2.cvtColor(self.pixels, cv2.COLOR_RGB2GRAY)

    def to_png_bytes(self, max_width: Optional[int] = None) -> bytes:
        """
        Encode the bitmap as PNG, optionally downscaled to ``max_width``.

        The image is never enlarged.
        """
        image = Image.fromarray(self.pixels)
        if max_width and image.width > max_width:
            new_height = max(1, round(image.height * max_width / image.width))
            image = image.resize((max_width, new_height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        image.save(out, format="PNG")
        return out.getvalue()


def bitmap_from_array(pixels: np.ndarray, scale: float = 1.0, page_number: int = 1) -> PageBitmap:
    """Wrap an existing RGB (or grayscale) array as a read-only PageBitmap."""
    if pixels.ndim == 2:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_GRAY2RGB)
    pixels = np.ascontiguousarray(pixels[:, :, :3], dtype=np.uint8)
    pixels.setflags(write=False)
    return PageBitmap(
        pixels=pixels,
        width=int(pixels.shape[1]),
        height=int(pixels.shape[0]),
        scale=scale,
        page_number=page_number,
    )


def render_page(page: fitz.Page, scale: float = 1.2) -> PageBitmap:
    """
    Rasterize a PDF page.

    Args:
        page: PyMuPDF page object
        scale: Render scale (1.0 renders one pixel per PDF point)

    Returns:
        PageBitmap of size floor(width * scale) x floor(height * scale)

    Raises:
        ValueError: if scale is not positive
        RenderError: if PyMuPDF fails to render the page
    """
    if scale <= 0:
        raise ValueError(f"Render scale must be positive, got {scale}")

    page_number = page.number + 1
    try:
        width = int(math.floor(page.rect.width * scale))
        height = int(math.floor(page.rect.height * scale))
        if width <= 0 or height <= 0:
            raise ValueError(f"page renders to an empty {width}x{height} bitmap")

        pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False, colorspace=fitz.csRGB)
        samples = np.frombuffer(pix.samples, dtype=np.uint8)
        pixels = samples.reshape(pix.height, pix.stride)[:, : pix.width * pix.n]
        pixels = pixels.reshape(pix.height, pix.width, pix.n)
        pix = None  # Free memory

        if pixels.shape[0] < height or pixels.shape[1] < width:
            # PyMuPDF rounds the pixmap box outwards; pad the rare short edge with white
            padded = np.full((height, width, 3), 255, dtype=np.uint8)
            h = min(height, pixels.shape[0])
            w = min(width, pixels.shape[1])
            padded[:h, :w] = pixels[:h, :w, :3]
            pixels = padded
    except Exception as e:
        logger.error(f"Rendering failed for page {page_number}: {e}")
        raise RenderError(page_number, str(e)) from e

    bitmap = bitmap_from_array(pixels[:height, :width], scale=scale, page_number=page_number)
    logger.debug(f"Rendered page {page_number} at scale {scale}: {bitmap.width}x{bitmap.height}")
    return bitmap
