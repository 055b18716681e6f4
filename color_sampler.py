"""
Fill color estimation for solid redactions.

Averages the ring of pixels just outside a candidate box so the covering
rectangle blends into the surrounding background.
"""

import math
from typing import Tuple

import numpy as np

from page_raster import PageBitmap
from pdf_geometry import PixelBox, clamp

RING_MARGIN_PX = 10
WHITE = (1.0, 1.0, 1.0)


def sample_fill_color(bitmap: PageBitmap, bbox: PixelBox, margin: int = RING_MARGIN_PX) -> Tuple[float, float, float]:
    """
    Mean color of the border ring around ``bbox``.

    The ring covers ``margin`` pixels on every side, clipped to the page, and
    excludes the box itself (edges inclusive).

    Args:
        bitmap: Rendered page
        bbox: Candidate box in pixel space
        margin: Ring thickness in pixels

    Returns:
        (r, g, b) in 0..1; white when no ring pixel is available
    """
    pixels = bitmap.pixels
    if pixels is None or pixels.size == 0:
        return WHITE
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    if pixels.shape[2] == 0:
        return WHITE
    if pixels.shape[2] < 3:
        pixels = np.repeat(pixels[:, :, :1], 3, axis=2)

    height, width = pixels.shape[:2]
    left = int(math.floor(clamp(bbox.x - margin, 0, width - 1)))
    top = int(math.floor(clamp(bbox.y - margin, 0, height - 1)))
    right = int(math.floor(clamp(bbox.x + bbox.width + margin, 0, width - 1)))
    bottom = int(math.floor(clamp(bbox.y + bbox.height + margin, 0, height - 1)))

    ys = np.arange(top, bottom + 1)[:, np.newaxis]
    xs = np.arange(left, right + 1)[np.newaxis, :]
    inside = (xs >= bbox.x) & (xs <= bbox.x + bbox.width) & (ys >= bbox.y) & (ys <= bbox.y + bbox.height)
    ring = ~inside

    if not ring.any():
        return WHITE

    window = pixels[top : bottom + 1, left : right + 1, :3].astype(np.float64)
    mean = window[ring].mean(axis=0)
    return tuple(clamp(float(c) / 255.0, 0.0, 1.0) for c in mean)
