"""
Footer band locator.

Many target documents carry a solid colored bar near the bottom of the page. The
band, when present, narrows the template search and gives a stable redaction
target for banner replacement.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from page_raster import PageBitmap

logger = logging.getLogger(__name__)

SEARCH_START_RATIO = 0.45
BAND_ENTRY_RATIO = 0.28
BAND_CONTINUE_RATIO = 0.20
MIN_BAND_HEIGHT_PX = 24
MIN_BAND_HEIGHT_RATIO = 0.05
ZONE_X_START_RATIO = 0.45


@dataclass(frozen=True)
class SearchZone:
    """Pixel rectangle [x0, x1) x [y0, y1) where matching is attempted."""

    x0: int
    y0: int
    x1: int
    y1: int

    def to_dict(self) -> Dict[str, int]:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}


def default_search_zone(width: int, height: int) -> SearchZone:
    """Bottom-right region used when no footer band was found."""
    return SearchZone(
        x0=int(math.floor(width * 0.45)),
        y0=int(math.floor(height * 0.60)),
        x1=width,
        y1=height,
    )


def footer_color_mask(pixels: np.ndarray) -> np.ndarray:
    """True where a pixel matches the footer purple signature."""
    if pixels.ndim == 2:
        r = g = b = pixels.astype(np.int16)
    else:
        rgb = pixels.astype(np.int16)
        r = rgb[:, :, 0]
        g = rgb[:, :, 1] if rgb.shape[2] > 1 else r
        b = rgb[:, :, 2] if rgb.shape[2] > 2 else r
    return (r > 55) & (b > 55) & (g < 120) & (r > g + 18) & (b > g + 18)


def min_band_height(height: int) -> int:
    return max(MIN_BAND_HEIGHT_PX, int(math.floor(height * MIN_BAND_HEIGHT_RATIO)))


def detect_footer_band(bitmap: PageBitmap) -> Optional[SearchZone]:
    """
    Find the most prominent footer-colored band in the lower page.

    Rows from 45% of the page height down are scored by the fraction of
    footer-colored pixels. A band starts on a row at or above the entry ratio and
    continues while rows stay at or above the continuation ratio. Bands shorter
    than the minimum height are ignored; among the rest the one maximizing
    0.7 * height + 0.3 * mean_ratio * page_height wins.

    Args:
        bitmap: Rendered page

    Returns:
        SearchZone spanning the right 55% of the band rows, or None
    """
    width, height = bitmap.width, bitmap.height
    start_y = int(math.floor(height * SEARCH_START_RATIO))
    min_height = min_band_height(height)

    row_ratio = np.zeros(height, dtype=np.float64)
    if start_y < height and width > 0:
        row_ratio[start_y:] = footer_color_mask(bitmap.pixels[start_y:]).sum(axis=1) / width

    best = None
    y = start_y
    while y < height:
        if row_ratio[y] < BAND_ENTRY_RATIO:
            y += 1
            continue

        band_start = y
        while y < height and row_ratio[y] >= BAND_CONTINUE_RATIO:
            y += 1
        band_end = y - 1
        band_height = band_end - band_start + 1
        avg_ratio = float(row_ratio[band_start:y].mean())

        if band_height >= min_height:
            score = band_height * 0.7 + avg_ratio * height * 0.3
            if best is None or score > best[2]:
                best = (band_start, band_end, score)

    if best is None:
        logger.debug(f"No footer band on page {bitmap.page_number}")
        return None

    zone = SearchZone(x0=int(math.floor(width * ZONE_X_START_RATIO)), y0=best[0], x1=width, y1=best[1] + 1)
    logger.debug(f"Footer band on page {bitmap.page_number}: {zone}")
    return zone
