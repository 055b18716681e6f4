"""
Redaction drawing on PDF pages.

Both strategies (solid fill and banner replacement) draw on top of the page
with PyMuPDF overlay calls. The original page content, including vector paths
and embedded fonts, is left in the file underneath the drawing.
"""

import io
import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image

from pdf_geometry import DocRect, to_fitz_rect
from redactor_config import BANNER_FIT_COVER, SOLID_FOOTER_COLOR

logger = logging.getLogger(__name__)

Color = Tuple[float, float, float]

DEBUG_OUTLINE_COLOR = (1.0, 0.4, 0.0)
DEBUG_FILL_COLOR = (1.0, 0.0, 0.0)
DEBUG_OUTLINE_WIDTH = 2

BANNER_EXTENSIONS = (".png", ".jpg", ".jpeg")


@dataclass(frozen=True)
class Banner:
    """Replacement banner image bytes plus its pixel size."""

    data: bytes
    width: int
    height: int


def load_banner(banner_path: str) -> Optional[Banner]:
    """
    Read the replacement banner for a format profile.

    Returns None (after logging) when the file is missing or is not a PNG/JPEG
    image; callers fall back to a solid brand-colored fill.
    """
    if not banner_path.lower().endswith(BANNER_EXTENSIONS):
        logger.warning(f"Banner {banner_path} is not .png/.jpg, trying to load it anyway")
    try:
        with open(banner_path, "rb") as f:
            data = f.read()
        with Image.open(io.BytesIO(data)) as im:
            if im.format not in ("PNG", "JPEG"):
                raise ValueError(f"unsupported banner format {im.format}")
            width, height = im.size
    except (OSError, ValueError) as e:
        logger.error(f"Replacement banner load failed ({banner_path}): {e}")
        return None

    logger.info(f"Loaded replacement banner {os.path.basename(banner_path)} ({width}x{height})")
    return Banner(data=data, width=width, height=height)


def _page_rect(page: fitz.Page, rect: DocRect) -> fitz.Rect:
    # DocRect lives in the visible (rotated) page space; drawing uses unrotated space
    return to_fitz_rect(rect, page.rect.height) * page.derotation_matrix


def draw_solid_fill(page: fitz.Page, rect: DocRect, color: Color) -> None:
    """Paint an opaque rectangle over ``rect``."""
    page.draw_rect(_page_rect(page, rect), color=None, fill=color, width=0, overlay=True)


def draw_debug_outline(page: fitz.Page, rect: DocRect) -> None:
    """Orange outline marking a candidate that was not redacted."""
    page.draw_rect(_page_rect(page, rect), color=DEBUG_OUTLINE_COLOR, fill=None, width=DEBUG_OUTLINE_WIDTH, overlay=True)


def fit_banner_rect(
    image_width: int, image_height: int, target: DocRect, fit: str, bottom_offset: float = 0.0
) -> DocRect:
    """
    Where the banner lands inside ``target``.

    ``contain`` shrinks the banner to fit entirely inside the target; ``cover``
    grows it until the target is filled, overflowing one axis. Both keep the
    aspect ratio and center the banner. A positive ``bottom_offset`` moves it
    down the page, a negative one moves it up.
    """
    image_aspect = image_width / image_height
    target_aspect = target.width / target.height

    draw_width = target.width
    draw_height = target.height
    if fit == BANNER_FIT_COVER:
        if image_aspect > target_aspect:
            draw_width = target.height * image_aspect
        else:
            draw_height = target.width / image_aspect
    else:
        if image_aspect > target_aspect:
            draw_height = target.width / image_aspect
        else:
            draw_width = target.height * image_aspect

    draw_x = target.x + (target.width - draw_width) / 2
    draw_y = target.y + (target.height - draw_height) / 2 - bottom_offset
    return DocRect(x=draw_x, y=draw_y, width=draw_width, height=draw_height)


def draw_banner_fitted(
    page: fitz.Page,
    banner: Banner,
    target: DocRect,
    fit: str,
    fill_background: bool = False,
    bg_color: Color = SOLID_FOOTER_COLOR,
    bottom_offset: float = 0.0,
) -> DocRect:
    """
    Place the replacement banner in the footer slot.

    Args:
        page: PyMuPDF page to draw on
        banner: Loaded banner image
        target: Footer slot in PDF points (bottom-left origin)
        fit: "contain" or "cover"
        fill_background: Paint the whole slot with ``bg_color`` first
        bg_color: Background fill color (0..1 RGB)
        bottom_offset: Vertical nudge in points; positive moves the banner down

    Returns:
        The rectangle the banner was drawn into
    """
    if fill_background:
        draw_solid_fill(page, target, bg_color)

    placed = fit_banner_rect(banner.width, banner.height, target, fit, bottom_offset)
    page.insert_image(_page_rect(page, placed), stream=banner.data, keep_proportion=False, overlay=True)
    return placed
