"""
Coordinate mapping between raster pixels and PDF points.

Bitmaps use a top-left origin; PDF rectangles (DocRect) use the document
convention with the origin at the bottom-left. PyMuPDF drawing calls take a
top-left fitz.Rect again, so to_fitz_rect flips back at the drawing boundary.
"""

from dataclasses import dataclass
from typing import Dict

import fitz  # PyMuPDF


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class PixelBox:
    """Box in raster pixels, origin top-left."""

    x: int
    y: int
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class NormalizedBox:
    """Box in 0..1 page fractions, origin top-left (classifier convention)."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DocRect:
    """Rectangle in PDF points, origin bottom-left."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "x": round(self.x, 4),
            "y": round(self.y, 4),
            "width": round(self.width, 4),
            "height": round(self.height, 4),
        }


def image_bbox_to_doc_rect(
    bbox: PixelBox, render_width: int, render_height: int, page_width: float, page_height: float
) -> DocRect:
    """
    Map a pixel box onto the PDF page.

    Each axis scales independently; the vertical axis is flipped so that
    y_doc = page_height - (y_px / render_height) * page_height - height_doc.
    Results are clamped to the page and width/height never drop below 1 point.
    """
    x = bbox.x / render_width * page_width
    y_top = bbox.y / render_height * page_height
    width = bbox.width / render_width * page_width
    height = bbox.height / render_height * page_height
    y = page_height - y_top - height

    return DocRect(
        x=clamp(x, 0.0, page_width),
        y=clamp(y, 0.0, page_height),
        width=clamp(width, 1.0, page_width),
        height=clamp(height, 1.0, page_height),
    )


def doc_rect_to_image_bbox(
    rect: DocRect, render_width: int, render_height: int, page_width: float, page_height: float
) -> PixelBox:
    """Inverse of image_bbox_to_doc_rect, rounded to whole pixels."""
    x = rect.x / page_width * render_width
    width = rect.width / page_width * render_width
    height = rect.height / page_height * render_height
    y_top = (page_height - rect.y - rect.height) / page_height * render_height
    return PixelBox(x=round(x), y=round(y_top), width=round(width), height=round(height))


def normalized_to_pixel_box(box: NormalizedBox, width: int, height: int) -> PixelBox:
    return PixelBox(
        x=round(box.x * width),
        y=round(box.y * height),
        width=max(1, round(box.width * width)),
        height=max(1, round(box.height * height)),
    )


def stable_footer_rect(page_width: float, page_height: float, footer_ratio: float) -> DocRect:
    """Full-width footer slot of ``footer_ratio`` times the page height, at the page bottom."""
    return DocRect(x=0.0, y=0.0, width=page_width, height=page_height * footer_ratio)


def to_fitz_rect(rect: DocRect, page_height: float) -> fitz.Rect:
    """Convert a bottom-left DocRect into a PyMuPDF (top-left) rectangle."""
    top = page_height - rect.y - rect.height
    return fitz.Rect(rect.x, top, rect.x + rect.width, top + rect.height)
