"""
Deterministic logo matcher.

Slides every template edge map over the page edge map inside a search zone on a
3-pixel grid and scores the overlap as tp / (tp + 0.65*fp + 1.25*fn). Missing
template edges cost more than extra page edges, so a complete logo outranks a
partial overlap with busy content.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import cv2
import numpy as np

from footer_band import SearchZone, default_search_zone
from logo_templates import Template
from pdf_geometry import PixelBox

logger = logging.getLogger(__name__)

STEP_PX = 3
FP_WEIGHT = 0.65
FN_WEIGHT = 1.25

# Plausible logo size relative to the page
MIN_WIDTH_RATIO = 0.05
MAX_WIDTH_RATIO = 0.42
MIN_HEIGHT_RATIO = 0.015
MAX_HEIGHT_RATIO = 0.22


@dataclass(frozen=True)
class MatchResult:
    score: float = 0.0
    bbox_px: Optional[PixelBox] = None
    matched_reference: Optional[str] = None


NO_MATCH = MatchResult()


def _score_grid(region: np.ndarray, template: Template) -> np.ndarray:
    """
    Overlap score for every template position in ``region``, on the step grid.

    tp comes from cross-correlating the binary maps; the page edge count under
    each window comes from the integral image, so fp = window - tp and
    fn = template_edges - tp.
    """
    th, tw = template.height, template.width
    tp = cv2.matchTemplate(region, template.edges.astype(np.float32), cv2.TM_CCORR)
    # Exact integer counts, so near-equal scores compare the same as a direct count
    tp = np.rint(tp[::STEP_PX, ::STEP_PX]).astype(np.float64)

    integral = cv2.integral(region, sdepth=cv2.CV_64F)
    rows = tp.shape[0]
    cols = tp.shape[1]
    ys = np.arange(rows) * STEP_PX
    xs = np.arange(cols) * STEP_PX
    y0, x0 = np.ix_(ys, xs)
    window = integral[y0 + th, x0 + tw] - integral[y0, x0 + tw] - integral[y0 + th, x0] + integral[y0, x0]

    fp = window - tp
    fn = template.edge_count - tp
    denom = tp + FP_WEIGHT * fp + FN_WEIGHT * fn
    return np.divide(tp, denom, out=np.zeros_like(tp), where=denom > 0)


def match_templates(
    page_edges: np.ndarray, templates: Iterable[Template], zone: Optional[SearchZone] = None
) -> MatchResult:
    """
    Best template position over all templates inside the search zone.

    Args:
        page_edges: Full-page edge map (height, width) of 0/1 values
        templates: Templates to try, in priority order
        zone: Search zone; defaults to the bottom-right page region

    Returns:
        The highest-scoring MatchResult. Ties keep the earliest template and
        the first position in row-major order. A zero score yields NO_MATCH.
    """
    height, width = page_edges.shape[:2]
    if zone is None:
        zone = default_search_zone(width, height)

    x0 = max(0, zone.x0)
    y0 = max(0, zone.y0)
    x1 = min(width, zone.x1)
    y1 = min(height, zone.y1)
    region = np.ascontiguousarray(page_edges[y0:y1, x0:x1], dtype=np.float32)

    best = NO_MATCH
    for template in templates:
        max_x = x1 - template.width
        max_y = y1 - template.height
        if max_x <= x0 or max_y <= y0:
            continue

        scores = _score_grid(region, template)
        idx = int(np.argmax(scores))
        score = float(scores.flat[idx])
        if score > best.score:
            row, col = np.unravel_index(idx, scores.shape)
            best = MatchResult(
                score=score,
                bbox_px=PixelBox(
                    x=x0 + int(col) * STEP_PX,
                    y=y0 + int(row) * STEP_PX,
                    width=template.width,
                    height=template.height,
                ),
                matched_reference=template.ref_name,
            )

    if best.bbox_px is not None:
        logger.debug(f"Best template {best.matched_reference} score={best.score:.4f} at {best.bbox_px.to_dict()}")
    return best


def is_bbox_plausible(bbox: Optional[PixelBox], page_width: int, page_height: int) -> bool:
    """Geometric sanity gate: reject boxes too small or too large to be the logo."""
    if bbox is None:
        return False
    width_ratio = bbox.width / page_width
    height_ratio = bbox.height / page_height
    if width_ratio < MIN_WIDTH_RATIO or width_ratio > MAX_WIDTH_RATIO:
        return False
    if height_ratio < MIN_HEIGHT_RATIO or height_ratio > MAX_HEIGHT_RATIO:
        return False
    return True
