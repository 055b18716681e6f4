"""
Detector variants.

A job picks exactly one detector when it starts; every page then goes through
the same ``detect(bitmap, zone)`` call.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from footer_band import SearchZone, detect_footer_band
from job_context import JobContext
from logo_templates import TemplateLibrary, compute_edge_map, load_reference_images
from page_raster import PageBitmap
from pdf_geometry import PixelBox, normalized_to_pixel_box
from redactor_config import DETECTOR_AI_CUT, DETECTOR_DETERMINISTIC
from redactor_errors import ConfigurationError
from template_matcher import NO_MATCH, MatchResult, is_bbox_plausible, match_templates
from vision_probe import AIProbeResult, VisionProbeClient, is_valid_footer_box, is_wide_footer_strip

logger = logging.getLogger(__name__)

FALLBACK_FOOTER_Y_RATIO = 0.885
FORCED_REFERENCE = "footer-banner"


@dataclass(frozen=True)
class Detection:
    """What a detector found on one page."""

    match: MatchResult = NO_MATCH
    plausible: bool = False
    wide_footer_strip: bool = False
    footer_zone: Optional[SearchZone] = None
    ai_probe: Optional[AIProbeResult] = None


class LogoDetector(ABC):
    detector_id = "unknown"
    # Remote detectors are worth running on a worker pool
    is_remote = False
    # Probe-only detectors never redact; auto-level hits go to review
    allow_apply = True
    # Wide footer strips are replaced with the format's banner
    replaces_banner = False

    @abstractmethod
    def detect(self, bitmap: PageBitmap, zone: Optional[SearchZone] = None) -> Detection:
        raise NotImplementedError


class TemplateMatchDetector(LogoDetector):
    """Edge-template sliding-window matcher."""

    detector_id = "template-match-v2"

    def __init__(self, library: TemplateLibrary):
        self.library = library

    def detect(self, bitmap: PageBitmap, zone: Optional[SearchZone] = None) -> Detection:
        footer_zone = zone if zone is not None else detect_footer_band(bitmap)
        logger.info(f"Page {bitmap.page_number}: match footerZone={footer_zone.to_dict() if footer_zone else 'none'}")

        page_edges = compute_edge_map(bitmap.gray())
        match = match_templates(page_edges, self.library, footer_zone)
        return Detection(
            match=match,
            plausible=is_bbox_plausible(match.bbox_px, bitmap.width, bitmap.height),
            footer_zone=footer_zone,
        )


class VisionProbeDetector(LogoDetector):
    """
    External vision classifier.

    The reply counts only if it is a wide footer strip, or a valid footer logo
    box that also passes the pixel-space plausibility gate. Anything else scores
    zero.
    """

    is_remote = True

    def __init__(self, client: VisionProbeClient, apply_redactions: bool):
        self.client = client
        self.allow_apply = apply_redactions
        self.replaces_banner = apply_redactions
        self.detector_id = "ai-cut-v1" if apply_redactions else "ai-probe-v1"

    def detect(self, bitmap: PageBitmap, zone: Optional[SearchZone] = None) -> Detection:
        probe = self.client.probe(bitmap)
        if not probe.found or probe.bbox is None:
            logger.info(f"Page {bitmap.page_number}: ai-probe found=False")
            return Detection(ai_probe=probe)

        valid_footer_box = is_valid_footer_box(probe.bbox)
        wide_strip = is_wide_footer_strip(probe.bbox)
        bbox_px = normalized_to_pixel_box(probe.bbox, bitmap.width, bitmap.height)
        plausible = wide_strip or (valid_footer_box and is_bbox_plausible(bbox_px, bitmap.width, bitmap.height))

        logger.info(
            f"Page {bitmap.page_number}: ai-probe found=True confidence={probe.confidence:.3f} "
            f"validFooter={valid_footer_box} wideFooterStrip={wide_strip} "
            f"bbox={probe.bbox.to_dict()} ref={probe.matched_reference or 'n/a'}"
        )
        return Detection(
            match=MatchResult(
                score=probe.confidence if plausible else 0.0,
                bbox_px=bbox_px,
                matched_reference=probe.matched_reference,
            ),
            plausible=plausible,
            wide_footer_strip=wide_strip,
            ai_probe=probe,
        )


class ForcedFooterDetector(LogoDetector):
    """Treats the footer band (or the bottom 11.5% of the page) as a certain match."""

    detector_id = "footer-banner-v1"
    replaces_banner = True

    def detect(self, bitmap: PageBitmap, zone: Optional[SearchZone] = None) -> Detection:
        footer_zone = zone if zone is not None else detect_footer_band(bitmap)
        if footer_zone is not None:
            y0, y1 = footer_zone.y0, footer_zone.y1
        else:
            y0 = int(math.floor(bitmap.height * FALLBACK_FOOTER_Y_RATIO))
            y1 = bitmap.height - 1

        bbox = PixelBox(x=0, y=y0, width=bitmap.width, height=max(1, y1 - y0))
        logger.info(f"Page {bitmap.page_number}: force-banner zone={bbox.x},{bbox.y},{bbox.width},{bbox.height}")
        return Detection(
            match=MatchResult(score=1.0, bbox_px=bbox, matched_reference=FORCED_REFERENCE),
            plausible=True,
            wide_footer_strip=True,
            footer_zone=footer_zone,
        )


def create_detector(ctx: JobContext) -> LogoDetector:
    """
    Build the job's detector from its settings.

    Raises:
        ConfigurationError: when reference logos or API credentials are missing
    """
    config = ctx.config
    if ctx.force_footer_banner:
        logger.info("Force footer banner mode enabled: applying banner to every page")
        return ForcedFooterDetector()

    if ctx.detector_mode == DETECTOR_DETERMINISTIC:
        return TemplateMatchDetector(TemplateLibrary.from_directory(config.logo_refs_dir))

    if not config.openai_api_key:
        raise ConfigurationError(f"OPENAI_API_KEY is required for detector mode {ctx.detector_mode!r}")
    client = VisionProbeClient(
        api_key=config.openai_api_key,
        model=config.openai_model,
        api_url=config.vision_api_url,
        references=load_reference_images(config.logo_refs_dir),
        image_width=config.ai_image_width,
        timeout=config.vision_timeout_seconds,
    )
    return VisionProbeDetector(client, apply_redactions=ctx.detector_mode == DETECTOR_AI_CUT)
