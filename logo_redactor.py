#!/usr/bin/env python3

"""
Footer Logo Redactor

Renders every page of a PDF, looks for a known logo (edge-template matching or
an external vision classifier), and covers it with a background-colored
rectangle or replaces the whole footer slot with a banner image. Every page
decision is recorded in a JSON audit document.

Pages are processed in order against one in-memory document. Vision probes may
run ahead on a small worker pool, but their results are applied in page order.
"""

import logging
import sys
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import fitz  # PyMuPDF

from audit_engine import REDACTED_ACTIONS, AuditTrail, PageAuditRecord, decide_action
from color_sampler import sample_fill_color
from job_context import JobContext
from logo_detectors import Detection, LogoDetector, create_detector
from page_raster import PageBitmap, render_page
from pdf_geometry import DocRect, image_bbox_to_doc_rect, stable_footer_rect
from redaction_compositor import (
    DEBUG_FILL_COLOR,
    draw_banner_fitted,
    draw_debug_outline,
    draw_solid_fill,
    load_banner,
)
from redactor_config import SOLID_FOOTER_COLOR
from redactor_errors import RedactorError

logger = logging.getLogger("logo_redactor")


def configure_logging(log_file: Optional[str] = "logo_redaction_log.txt", verbose: bool = True) -> None:
    """File + stdout logging for command-line runs."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )


@dataclass
class RedactionOutcome:
    """Redacted PDF bytes, the audit document and the job result record."""

    output: bytes
    audit: Dict[str, Any]
    result: Dict[str, Any]


class LogoRedactor:
    def __init__(self, ctx: JobContext, detector: Optional[LogoDetector] = None):
        self.ctx = ctx
        self.config = ctx.config
        self.detector = detector or create_detector(ctx)
        self.banner = load_banner(ctx.format_profile.banner_path) if self.detector.replaces_banner else None
        if self.config.debug_draw_boxes:
            logger.info("Debug draw mode enabled: red/orange boxes will be visible")

    def pages_to_process_for(self, total_pages_in_pdf: int) -> int:
        """How many leading pages this job will process."""
        pages = min(total_pages_in_pdf, self.config.max_pages_per_job, self.config.ai_max_pages_per_job)
        if self.config.ai_page_limit > 0:
            pages = min(pages, self.config.ai_page_limit)
        return max(0, pages)

    def redact_document(self, doc: fitz.Document) -> AuditTrail:
        """
        Detect and redact the logo on each page of ``doc`` in place.

        Args:
            doc: Open PyMuPDF document; modified in place

        Returns:
            AuditTrail with one record per processed page

        Raises:
            RenderError, ClassifierError: the first page failure aborts the job
            JobCancelledError: the job was cancelled between pages
        """
        total_pages_in_pdf = doc.page_count
        pages_to_process = self.pages_to_process_for(total_pages_in_pdf)
        trail = AuditTrail(
            detector=self.detector.detector_id,
            format_key=self.ctx.format_key,
            format_profile=self.ctx.format_profile,
            thresholds=self.ctx.thresholds,
            mode=self.ctx.settings.mode,
        )
        logger.info(f"Processing {pages_to_process}/{total_pages_in_pdf} page(s)")

        workers = self.config.ai_max_workers if self.detector.is_remote else 1
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vision-probe") if workers > 1 else None
        pending = deque()
        try:
            for index in range(pages_to_process):
                self.ctx.raise_if_cancelled()
                logger.info(f"Page {index + 1}/{pages_to_process}: render")
                bitmap = render_page(doc[index], self.config.render_scale)
                if executor is not None:
                    pending.append((index, bitmap, executor.submit(self.detector.detect, bitmap)))
                else:
                    pending.append((index, bitmap, self.detector.detect(bitmap)))

                if len(pending) >= workers:
                    self._finish_page(doc, trail, pages_to_process, *pending.popleft())

            while pending:
                self.ctx.raise_if_cancelled()
                self._finish_page(doc, trail, pages_to_process, *pending.popleft())
        finally:
            if executor is not None:
                executor.shutdown(wait=True, cancel_futures=True)

        return trail

    def _finish_page(
        self,
        doc: fitz.Document,
        trail: AuditTrail,
        pages_to_process: int,
        index: int,
        bitmap: PageBitmap,
        detection: Union[Detection, Future],
    ) -> None:
        if isinstance(detection, Future):
            detection = detection.result()

        page = doc[index]
        page_number = index + 1
        match = detection.match
        action = decide_action(
            match.score,
            detection.plausible,
            detection.wide_footer_strip,
            self.ctx.thresholds,
            allow_apply=self.detector.allow_apply,
        )

        pdf_rect = None
        debug_preview_rect = None
        if action in REDACTED_ACTIONS:
            pdf_rect = self._apply_redaction(page, bitmap, detection)
        elif self.config.debug_draw_boxes and match.bbox_px is not None:
            debug_preview_rect = image_bbox_to_doc_rect(
                match.bbox_px, bitmap.width, bitmap.height, page.rect.width, page.rect.height
            )
            draw_debug_outline(page, debug_preview_rect)

        logger.info(
            f"Page {page_number}: score={match.score:.3f} plausible={detection.plausible} "
            f"action={action} ref={match.matched_reference or 'n/a'}"
        )
        trail.add(
            PageAuditRecord(
                page_number=page_number,
                detection_score=match.score,
                matched_reference=match.matched_reference,
                ai_probe=detection.ai_probe.to_audit_dict() if detection.ai_probe else None,
                footer_zone=detection.footer_zone,
                bbox_px=match.bbox_px,
                pdf_rect=pdf_rect,
                debug_preview_rect=debug_preview_rect,
                plausible=detection.plausible,
                action=action,
            )
        )
        self.ctx.mark_page_done(page_number, pages_to_process)

    def _apply_redaction(self, page: fitz.Page, bitmap: PageBitmap, detection: Detection) -> DocRect:
        """Draw the redaction for an auto-level match and return where it went."""
        page_width = page.rect.width
        page_height = page.rect.height
        profile = self.ctx.format_profile

        if detection.wide_footer_strip and self.detector.replaces_banner:
            rect = stable_footer_rect(page_width, page_height, profile.footer_ratio)
            if self.banner is not None:
                draw_banner_fitted(
                    page,
                    self.banner,
                    rect,
                    fit=profile.banner_fit,
                    fill_background=profile.fill_background,
                    bg_color=SOLID_FOOTER_COLOR,
                    bottom_offset=profile.bottom_offset_px,
                )
            else:
                draw_solid_fill(page, rect, SOLID_FOOTER_COLOR)
            return rect

        bbox = detection.match.bbox_px
        rect = image_bbox_to_doc_rect(bbox, bitmap.width, bitmap.height, page_width, page_height)
        if self.config.debug_draw_boxes and not detection.wide_footer_strip:
            color = DEBUG_FILL_COLOR
        else:
            color = sample_fill_color(bitmap, bbox)
        draw_solid_fill(page, rect, color)
        return rect


def build_job_result(audit: Dict[str, Any]) -> Dict[str, Any]:
    """Result record handed back to the job driver."""
    summary = audit["summary"]
    return {
        "pagesTotal": summary["totalPages"],
        "pagesProcessed": summary["totalPages"],
        "progress": 100,
        "hasReview": summary["statusHint"] != "completed",
        "removedCount": summary["removed"],
        "reviewCount": summary["review"],
    }


def redact_pdf_bytes(pdf_bytes: bytes, ctx: JobContext, detector: Optional[LogoDetector] = None) -> RedactionOutcome:
    """
    Run a whole job in memory.

    The detector is built (and reference logos loaded) before the PDF is
    touched, so configuration errors abort before any page work.
    """
    redactor = LogoRedactor(ctx, detector)
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise RedactorError(f"Could not open input PDF: {e}") from e

    try:
        trail = redactor.redact_document(doc)
        output = doc.tobytes(garbage=1, deflate=True)
        audit = trail.to_document(total_pages_in_pdf=doc.page_count)
    finally:
        doc.close()

    summary = audit["summary"]
    logger.info(f"Summary removed={summary['removed']} review={summary['review']} none={summary['none']}")
    return RedactionOutcome(output=output, audit=audit, result=build_job_result(audit))
