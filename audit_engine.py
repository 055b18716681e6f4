"""
Per-page decision policy and the job audit trail.

Each page gets exactly one action:

- ``removed`` / ``replaced_footer_banner``: plausible and score >= auto threshold
- ``review``: plausible and review threshold <= score < auto threshold
- ``none``: everything else

The audit document is built once, after the last page.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from footer_band import SearchZone
from pdf_geometry import DocRect, PixelBox
from redactor_config import FormatProfile, Thresholds

ACTION_NONE = "none"
ACTION_REMOVED = "removed"
ACTION_REPLACED_FOOTER_BANNER = "replaced_footer_banner"
ACTION_REVIEW = "review"

REDACTED_ACTIONS = (ACTION_REMOVED, ACTION_REPLACED_FOOTER_BANNER)

STATUS_COMPLETED = "completed"
STATUS_NEEDS_REVIEW = "needs_review"

OVERLAY_NOTE = (
    "Redactions are drawn as an opaque overlay; the original page content "
    "(vector paths, text, embedded fonts) remains in the file underneath."
)


def decide_action(
    score: float,
    plausible: bool,
    wide_footer_strip: bool,
    thresholds: Thresholds,
    allow_apply: bool = True,
) -> str:
    """
    Classify one page.

    Args:
        score: Detection score in 0..1
        plausible: Result of the geometric sanity gate
        wide_footer_strip: The match covers a whole banner slot
        thresholds: Auto/review thresholds
        allow_apply: False for probe-only runs, where auto-level matches are
            reported for review instead of being redacted

    Returns:
        One of the ACTION_* values
    """
    if plausible and score >= thresholds.auto_threshold:
        if not allow_apply:
            return ACTION_REVIEW
        return ACTION_REPLACED_FOOTER_BANNER if wide_footer_strip else ACTION_REMOVED
    if plausible and score >= thresholds.review_threshold:
        return ACTION_REVIEW
    return ACTION_NONE


@dataclass(frozen=True)
class PageAuditRecord:
    page_number: int
    detection_score: float
    matched_reference: Optional[str]
    ai_probe: Optional[Dict[str, Any]]
    footer_zone: Optional[SearchZone]
    bbox_px: Optional[PixelBox]
    pdf_rect: Optional[DocRect]
    debug_preview_rect: Optional[DocRect]
    plausible: bool
    action: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pageNumber": self.page_number,
            "detectionScore": round(self.detection_score, 4),
            "matchedReference": self.matched_reference,
            "aiProbe": self.ai_probe,
            "footerZone": self.footer_zone.to_dict() if self.footer_zone else None,
            "bboxPx": self.bbox_px.to_dict() if self.bbox_px else None,
            "pdfRect": self.pdf_rect.to_dict() if self.pdf_rect else None,
            "debugPreviewRect": self.debug_preview_rect.to_dict() if self.debug_preview_rect else None,
            "plausible": self.plausible,
            "action": self.action,
        }


@dataclass
class AuditSummary:
    total_pages: int
    total_pages_in_pdf: int
    removed: int
    review: int
    none: int

    @property
    def needs_review(self) -> bool:
        # A document where nothing was removed is suspicious even without review pages
        return self.review > 0 or self.removed == 0

    @property
    def status_hint(self) -> str:
        return STATUS_NEEDS_REVIEW if self.needs_review else STATUS_COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPages": self.total_pages,
            "totalPagesInPdf": self.total_pages_in_pdf,
            "removed": self.removed,
            "review": self.review,
            "none": self.none,
            "statusHint": self.status_hint,
        }


@dataclass
class AuditTrail:
    """Append-only list of page records for one job."""

    detector: str
    format_key: str
    format_profile: FormatProfile
    thresholds: Thresholds
    mode: str = "overlay"
    records: List[PageAuditRecord] = field(default_factory=list)

    def add(self, record: PageAuditRecord) -> None:
        if self.records and record.page_number <= self.records[-1].page_number:
            raise ValueError(
                f"Audit records must be added in page order: got page {record.page_number} "
                f"after page {self.records[-1].page_number}"
            )
        self.records.append(record)

    def summary(self, total_pages_in_pdf: int) -> AuditSummary:
        removed = sum(1 for r in self.records if r.action in REDACTED_ACTIONS)
        review = sum(1 for r in self.records if r.action == ACTION_REVIEW)
        return AuditSummary(
            total_pages=len(self.records),
            total_pages_in_pdf=total_pages_in_pdf,
            removed=removed,
            review=review,
            none=len(self.records) - removed - review,
        )

    def to_document(self, total_pages_in_pdf: int, processed_at: Optional[datetime] = None) -> Dict[str, Any]:
        """The persisted audit JSON for the job."""
        processed_at = processed_at or datetime.now(timezone.utc)
        return {
            "mode": self.mode,
            "detector": self.detector,
            "formatKey": self.format_key,
            "formatProfile": self.format_profile.to_dict(),
            "processedAt": processed_at.isoformat(),
            "thresholds": self.thresholds.to_dict(),
            "redactionMethod": "overlay",
            "redactionNote": OVERLAY_NOTE,
            "pages": [r.to_dict() for r in self.records],
            "summary": self.summary(total_pages_in_pdf).to_dict(),
        }
