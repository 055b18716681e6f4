"""
Job-scoped state for one redaction run.
"""

import logging
import threading
from typing import Callable, Optional, Set

from redactor_config import FormatProfile, JobSettings, RedactorConfig, Thresholds
from redactor_errors import JobCancelledError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


class JobContext:
    """
    Everything one job needs, passed explicitly to each stage.

    Holds the resolved settings, the cancellation flag and the set of pages
    already composited. Nothing here outlives the job.
    """

    def __init__(
        self,
        config: RedactorConfig,
        settings: Optional[JobSettings] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.settings = settings or JobSettings()
        self.thresholds: Thresholds = self.settings.resolve_thresholds(config)
        self.detector_mode: str = self.settings.resolve_detector_mode(config)
        self.force_footer_banner: bool = self.settings.resolve_force_footer_banner(config)
        self.format_key: str = self.settings.format_key
        self.format_profile: FormatProfile = config.format_profile(self.format_key)
        self.cancel_event = cancel_event or threading.Event()
        self.progress_callback = progress_callback
        self.processed_pages: Set[int] = set()
        logger.info(
            f"Job context: mode={self.detector_mode} auto={self.thresholds.auto_threshold} "
            f"review={self.thresholds.review_threshold} renderScale={config.render_scale} format={self.format_key}"
        )

    def cancel(self) -> None:
        self.cancel_event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise JobCancelledError(f"Job cancelled after {len(self.processed_pages)} page(s)")

    def mark_page_done(self, page_number: int, total_pages: int) -> None:
        """Record a composited page and report progress."""
        self.processed_pages.add(page_number)
        logger.debug(f"Marked page {page_number} as processed")
        self.report_progress(len(self.processed_pages) / max(1, total_pages), f"Processed page {page_number}/{total_pages}")

    def report_progress(self, progress: float, message: str) -> None:
        if self.progress_callback:
            self.progress_callback(progress, message)

    def get_processed_count(self) -> int:
        return len(self.processed_pages)
