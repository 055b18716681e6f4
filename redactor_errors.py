"""
Exceptions raised by the logo redaction pipeline.

Every fatal condition surfaces as a RedactorError subclass so the job driver can
mark the job failed with a readable message. Malformed classifier replies and
out-of-page boxes are recovered locally and never raise.
"""

from typing import Optional


class RedactorError(Exception):
    """Base class for all job-fatal redaction errors."""


class ConfigurationError(RedactorError):
    """Missing or unusable configuration (reference logos, thresholds, settings)."""


class RenderError(RedactorError):
    """A page could not be rasterized."""

    def __init__(self, page_number: int, message: str):
        super().__init__(f"Failed to render page {page_number}: {message}")
        self.page_number = page_number


class ClassifierError(RedactorError):
    """The external vision classifier call failed or returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class JobCancelledError(RedactorError):
    """The job was cancelled before all pages were processed."""
