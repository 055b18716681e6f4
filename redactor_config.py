"""
Configuration for the logo redaction pipeline.

Defaults come from environment variables via RedactorConfig.from_env(); a job gets its
own RedactorConfig (and JobSettings) so no state is shared between jobs.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from redactor_errors import ConfigurationError

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

DETECTOR_DETERMINISTIC = "deterministic"
DETECTOR_AI_PROBE = "ai-probe"
DETECTOR_AI_CUT = "ai-cut"
DETECTOR_MODES = (DETECTOR_DETERMINISTIC, DETECTOR_AI_PROBE, DETECTOR_AI_CUT)

BANNER_FIT_CONTAIN = "contain"
BANNER_FIT_COVER = "cover"

DEFAULT_FORMAT_KEY = "style_a"

# Brand purple used behind replacement banners (#6E1F5D)
SOLID_FOOTER_COLOR = (110 / 255, 31 / 255, 93 / 255)

DEFAULT_VISION_API_URL = "https://api.openai.com/v1/chat/completions"


def _env_str(key: str, default: str) -> str:
    value = os.getenv(key)
    return value if value not in (None, "") else default


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {key} must be a number, got {raw!r}") from e


def _env_int(key: str, default: int) -> int:
    return int(_env_float(key, default))


def parse_flag(value: Any) -> bool:
    """Booleans pass through; strings count as true only for 1/true/yes/on."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _env_flag(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw in (None, ""):
        return default
    return parse_flag(raw)


def _env_path(key: str, default: str) -> str:
    value = _env_str(key, default)
    return value if os.path.isabs(value) else os.path.join(BASE_DIR, value)


@dataclass(frozen=True)
class FormatProfile:
    """Placement of the replacement banner for one document format."""

    banner_path: str
    footer_ratio: float = 0.112
    banner_fit: str = BANNER_FIT_CONTAIN
    fill_background: bool = True
    bottom_offset_px: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bannerPath": self.banner_path,
            "footerRatio": self.footer_ratio,
            "bannerFit": self.banner_fit,
            "fillBackground": self.fill_background,
            "bottomOffsetPx": self.bottom_offset_px,
        }


def load_format_profiles() -> Dict[str, FormatProfile]:
    """Build the style_a/style_b/style_c profiles from the environment."""
    banner_a = _env_path("FORMAT_A_BANNER_PATH", _env_str("REPLACEMENT_BANNER_PATH", "samples/footer-banner.png"))
    return {
        "style_a": FormatProfile(
            banner_path=banner_a,
            footer_ratio=_env_float("FORMAT_A_FOOTER_RATIO", 0.112),
            banner_fit=_env_str("FORMAT_A_BANNER_FIT", BANNER_FIT_CONTAIN),
            fill_background=_env_flag("FORMAT_A_FILL_BG", True),
            bottom_offset_px=_env_float("FORMAT_A_BOTTOM_OFFSET_PX", 0.0),
        ),
        "style_b": FormatProfile(
            banner_path=_env_path("FORMAT_B_BANNER_PATH", "samples/footer-banner-2.png"),
            footer_ratio=_env_float("FORMAT_B_FOOTER_RATIO", 0.112),
            banner_fit=_env_str("FORMAT_B_BANNER_FIT", BANNER_FIT_CONTAIN),
            fill_background=_env_flag("FORMAT_B_FILL_BG", True),
            bottom_offset_px=_env_float("FORMAT_B_BOTTOM_OFFSET_PX", 0.0),
        ),
        "style_c": FormatProfile(
            banner_path=_env_path("FORMAT_C_BANNER_PATH", "samples/footer-banner-3.png"),
            footer_ratio=_env_float("FORMAT_C_FOOTER_RATIO", 0.2402),
            banner_fit=_env_str("FORMAT_C_BANNER_FIT", BANNER_FIT_COVER),
            fill_background=_env_flag("FORMAT_C_FILL_BG", False),
            bottom_offset_px=_env_float("FORMAT_C_BOTTOM_OFFSET_PX", 0.0),
        ),
    }


@dataclass(frozen=True)
class RedactorConfig:
    """Process-level settings for the redaction pipeline."""

    logo_refs_dir: str = os.path.join(BASE_DIR, "samples", "logo-refs")
    render_scale: float = 1.2
    max_pages_per_job: int = 200
    ai_max_pages_per_job: int = 100
    ai_page_limit: int = 0
    ai_image_width: int = 1200
    ai_max_workers: int = 1
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1-mini"
    vision_api_url: str = DEFAULT_VISION_API_URL
    vision_timeout_seconds: float = 60.0
    detector_mode: str = DETECTOR_DETERMINISTIC
    match_auto_threshold: float = 0.62
    match_review_threshold: float = 0.48
    debug_draw_boxes: bool = False
    force_footer_banner: bool = False
    worker_verbose: bool = True
    log_file: str = "logo_redaction_log.txt"
    format_profiles: Dict[str, FormatProfile] = field(default_factory=load_format_profiles)

    @classmethod
    def from_env(cls) -> "RedactorConfig":
        return cls(
            logo_refs_dir=_env_path("LOGO_REFS_DIR", "samples/logo-refs"),
            render_scale=_env_float("RENDER_SCALE", 1.2),
            max_pages_per_job=_env_int("MAX_PAGES_PER_JOB", 200),
            ai_max_pages_per_job=_env_int("AI_MAX_PAGES_PER_JOB", 100),
            ai_page_limit=_env_int("AI_PAGE_LIMIT", 0),
            ai_image_width=_env_int("AI_IMAGE_WIDTH", 1200),
            ai_max_workers=max(1, _env_int("AI_MAX_WORKERS", 1)),
            openai_api_key=_env_str("OPENAI_API_KEY", ""),
            openai_model=_env_str("OPENAI_MODEL", "gpt-4.1-mini"),
            vision_api_url=_env_str("VISION_API_URL", DEFAULT_VISION_API_URL),
            vision_timeout_seconds=_env_float("VISION_TIMEOUT_SECONDS", 60.0),
            detector_mode=_env_str("DETECTOR_MODE", DETECTOR_DETERMINISTIC),
            match_auto_threshold=_env_float("MATCH_AUTO_THRESHOLD", 0.62),
            match_review_threshold=_env_float("MATCH_REVIEW_THRESHOLD", 0.48),
            debug_draw_boxes=_env_flag("DEBUG_DRAW_BOXES", False),
            force_footer_banner=_env_flag("FORCE_FOOTER_BANNER", False),
            worker_verbose=_env_flag("WORKER_VERBOSE", True),
            log_file=_env_str("LOG_FILE", "logo_redaction_log.txt"),
            format_profiles=load_format_profiles(),
        )

    def with_overrides(self, **changes) -> "RedactorConfig":
        return replace(self, **changes)

    def format_profile(self, format_key: str) -> FormatProfile:
        """Profile for ``format_key``; unknown keys fall back to style_a."""
        profile = self.format_profiles.get(format_key)
        if profile is None:
            profile = self.format_profiles[DEFAULT_FORMAT_KEY]
        return profile


@dataclass(frozen=True)
class Thresholds:
    auto_threshold: float
    review_threshold: float

    def __post_init__(self):
        for name in ("auto_threshold", "review_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if self.review_threshold >= self.auto_threshold:
            raise ConfigurationError(
                f"review_threshold ({self.review_threshold}) must be below "
                f"auto_threshold ({self.auto_threshold})"
            )

    def to_dict(self) -> Dict[str, float]:
        return {"autoThreshold": self.auto_threshold, "reviewThreshold": self.review_threshold}


@dataclass(frozen=True)
class JobSettings:
    """Per-job settings supplied by the job driver."""

    auto_threshold: Optional[float] = None
    review_threshold: Optional[float] = None
    format_key: str = DEFAULT_FORMAT_KEY
    mode: str = "overlay"
    roi: str = "footer"
    detector_mode: Optional[str] = None
    force_footer_banner: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "JobSettings":
        """Accept either camelCase (driver payloads) or snake_case keys."""
        data = data or {}

        def pick(camel, snake, default=None):
            if camel in data and data[camel] is not None:
                return data[camel]
            return data.get(snake, default)

        auto = pick("autoThreshold", "auto_threshold")
        review = pick("reviewThreshold", "review_threshold")
        force = pick("forceFooterBanner", "force_footer_banner")
        return cls(
            auto_threshold=float(auto) if auto is not None else None,
            review_threshold=float(review) if review is not None else None,
            format_key=str(pick("formatKey", "format_key", DEFAULT_FORMAT_KEY)),
            mode=str(pick("mode", "mode", "overlay")),
            roi=str(pick("roi", "roi", "footer")),
            detector_mode=pick("detectorMode", "detector_mode"),
            force_footer_banner=parse_flag(force) if force is not None else None,
        )

    def resolve_thresholds(self, config: RedactorConfig) -> Thresholds:
        auto = self.auto_threshold if self.auto_threshold is not None else config.match_auto_threshold
        review = self.review_threshold if self.review_threshold is not None else config.match_review_threshold
        return Thresholds(auto_threshold=auto, review_threshold=review)

    def resolve_detector_mode(self, config: RedactorConfig) -> str:
        mode = self.detector_mode or config.detector_mode
        if mode not in DETECTOR_MODES:
            raise ConfigurationError(f"Unknown detector mode {mode!r}; expected one of {', '.join(DETECTOR_MODES)}")
        return mode

    def resolve_force_footer_banner(self, config: RedactorConfig) -> bool:
        if self.force_footer_banner is None:
            return config.force_footer_banner
        return parse_flag(self.force_footer_banner)
