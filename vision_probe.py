"""
Vision classifier adapter.

Sends the rendered page plus the reference logos to an OpenAI-compatible
chat-completions endpoint and turns its free-form reply into one candidate box.
The far end does not enforce a schema, so replies are parsed defensively: code
fences are stripped, whole-text JSON is tried first, then the outermost brace
slice, then every balanced {...} object that parses on its own.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from logo_templates import ReferenceImage
from page_raster import PageBitmap
from pdf_geometry import NormalizedBox, clamp
from redactor_errors import ClassifierError

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 500
RAW_TEXT_LOG_CHARS = 220

# Footer-only gates that block header/title false positives
FOOTER_MIN_Y = 0.72
FOOTER_BOX_WIDTH = (0.06, 0.35)
FOOTER_BOX_HEIGHT = (0.02, 0.15)
STRIP_MIN_WIDTH = 0.55
STRIP_HEIGHT = (0.06, 0.2)

PROBE_PROMPT = (
    "Find ONLY ONE branding logo in the BOTTOM FOOTER BAR of the page image. "
    "It must match one of the reference logos provided after the page image. "
    "Return ONLY a single JSON object (not an array, no markdown) with "
    "{found:boolean,confidence:number,bbox:{x:number,y:number,width:number,height:number},"
    "matchedReference:string|null}. Ignore top header/title text. "
    "Coordinates normalized 0..1 with the origin at the top-left corner."
)


@dataclass(frozen=True)
class ProbeCandidate:
    found: bool
    confidence: float
    bbox: Optional[NormalizedBox]
    matched_reference: Optional[str]

    @property
    def rank(self) -> float:
        # Footer logos sit on the right; prefer them on near-equal confidence
        return self.confidence + (self.bbox.x * 0.1 if self.bbox else 0.0)


@dataclass(frozen=True)
class ParsedReply:
    candidates: List[ProbeCandidate] = field(default_factory=list)


@dataclass(frozen=True)
class UnparseableReply:
    text: str


ClassifierReply = Union[ParsedReply, UnparseableReply]


@dataclass(frozen=True)
class AIProbeResult:
    found: bool = False
    confidence: float = 0.0
    bbox: Optional[NormalizedBox] = None
    matched_reference: Optional[str] = None
    raw_text: str = ""

    def to_audit_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "confidence": self.confidence,
            "bbox": self.bbox.to_dict() if self.bbox else None,
            "matchedReference": self.matched_reference,
            "rawText": self.raw_text or None,
        }


def clean_model_json_text(text: str) -> str:
    """Drop markdown code fences around a JSON reply."""
    if not text:
        return ""
    cleaned = text.replace("```json", "").replace("```JSON", "").replace("```", "")
    return cleaned.strip()


def salvage_json_objects(text: str) -> List[Dict[str, Any]]:
    """
    Every top-level balanced {...} chunk in ``text`` that parses as an object.

    Braces inside JSON strings are ignored; truncated or malformed chunks are
    skipped.
    """
    objects = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                try:
                    obj = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    obj = None
                if isinstance(obj, dict):
                    objects.append(obj)
                start = -1
    return objects


def _raw_detections(cleaned: str) -> List[Dict[str, Any]]:
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end > start:
            try:
                data = json.loads(cleaned[start : end + 1])
            except json.JSONDecodeError:
                data = None

    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]
    return salvage_json_objects(cleaned)


def _to_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0  # NaN


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _to_box(value: Any) -> Optional[NormalizedBox]:
    if isinstance(value, (list, tuple)) and len(value) == 4:
        value = dict(zip(("x", "y", "width", "height"), value))
    if not isinstance(value, dict):
        return None
    return NormalizedBox(
        x=clamp(_to_float(value.get("x", 0)), 0.0, 1.0),
        y=clamp(_to_float(value.get("y", 0)), 0.0, 1.0),
        width=clamp(_to_float(value.get("width", 0)), 0.0, 1.0),
        height=clamp(_to_float(value.get("height", 0)), 0.0, 1.0),
    )


def to_candidate(item: Dict[str, Any]) -> ProbeCandidate:
    """Validate and clamp one raw detection object."""
    reference = item.get("matchedReference") or item.get("matched_reference")
    return ProbeCandidate(
        found=_to_bool(item.get("found")),
        confidence=clamp(_to_float(item.get("confidence", 0)), 0.0, 1.0),
        bbox=_to_box(item.get("bbox")),
        matched_reference=str(reference) if reference else None,
    )


def parse_classifier_reply(text: str) -> ClassifierReply:
    """Parse the classifier's reply text into candidates, or mark it unparseable."""
    cleaned = clean_model_json_text(text)
    if not cleaned:
        return UnparseableReply(text or "")
    detections = _raw_detections(cleaned)
    if not detections:
        return UnparseableReply(text)
    return ParsedReply([to_candidate(item) for item in detections])


def select_best_candidate(reply: ClassifierReply, raw_text: str = "") -> AIProbeResult:
    """
    Reduce a parsed reply to a single probe result.

    Only found candidates with a non-empty box count; the best one by
    confidence + 0.1 * bbox.x wins. Anything else degrades to found=False.
    """
    if isinstance(reply, UnparseableReply):
        return AIProbeResult(raw_text=raw_text)

    usable = [
        c for c in reply.candidates if c.found and c.bbox is not None and c.bbox.width > 0 and c.bbox.height > 0
    ]
    if not usable:
        return AIProbeResult(raw_text=raw_text)

    usable.sort(key=lambda c: c.rank, reverse=True)
    best = usable[0]
    return AIProbeResult(
        found=True,
        confidence=best.confidence,
        bbox=best.bbox,
        matched_reference=best.matched_reference,
        raw_text=raw_text,
    )


def is_valid_footer_box(bbox: Optional[NormalizedBox]) -> bool:
    """A tight logo box inside the footer region."""
    if bbox is None:
        return False
    if bbox.y < FOOTER_MIN_Y:
        return False
    if bbox.width < FOOTER_BOX_WIDTH[0] or bbox.width > FOOTER_BOX_WIDTH[1]:
        return False
    if bbox.height < FOOTER_BOX_HEIGHT[0] or bbox.height > FOOTER_BOX_HEIGHT[1]:
        return False
    return True


def is_wide_footer_strip(bbox: Optional[NormalizedBox]) -> bool:
    """A banner-shaped box spanning most of the footer width."""
    if bbox is None:
        return False
    return (
        bbox.y >= FOOTER_MIN_Y
        and bbox.width >= STRIP_MIN_WIDTH
        and STRIP_HEIGHT[0] <= bbox.height <= STRIP_HEIGHT[1]
    )


def response_to_text(payload: Dict[str, Any]) -> str:
    """Concatenate the text parts of a chat-completions (or responses) payload."""
    chunks = []
    for choice in payload.get("choices") or []:
        content = (choice.get("message") or {}).get("content")
        if isinstance(content, str) and content.strip():
            chunks.append(content)
        elif isinstance(content, list):
            for part in content:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str) and text.strip():
                    chunks.append(text)
    if not chunks and isinstance(payload.get("output_text"), str):
        chunks.append(payload["output_text"])
    return "\n".join(chunks)


class VisionProbeClient:
    """Calls the external multimodal classifier once per page."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_url: str,
        references: Sequence[ReferenceImage],
        image_width: int = 1200,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.model = model
        self.api_url = api_url
        self.references = list(references)
        self.image_width = image_width
        self.timeout = timeout
        self.session = session
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, page_png: bytes) -> Dict[str, Any]:
        page_b64 = base64.b64encode(page_png).decode("utf-8")
        content: List[Dict[str, Any]] = [
            {"type": "text", "text": PROBE_PROMPT},
            {"type": "text", "text": "Page image:"},
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{page_b64}"}},
        ]
        for ref in self.references:
            content.append({"type": "text", "text": f"Reference logo: {ref.name}"})
            content.append({"type": "image_url", "image_url": {"url": ref.data_url}})

        return {
            "model": self.model,
            "temperature": 0,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "messages": [{"role": "user", "content": content}],
        }

    def probe(self, bitmap: PageBitmap) -> AIProbeResult:
        """
        Ask the classifier for the footer logo on one page.

        Args:
            bitmap: Rendered page; downscaled to ``image_width`` before sending

        Returns:
            AIProbeResult; malformed replies come back as found=False

        Raises:
            ClassifierError: on a network failure or a non-success HTTP status
        """
        payload = self.build_payload(bitmap.to_png_bytes(max_width=self.image_width))
        post = self.session.post if self.session is not None else requests.post
        try:
            response = post(self.api_url, headers=self.headers, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Vision request error on page {bitmap.page_number}: {e}")
            raise ClassifierError(f"Vision classifier request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            body = (response.text or "")[:200]
            logger.error(f"Vision API error on page {bitmap.page_number}: {response.status_code} - {body}")
            raise ClassifierError(
                f"Vision classifier request failed ({response.status_code}): {body}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
            text = response_to_text(body) if isinstance(body, dict) else ""
        except ValueError:
            logger.warning(f"Vision API returned a non-JSON body on page {bitmap.page_number}")
            text = ""

        result = select_best_candidate(parse_classifier_reply(text), raw_text=text)
        if text:
            logger.info(f"Page {bitmap.page_number}: ai-raw={text[:RAW_TEXT_LOG_CHARS]}")
        return result
