import io
import json
import os
import threading

import fitz
import pytest

import logo_redactor
import pdf_processor
import vision_probe
from conftest import FOOTER_PURPLE, FakeResponse, chat_reply, make_pdf
from job_context import JobContext
from logo_detectors import Detection, LogoDetector
from page_raster import render_page
from pdf_geometry import PixelBox
from pdf_processor import process_pdf, process_pdf_stream
from redactor_config import JobSettings
from redactor_errors import ClassifierError, ConfigurationError, JobCancelledError, RenderError
from template_matcher import MatchResult

NOT_FOUND = '{"found": false, "confidence": 0.1, "bbox": null}'
WIDE_STRIP = '{"found": true, "confidence": 0.93, "bbox": {"x": 0.0, "y": 0.89, "width": 1.0, "height": 0.11}}'
LOGO_BOX = (
    '{"found": true, "confidence": 0.9, "bbox": {"x": 0.6, "y": 0.9, "width": 0.2, "height": 0.05},'
    ' "matchedReference": "brand.png"}'
)


class StubDetector(LogoDetector):
    detector_id = "stub-v1"

    def __init__(self, detection):
        self.detection = detection

    def detect(self, bitmap, zone=None):
        return self.detection


def run_job(tmp_path, config, pages=1, settings=None, footer_band=False, **kwargs):
    input_path = make_pdf(tmp_path / "input.pdf", pages=pages, footer_band=footer_band)
    output_path = tmp_path / "out" / "output.pdf"
    audit_path = tmp_path / "out" / "audit.json"
    result = process_pdf(str(input_path), str(output_path), str(audit_path), settings=settings, config=config, **kwargs)
    with open(audit_path, encoding="utf-8") as f:
        audit = json.load(f)
    return result, audit, output_path


def fake_vision(monkeypatch, *replies):
    """Serve the given reply texts in order, repeating the last one."""
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append(url)
        reply = replies[min(len(calls), len(replies)) - 1]
        return reply if isinstance(reply, FakeResponse) else chat_reply(reply)

    monkeypatch.setattr(vision_probe.requests, "post", fake_post)
    return calls


def test_blank_page_deterministic_needs_review(tmp_path, config):
    result, audit, output_path = run_job(tmp_path, config)

    assert audit["detector"] == "template-match-v2"
    assert [p["action"] for p in audit["pages"]] == ["none"]
    assert audit["summary"]["statusHint"] == "needs_review"
    assert result["hasReview"] is True
    assert result["removedCount"] == 0
    with fitz.open(str(output_path)) as doc:
        assert doc.page_count == 1


def test_forced_banner_replaces_every_footer(tmp_path, config):
    result, audit, output_path = run_job(
        tmp_path, config, pages=3, settings={"forceFooterBanner": True}, footer_band=True
    )

    assert audit["detector"] == "footer-banner-v1"
    assert [p["action"] for p in audit["pages"]] == ["replaced_footer_banner"] * 3
    assert audit["summary"]["removed"] == 3
    assert audit["summary"]["statusHint"] == "completed"
    assert result == {
        "pagesTotal": 3,
        "pagesProcessed": 3,
        "progress": 100,
        "hasReview": False,
        "removedCount": 3,
        "reviewCount": 0,
    }
    rect = audit["pages"][0]["pdfRect"]
    assert rect["y"] == 0.0
    assert rect["height"] == pytest.approx(792 * 0.112, abs=1e-3)

    with fitz.open(str(output_path)) as doc:
        bitmap = render_page(doc[0], 1.0)
    # centre of the footer slot shows the green banner
    assert tuple(bitmap.pixels[792 - 44, 306]) == (0, 160, 0)


def test_forced_banner_without_band_uses_fallback_zone(tmp_path, config):
    _, audit, _ = run_job(tmp_path, config, settings={"forceFooterBanner": True})
    page = audit["pages"][0]
    assert page["action"] == "replaced_footer_banner"
    assert page["footerZone"] is None
    assert page["bboxPx"]["y"] == int(950 * 0.885)


def test_ai_cut_not_found_leaves_page(tmp_path, config, monkeypatch):
    fake_vision(monkeypatch, NOT_FOUND)
    result, audit, _ = run_job(tmp_path, config, settings={"detectorMode": "ai-cut"})

    page = audit["pages"][0]
    assert audit["detector"] == "ai-cut-v1"
    assert page["action"] == "none"
    assert page["aiProbe"]["found"] is False
    assert result["hasReview"] is True


def test_ai_cut_wide_strip_replaces_banner(tmp_path, config, monkeypatch):
    fake_vision(monkeypatch, WIDE_STRIP)
    _, audit, _ = run_job(tmp_path, config, pages=2, settings={"detectorMode": "ai-cut"}, footer_band=True)
    assert [p["action"] for p in audit["pages"]] == ["replaced_footer_banner"] * 2
    assert audit["pages"][0]["detectionScore"] == 0.93


def test_ai_probe_reports_without_redacting(tmp_path, config, monkeypatch):
    fake_vision(monkeypatch, LOGO_BOX)
    result, audit, _ = run_job(tmp_path, config, settings={"detectorMode": "ai-probe"})

    page = audit["pages"][0]
    assert audit["detector"] == "ai-probe-v1"
    assert page["action"] == "review"
    assert page["pdfRect"] is None
    assert page["matchedReference"] == "brand.png"
    assert result["reviewCount"] == 1


def test_ai_mode_requires_api_key(tmp_path, config):
    with pytest.raises(ConfigurationError):
        run_job(tmp_path, config.with_overrides(openai_api_key=""), settings={"detectorMode": "ai-cut"})
    assert not (tmp_path / "out" / "output.pdf").exists()


def test_classifier_failure_aborts_job(tmp_path, config, monkeypatch):
    fake_vision(monkeypatch, NOT_FOUND, FakeResponse(503, text="unavailable"))
    with pytest.raises(ClassifierError):
        run_job(tmp_path, config, pages=3, settings={"detectorMode": "ai-cut"})
    assert not (tmp_path / "out" / "output.pdf").exists()
    assert not (tmp_path / "out" / "audit.json").exists()


def test_render_failure_aborts_job(tmp_path, config, monkeypatch):
    real_render = logo_redactor.render_page

    def flaky_render(page, scale):
        if page.number == 1:
            raise RenderError(2, "corrupt content stream")
        return real_render(page, scale)

    monkeypatch.setattr(logo_redactor, "render_page", flaky_render)
    with pytest.raises(RenderError, match="page 2"):
        run_job(tmp_path, config, pages=3)
    assert not (tmp_path / "out" / "output.pdf").exists()


def test_cancelled_job_writes_nothing(tmp_path, config):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(JobCancelledError):
        run_job(tmp_path, config, pages=2, cancel_event=cancel)
    assert not (tmp_path / "out" / "output.pdf").exists()


def test_page_limit_caps_processed_pages(tmp_path, config):
    result, audit, _ = run_job(tmp_path, config.with_overrides(ai_page_limit=2), pages=3)
    assert [p["pageNumber"] for p in audit["pages"]] == [1, 2]
    assert audit["summary"]["totalPages"] == 2
    assert audit["summary"]["totalPagesInPdf"] == 3
    assert result["pagesTotal"] == 2


def test_parallel_probes_keep_page_order(tmp_path, config, monkeypatch):
    calls = fake_vision(monkeypatch, WIDE_STRIP)
    progress = []
    _, audit, _ = run_job(
        tmp_path,
        config.with_overrides(ai_max_workers=3),
        pages=4,
        settings={"detectorMode": "ai-cut"},
        progress_callback=lambda p, m: progress.append(p),
    )
    assert [p["pageNumber"] for p in audit["pages"]] == [1, 2, 3, 4]
    assert len(calls) == 4
    assert progress[-1] == 1.0


def test_missing_input_raises(tmp_path, config):
    with pytest.raises(FileNotFoundError):
        process_pdf(str(tmp_path / "nope.pdf"), str(tmp_path / "o.pdf"), str(tmp_path / "a.json"), config=config)


def test_removed_logo_is_covered_with_sampled_color(tmp_path, config):
    doc = fitz.open()
    page = doc.new_page(width=612, height=792)
    page.draw_rect(fitz.Rect(0, 712, 612, 792), color=None, fill=tuple(c / 255 for c in FOOTER_PURPLE))
    page.draw_rect(fitz.Rect(380, 730, 490, 760), color=None, fill=(1, 1, 1))
    pdf_bytes = doc.tobytes()
    doc.close()

    detection = Detection(
        match=MatchResult(score=0.9, bbox_px=PixelBox(x=450, y=870, width=150, height=50), matched_reference="brand.png"),
        plausible=True,
    )
    ctx = JobContext(config, JobSettings())
    outcome = logo_redactor.redact_pdf_bytes(pdf_bytes, ctx, detector=StubDetector(detection))

    page_audit = outcome.audit["pages"][0]
    assert page_audit["action"] == "removed"
    assert page_audit["pdfRect"]["x"] == pytest.approx(375.2, abs=0.5)

    with fitz.open(stream=outcome.output, filetype="pdf") as redacted:
        bitmap = render_page(redacted[0], 1.2)
    r, g, b = (int(v) for v in bitmap.pixels[895, 525])
    assert abs(r - FOOTER_PURPLE[0]) <= 3
    assert abs(g - FOOTER_PURPLE[1]) <= 3
    assert abs(b - FOOTER_PURPLE[2]) <= 3


def test_debug_mode_outlines_review_candidates(tmp_path, config):
    detection = Detection(
        match=MatchResult(score=0.5, bbox_px=PixelBox(x=450, y=870, width=150, height=50)),
        plausible=True,
    )
    doc = fitz.open()
    doc.new_page(width=612, height=792)
    ctx = JobContext(config.with_overrides(debug_draw_boxes=True), JobSettings())
    outcome = logo_redactor.redact_pdf_bytes(doc.tobytes(), ctx, detector=StubDetector(detection))
    doc.close()

    page_audit = outcome.audit["pages"][0]
    assert page_audit["action"] == "review"
    assert page_audit["pdfRect"] is None
    assert page_audit["debugPreviewRect"] is not None


def test_stream_variant_fills_sinks(tmp_path, config):
    pdf_path = make_pdf(tmp_path / "input.pdf", pages=2)
    output = io.BytesIO()
    audit = io.StringIO()
    with open(pdf_path, "rb") as f:
        result = process_pdf_stream(f, output, audit, settings={"forceFooterBanner": True}, config=config)

    assert result["removedCount"] == 2
    assert output.getvalue().startswith(b"%PDF")
    assert json.loads(audit.getvalue())["summary"]["removed"] == 2


def test_cli_runs_a_job(tmp_path, monkeypatch, logo_refs, capsys):
    input_path = make_pdf(tmp_path / "input.pdf")
    monkeypatch.setenv("LOGO_REFS_DIR", str(logo_refs))
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "redaction.log"))
    monkeypatch.delenv("DETECTOR_MODE", raising=False)

    result = pdf_processor.main(
        [str(input_path), str(tmp_path / "output.pdf"), str(tmp_path / "audit.json"), "--auto-threshold", "0.7"]
    )

    assert result["pagesTotal"] == 1
    assert (tmp_path / "output.pdf").exists()
    assert json.loads((tmp_path / "audit.json").read_text())["thresholds"]["autoThreshold"] == 0.7
    assert '"pagesTotal": 1' in capsys.readouterr().out


def test_string_false_does_not_force_banner(tmp_path, config):
    _, audit, _ = run_job(tmp_path, config, settings={"forceFooterBanner": "false"}, footer_band=True)
    assert audit["detector"] == "template-match-v2"
    assert audit["pages"][0]["action"] != "replaced_footer_banner"


def test_ai_page_cap_applies_to_deterministic_mode(tmp_path, config):
    result, audit, _ = run_job(tmp_path, config.with_overrides(ai_max_pages_per_job=1), pages=2)
    assert [p["pageNumber"] for p in audit["pages"]] == [1]
    assert audit["summary"]["totalPagesInPdf"] == 2
    assert result["pagesTotal"] == 1


def test_failed_audit_write_leaves_no_output(tmp_path, config, monkeypatch):
    real_replace = os.replace

    def replace_failing_on_audit(src, dst):
        if str(dst).endswith("audit.json"):
            raise OSError("disk full")
        return real_replace(src, dst)

    monkeypatch.setattr(pdf_processor.os, "replace", replace_failing_on_audit)
    with pytest.raises(OSError, match="disk full"):
        run_job(tmp_path, config)
    assert list((tmp_path / "out").iterdir()) == []
