"""
PDF Processor - Runs one redaction job end to end
Reads the input PDF, runs the logo redactor, and writes the redacted PDF and its
audit JSON only once every page succeeded.
"""

import argparse
import json
import logging
import os
import tempfile
import threading
import time
from typing import IO, Any, Callable, Dict, Optional

from job_context import JobContext
from logo_redactor import RedactionOutcome, configure_logging, redact_pdf_bytes
from redactor_config import DETECTOR_MODES, JobSettings, RedactorConfig

logger = logging.getLogger(__name__)


def _run_job(
    pdf_bytes: bytes,
    settings: Optional[Dict[str, Any]],
    config: Optional[RedactorConfig],
    progress_callback: Optional[Callable],
    cancel_event: Optional[threading.Event],
) -> RedactionOutcome:
    ctx = JobContext(
        config=config or RedactorConfig.from_env(),
        settings=JobSettings.from_dict(settings),
        progress_callback=progress_callback,
        cancel_event=cancel_event,
    )
    ctx.report_progress(0.05, "Loading detector")
    outcome = redact_pdf_bytes(pdf_bytes, ctx)
    ctx.report_progress(1.0, "Redaction complete")
    return outcome


def _temp_path_beside(path: str) -> str:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=os.path.basename(path), dir=directory)
    os.close(fd)
    return temp_path


def _write_outputs(outcome: RedactionOutcome, output_path: str, audit_path: str) -> None:
    """Write both files to temporaries first, then move them into place."""
    temp_output = _temp_path_beside(output_path)
    temp_audit = _temp_path_beside(audit_path)
    try:
        with open(temp_output, "wb") as f:
            f.write(outcome.output)
        with open(temp_audit, "w", encoding="utf-8") as f:
            json.dump(outcome.audit, f, indent=2)
        os.replace(temp_output, output_path)
        try:
            os.replace(temp_audit, audit_path)
        except OSError:
            # An output without its audit must not survive
            os.remove(output_path)
            raise
    finally:
        for leftover in (temp_output, temp_audit):
            if os.path.exists(leftover):
                os.remove(leftover)


def process_pdf(
    input_path: str,
    output_path: str,
    audit_path: str,
    settings: Optional[Dict[str, Any]] = None,
    config: Optional[RedactorConfig] = None,
    progress_callback: Optional[Callable] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """
    Redact one PDF file.

    Args:
        input_path: Path of the PDF to process
        output_path: Where the redacted PDF is written
        audit_path: Where the audit JSON is written
        settings: Job settings (autoThreshold, reviewThreshold, formatKey,
            mode, roi, detectorMode, forceFooterBanner)
        config: Pipeline configuration; read from the environment when omitted
        progress_callback: Optional callback(progress_float, message)
        cancel_event: Set it to cancel the job between pages

    Returns:
        Dict with pagesTotal, pagesProcessed, progress, hasReview,
        removedCount and reviewCount

    Raises:
        FileNotFoundError: if the input PDF does not exist
        RedactorError: on any job-fatal error; no output file is written
    """
    start_time = time.time()
    if not os.path.exists(input_path):
        raise FileNotFoundError(f"Input file not found: {input_path}")

    logger.info(f"Starting job input={input_path}")
    try:
        with open(input_path, "rb") as f:
            pdf_bytes = f.read()
        outcome = _run_job(pdf_bytes, settings, config, progress_callback, cancel_event)
        _write_outputs(outcome, output_path, audit_path)
    except Exception as e:
        processing_time = time.time() - start_time
        logger.error(f"Error processing {input_path} after {processing_time:.1f}s: {e}")
        raise

    processing_time = time.time() - start_time
    logger.info(f"Successfully processed {input_path} in {processing_time:.2f} seconds")
    logger.info(f"Wrote output={output_path} audit={audit_path}")
    return outcome.result


def process_pdf_stream(
    input_stream: IO[bytes],
    output_sink: IO[bytes],
    audit_sink: IO[str],
    settings: Optional[Dict[str, Any]] = None,
    config: Optional[RedactorConfig] = None,
    progress_callback: Optional[Callable] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """
    Stream variant of process_pdf.

    Nothing is written to either sink unless the whole job succeeds.
    """
    outcome = _run_job(input_stream.read(), settings, config, progress_callback, cancel_event)
    output_sink.write(outcome.output)
    json.dump(outcome.audit, audit_sink, indent=2)
    return outcome.result


def main(argv=None):
    """Command-line interface for the footer logo redactor."""
    parser = argparse.ArgumentParser(description="Remove or replace a footer logo on every page of a PDF")
    parser.add_argument("input_pdf", help="path to the PDF to process")
    parser.add_argument("output_pdf", help="path where the redacted PDF will be written")
    parser.add_argument("audit_json", help="path where the audit JSON will be written")
    parser.add_argument("--detector", choices=DETECTOR_MODES, help="detector mode (default: DETECTOR_MODE)")
    parser.add_argument("--format", dest="format_key", default="style_a", help="format profile key")
    parser.add_argument("--auto-threshold", type=float, help="score needed to redact automatically")
    parser.add_argument("--review-threshold", type=float, help="score needed to flag a page for review")
    parser.add_argument("--force-footer-banner", action="store_true", help="replace the footer banner on every page")
    args = parser.parse_args(argv)

    config = RedactorConfig.from_env()
    configure_logging(config.log_file, verbose=config.worker_verbose)

    settings = {
        "formatKey": args.format_key,
        "detectorMode": args.detector,
        "autoThreshold": args.auto_threshold,
        "reviewThreshold": args.review_threshold,
    }
    if args.force_footer_banner:
        settings["forceFooterBanner"] = True

    result = process_pdf(args.input_pdf, args.output_pdf, args.audit_json, settings=settings, config=config)
    print(json.dumps(result, indent=2))
    return result


if __name__ == "__main__":
    main()
