# storage/envelope_scan.py
"""
Envelope Scan — batch OCR → address blocks → lead matches.

Entry points:
- scan_envelopes(images, candidates, engine=...) -> [EnvelopeScanResult, ...]
- scan_batch(images, candidates, engine=...)     -> ScanBatchReport (results + summary)

Per image (independent task, never raises):
  1. OCR once (engine handles the per-image timeout)
  2. segment word geometry into address blocks
  3. parse each block, drop noise blocks (no company and no city)
  4. match each parsed address against the whole candidate pool
  5. matched when confidence >= settings.match_threshold, else no_match

Failures (engine error, timeout, undecodable bytes, anything unexpected)
become a single ocr_failed result for that image; the rest of the batch
carries on. Results come back in input order; a multi-block image expands
into "name (#1)", "name (#2)", ...
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .layout.layout_segmenter import segment
from .lead_matcher import match
from .ocr_facade import DEFAULT_TIMEOUT_S, OcrEngine, OcrFailure
from .ocr_types import (
    EnvelopeScanResult,
    LeadCandidate,
    ParsedAddress,
    ScanBatchReport,
    ScanStatus,
    ScanSummary,
)
from .parsers.address_parser import extract_address

log = logging.getLogger(__name__)

NO_TEXT_MESSAGE = "no text found"
CANCELLED_MESSAGE = "scan cancelled before OCR"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ScanSettings:
    match_threshold: float = 60.0
    max_workers: int = 4
    max_batch_images: int = 30
    ocr_timeout_s: float = DEFAULT_TIMEOUT_S

    @staticmethod
    def from_env() -> "ScanSettings":
        return ScanSettings(
            match_threshold=_env_float("SCAN_MATCH_THRESHOLD", 60.0),
            max_workers=max(1, _env_int("SCAN_MAX_WORKERS", 4)),
            max_batch_images=max(1, _env_int("SCAN_MAX_BATCH_IMAGES", 30)),
            ocr_timeout_s=_env_float("SCAN_OCR_TIMEOUT_S", DEFAULT_TIMEOUT_S),
        )


@dataclass(frozen=True)
class ImageUpload:
    file_name: str
    content: bytes


# -----------------------------
# Per-image pipeline
# -----------------------------

def _addresses_for(words, full_text: str) -> List[Tuple[str, ParsedAddress]]:
    """(block_text, parsed) pairs for one image; always at least one pair."""
    clusters = segment(words, full_text)

    if len(clusters) == 1:
        text = clusters[0].text
        return [(text, extract_address(text))]

    kept: List[Tuple[str, ParsedAddress]] = []
    for c in clusters:
        parsed = extract_address(c.text)
        if parsed.is_noise:
            continue
        kept.append((c.text, parsed))

    if kept:
        return kept

    text = (full_text or "").strip()
    return [(text, extract_address(text))]


def _classify(
    file_name: str,
    block_text: str,
    parsed: ParsedAddress,
    candidates: Sequence[LeadCandidate],
    threshold: float,
) -> EnvelopeScanResult:
    result = match(parsed, candidates)
    matched = result.matched_lead is not None and result.confidence >= threshold
    return EnvelopeScanResult(
        file_name=file_name,
        status=ScanStatus.MATCHED if matched else ScanStatus.NO_MATCH,
        ocr_text=block_text,
        extracted=parsed,
        matched_lead=result.matched_lead,
        confidence=result.confidence,
    )


def scan_image(
    upload: ImageUpload,
    candidates: Sequence[LeadCandidate],
    *,
    engine: OcrEngine,
    settings: ScanSettings,
    cancel_event: Optional[threading.Event] = None,
) -> List[EnvelopeScanResult]:
    name = upload.file_name

    if cancel_event is not None and cancel_event.is_set():
        log.warning("Skipping %s: batch cancelled", name)
        return [EnvelopeScanResult.failed(name, CANCELLED_MESSAGE)]

    try:
        ocr = engine.annotate(upload.content, timeout=settings.ocr_timeout_s)
    except OcrFailure as e:
        log.warning("OCR failed for %s: %s", name, e)
        return [EnvelopeScanResult.failed(name, str(e) or "OCR failed")]
    except Exception as e:
        log.exception("Unexpected OCR error for %s", name)
        return [EnvelopeScanResult.failed(name, f"OCR error: {e}")]

    if ocr.is_empty:
        log.warning("OCR found no text in %s", name)
        return [EnvelopeScanResult.failed(name, NO_TEXT_MESSAGE)]

    try:
        pairs = _addresses_for(ocr.words, ocr.full_text)
        results = [
            _classify(name, text, parsed, candidates, settings.match_threshold)
            for text, parsed in pairs
        ]
    except Exception as e:
        log.exception("Address matching failed for %s", name)
        return [EnvelopeScanResult.failed(name, f"processing error: {e}")]

    if len(results) > 1:
        results = [
            EnvelopeScanResult(
                file_name=f"{name} (#{i})",
                status=r.status,
                ocr_text=r.ocr_text,
                extracted=r.extracted,
                matched_lead=r.matched_lead,
                confidence=r.confidence,
            )
            for i, r in enumerate(results, start=1)
        ]
    return results


# -----------------------------
# Batch
# -----------------------------

def summarize(results: Iterable[EnvelopeScanResult]) -> ScanSummary:
    total = matched = no_match = failed = 0
    for r in results:
        total += 1
        if r.status is ScanStatus.MATCHED:
            matched += 1
        elif r.status is ScanStatus.NO_MATCH:
            no_match += 1
        else:
            failed += 1
    return ScanSummary(total=total, matched=matched, no_match=no_match, failed=failed)


def scan_envelopes(
    images: Sequence[ImageUpload],
    candidates: Iterable[LeadCandidate],
    *,
    engine: OcrEngine,
    settings: Optional[ScanSettings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[EnvelopeScanResult]:
    """
    Bounded parallel map over images, joined in input order.
    Setting cancel_event stops new OCR calls; images whose task had not
    started yet come back as ocr_failed.
    """
    settings = settings or ScanSettings()
    pool_candidates = tuple(candidates)
    uploads = list(images)
    if not uploads:
        return []

    workers = max(1, min(settings.max_workers, len(uploads)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="envelope-scan") as pool:
        futures = [
            pool.submit(
                scan_image,
                upload,
                pool_candidates,
                engine=engine,
                settings=settings,
                cancel_event=cancel_event,
            )
            for upload in uploads
        ]
        per_image = [f.result() for f in futures]

    out: List[EnvelopeScanResult] = []
    for blocks in per_image:
        out.extend(blocks)
    return out


def scan_batch(
    images: Sequence[ImageUpload],
    candidates: Iterable[LeadCandidate],
    *,
    engine: OcrEngine,
    settings: Optional[ScanSettings] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ScanBatchReport:
    pool_candidates = tuple(candidates)
    results = scan_envelopes(
        images,
        pool_candidates,
        engine=engine,
        settings=settings,
        cancel_event=cancel_event,
    )
    summary = summarize(results)
    log.info(
        "envelope scan: images=%d candidates=%d results=%d matched=%d no_match=%d failed=%d",
        len(images), len(pool_candidates), summary.total, summary.matched, summary.no_match, summary.failed,
    )
    return ScanBatchReport(results=tuple(results), summary=summary)
