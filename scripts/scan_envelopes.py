#!/usr/bin/env python3
"""
Scan envelope photos from the command line and match them against leads.

    python scripts/scan_envelopes.py IMG [IMG ...] [--status NIEUW]
                                     [--engine vision|tesseract] [--json]

Prints one row per result plus the summary (or the full JSON report).
Exit codes: 0 ok, 1 bad input, 2 OCR not configured.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv

from storage import leads as leads_store
from storage.envelope_scan import ImageUpload, ScanSettings, scan_batch
from storage.ocr_facade import ENGINE_NAMES, ConfigurationError, get_ocr_engine
from storage.ocr_types import ScanBatchReport


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Match envelope photos against leads.")
    p.add_argument("images", nargs="+", help="jpg/png envelope photos")
    p.add_argument("--status", default=leads_store.DEFAULT_CANDIDATE_STATUS,
                   help="lead status used as candidate pool (default: %(default)s)")
    p.add_argument("--engine", choices=ENGINE_NAMES, default=None,
                   help="OCR engine (default: $OCR_ENGINE or vision)")
    p.add_argument("--json", action="store_true", help="print the JSON report")
    return p


def read_images(paths: List[str]) -> List[ImageUpload]:
    out: List[ImageUpload] = []
    for raw in paths:
        path = Path(raw)
        out.append(ImageUpload(file_name=path.name, content=path.read_bytes()))
    return out


def format_report(report: ScanBatchReport) -> str:
    lines = []
    for r in report.results:
        lead = r.matched_lead
        target = f"#{lead.id} {lead.company_name}" if lead else "-"
        detail = r.error or (r.extracted.company_name or "").strip() or "-"
        lines.append(f"{r.status.value:<10} {r.confidence:>5.1f}  {r.file_name:<32} {target:<32} {detail}")
    s = report.summary
    lines.append(f"[Scan] total={s.total} matched={s.matched} no_match={s.no_match} failed={s.failed}")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(ROOT / ".env")
    logging.basicConfig(level=(os.getenv("LOG_LEVEL") or "WARNING").upper())
    args = build_parser().parse_args(argv)

    try:
        engine = get_ocr_engine(args.engine)
    except ConfigurationError as e:
        print(f"[Scan] OCR not configured: {e}", file=sys.stderr)
        return 2

    try:
        try:
            uploads = read_images(args.images)
            candidates = leads_store.find_candidates(args.status)
        except (OSError, ValueError) as e:
            print(f"[Scan] {e}", file=sys.stderr)
            return 1

        settings = ScanSettings.from_env()
        if len(uploads) > settings.max_batch_images:
            print(f"[Scan] Too many images: {len(uploads)} (max {settings.max_batch_images})", file=sys.stderr)
            return 1

        report = scan_batch(uploads, candidates, engine=engine, settings=settings)
    finally:
        close = getattr(engine, "close", None)
        if callable(close):
            close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(format_report(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
