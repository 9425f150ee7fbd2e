"""
LeadPost OCR Types — envelope scan records
Immutable dataclasses for word geometry, address blocks, parsed addresses,
lead candidates and per-block scan results.

Every record that leaves the process (portal JSON, scan script --json) has a
to_dict() producing the camelCase shape the web UI consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# ────────────────────────────────────────────────
# 🧩 Base geometric unit: bounding box
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Pixel-space box on the source image (x grows right, y grows down)."""
    x_min: float
    x_max: float
    y_min: float
    y_max: float

    @property
    def x_center(self) -> float:
        return (self.x_min + self.x_max) / 2.0

    @property
    def y_center(self) -> float:
        return (self.y_min + self.y_max) / 2.0

    @property
    def width(self) -> float:
        return max(0.0, self.x_max - self.x_min)

    @property
    def height(self) -> float:
        return max(0.0, self.y_max - self.y_min)

    def to_dict(self) -> Dict[str, float]:
        return {"xMin": self.x_min, "xMax": self.x_max, "yMin": self.y_min, "yMax": self.y_max}


# ────────────────────────────────────────────────
# 🔤 OCR primitives
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class WordAnnotation:
    text: str
    bounding_box: BoundingBox


@dataclass(frozen=True, slots=True)
class OcrResponse:
    """
    What an OCR engine hands back for one image.

    full_text: the first (whole-image) annotation's description.
    words:     word-level annotations that carried geometry.
    """
    full_text: str = ""
    words: Tuple[WordAnnotation, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.full_text.strip() and not self.words


@dataclass(frozen=True, slots=True)
class TextCluster:
    """Words believed to form one physical address block, plus its reading-order text."""
    words: Tuple[WordAnnotation, ...]
    text: str


# ────────────────────────────────────────────────
# 🏷️ Line classification (tagged variants)
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class PostalCityLine:
    postal_code: str
    city: str


@dataclass(frozen=True, slots=True)
class StreetLine:
    street: str


@dataclass(frozen=True, slots=True)
class PlainLine:
    text: str


LineKind = Union[PostalCityLine, StreetLine, PlainLine]


# ────────────────────────────────────────────────
# 📮 Parsed address + lead side
# ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ParsedAddress:
    company_name: str = ""
    street: str = ""
    city: str = ""
    postal_code: str = ""
    raw_lines: Tuple[str, ...] = ()

    @property
    def is_noise(self) -> bool:
        """No company and no city: nothing the matcher can anchor on."""
        return not self.company_name and not self.city

    def extracted_dict(self) -> Dict[str, str]:
        return {
            "companyName": self.company_name,
            "city": self.city,
            "street": self.street,
            "postalCode": self.postal_code,
        }


@dataclass(frozen=True, slots=True)
class LeadCandidate:
    """Read-only projection of a lead row used for matching."""
    id: int
    company_name: str = ""
    city: str = ""
    address: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "companyName": self.company_name,
            "city": self.city,
            "address": self.address,
        }


@dataclass(frozen=True, slots=True)
class MatchResult:
    matched_lead: Optional[LeadCandidate] = None
    confidence: float = 0.0


# ────────────────────────────────────────────────
# 📦 Scan results
# ────────────────────────────────────────────────

class ScanStatus(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    OCR_FAILED = "ocr_failed"


_EMPTY_EXTRACTED = ParsedAddress()


@dataclass(frozen=True, slots=True)
class EnvelopeScanResult:
    file_name: str
    status: ScanStatus
    ocr_text: str = ""
    extracted: ParsedAddress = _EMPTY_EXTRACTED
    matched_lead: Optional[LeadCandidate] = None
    confidence: float = 0.0
    error: Optional[str] = None

    @classmethod
    def failed(cls, file_name: str, message: str) -> "EnvelopeScanResult":
        return cls(file_name=file_name, status=ScanStatus.OCR_FAILED, error=message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "status": self.status.value,
            "ocrText": self.ocr_text,
            "extracted": self.extracted.extracted_dict(),
            "matchedLead": self.matched_lead.to_dict() if self.matched_lead else None,
            "confidence": self.confidence,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class ScanSummary:
    total: int = 0
    matched: int = 0
    no_match: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "matched": self.matched,
            "noMatch": self.no_match,
            "failed": self.failed,
        }


@dataclass(frozen=True, slots=True)
class ScanBatchReport:
    results: Tuple[EnvelopeScanResult, ...] = ()
    summary: ScanSummary = field(default_factory=ScanSummary)

    def matched_lead_ids(self) -> List[int]:
        """Lead ids for the confirmation step, in result order, without repeats."""
        seen: List[int] = []
        for r in self.results:
            if r.status is ScanStatus.MATCHED and r.matched_lead and r.matched_lead.id not in seen:
                seen.append(r.matched_lead.id)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
        }


# ────────────────────────────────────────────────
# Exports
# ────────────────────────────────────────────────

__all__ = [
    "BoundingBox",
    "WordAnnotation",
    "OcrResponse",
    "TextCluster",
    "PostalCityLine",
    "StreetLine",
    "PlainLine",
    "LineKind",
    "ParsedAddress",
    "LeadCandidate",
    "MatchResult",
    "ScanStatus",
    "EnvelopeScanResult",
    "ScanSummary",
    "ScanBatchReport",
]
