# storage/lead_matcher.py
"""
Lead Matcher — scores one parsed envelope address against the candidate pool.

Weighted field similarity:
    company name  vs lead.company_name   weight 3
    city          vs lead.city           weight 2
    street        vs lead.address        weight 1

A field only counts (in the sum AND the weight total) when both sides have
text. The best candidate is returned with its raw score even when it is
below the acceptance threshold; classification happens in envelope_scan.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from .ocr_types import LeadCandidate, MatchResult, ParsedAddress
from .similarity import similarity

COMPANY_WEIGHT = 3.0
CITY_WEIGHT = 2.0
STREET_WEIGHT = 1.0


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def _field_pairs(extracted: ParsedAddress, cand: LeadCandidate) -> Tuple[Tuple[str, str, float], ...]:
    return (
        (extracted.company_name, cand.company_name, COMPANY_WEIGHT),
        (extracted.city, cand.city, CITY_WEIGHT),
        (extracted.street, cand.address, STREET_WEIGHT),
    )


def score_candidate(extracted: ParsedAddress, cand: LeadCandidate) -> float:
    total = 0.0
    weights = 0.0
    for ours, theirs, weight in _field_pairs(extracted, cand):
        if not (ours or "").strip() or not (theirs or "").strip():
            continue
        total += similarity(ours, theirs) * weight
        weights += weight
    if weights <= 0:
        return 0.0
    return total / weights


def match(extracted: ParsedAddress, candidates: Iterable[LeadCandidate]) -> MatchResult:
    """
    Linear scan; ties keep the earlier candidate (callers pass leads in
    creation order). A zero score never counts as a match.
    """
    best: Optional[LeadCandidate] = None
    best_score = 0.0

    for cand in candidates:
        s = score_candidate(extracted, cand)
        if s > best_score:
            best = cand
            best_score = s

    return MatchResult(
        matched_lead=best,
        confidence=round(_clamp(best_score, 0.0, 100.0), 1),
    )
