# storage/similarity.py
"""
Edit-distance similarity on normalized text, 0-100.

100 for identical normalized strings, 0 when every position differs.
OCR noise (dropped letters, "Smet" vs "Smedt") keeps long names high.
"""

from __future__ import annotations

from typing import Optional

from rapidfuzz.distance import Levenshtein

from .text_normalize import normalize


def similarity(a: Optional[str], b: Optional[str]) -> float:
    na = normalize(a)
    nb = normalize(b)
    if not na or not nb:
        return 0.0
    max_len = max(len(na), len(nb))
    d = Levenshtein.distance(na, nb)
    return ((max_len - d) / max_len) * 100.0
