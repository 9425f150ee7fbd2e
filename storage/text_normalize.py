# storage/text_normalize.py
"""
Comparison-only text canonicalization.

Used right before similarity scoring. Stored lead data is never rewritten
with this output.
"""

from __future__ import annotations

import re
from typing import Optional

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize(s: Optional[str]) -> str:
    """Lower-case, drop everything outside [a-z0-9 whitespace], collapse whitespace."""
    if not s:
        return ""
    t = str(s).lower().strip()
    t = _NON_ALNUM_RE.sub("", t)
    return _WHITESPACE_RE.sub(" ", t).strip()
