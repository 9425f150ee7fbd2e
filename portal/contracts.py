# portal/contracts.py
from __future__ import annotations
from typing import Any, List, Tuple

MAX_CONFIRM_IDS = 500

def _is_intlike(x: Any) -> bool:
    if isinstance(x, bool):
        return False
    if isinstance(x, str):
        return x.strip().isdigit()
    try:
        return int(x) == x
    except Exception:
        return False

def validate_confirm_payload(payload: Any) -> Tuple[bool, str, List[int]]:
    """
    Body of POST /api/leads/confirm-sent: {"ids": [1, 2, ...]}.
    Returns (ok, error, ids) with ids de-duplicated in first-seen order.
    """
    if not isinstance(payload, dict):
        return False, "body must be a JSON object", []

    if "ids" not in payload:
        return False, "missing top-level keys: ids", []

    ids = payload.get("ids")
    if not isinstance(ids, list):
        return False, "ids must be a list", []
    if not ids:
        return False, "ids must not be empty", []
    if len(ids) > MAX_CONFIRM_IDS:
        return False, f"too many ids (max {MAX_CONFIRM_IDS})", []

    out: List[int] = []
    seen = set()
    for i, v in enumerate(ids):
        if not _is_intlike(v):
            return False, f"ids[{i}] must be an integer", []
        n = int(v)
        if n <= 0:
            return False, f"ids[{i}] must be positive", []
        if n not in seen:
            seen.add(n)
            out.append(n)

    return True, "", out
