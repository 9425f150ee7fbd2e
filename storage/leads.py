# storage/leads.py  — Lead store (SQLite)
from __future__ import annotations

import os
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .ocr_types import LeadCandidate


# ------------------------------------------------------------
# Paths / DB
# ------------------------------------------------------------
ROOT = Path(__file__).resolve().parents[1]   # project root
DEFAULT_DB_PATH = ROOT / "storage" / "leadpost.db"

# Pipeline order: new → sent → (no reply | replied) → appointment → customer
LEAD_STATUSES = (
    "NIEUW",
    "VERSTUURD",
    "GEEN_REACTIE",
    "GEREAGEERD",
    "AFSPRAAK",
    "KLANT",
    "NIET_GEINTERESSEERD",
)
DEFAULT_CANDIDATE_STATUS = "NIEUW"
SENT_STATUS = "VERSTUURD"

# created_at is always "YYYY-MM-DD HH:MM:SS", so it sorts as text and
# idx_leads_status_created (migrations/001) serves filter and order together
CANDIDATES_SQL = (
    "SELECT id, company_name, city, address FROM leads WHERE status=? "
    "ORDER BY created_at ASC, id ASC"
)

_schema_ready: Set[str] = set()
_schema_lock = threading.Lock()


def db_path() -> Path:
    override = (os.getenv("LEADPOST_DB") or "").strip()
    return Path(override) if override else DEFAULT_DB_PATH


def db_connect() -> sqlite3.Connection:
    path = db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    _ensure_schema(conn, str(path))
    return conn


def _now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")


# ------------------------------------------------------------
# Schema (idempotent; mirrors storage/schema.sql)
# ------------------------------------------------------------
def _ensure_schema(conn: sqlite3.Connection, key: str) -> None:
    if key in _schema_ready:
        return
    with _schema_lock:
        if key in _schema_ready:
            return
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS leads (
              id           INTEGER PRIMARY KEY AUTOINCREMENT,
              company_name TEXT NOT NULL,
              city         TEXT,
              address      TEXT,
              postal_code  TEXT,
              website      TEXT,
              status       TEXT NOT NULL DEFAULT 'NIEUW',
              notes        TEXT,
              created_at   TEXT NOT NULL,
              updated_at   TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_leads_status ON leads(status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_leads_created ON leads(created_at)")
        conn.commit()
        _schema_ready.add(key)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}


def _check_status(status: str) -> str:
    s = (status or "").strip().upper()
    if s not in LEAD_STATUSES:
        raise ValueError(f"invalid status {status!r}; expected one of {', '.join(LEAD_STATUSES)}")
    return s


def _coerce_ids(ids: Iterable[Any]) -> List[int]:
    out: List[int] = []
    for v in ids:
        if isinstance(v, bool):
            raise ValueError(f"invalid lead id {v!r}")
        try:
            out.append(int(v))
        except (TypeError, ValueError):
            raise ValueError(f"invalid lead id {v!r}") from None
    return out


# ------------------------------------------------------------
# Public API consumed by portal/app.py and scripts/
# ------------------------------------------------------------
def create_lead(
    company_name: str,
    *,
    city: Optional[str] = None,
    address: Optional[str] = None,
    postal_code: Optional[str] = None,
    website: Optional[str] = None,
    status: str = DEFAULT_CANDIDATE_STATUS,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    name = (company_name or "").strip()
    if not name:
        raise ValueError("company_name is required")
    st = _check_status(status)
    now = _now()
    with db_connect() as conn:
        cur = conn.execute(
            """
            INSERT INTO leads (company_name, city, address, postal_code, website,
                               status, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (name, city, address, postal_code, website, st, notes, now, now),
        )
        conn.commit()
        lead_id = int(cur.lastrowid)
    return get_lead(lead_id) or {}


def get_lead(lead_id: int) -> Optional[Dict[str, Any]]:
    with db_connect() as conn:
        row = conn.execute("SELECT * FROM leads WHERE id=?", (int(lead_id),)).fetchone()
        return _row_to_dict(row) if row else None


def list_leads(
    *,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    qs = "SELECT * FROM leads WHERE 1=1"
    args: List[Any] = []
    if status:
        qs += " AND status=?"
        args.append(_check_status(status))
    if search:
        like = f"%{search.strip()}%"
        qs += " AND (company_name LIKE ? OR city LIKE ? OR address LIKE ?)"
        args += [like, like, like]
    qs += " ORDER BY created_at DESC, id DESC LIMIT ?"
    args.append(max(1, int(limit)))
    with db_connect() as conn:
        rows = conn.execute(qs, args).fetchall()
    return [_row_to_dict(r) for r in rows]


def find_candidates(status: str = DEFAULT_CANDIDATE_STATUS) -> Tuple[LeadCandidate, ...]:
    """Candidate pool for envelope matching, oldest lead first."""
    st = _check_status(status)
    with db_connect() as conn:
        rows = conn.execute(CANDIDATES_SQL, (st,)).fetchall()
    return tuple(
        LeadCandidate(
            id=int(r["id"]),
            company_name=r["company_name"] or "",
            city=r["city"] or "",
            address=r["address"] or "",
        )
        for r in rows
    )


def bulk_update_status(ids: Iterable[Any], status: str) -> int:
    st = _check_status(status)
    lead_ids = _coerce_ids(ids)
    if not lead_ids:
        return 0
    with db_connect() as conn:
        qmarks = ",".join(["?"] * len(lead_ids))
        cur = conn.execute(
            f"UPDATE leads SET status=?, updated_at=? WHERE id IN ({qmarks})",
            (st, _now(), *lead_ids),
        )
        conn.commit()
        return int(cur.rowcount)


def confirm_sent(ids: Iterable[Any]) -> int:
    """Envelope scan confirmation: the given leads were posted."""
    return bulk_update_status(ids, SENT_STATUS)
