# storage/init_db.py
import os
import sqlite3
from pathlib import Path
from typing import List, Optional

# --- Paths ---
ROOT = Path(__file__).resolve().parents[1]      # repo root
STORAGE = ROOT / "storage"
SCHEMA = STORAGE / "schema.sql"
SEED = STORAGE / "seed_dev.sql"
MIGRATIONS_DIR = STORAGE / "migrations"


def resolve_db_path() -> Path:
    """storage/leadpost.db unless LEADPOST_DB points elsewhere."""
    override = (os.getenv("LEADPOST_DB") or "").strip()
    return Path(override) if override else STORAGE / "leadpost.db"

# ----------------------------
# Utilities
# ----------------------------

def connect_db(path: Optional[Path] = None) -> sqlite3.Connection:
    """Open a SQLite connection with foreign keys enforced."""
    conn = sqlite3.connect(path or resolve_db_path())
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn

def run_sql_path(conn: sqlite3.Connection, path: Path) -> None:
    """Executes an entire .sql file if it exists (idempotent schema + optional seed)."""
    if not path.exists():
        print(f"[LeadPost] Skipping missing SQL file: {path}")
        return
    sql = path.read_text(encoding="utf-8")
    if not sql.strip():
        print(f"[LeadPost] Empty SQL file: {path}")
        return
    conn.executescript(sql)

# ----------------------------
# Migration runner
# ----------------------------

def ensure_migrations_table(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
          filename   TEXT PRIMARY KEY,
          applied_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
    """)

def list_migration_files(migrations_dir: Path = MIGRATIONS_DIR) -> List[Path]:
    if not migrations_dir.exists():
        return []
    return sorted(migrations_dir.glob("*.sql"))

def run_pending_migrations(conn: sqlite3.Connection, migrations_dir: Path = MIGRATIONS_DIR) -> int:
    ensure_migrations_table(conn)
    applied = {row[0] for row in conn.execute("SELECT filename FROM schema_migrations")}
    pending = [p for p in list_migration_files(migrations_dir) if p.name not in applied]
    if not pending:
        print("[LeadPost] No pending migrations.")
        return 0
    for path in pending:
        print(f"[LeadPost] Applying migration: {path.name}")
        run_sql_path(conn, path)
        conn.execute("INSERT OR IGNORE INTO schema_migrations(filename) VALUES (?)", (path.name,))
    print(f"[LeadPost] Applied {len(pending)} migration(s).")
    return len(pending)

# ----------------------------
# Build / Migrate
# ----------------------------

def init_db(path: Optional[Path] = None, *, seed: bool = True) -> Path:
    """Create or upgrade the DB: schema, optional seed (fresh DBs only), migrations."""
    db = Path(path or resolve_db_path())
    fresh = not db.exists()
    db.parent.mkdir(parents=True, exist_ok=True)

    print(f"[LeadPost] {'Creating' if fresh else 'Migrating existing'} DB: {db}")
    conn = connect_db(db)
    try:
        run_sql_path(conn, SCHEMA)
        if fresh and seed:
            run_sql_path(conn, SEED)
        run_pending_migrations(conn)
        conn.commit()
    finally:
        conn.close()
    return db

# ----------------------------
# CLI entry
# ----------------------------

def main() -> None:
    db = init_db()
    print("[LeadPost] DB ready. Seeded demo leads if seed_dev.sql present.")
    print(f"[LeadPost] Location: {db}")
    print(f"[LeadPost] Migrations dir: {MIGRATIONS_DIR}")

if __name__ == "__main__":
    main()
