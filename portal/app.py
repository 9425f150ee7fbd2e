# portal/app.py
from flask import Flask, jsonify, request, session

# --- Standard libs & typing ---
import logging
import os
import sys
from functools import wraps
from pathlib import Path
from typing import Any, Dict, List, Tuple

# big-file error handling
from werkzeug.exceptions import RequestEntityTooLarge

# --- Paths ---
ROOT = Path(__file__).resolve().parents[1]

# Make project root importable so we can import storage.*
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

# --- Load .env (GOOGLE_VISION_API_KEY / OCR_ENGINE / TESSERACT_CMD ...) ---
from dotenv import load_dotenv
load_dotenv(ROOT / ".env")

from storage import leads as leads_store
from storage.envelope_scan import ImageUpload, ScanSettings, scan_batch
from storage.ocr_facade import ConfigurationError, get_ocr_engine
from portal.contracts import validate_confirm_payload
from portal.ocr_health import bp as ocr_health_bp
from routes.core import core_bp

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger(__name__)

# ------------------------
# App & Config
# ------------------------
app = Flask(__name__)

app.config["SECRET_KEY"] = os.getenv("PORTAL_SECRET_KEY") or "dev-secret-change-me"
# a full batch of phone photos; werkzeug rejects anything larger with 413
app.config["MAX_CONTENT_LENGTH"] = int(os.getenv("PORTAL_MAX_UPLOAD_MB") or 150) * 1024 * 1024

DEV_USERNAME = os.getenv("PORTAL_USERNAME") or "admin"
DEV_PASSWORD = os.getenv("PORTAL_PASSWORD") or "letmein"

app.register_blueprint(core_bp)
app.register_blueprint(ocr_health_bp)

# Allowed upload types
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png"}
def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS

print(f"[LeadPost] Portal ready (db={leads_store.db_path()}, engine={os.getenv('OCR_ENGINE') or 'vision'})")

# ------------------------
# JSON helpers
# ------------------------
def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status

@app.errorhandler(RequestEntityTooLarge)
def _too_large(_e):
    return _error("Upload too large. Send fewer or smaller images, or raise PORTAL_MAX_UPLOAD_MB.", 413)

# ------------------------
# Auth helper
# ------------------------
def login_required(view_func):
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        if not session.get("user"):
            return _error("login required", 401)
        return view_func(*args, **kwargs)
    return wrapper

# ------------------------
# Auth (Login / Logout)
# ------------------------
@app.post("/login")
def login_post():
    body = request.get_json(silent=True) or {}
    username = (body.get("username") or request.form.get("username") or "").strip()
    password = (body.get("password") or request.form.get("password") or "").strip()
    if username == DEV_USERNAME and password == DEV_PASSWORD:
        session["user"] = {"username": username, "role": "admin"}
        return jsonify({"ok": True, "user": session["user"]})
    return _error("Invalid credentials", 401)

@app.post("/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})

# ------------------------
# Leads API
# ------------------------
@app.get("/db/health")
def db_health():
    try:
        with leads_store.db_connect() as conn:
            count = conn.execute("SELECT COUNT(*) AS c FROM leads").fetchone()["c"]
        return jsonify({"ok": True, "db_path": str(leads_store.db_path()), "leads": count})
    except Exception as e:
        return _error(str(e), 500)

@app.get("/api/leads")
@login_required
def api_list_leads():
    try:
        limit = int(request.args.get("limit") or 50)
    except ValueError:
        return _error("limit must be an integer", 400)
    try:
        rows = leads_store.list_leads(
            status=request.args.get("status") or None,
            search=request.args.get("search") or None,
            limit=limit,
        )
    except ValueError as e:
        return _error(str(e), 400)
    return jsonify({"ok": True, "leads": rows, "count": len(rows)})

def _collect_uploads(settings: ScanSettings) -> Tuple[List[ImageUpload], str]:
    files = [f for f in request.files.getlist("images") if f and f.filename]
    if not files:
        return [], "No images provided (multipart field 'images')"
    if len(files) > settings.max_batch_images:
        return [], f"Too many images: {len(files)} (max {settings.max_batch_images})"
    for f in files:
        if not allowed_file(f.filename):
            return [], f"Unsupported file type for {f.filename!r}. Allowed: jpg, jpeg, png"

    # nothing touches disk; the client's file name is the result identifier
    uploads = [ImageUpload(file_name=f.filename, content=f.read()) for f in files]
    return uploads, ""

@app.post("/api/leads/scan-envelopes")
@login_required
def api_scan_envelopes():
    settings = ScanSettings.from_env()

    # Engine first: a missing key/binary fails the batch before any image is read
    try:
        engine = get_ocr_engine()
    except ConfigurationError as e:
        log.error("OCR not configured: %s", e)
        return _error(str(e), 500)

    try:
        uploads, err = _collect_uploads(settings)
        if err:
            return _error(err, 400)

        status = (request.form.get("status") or leads_store.DEFAULT_CANDIDATE_STATUS).strip().upper()
        try:
            candidates = leads_store.find_candidates(status)
        except ValueError as e:
            return _error(str(e), 400)

        report = scan_batch(uploads, candidates, engine=engine, settings=settings)
    finally:
        close = getattr(engine, "close", None)
        if callable(close):
            close()

    payload: Dict[str, Any] = {"ok": True, **report.to_dict()}
    return jsonify(payload)

@app.post("/api/leads/confirm-sent")
@login_required
def api_confirm_sent():
    ok, err, ids = validate_confirm_payload(request.get_json(silent=True))
    if not ok:
        return _error(err, 400)
    updated = leads_store.confirm_sent(ids)
    log.info("confirm-sent: %d of %d lead(s) moved to %s", updated, len(ids), leads_store.SENT_STATUS)
    return jsonify({"ok": True, "updated": updated})

# ------------------------
# Run
# ------------------------
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=os.getenv("FLASK_DEBUG") == "1")
