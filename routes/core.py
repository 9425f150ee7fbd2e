# routes/core.py
from flask import Blueprint, jsonify
from datetime import datetime

core_bp = Blueprint("core", __name__)

@core_bp.get("/")
def index():
    return jsonify({
        "ok": True,
        "service": "leadpost",
        "endpoints": [
            "/health",
            "/ocr/health",
            "/api/leads",
            "/api/leads/scan-envelopes",
            "/api/leads/confirm-sent",
        ],
    })

@core_bp.get("/health")
def health():
    return jsonify({"ok": True, "status": "ok", "time": datetime.utcnow().isoformat(timespec="seconds") + "Z"})
