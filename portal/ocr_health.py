from __future__ import annotations
from flask import Blueprint, jsonify
from storage import ocr_facade

bp = Blueprint("ocr_health", __name__)

@bp.route("/ocr/health", methods=["GET"])
def ocr_health():
    info = ocr_facade.health()
    return jsonify({"ok": bool(info.get("configured")), **info})
