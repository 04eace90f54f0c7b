"""
Health and diagnostics routes.
"""

from __future__ import annotations

from flask import Blueprint, jsonify

from genrelay import db
from genrelay.config import config
from genrelay.db import StorageError, StorageRequestError, Tables
from genrelay.utils import mask_url, now_ms

bp = Blueprint("health", __name__)


@bp.route("/health", methods=["GET"])
def health():
    return jsonify({"ok": True})


@bp.route("/storage-check", methods=["GET"])
def storage_check():
    if not db.is_configured():
        return jsonify({"ok": False, "error": "storage_not_configured"}), 503
    if not db.verify_connection():
        return jsonify({"ok": False, "error": "storage_unreachable"}), 503
    return jsonify({"ok": True, "storage": "connected"})


@bp.route("/nb-diag", methods=["GET"])
def nb_diag():
    """Insert a probe row into the legacy results table and report what happened."""
    report = {
        "has_url": bool(config.SUPABASE_URL),
        "has_service_key": bool(config.SUPABASE_SERVICE_ROLE_KEY),
        "url_sample": mask_url(config.SUPABASE_URL),
        "table": Tables.LEGACY_RESULTS,
    }
    probe = {
        "user_id": "diag",
        "run_id": f"diag-{now_ms()}",
        "task_id": None,
        "image_url": "https://example.com/diag.png",
    }
    try:
        db.insert(Tables.LEGACY_RESULTS, probe)
        report.update({"insert_status": 201, "insert_ok": True})
    except StorageRequestError as e:
        report.update({"insert_status": e.status_code, "insert_ok": False, "insert_text": e.body or str(e)})
    except StorageError as e:
        report.update({"insert_ok": False, "exception": str(e)})
    return jsonify(report)
