"""
Download Relay Blueprint.
-------------------------
- GET /download-proxy?url=&name=   - force "save as" for a remote asset
"""

from flask import Blueprint, Response, jsonify, redirect, request

from genrelay.services.download_service import is_public_http_url, relay_download

bp = Blueprint("download", __name__)


@bp.route("/download-proxy", methods=["GET", "OPTIONS"])
def download_proxy():
    if request.method == "OPTIONS":
        return ("", 204)

    url = (request.args.get("url") or "").strip()
    if not url:
        return jsonify({"ok": False, "error": "missing_url"}), 400
    if not is_public_http_url(url):
        return jsonify({"ok": False, "error": "url_not_allowed"}), 400

    decision = relay_download(url, request.args.get("name"))

    if decision.mode == "error":
        return jsonify({"ok": False, "error": "upstream_failed", "status": decision.status}), decision.status

    if decision.mode == "redirect":
        resp = redirect(decision.location, code=302)
        for key, value in decision.headers.items():
            resp.headers[key] = value
        return resp

    resp = Response(decision.body, status=200, content_type=decision.content_type)
    resp.headers["Content-Disposition"] = f'attachment; filename="{decision.filename}"'
    resp.headers["Content-Length"] = str(len(decision.body))
    for key, value in decision.headers.items():
        resp.headers[key] = value
    return resp
