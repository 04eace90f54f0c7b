"""
Upload Routes Blueprint.
------------------------
- POST /kie-upload         - image file → KIE hosting → {downloadUrl}
- POST /kie-upload-video   - video file → KIE hosting → {downloadUrl}
- POST /kie                - raw multipart pass-through to KIE_API_URL
"""

from flask import Blueprint, Response, jsonify, request

from genrelay.services.kie_service import KieConfigError, KieError, forward_multipart
from genrelay.services.upload_service import (
    IMAGE_FAMILY,
    VIDEO_FAMILY,
    UploadError,
    UploadFamily,
    UploadRelayError,
    relay_upload,
)

bp = Blueprint("uploads", __name__)


def _first_file():
    """First non-empty file part, whatever its field name."""
    for _field, storage in request.files.items(multi=True):
        data = storage.read()
        if data:
            return data, storage.mimetype or storage.content_type
    return b"", None


def _relay(family: UploadFamily):
    if request.method == "OPTIONS":
        return ("", 204)
    if not request.content_type or not request.content_type.startswith("multipart/form-data"):
        return jsonify({"error": "expected_multipart"}), 400

    data, declared = _first_file()
    try:
        result = relay_upload(data, declared, family)
    except UploadError as e:
        body = {"error": e.error}
        if e.detail:
            body["detail"] = e.detail
        return jsonify(body), e.status_code
    except UploadRelayError as e:
        print(f"[UPLOAD] relay failed: {e}")
        return jsonify({"error": "upload_failed", "status": e.status, "detail": e.detail}), 502
    return jsonify(result)


@bp.route("/kie-upload", methods=["POST", "OPTIONS"])
def kie_upload():
    return _relay(IMAGE_FAMILY)


@bp.route("/kie-upload-video", methods=["POST", "OPTIONS"])
def kie_upload_video():
    return _relay(VIDEO_FAMILY)


@bp.route("/kie", methods=["POST", "OPTIONS"])
def kie_passthrough():
    if request.method == "OPTIONS":
        return ("", 204)
    try:
        r = forward_multipart(request.get_data(), request.content_type or "application/octet-stream")
    except KieConfigError as e:
        return jsonify({"error": "kie_not_configured", "detail": e.message}), 500
    except KieError as e:
        return jsonify({"error": "upstream_failed", "detail": e.message}), 502
    return Response(r.content, status=r.status_code, content_type=r.headers.get("Content-Type", "application/json"))
