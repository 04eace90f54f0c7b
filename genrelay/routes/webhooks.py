"""
Webhook Routes Blueprint.
-------------------------
- POST /kie-callback         - KIE image jobs (nano-banana, midjourney)
- POST /video-kie-callback   - KIE video jobs (runway, veo3, mj video)
- POST /aleph-check          - Aleph callback; GET polls like /video-check

Every delivery answers HTTP 200, even when processing fails, so the
provider does not retry into a broken handler.
"""

from flask import Blueprint, jsonify, request

from genrelay.routes.poll import poll_video
from genrelay.services.webhook_service import handle_kie_image_callback, handle_kie_video_callback

bp = Blueprint("webhooks", __name__)


def _deliver(handler, **defaults):
    args = request.args.to_dict()
    for key, value in defaults.items():
        args.setdefault(key, value)
    try:
        result = handler(args, request.get_data(), request.content_type or "")
    except Exception as e:
        print(f"[WEBHOOK] {request.path} failed: {type(e).__name__}: {e}")
        result = {"ok": False, "status": "error", "saved": False, "error": str(e)[:200]}
    return jsonify(result), 200


@bp.route("/kie-callback", methods=["POST", "OPTIONS"])
def kie_callback():
    if request.method == "OPTIONS":
        return ("", 204)
    return _deliver(handle_kie_image_callback)


@bp.route("/video-kie-callback", methods=["POST", "OPTIONS"])
def video_kie_callback():
    if request.method == "OPTIONS":
        return ("", 204)
    return _deliver(handle_kie_video_callback)


@bp.route("/aleph-check", methods=["GET", "POST", "OPTIONS"])
def aleph_check():
    if request.method == "OPTIONS":
        return ("", 204)
    if request.method == "POST":
        return _deliver(handle_kie_video_callback, provider="aleph")

    task_id = (request.args.get("taskId") or request.args.get("task_id") or "").strip()
    if not task_id:
        return jsonify({"ok": False, "error": "missing_taskId"}), 400
    user_id = (request.headers.get("X-USER-ID") or request.args.get("uid") or "").strip()
    return jsonify(poll_video(task_id, "aleph", user_id, (request.args.get("run_id") or "").strip()))
