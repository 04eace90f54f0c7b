"""
Job Polling Routes Blueprint.
-----------------------------
- GET  /nb-check            - KIE image task (nano-banana, midjourney)
- GET  /video-check         - KIE video task (runway, veo3, aleph, midjourney)
- GET  /poll-nb-result      - single status URL, no storage write
- GET  /imagen-check        - Replicate prediction poll (POST: Replicate webhook)
- GET  /gpt-image-1-check   - same for gpt-image-1
- GET  /kling-check         - same for kling
- GET  /hf-check            - Higgsfield job set
- POST /rv-check            - client-reported video completion
"""

from flask import Blueprint, jsonify, request

from genrelay.services.kie_service import KieConfigError, KieError
from genrelay.services.higgsfield_service import HiggsfieldConfigError, HiggsfieldError
from genrelay.services.polling_service import (
    PREDICTION_PRODUCTS,
    check_job_set,
    check_prediction,
    poll_kie_task,
    poll_status_url,
    record_kie_outcome,
    settle_prediction,
)
from genrelay.services.replicate_service import ReplicateConfigError, ReplicateError
from genrelay.services.webhook_service import parse_body, record_client_video

bp = Blueprint("poll", __name__)


VIDEO_PROVIDERS = ("runway", "veo3", "aleph", "midjourney")


def _arg(*names: str) -> str:
    for name in names:
        value = (request.args.get(name) or "").strip()
        if value:
            return value
    return ""


def _caller() -> str:
    return (request.headers.get("X-USER-ID") or "").strip() or _arg("uid", "user_id")


def _missing(name: str):
    return jsonify({"ok": False, "error": f"missing_{name}"}), 400


# ─────────────────────────────────────────────────────────────
# KIE
# ─────────────────────────────────────────────────────────────
@bp.route("/nb-check", methods=["GET", "OPTIONS"])
def nb_check():
    if request.method == "OPTIONS":
        return ("", 204)

    task_id = _arg("taskId", "task_id")
    if not task_id:
        return _missing("taskId")
    user_id = _caller()
    run_id = _arg("run_id")
    provider = _arg("provider") or "nano-banana"

    try:
        outcome = poll_kie_task(task_id, kind="image")
    except KieConfigError:
        return jsonify({"ok": False, "error": "kie_not_configured"}), 500

    if outcome.status == "success":
        saved = record_kie_outcome(
            outcome,
            task_id=task_id,
            user_id=user_id,
            run_id=run_id,
            provider=provider,
            kind="image",
            mirror_legacy=True,
        )
        print(f"[POLL] nb-check {task_id}: success ({len(outcome.urls)} image(s), saved={saved})")
        return jsonify({
            "ok": True,
            "status": "success",
            "image_url": outcome.url,
            "images": outcome.urls,
            "saved": saved,
        })

    if outcome.status == "failed":
        record_kie_outcome(outcome, task_id=task_id, user_id=user_id, run_id=run_id, provider=provider, kind="image")
        return jsonify({"ok": False, "status": "failed", "raw_status": outcome.raw_status})

    return jsonify({"ok": True, "status": "pending"})


@bp.route("/video-check", methods=["GET", "OPTIONS"])
def video_check():
    if request.method == "OPTIONS":
        return ("", 204)

    task_id = _arg("taskId", "task_id")
    if not task_id:
        return _missing("taskId")
    provider = _arg("provider").lower() or "runway"
    if provider not in VIDEO_PROVIDERS:
        return jsonify({"ok": False, "error": "unknown_provider", "provider": provider}), 400

    return jsonify(poll_video(task_id, provider, _caller(), _arg("run_id")))


def poll_video(task_id: str, provider: str, user_id: str, run_id: str) -> dict:
    """Shared with the aleph-check GET fallback."""
    try:
        outcome = poll_kie_task(task_id, kind="video", provider=provider)
    except KieConfigError:
        return {"ok": False, "status": "error", "error": "kie_not_configured"}

    if outcome.status == "success":
        saved = record_kie_outcome(
            outcome, task_id=task_id, user_id=user_id, run_id=run_id, provider=provider, kind="video"
        )
        return {"ok": True, "status": "success", "video_url": outcome.url, "saved": saved}
    if outcome.status == "failed":
        record_kie_outcome(outcome, task_id=task_id, user_id=user_id, run_id=run_id, provider=provider, kind="video")
        return {"ok": False, "status": "failed", "video_url": None}
    return {"ok": True, "status": "pending", "video_url": None}


@bp.route("/poll-nb-result", methods=["GET", "OPTIONS"])
def poll_nb_result():
    if request.method == "OPTIONS":
        return ("", 204)

    task_id = _arg("taskId", "id", "task_id")
    if not task_id:
        return _missing("taskId")
    try:
        return jsonify(poll_status_url(task_id))
    except KieConfigError:
        return jsonify({"done": False, "error": "kie_not_configured"}), 500
    except KieError as e:
        return jsonify({"done": False, "error": "status_failed", "status": e.status_code, "detail": e.message}), 502


# ─────────────────────────────────────────────────────────────
# Replicate
# ─────────────────────────────────────────────────────────────
def _prediction_route(product_name: str):
    product = PREDICTION_PRODUCTS[product_name]

    def view():
        if request.method == "OPTIONS":
            return ("", 204)

        correlation = {
            "user_id": _caller(),
            "run_id": _arg("run_id"),
            "row_id": _arg("row_id") or None,
        }

        if request.method == "POST":
            # Replicate webhook: the prediction object is the body.
            prediction = parse_body(request.get_data(), request.content_type or "")
            if not prediction.get("id"):
                return jsonify({"ok": False, "error": "missing_prediction"}), 400
            return jsonify(settle_prediction(prediction, product, **correlation))

        prediction_id = _arg("id", "prediction_id")
        if not prediction_id:
            return _missing("id")
        try:
            return jsonify(check_prediction(prediction_id, product, **correlation))
        except ReplicateConfigError:
            return jsonify({"ok": False, "error": "replicate_not_configured"}), 500
        except ReplicateError as e:
            return jsonify({"ok": False, "error": "replicate_get_failed", "status": e.status_code, "details": e.body}), 502

    view.__name__ = f"{product_name.replace('-', '_')}_check"
    return view


bp.add_url_rule("/imagen-check", view_func=_prediction_route("imagen"), methods=["GET", "POST", "OPTIONS"])
bp.add_url_rule("/gpt-image-1-check", view_func=_prediction_route("gpt-image-1"), methods=["GET", "POST", "OPTIONS"])
bp.add_url_rule("/kling-check", view_func=_prediction_route("kling"), methods=["GET", "POST", "OPTIONS"])


# ─────────────────────────────────────────────────────────────
# Higgsfield
# ─────────────────────────────────────────────────────────────
@bp.route("/hf-check", methods=["GET", "OPTIONS"])
def hf_check():
    if request.method == "OPTIONS":
        return ("", 204)

    job_set_id = _arg("job_set_id", "id")
    if not job_set_id:
        return _missing("job_set_id")
    try:
        return jsonify(check_job_set(job_set_id, user_id=_caller(), run_id=_arg("run_id")))
    except HiggsfieldConfigError:
        return jsonify({"ok": False, "error": "hf_not_configured"}), 500
    except HiggsfieldError as e:
        return jsonify({"ok": False, "error": "hf_get_failed", "status": e.status_code, "details": e.body}), 502


# ─────────────────────────────────────────────────────────────
# Client-reported completion
# ─────────────────────────────────────────────────────────────
@bp.route("/rv-check", methods=["POST", "OPTIONS"])
def rv_check():
    if request.method == "OPTIONS":
        return ("", 204)

    body = request.get_json(silent=True) or {}
    user_id = str(body.get("uid") or "").strip() or _caller()
    run_id = str(body.get("run_id") or "").strip()
    video_url = str(body.get("video_url") or "").strip()
    if not user_id or not run_id or not video_url:
        return jsonify({"ok": False, "error": "need_uid_run_id_video_url"}), 400

    result = record_client_video(user_id, run_id, video_url, provider=str(body.get("provider") or "runway"))
    return jsonify(result), (200 if result.get("ok") else 400)
