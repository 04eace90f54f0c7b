"""
Job Submission Routes Blueprint.
--------------------------------
Registered under config.API_PREFIX and the legacy serverless prefix.

KIE (callback-based, return immediately):
- POST /run-nano-banana        - nano-banana edit (alias: /kie-create)
- POST /run-nano-banana/wait   - same, then waits up to SYNC_WAIT_TIMEOUT for the image
- POST /run-midjourney         - MJ txt2img / img2img
- POST /run-mj-video           - MJ image → video
- POST /run-runway             - Runway text/image → video
- POST /run-veo3               - Veo 3 text/image → video
- POST /run-aleph              - Aleph video → video

Replicate (webhook-based):
- POST /run-imagen             - Imagen 4 fast/ultra (debit 0.5 / 1)
- POST /run-gpt-image-1        - gpt-image-1 (debit 4)
- POST /run-kling              - Kling 2.5 turbo (debit 7 / 13, cancelled when the debit fails)

Higgsfield:
- POST /run-higgsfield         - DoP motion on an image

Missing input answers 200 {submitted: false, error}. Missing provider keys
answer 500. Every submission writes a placeholder generation row first.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse, urlunparse

from flask import Blueprint, g, jsonify, request

from genrelay.config import config
from genrelay.middleware import with_caller
from genrelay.services import generation_service
from genrelay.services.credits_service import debit_credits
from genrelay.services.extraction import extract_task_id
from genrelay.services.higgsfield_service import (
    DOP_MODEL,
    HiggsfieldConfigError,
    HiggsfieldError,
    create_dop_job,
    extract_job_set_id,
)
from genrelay.services.kie_service import (
    ALEPH_GENERATE,
    CREATE_TASK,
    MJ_GENERATE,
    RUNWAY_GENERATE,
    VEO_GENERATE,
    KieConfigError,
    KieError,
    kie_post,
    upload_base64,
)
from genrelay.services.polling_service import wait_for_kie_task
from genrelay.services.replicate_service import (
    GPT_IMAGE_MODEL,
    IMAGEN_MODELS,
    KLING_MODEL,
    ReplicateConfigError,
    ReplicateError,
    cancel_prediction,
    create_prediction,
)
from genrelay.services.upload_service import IMAGE_UPLOAD_PATH
from genrelay.utils import clamp_int, default_run_id, log_event

bp = Blueprint("submit", __name__)


CALLBACK_KEYS = ("callBackUrl", "callbackUrl", "webhook_url", "webhookUrl", "notify_url")
MAX_INPUT_IMAGES = 4

IMAGE_SIZES = {"auto", "1:1", "3:4", "9:16", "4:3", "16:9"}
IMAGE_SIZE_ALIASES = {
    "square": "1:1",
    "portrait": "3:4",
    "landscape": "16:9",
    "portrait:3:4": "3:4",
    "portrait:9:16": "9:16",
    "landscape:4:3": "4:3",
    "landscape:16:9": "16:9",
}

MJ_ASPECTS = {"2:3", "3:2", "1:1", "3:4", "4:3", "9:16", "16:9", "5:6", "6:5", "4:5", "5:4", "7:4", "4:7"}
MJ_SIZE_MAP = {
    "square": "1:1",
    "portrait_3_4": "3:4",
    "portrait_9_16": "9:16",
    "landscape_4_3": "4:3",
    "landscape_16_9": "16:9",
}
RUNWAY_ASPECTS = {"16:9", "9:16", "1:1", "4:3", "3:4"}
VEO_ASPECTS = {"16:9", "9:16"}
VEO_MODELS = {"veo3", "veo3_fast"}


# ─────────────────────────────────────────────────────────────
# Input normalization
# ─────────────────────────────────────────────────────────────
def _str(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def normalize_url(value: Any) -> str:
    """An absolute http(s) URL, or "" when the value is not one."""
    raw = _str(value)
    try:
        parsed = urlparse(raw)
    except ValueError:
        return ""
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ""
    return raw


def normalize_image_size(value: Any) -> str:
    raw = _str(value).lower()
    if not raw:
        return "auto"
    s = re.sub(r"\s+", "", raw).replace("_", ":").replace("-", ":").replace("/", ":")
    if s in IMAGE_SIZES:
        return s
    return IMAGE_SIZE_ALIASES.get(s, "auto")


def _coerce_ratio(value: Any) -> str:
    return re.sub(r"(\d)\s*[_\-x:]\s*(\d)", r"\1:\2", _str(value).lower())


def normalize_mj_aspect(size: Any) -> str:
    raw = _str(size).lower()
    if raw in MJ_SIZE_MAP:
        return MJ_SIZE_MAP[raw]
    coerced = _coerce_ratio(raw)
    return coerced if coerced in MJ_ASPECTS else "2:3"


def normalize_runway_aspect(value: Any) -> str:
    coerced = _coerce_ratio(value)
    return coerced if coerced in RUNWAY_ASPECTS else "3:4"


def normalize_veo_aspect(value: Any) -> str:
    coerced = _coerce_ratio(value)
    return coerced if coerced in VEO_ASPECTS else "16:9"


def to_direct_file_url(url: str) -> str:
    """Hosted uploads come back as /download/ links; the model needs /files/."""
    parsed = urlparse(url)
    return urlunparse(parsed._replace(path=parsed.path.replace("/download/", "/files/", 1)))


def _url_list(*values: Any) -> List[str]:
    urls: List[str] = []
    for value in values:
        items = value if isinstance(value, list) else [value]
        for item in items:
            url = normalize_url(item)
            if url and url not in urls:
                urls.append(url)
    return urls


def _run_id(body: Dict[str, Any], user_id: str) -> str:
    return _str(body.get("run_id")) or default_run_id(user_id)


def callback_url(route: str, **params: Any) -> str:
    base = config.PUBLIC_BASE_URL or request.host_url.rstrip("/")
    query = urlencode({k: v for k, v in params.items() if v not in (None, "")})
    return f"{base}{config.API_PREFIX}/{route}" + (f"?{query}" if query else "")


def _set_callbacks(payload: Dict[str, Any], url: str) -> Dict[str, Any]:
    for key in CALLBACK_KEYS:
        payload[key] = url
    return payload


def _not_submitted(error: str, status: int = 200, **extra):
    body = {"submitted": False, "error": error}
    body.update(extra)
    return jsonify(body), status


# ─────────────────────────────────────────────────────────────
# KIE submission
# ─────────────────────────────────────────────────────────────
def _dispatch_kie(
    path: str,
    payload: Dict[str, Any],
    *,
    user_id: str,
    run_id: str,
    provider: str,
    kind: str,
    prompt: Optional[str],
    meta: Dict[str, Any],
):
    """
    Seed the placeholder, create the KIE job, backfill its task id.
    Returns (task_id, None) on success or (None, flask response) on failure.
    """
    generation_service.seed_placeholder(user_id, run_id, provider=provider, kind=kind, prompt=prompt, meta=meta)

    try:
        data = kie_post(path, payload)
    except KieConfigError:
        return None, _not_submitted("kie_not_configured", 500)
    except KieError as e:
        print(f"[SUBMIT] {provider} run_id={run_id} rejected: {e.status_code} {e.message}")
        generation_service.mark_failed(user_id, run_id)
        return None, _not_submitted(f"kie_{e.status_code}", detail=e.message, data=e.body)

    task_id = extract_task_id(data)
    if not task_id:
        print(f"[SUBMIT] {provider} run_id={run_id} accepted without a task id")
        return None, _not_submitted("missing_task_id", data=data)

    generation_service.attach_task_id(user_id, run_id, {"task_id": task_id})
    log_event("submit.kie", {"provider": provider, "run_id": run_id, "task_id": task_id})
    return task_id, None


def _submitted(task_id: str, run_id: str, **extra):
    body = {"submitted": True, "taskId": task_id, "run_id": run_id}
    body.update(extra)
    return jsonify(body)


def _collect_nano_banana_images(body: Dict[str, Any]):
    """
    Image inputs from URLs or base64 files. Returns (urls, error_response).
    Base64 files are uploaded to KIE hosting first.
    """
    urls = _url_list(body.get("imageUrls"), body.get("image_urls"), body.get("urls"), body.get("imageUrl"))
    files = body.get("files") or []
    if not isinstance(files, list):
        files = [files]

    if not urls and files:
        if len(files) > MAX_INPUT_IMAGES:
            return None, _not_submitted("too_many_files", max=MAX_INPUT_IMAGES)
        for i, f in enumerate(files):
            if isinstance(f, dict):
                b64 = _str(f.get("data"))
                content_type = _str(f.get("contentType") or f.get("type")) or "image/png"
                name = _str(f.get("name")) or f"image-{i + 1}.png"
            else:
                b64, content_type, name = _str(f), "image/png", f"image-{i + 1}.png"
            if b64.startswith("data:") and "," in b64:
                header, b64 = b64.split(",", 1)
                content_type = header[5:].split(";")[0] or content_type
            try:
                raw = base64.b64decode(b64, validate=True)
            except (binascii.Error, ValueError):
                return None, _not_submitted("bad_base64_file", index=i)
            try:
                uploaded = upload_base64(raw, content_type, name, IMAGE_UPLOAD_PATH)
            except KieConfigError:
                return None, _not_submitted("kie_not_configured", 500)
            except KieError as e:
                return None, _not_submitted("upload_failed", status=e.status_code, detail=e.message)
            url = (uploaded.get("data") or {}).get("downloadUrl") if isinstance(uploaded, dict) else None
            if not url:
                return None, _not_submitted("upload_failed", detail="no downloadUrl")
            urls.append(url)

    if not urls:
        return None, _not_submitted("missing_image")
    if len(urls) > MAX_INPUT_IMAGES:
        urls = urls[:MAX_INPUT_IMAGES]
    return [to_direct_file_url(u) for u in urls], None


def _prepare_nano_banana():
    body = g.body
    prompt = _str(body.get("prompt"))
    if not prompt:
        return None, _not_submitted("missing_prompt")
    images, err = _collect_nano_banana_images(body)
    if err:
        return None, err

    user_id = g.user_id or "anon"
    run_id = _run_id(body, user_id)
    image_size = normalize_image_size(body.get("image_size") or body.get("size"))
    output_format = (_str(body.get("format")) or "png").lower()

    cb = callback_url("kie-callback", uid=user_id, run_id=run_id)
    payload = _set_callbacks(
        {
            "model": config.KIE_IMAGE_MODEL,
            "input": {
                "prompt": prompt,
                "image_urls": images,
                "init_image": images[0],
                "init_image_url": images[0],
                "output_format": output_format,
                "image_size": image_size,
            },
            "meta": {"uid": user_id, "run_id": run_id},
        },
        cb,
    )
    ctx = {
        "user_id": user_id,
        "run_id": run_id,
        "prompt": prompt,
        "payload": payload,
        "meta": {"model": config.KIE_IMAGE_MODEL, "aspect_ratio": image_size, "source": "nano-banana"},
    }
    return ctx, None


@bp.route("/run-nano-banana", methods=["POST", "OPTIONS"])
@bp.route("/kie-create", methods=["POST", "OPTIONS"])
@with_caller
def run_nano_banana():
    ctx, err = _prepare_nano_banana()
    if err:
        return err
    task_id, err = _dispatch_kie(
        CREATE_TASK,
        ctx["payload"],
        user_id=ctx["user_id"],
        run_id=ctx["run_id"],
        provider="nano-banana",
        kind="image",
        prompt=ctx["prompt"],
        meta=ctx["meta"],
    )
    if err:
        return err
    return _submitted(task_id, ctx["run_id"])


@bp.route("/run-nano-banana/wait", methods=["POST", "OPTIONS"])
@with_caller
def run_nano_banana_wait():
    """Synchronous variant: submit, then poll until the image exists."""
    ctx, err = _prepare_nano_banana()
    if err:
        return err
    task_id, err = _dispatch_kie(
        CREATE_TASK,
        ctx["payload"],
        user_id=ctx["user_id"],
        run_id=ctx["run_id"],
        provider="nano-banana",
        kind="image",
        prompt=ctx["prompt"],
        meta=ctx["meta"],
    )
    if err:
        return err

    try:
        outcome = wait_for_kie_task(task_id)
    except KieError as e:
        return jsonify({"ok": False, "taskId": task_id, "run_id": ctx["run_id"], "error": e.message}), 502

    if outcome.status == "success":
        generation_service.save_result(
            user_id=ctx["user_id"],
            run_id=ctx["run_id"],
            result_url=outcome.url,
            provider="nano-banana",
            kind="image",
            task_id=task_id,
            prompt=ctx["prompt"],
        )
        generation_service.mirror_legacy_result(ctx["user_id"], ctx["run_id"], task_id, outcome.url)
        return jsonify({
            "ok": True,
            "status": "success",
            "taskId": task_id,
            "run_id": ctx["run_id"],
            "image_url": outcome.url,
            "images": outcome.urls,
        })
    if outcome.status == "failed":
        generation_service.mark_failed(ctx["user_id"], ctx["run_id"], task_id=task_id)
        return jsonify({"ok": False, "status": "failed", "taskId": task_id, "run_id": ctx["run_id"]}), 500
    return jsonify({"ok": False, "status": "timeout", "taskId": task_id, "run_id": ctx["run_id"], "last": outcome.last}), 504


@bp.route("/run-midjourney", methods=["POST", "OPTIONS"])
@with_caller
def run_midjourney():
    body = g.body
    user_id = g.user_id or "anon"
    run_id = _run_id(body, user_id)
    prompt = _str(body.get("prompt"))
    image_url = normalize_url(body.get("image_url") or body.get("imageUrl"))
    aspect = normalize_mj_aspect(body.get("size") or body.get("aspectRatio"))
    task_type = "mj_img2img" if image_url else "mj_txt2img"

    cb = callback_url("kie-callback", uid=user_id, run_id=run_id, provider="midjourney")
    payload = _set_callbacks(
        {
            "taskType": task_type,
            "prompt": prompt,
            "speed": "fast",
            "fileUrl": image_url,
            "aspectRatio": aspect,
            "version": clamp_int(body.get("version"), 1, 7, 7),
            "stylization": clamp_int(body.get("stylization"), 0, 1000, 100),
            "weirdness": clamp_int(body.get("weirdness"), 0, 3000, 0),
            "waterMark": body.get("watermark", ""),
            "meta": {"uid": user_id, "run_id": run_id, "provider": "midjourney"},
            "metadata": {"uid": user_id, "run_id": run_id},
        },
        cb,
    )
    task_id, err = _dispatch_kie(
        MJ_GENERATE,
        payload,
        user_id=user_id,
        run_id=run_id,
        provider="midjourney",
        kind="image",
        prompt=prompt,
        meta={"aspect_ratio": aspect, "task_type": task_type},
    )
    if err:
        return err
    return _submitted(task_id, run_id)


@bp.route("/run-mj-video", methods=["POST", "OPTIONS"])
@with_caller
def run_mj_video():
    body = g.body
    user_id = g.user_id
    if not user_id:
        return _not_submitted("missing_user_id")
    prompt = _str(body.get("prompt"))
    image_url = normalize_url(body.get("imageUrl") or body.get("fileUrl"))
    if not prompt or not image_url:
        return _not_submitted("need_image_and_prompt")

    run_id = _run_id(body, user_id)
    aspect = normalize_mj_aspect(body.get("aspectRatio") or "1:1")
    payload = _set_callbacks(
        {
            "taskType": "mj_video",
            "version": 7,
            "prompt": prompt,
            "fileUrl": image_url,
            "aspectRatio": aspect,
            "speed": "fast",
            "motion": "high",
            "stylization": 100,
            "enableTranslation": False,
            "videoBatchSize": 1,
        },
        callback_url("video-kie-callback", uid=user_id, run_id=run_id, provider="midjourney"),
    )
    task_id, err = _dispatch_kie(
        CREATE_TASK,
        payload,
        user_id=user_id,
        run_id=run_id,
        provider="midjourney",
        kind="video",
        prompt=prompt,
        meta={"aspect_ratio": aspect, "duration": 5, "task_type": "mj_video"},
    )
    if err:
        return err
    return _submitted(task_id, run_id)


@bp.route("/run-runway", methods=["POST", "OPTIONS"])
@with_caller
def run_runway():
    body = g.body
    user_id = g.user_id
    if not user_id:
        return _not_submitted("missing_user_id")
    prompt = _str(body.get("prompt"))
    if not prompt:
        return _not_submitted("empty_prompt")

    run_id = _run_id(body, user_id)
    aspect = normalize_runway_aspect(body.get("aspectRatio") or body.get("size"))
    image_url = normalize_url(body.get("imageUrl") or body.get("image_url"))

    payload = {"prompt": prompt, "aspectRatio": aspect, "duration": 5, "quality": "1080p"}
    if image_url:
        payload["imageUrl"] = image_url
    _set_callbacks(payload, callback_url("video-kie-callback", uid=user_id, run_id=run_id, provider="runway"))

    task_id, err = _dispatch_kie(
        RUNWAY_GENERATE,
        payload,
        user_id=user_id,
        run_id=run_id,
        provider="runway",
        kind="video",
        prompt=prompt,
        meta={"aspect_ratio": aspect, "duration": 5, "quality": "1080p"},
    )
    if err:
        return err
    return _submitted(task_id, run_id)


@bp.route("/run-veo3", methods=["POST", "OPTIONS"])
@with_caller
def run_veo3():
    body = g.body
    user_id = g.user_id
    if not user_id:
        return _not_submitted("missing_user_id")
    prompt = _str(body.get("prompt"))
    image_urls = _url_list(body.get("imageUrls"), body.get("imageUrl"), body.get("fileUrl"))
    if not prompt and not image_urls:
        return _not_submitted("empty_prompt")

    run_id = _run_id(body, user_id)
    model = _str(body.get("model")).lower() or "veo3_fast"
    model = model if model in VEO_MODELS else "veo3_fast"
    aspect = normalize_veo_aspect(body.get("aspectRatio"))

    payload = {"prompt": prompt, "model": model, "aspectRatio": aspect, "duration": 8, "quality": "1080p"}
    if image_urls:
        payload["imageUrls"] = image_urls[:1]
    _set_callbacks(payload, callback_url("video-kie-callback", uid=user_id, run_id=run_id, provider="veo3"))

    task_id, err = _dispatch_kie(
        VEO_GENERATE,
        payload,
        user_id=user_id,
        run_id=run_id,
        provider="veo3",
        kind="video",
        prompt=prompt,
        meta={"aspect_ratio": aspect, "duration": 8, "quality": "1080p", "model": model},
    )
    if err:
        return err
    return _submitted(task_id, run_id, model=model)


@bp.route("/run-aleph", methods=["POST", "OPTIONS"])
@with_caller
def run_aleph():
    body = g.body
    user_id = g.user_id
    if not user_id:
        return _not_submitted("missing_user_id")
    prompt = _str(body.get("prompt"))
    video_url = normalize_url(body.get("videoUrl") or body.get("video_url"))
    if not prompt or not video_url:
        return _not_submitted("need_prompt_and_video")

    run_id = _run_id(body, user_id)
    aspect = normalize_runway_aspect(body.get("aspectRatio") or "16:9")
    image_url = normalize_url(body.get("imageUrl") or body.get("referenceImage"))

    payload = {"prompt": prompt, "aspectRatio": aspect, "videoUrl": video_url}
    if image_url:
        payload.update({"imageUrl": image_url, "referenceImageUrl": image_url, "referenceImage": image_url})
    _set_callbacks(payload, callback_url("aleph-check", uid=user_id, run_id=run_id, provider="aleph"))

    task_id, err = _dispatch_kie(
        ALEPH_GENERATE,
        payload,
        user_id=user_id,
        run_id=run_id,
        provider="aleph",
        kind="video",
        prompt=prompt,
        meta={"aspect_ratio": aspect, "duration": 5, "video_url": video_url},
    )
    if err:
        return err
    return _submitted(task_id, run_id)


# ─────────────────────────────────────────────────────────────
# Replicate submission
# ─────────────────────────────────────────────────────────────
def _create_prediction(model: str, model_input: Dict[str, Any], webhook: str):
    """Returns (prediction_id, None) or (None, flask response)."""
    try:
        data = create_prediction(model, model_input, webhook=webhook)
    except ReplicateConfigError:
        return None, _not_submitted("replicate_not_configured", 500)
    except ReplicateError as e:
        print(f"[SUBMIT] replicate {model} rejected: {e.status_code} {e.message}")
        return None, _not_submitted("replicate_create_failed", 502, status=e.status_code, details=e.body)

    prediction_id = _str(data.get("id")) if isinstance(data, dict) else ""
    if not prediction_id:
        return None, _not_submitted("missing_prediction_id", 502, data=data)
    return prediction_id, None


@bp.route("/run-imagen", methods=["POST", "OPTIONS"])
@with_caller
def run_imagen():
    body = g.body
    prompt = _str(body.get("prompt"))
    if not prompt:
        return _not_submitted("missing_prompt")

    user_id = g.user_id or "anon"
    run_id = _run_id(body, user_id)
    variant = "ultra" if _str(body.get("model")).lower() == "ultra" else "fast"
    aspect_ratio = _str(body.get("aspect_ratio")) or "1:1"
    webhook = callback_url("imagen-check", uid=user_id, run_id=run_id)

    prediction_id, err = _create_prediction(
        IMAGEN_MODELS[variant], {"prompt": prompt, "aspect_ratio": aspect_ratio}, webhook
    )
    if err:
        return err

    debit = debit_credits(user_id, config.cost_for(f"imagen_{variant}"))
    if not debit.ok:
        print(f"[SUBMIT] imagen debit failed for {user_id}: {debit.error}")

    generation_service.seed_placeholder(
        user_id,
        run_id,
        provider="imagen",
        kind="image",
        prompt=prompt,
        meta={"source": "imagen", "prediction_id": prediction_id, "model": variant, "status": "pending"},
    )
    return jsonify({"submitted": True, "ok": True, "id": prediction_id, "taskId": prediction_id, "run_id": run_id, "credits": debit.credits}), 201


@bp.route("/run-gpt-image-1", methods=["POST", "OPTIONS"])
@with_caller
def run_gpt_image_1():
    if not config.OPENAI_API_KEY:
        return _not_submitted("missing_openai_key", 500)
    body = g.body
    prompt = _str(body.get("prompt"))
    if not prompt:
        return _not_submitted("missing_prompt")

    user_id = g.user_id or "anon"
    run_id = _run_id(body, user_id)
    model_input: Dict[str, Any] = {
        "openai_api_key": config.OPENAI_API_KEY,
        "prompt": prompt,
        "aspect_ratio": _str(body.get("aspect_ratio")) or "1:1",
        "output_format": "png",
    }
    image_data_url = _str(body.get("image_data_url"))
    if image_data_url:
        model_input["input_images"] = [image_data_url]
        model_input["input_fidelity"] = "high"

    prediction_id, err = _create_prediction(
        GPT_IMAGE_MODEL, model_input, callback_url("gpt-image-1-check", uid=user_id, run_id=run_id)
    )
    if err:
        return err

    debit = debit_credits(user_id, config.cost_for("gpt_image_1"))
    if not debit.ok:
        print(f"[SUBMIT] gpt-image-1 debit failed for {user_id}: {debit.error}")

    generation_service.seed_placeholder(
        user_id,
        run_id,
        provider="gpt-image-1",
        kind="image",
        prompt=prompt,
        meta={"source": "gpt-image-1", "prediction_id": prediction_id, "model": "gpt-image-1", "status": "pending"},
    )
    return jsonify({"submitted": True, "ok": True, "id": prediction_id, "taskId": prediction_id, "run_id": run_id, "credits": debit.credits}), 201


@bp.route("/run-kling", methods=["POST", "OPTIONS"])
@with_caller
def run_kling():
    body = g.body
    user_id = g.user_id
    if not user_id:
        return _not_submitted("missing_uid")

    prompt = _str(body.get("prompt"))
    images = body.get("image_data_urls")
    images = [u for u in images if isinstance(u, str) and u] if isinstance(images, list) else []
    image = images[0] if images else _str(body.get("image_data_url"))
    if not prompt and not image:
        return _not_submitted("missing_input", details="Provide a prompt or an image.")

    duration = 10 if _str(body.get("duration")) == "10" else 5
    cost = config.cost_for(f"kling_{duration}s")
    run_id = _run_id(body, user_id)
    aspect_ratio = _str(body.get("aspect_ratio")) or "1:1"

    # Placeholder first so the webhook can carry the row id.
    row_id = generation_service.seed_placeholder(
        user_id,
        run_id,
        provider="kling",
        kind="video",
        prompt=prompt,
        meta={"source": "kling", "model": "kling", "status": "pending", "duration": duration},
    )

    model_input: Dict[str, Any] = {"prompt": prompt, "aspect_ratio": aspect_ratio, "duration": duration}
    if image:
        # The model card has renamed its image field more than once; send every spelling.
        model_input.update({
            "image": image,
            "images": [image],
            "input_image": image,
            "input_images": [image],
            "reference_images": [image],
            "input_fidelity": "high",
        })

    prediction_id, err = _create_prediction(
        KLING_MODEL, model_input, callback_url("kling-check", uid=user_id, run_id=run_id, row_id=row_id)
    )
    if err:
        generation_service.mark_failed(user_id, run_id, row_id=row_id)
        return err

    debit = debit_credits(user_id, cost)
    if not debit.ok:
        cancel_prediction(prediction_id)
        generation_service.mark_failed(user_id, run_id, row_id=row_id)
        return _not_submitted("not_enough_credits", 402, ok=False, details={"error": debit.error})

    generation_service.attach_task_id(user_id, run_id, {"prediction_id": prediction_id}, row_id=row_id)
    return jsonify({
        "submitted": True,
        "ok": True,
        "id": prediction_id,
        "taskId": prediction_id,
        "run_id": run_id,
        "row_id": row_id,
        "debited": cost,
        "credits": debit.credits,
    }), 201


# ─────────────────────────────────────────────────────────────
# Higgsfield submission
# ─────────────────────────────────────────────────────────────
@bp.route("/run-higgsfield", methods=["POST", "OPTIONS"])
@with_caller
def run_higgsfield():
    body = g.body
    user_id = g.user_id
    motion_id = _str(body.get("motion_id"))
    image_url = normalize_url(body.get("imageUrl") or body.get("fileUrl"))
    prompt = _str(body.get("prompt"))

    if not user_id:
        return _not_submitted("missing_user_id")
    if not motion_id:
        return _not_submitted("missing_motion_id")
    if not image_url:
        return _not_submitted("missing_image_url")

    run_id = _run_id(body, user_id)
    meta = {"provider": "higgsfield", "model": DOP_MODEL, "motion_id": motion_id}
    generation_service.seed_placeholder(user_id, run_id, provider="higgsfield", kind="video", prompt=prompt, meta=meta)

    try:
        data = create_dop_job(prompt, motion_id, image_url)
    except HiggsfieldConfigError:
        return _not_submitted("hf_not_configured", 500)
    except HiggsfieldError as e:
        generation_service.mark_failed(user_id, run_id)
        return _not_submitted(f"hf_{e.status_code}", reason=e.message, data=e.body)

    job_set_id = extract_job_set_id(data)
    if not job_set_id:
        return _not_submitted("missing_job_set_id", data=data)

    generation_service.attach_task_id(user_id, run_id, {"job_set_id": job_set_id})
    return jsonify({"submitted": True, "taskId": job_set_id, "job_set_id": job_set_id, "run_id": run_id})
