"""
Provider webhook handling.

KIE posts completions as JSON, as form-encoded fields holding JSON strings,
or as something else entirely; correlation ids may sit in the query string,
in `meta` / `metadata`, or nowhere. The handlers here normalize all of that,
verify against the provider when the payload is inconclusive, and write the
result the same way the pollers do.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl, urlparse

from genrelay.services import generation_service
from genrelay.services.extraction import (
    IMAGE_FILE_PATH,
    collect_input_urls,
    collect_result_urls,
    extract_task_id,
    first_present,
    get_path,
    kie_image_policy,
    kie_thumb_policy,
    kie_video_policy,
    normalize_status,
    payload_status,
)
from genrelay.services.kie_service import KieError
from genrelay.services.polling_service import (
    IMAGE_RESULT_PATHS,
    VIDEO_RESULT_PATHS,
    PollOutcome,
    poll_kie_task,
)
from genrelay.utils import log_event, parse_json_safe


CALLBACK_IMAGE_PATHS = [
    ("data", "info", "resultUrls"),
    ("data", "resultUrls"),
    ("resultUrls",),
    ("result", "images"),
    ("images",),
    ("output",),
    ("imageUrl",),
    ("outputUrl",),
] + IMAGE_RESULT_PATHS

UPLOADED_INPUT = re.compile(r"user-uploads|/upload/|/input/", re.IGNORECASE)
META_PATHS = [("meta",), ("metadata",), ("data", "meta"), ("data", "metadata")]


@dataclass
class Correlation:
    user_id: str = ""
    run_id: str = ""
    task_id: str = ""
    row_id: str = ""


# ─────────────────────────────────────────────────────────────
# Body parsing
# ─────────────────────────────────────────────────────────────
def parse_body(raw: bytes | str | None, content_type: str = "") -> Dict[str, Any]:
    """
    JSON first; then form decoding with JSON-looking fields parsed;
    otherwise {"raw": text} so URL scans still see the content.
    A top-level JSON array is wrapped as {"result": [...]}.
    """
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", "replace")
    else:
        text = raw or ""

    data = parse_json_safe(text)
    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        return {"result": data}

    stripped = text.strip()
    if "=" in stripped and not stripped.startswith(("{", "[")):
        pairs = parse_qsl(stripped, keep_blank_values=True)
        if pairs:
            out: Dict[str, Any] = {}
            for key, value in pairs:
                parsed = parse_json_safe(value) if value.strip().startswith(("{", "[")) else None
                out[key] = parsed if parsed is not None else value
            return out

    return {"raw": text}


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value).strip()


def extract_correlation(args: Mapping[str, Any], payload: Dict[str, Any]) -> Correlation:
    """Query string wins over the body for every field."""
    meta = {}
    for path in META_PATHS:
        candidate = get_path(payload, path)
        if isinstance(candidate, dict):
            meta = candidate
            break

    def pick(*values) -> str:
        for v in values:
            t = _text(v)
            if t:
                return t
        return ""

    return Correlation(
        user_id=pick(args.get("uid"), args.get("user_id"), meta.get("uid"), meta.get("user_id"), payload.get("uid")),
        run_id=pick(args.get("run_id"), args.get("runId"), args.get("rid"), meta.get("run_id"), meta.get("runId"), meta.get("rid")),
        task_id=pick(args.get("taskId"), args.get("task_id"), extract_task_id(payload)),
        row_id=pick(args.get("row_id"), meta.get("row_id")),
    )


def resolve_owner(corr: Correlation, id_key: str = "task_id") -> Correlation:
    """Fill a missing user / run id from the row that carries the task id."""
    if corr.task_id and not (corr.user_id and corr.run_id):
        owner, meta = generation_service.find_owner(corr.task_id, id_key)
        corr.user_id = corr.user_id or (owner or "")
        corr.run_id = corr.run_id or _text(meta.get("run_id"))
    return corr


def _looks_like_output_image(url: str) -> bool:
    return bool(IMAGE_FILE_PATH.search(urlparse(url).path or "")) and not UPLOADED_INPUT.search(url)


def _verify(task_id: str, kind: str, provider: Optional[str] = None) -> Optional[PollOutcome]:
    try:
        return poll_kie_task(task_id, kind=kind, provider=provider)
    except KieError as e:
        print(f"[WEBHOOK] verification of {task_id} failed: {e.message}")
        return None


# ─────────────────────────────────────────────────────────────
# KIE image jobs (nano-banana, midjourney)
# ─────────────────────────────────────────────────────────────
def handle_kie_image_callback(args: Mapping[str, Any], raw: bytes, content_type: str = "") -> Dict[str, Any]:
    payload = parse_body(raw, content_type)
    corr = resolve_owner(extract_correlation(args, payload))
    status = normalize_status(payload_status(payload))

    urls = [] if status == "failed" else collect_result_urls(
        payload,
        kie_image_policy(),
        preferred_paths=CALLBACK_IMAGE_PATHS,
        limit=16,
        exclude=collect_input_urls(payload),
        accept=_looks_like_output_image,
    )

    if not urls and status != "failed" and corr.task_id:
        outcome = _verify(corr.task_id, "image")
        if outcome is not None and outcome.status != "pending":
            status, urls = outcome.status, outcome.urls

    log_event("webhook.kie_image", {"task_id": corr.task_id, "run_id": corr.run_id, "status": status, "urls": len(urls)})

    if urls:
        # The last candidate is the final render; earlier ones are previews.
        image_url = urls[-1]
        saved = generation_service.save_result(
            user_id=corr.user_id,
            run_id=corr.run_id,
            result_url=image_url,
            provider=_text(args.get("provider")) or "nano-banana",
            kind="image",
            task_id=corr.task_id,
            row_id=corr.row_id or None,
        )
        generation_service.mirror_legacy_result(corr.user_id, corr.run_id, corr.task_id, image_url)
        return {"ok": True, "status": "success", "saved": saved, "image_url": image_url}

    if status == "failed":
        generation_service.mark_failed(corr.user_id, corr.run_id, task_id=corr.task_id)
        return {"ok": True, "status": "failed", "saved": False}

    return {"ok": True, "status": "pending", "saved": False}


# ─────────────────────────────────────────────────────────────
# KIE video jobs (runway, veo3, aleph, mj video)
# ─────────────────────────────────────────────────────────────
def handle_kie_video_callback(args: Mapping[str, Any], raw: bytes, content_type: str = "") -> Dict[str, Any]:
    payload = parse_body(raw, content_type)
    corr = resolve_owner(extract_correlation(args, payload))
    provider = _text(args.get("provider")) or _text(first_present(payload, [("meta", "provider"), ("metadata", "provider")])) or "runway"
    status = normalize_status(payload_status(payload))
    inputs = collect_input_urls(payload)

    videos: List[str] = []
    thumbs: List[str] = []
    if status != "failed":
        videos = collect_result_urls(payload, kie_video_policy(), preferred_paths=VIDEO_RESULT_PATHS, limit=1, exclude=inputs)
        thumbs = collect_result_urls(payload, kie_thumb_policy(), preferred_paths=VIDEO_RESULT_PATHS, limit=1, exclude=inputs)

    if not videos and status != "failed" and corr.task_id:
        outcome = _verify(corr.task_id, "video", provider)
        if outcome is not None and outcome.status != "pending":
            status, videos = outcome.status, outcome.urls

    log_event("webhook.kie_video", {"task_id": corr.task_id, "run_id": corr.run_id, "status": status, "provider": provider})

    if videos:
        video_url = videos[0]
        saved = generation_service.save_result(
            user_id=corr.user_id,
            run_id=corr.run_id,
            result_url=video_url,
            provider=provider,
            kind="video",
            task_id=corr.task_id,
            row_id=corr.row_id or None,
            thumb_url=thumbs[0] if thumbs else None,
        )
        return {"ok": True, "status": "success", "saved": saved, "video_url": video_url}

    if status == "failed":
        generation_service.mark_failed(corr.user_id, corr.run_id, task_id=corr.task_id)
        return {"ok": True, "status": "failed", "saved": False}

    return {"ok": False, "status": "no_mp4_in_result", "saved": False}


# ─────────────────────────────────────────────────────────────
# Client-reported completion
# ─────────────────────────────────────────────────────────────
def record_client_video(user_id: str, run_id: str, video_url: str, provider: str = "runway") -> Dict[str, Any]:
    """A front-end that found the mp4 itself reports it; the URL is still allow-list checked."""
    if not kie_video_policy().allows(video_url):
        return {"ok": False, "error": "result_host_not_allowed"}
    saved = generation_service.save_result(
        user_id=user_id,
        run_id=run_id,
        result_url=video_url,
        provider=provider,
        kind="video",
    )
    generation_service.mirror_legacy_result(user_id, run_id, None, video_url)
    return {"ok": True, "saved": saved, "video_url": video_url}
