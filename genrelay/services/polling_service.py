"""
Provider status polling.

KIE exposes several "get task" endpoints whose availability depends on the
job family; the poller walks a fixed candidate list and stops at the first
definitive answer. Replicate and Higgsfield have a single status endpoint.

Results are written through generation_service, so repeated polls of a
finished job converge on the same row.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from genrelay.config import config
from genrelay.services import generation_service, s3_service
from genrelay.services.extraction import (
    collect_input_urls,
    collect_result_urls,
    extract_output_url,
    kie_image_policy,
    kie_video_policy,
    normalize_status,
    payload_status,
    replicate_policy,
    higgsfield_policy,
)
from genrelay.services.higgsfield_service import get_job_set, job_set_result
from genrelay.services.kie_service import KieConfigError, KieError, kie_get, status_paths
from genrelay.services.replicate_service import get_prediction, normalize_prediction_status
from genrelay.utils import log_event


IMAGE_RESULT_PATHS = [
    ("data", "result", "images"),
    ("result", "images"),
    ("data", "images"),
    ("images",),
    ("data", "info", "resultUrls"),
    ("data", "response", "resultUrls"),
    ("data", "resultUrls"),
    ("resultUrls",),
]

VIDEO_RESULT_PATHS = [
    ("data", "info", "resultUrls"),
    ("data", "response", "resultUrls"),
    ("data", "videoInfo", "videoUrl"),
    ("data", "result"),
    ("result",),
    ("data", "resultUrls"),
    ("resultUrls",),
    ("video_url",),
    ("videoUrl",),
]


@dataclass
class PollOutcome:
    status: str = "pending"
    urls: List[str] = field(default_factory=list)
    raw_status: str = ""
    last: Any = None
    source: str = ""
    timed_out: bool = False

    @property
    def url(self) -> str:
        return self.urls[0] if self.urls else ""


# ─────────────────────────────────────────────────────────────
# KIE
# ─────────────────────────────────────────────────────────────
def poll_kie_task(
    task_id: str,
    *,
    kind: str = "image",
    provider: Optional[str] = None,
    limit: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome:
    """
    Ask each candidate status endpoint in turn.

    success: the provider reported success and an allow-listed result URL
             (other than an input URL) was found
    failed:  the provider reported failed/error
    pending: nobody gave a definitive answer; success without a usable URL
             also stays pending (`last` holds the last body)

    Raises KieConfigError when no key is configured.
    """
    policy = kie_image_policy() if kind == "image" else kie_video_policy()
    preferred = IMAGE_RESULT_PATHS if kind == "image" else VIDEO_RESULT_PATHS
    limit = limit or (config.MAX_RESULT_IMAGES if kind == "image" else 1)

    outcome = PollOutcome()
    for i, path in enumerate(status_paths(kind, provider)):
        if i:
            sleep(config.POLL_CANDIDATE_DELAY)
        try:
            body = kie_get(path, params={"taskId": task_id})
        except KieConfigError:
            raise
        except KieError as e:
            outcome.last = {"endpoint": path, "status_code": e.status_code, "error": e.message}
            continue

        outcome.last = body
        outcome.raw_status = payload_status(body)
        status = normalize_status(outcome.raw_status)

        if status == "failed":
            outcome.status, outcome.source = "failed", path
            return outcome
        if status != "success":
            continue

        # recordInfo echoes the request params; inputs are never results
        urls = collect_result_urls(
            body, policy, preferred_paths=preferred, limit=limit, exclude=collect_input_urls(body)
        )
        if urls:
            outcome.status, outcome.urls, outcome.source = "success", urls, path
            return outcome

    return outcome


def wait_for_kie_task(
    task_id: str,
    *,
    timeout: Optional[float] = None,
    interval: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollOutcome:
    """Poll until success/failure or until `timeout` seconds have passed."""
    timeout = config.SYNC_WAIT_TIMEOUT if timeout is None else timeout
    interval = config.SYNC_WAIT_INTERVAL if interval is None else interval
    deadline = clock() + timeout

    outcome = PollOutcome()
    attempts = 0
    while clock() < deadline:
        attempts += 1
        outcome = poll_kie_task(task_id, kind="image", sleep=sleep)
        if outcome.status != "pending":
            print(f"[POLL] task {task_id} settled as {outcome.status} after {attempts} round(s)")
            return outcome
        sleep(interval)

    print(f"[POLL] task {task_id} still pending after {timeout}s")
    outcome.timed_out = True
    return outcome


def poll_status_url(task_id: str, url: Optional[str] = None) -> Dict[str, Any]:
    """
    Single-endpoint check used by the lightweight result poller.
    Returns {done, status, url, taskId} and `raw` while not done.
    """
    target = url or config.KIE_STATUS_URL
    body = kie_get(target, params={"taskId": task_id})
    status = normalize_status(payload_status(body))
    if status == "failed":
        return {"done": True, "status": "failed", "url": None, "taskId": task_id}
    if status == "success":
        urls = collect_result_urls(
            body, kie_image_policy(), preferred_paths=IMAGE_RESULT_PATHS, limit=1, exclude=collect_input_urls(body)
        )
        if urls:
            return {"done": True, "status": "success", "url": urls[0], "taskId": task_id}
        status = "pending"
    return {"done": False, "status": status, "url": None, "taskId": task_id, "raw": body}


def record_kie_outcome(
    outcome: PollOutcome,
    *,
    task_id: str,
    user_id: Optional[str],
    run_id: Optional[str],
    provider: str,
    kind: str,
    mirror_legacy: bool = False,
) -> bool:
    """Persist a successful KIE outcome; failures only flag the row."""
    if outcome.status == "failed":
        generation_service.mark_failed(user_id, run_id, task_id=task_id)
        return False
    if outcome.status != "success":
        return False

    if not user_id or not run_id:
        owner, meta = generation_service.find_owner(task_id)
        user_id = user_id or owner
        run_id = run_id or meta.get("run_id")

    url = outcome.url
    saved = generation_service.save_result(
        user_id=user_id,
        run_id=run_id,
        result_url=url,
        provider=provider,
        kind=kind,
        task_id=task_id,
        meta={"images": outcome.urls} if kind == "image" and len(outcome.urls) > 1 else None,
    )
    if mirror_legacy:
        generation_service.mirror_legacy_result(user_id, run_id, task_id, url)
    return saved


# ─────────────────────────────────────────────────────────────
# Replicate
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class PredictionProduct:
    name: str
    kind: str
    url_key: str
    cache_prefix: Optional[str] = None
    patch_latest_pending: bool = False


PREDICTION_PRODUCTS = {
    "imagen": PredictionProduct("imagen", "image", "image_url"),
    "gpt-image-1": PredictionProduct("gpt-image-1", "image", "image_url", cache_prefix="images/gpt-image-1", patch_latest_pending=True),
    "kling": PredictionProduct("kling", "video", "video_url"),
}


def settle_prediction(
    prediction: Dict[str, Any],
    product: PredictionProduct,
    *,
    user_id: Optional[str],
    run_id: Optional[str],
    row_id: Any = None,
) -> Dict[str, Any]:
    """
    Turn a Replicate prediction object into the poll response and persist a
    finished result. Shared by the GET poller and the webhook POST.
    """
    prediction_id = str(prediction.get("id") or "")
    raw_status = str(prediction.get("status") or "")
    out: Dict[str, Any] = {"ok": True, "id": prediction_id, "status": raw_status or "pending"}

    state = normalize_prediction_status(raw_status)
    if state == "failed":
        out["error"] = prediction.get("error") or raw_status
        generation_service.mark_failed(user_id, run_id, task_id=prediction_id, id_key="prediction_id", row_id=row_id)
        return out
    if state != "success":
        return out

    url = extract_output_url(prediction.get("output"))
    if not replicate_policy().allows(url):
        print(f"[REPLICATE] {prediction_id} output not on an allowed host: {str(url)[:80]}")
        out.update({"ok": False, "error": "result_host_not_allowed"})
        return out

    final_url = url
    if product.cache_prefix and s3_service.is_configured():
        try:
            final_url = s3_service.cache_result(url, product.cache_prefix, run_id or prediction_id)
        except s3_service.S3CacheError as e:
            print(f"[S3] caching {prediction_id} failed, keeping provider URL: {e}")

    model_input = prediction.get("input") if isinstance(prediction.get("input"), dict) else {}
    saved = generation_service.save_result(
        user_id=user_id,
        run_id=run_id,
        result_url=final_url,
        provider=product.name,
        kind=product.kind,
        task_id=prediction_id,
        id_key="prediction_id",
        row_id=row_id,
        prompt=model_input.get("prompt"),
        meta={"model": prediction.get("model")},
        patch_latest_pending=product.patch_latest_pending,
    )
    out[product.url_key] = final_url
    out["saved"] = saved
    log_event("replicate.settled", {"id": prediction_id, "product": product.name, "saved": saved})
    return out


def check_prediction(prediction_id: str, product: PredictionProduct, **correlation) -> Dict[str, Any]:
    """GET the prediction and settle it. Raises ReplicateError upstream failures."""
    prediction = get_prediction(prediction_id)
    return settle_prediction(prediction, product, **correlation)


# ─────────────────────────────────────────────────────────────
# Higgsfield
# ─────────────────────────────────────────────────────────────
def check_job_set(job_set_id: str, *, user_id: Optional[str], run_id: Optional[str]) -> Dict[str, Any]:
    data = get_job_set(job_set_id)
    status, url = job_set_result(data)
    out: Dict[str, Any] = {"ok": True, "status": status, "job_set_id": job_set_id}

    if status == "failed":
        generation_service.mark_failed(user_id, run_id, task_id=job_set_id, id_key="job_set_id")
        return out
    if not url:
        return out
    if not higgsfield_policy().allows(url):
        print(f"[HF] job set {job_set_id} result not on an allowed host: {url[:80]}")
        out.update({"ok": False, "status": "pending", "error": "result_host_not_allowed"})
        return out

    out["video_url"] = url
    out["saved"] = generation_service.save_result(
        user_id=user_id,
        run_id=run_id,
        result_url=url,
        provider="higgsfield",
        kind="video",
        task_id=job_set_id,
        id_key="job_set_id",
    )
    return out
