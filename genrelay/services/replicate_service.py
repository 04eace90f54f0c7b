"""
Replicate API HTTP Client.

Base URL: https://api.replicate.com/v1   (config.REPLICATE_BASE_URL)
Auth:     Authorization: Bearer <REPLICATE_API_KEY>

Endpoints used:
  POST /models/{owner}/{name}/predictions  → create (official models)
  GET  /models/{owner}/{name}              → latest_version fallback
  POST /predictions                        → create by version
  GET  /predictions/{id}                   → poll
  POST /predictions/{id}/cancel            → cancel

Output URLs on `succeeded` live on replicate.delivery and expire; cache them
when they must outlive the hour.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout

from genrelay.config import config
from genrelay.utils import response_json


CONNECT_TIMEOUT = 15
READ_TIMEOUT = 60

IMAGEN_MODELS = {
    "fast": "google/imagen-4-fast",
    "ultra": "google/imagen-4-ultra",
}
GPT_IMAGE_MODEL = "openai/gpt-image-1"
KLING_MODEL = "kwaivgi/kling-v2.5-turbo-pro"

REPLICATE_STATUS_MAP = {
    "starting": "pending",
    "processing": "pending",
    "succeeded": "success",
    "failed": "failed",
    "canceled": "failed",
}


class ReplicateError(Exception):
    """Typed exception for Replicate API errors."""

    def __init__(self, status_code: int, message: str, *, body: Any = None):
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"Replicate API error {status_code}: {message}")


class ReplicateConfigError(ReplicateError):
    """Raised when Replicate is not configured (missing API token)."""

    def __init__(self, message: str = "REPLICATE_API_KEY is not set"):
        super().__init__(status_code=0, message=message)


def _get_api_key() -> str:
    if not config.REPLICATE_API_KEY:
        raise ReplicateConfigError()
    return config.REPLICATE_API_KEY


def _headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {_get_api_key()}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _parse_error(r: requests.Response) -> ReplicateError:
    body = response_json(r)
    msg = ""
    if isinstance(body, dict):
        msg = body.get("detail") or body.get("error") or body.get("title") or body.get("raw") or ""
    return ReplicateError(r.status_code, str(msg or f"HTTP {r.status_code}")[:500], body=body)


def _call(method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    url = f"{config.REPLICATE_BASE_URL}{path}"
    try:
        r = requests.request(method, url, json=payload, headers=_headers(), timeout=(CONNECT_TIMEOUT, READ_TIMEOUT))
    except (Timeout, RequestsConnectionError) as e:
        raise ReplicateError(0, f"Connection error: {e}") from e
    except requests.RequestException as e:
        raise ReplicateError(0, f"Request failed: {e}") from e
    if not r.ok:
        raise _parse_error(r)
    return response_json(r)


def latest_version(model: str) -> str:
    info = _call("GET", f"/models/{model}")
    version = (info.get("latest_version") or {}).get("id") if isinstance(info, dict) else None
    if not version:
        raise ReplicateError(404, f"no latest_version for {model}", body=info)
    return version


def create_prediction(
    model: str,
    model_input: Dict[str, Any],
    *,
    webhook: Optional[str] = None,
    webhook_events: Iterable[str] = ("completed",),
) -> Dict[str, Any]:
    """
    Create a prediction on an official model. A 404 from the model endpoint
    (model without an official deployment) falls back to the model's
    latest version.
    """
    payload: Dict[str, Any] = {"input": model_input}
    if webhook:
        payload["webhook"] = webhook
        payload["webhook_events_filter"] = list(webhook_events)

    try:
        return _call("POST", f"/models/{model}/predictions", payload)
    except ReplicateError as e:
        if e.status_code != 404:
            raise
        print(f"[REPLICATE] {model} has no model endpoint, falling back to latest version")

    payload["version"] = latest_version(model)
    return _call("POST", "/predictions", payload)


def get_prediction(prediction_id: str) -> Dict[str, Any]:
    return _call("GET", f"/predictions/{prediction_id}")


def cancel_prediction(prediction_id: str) -> bool:
    try:
        _call("POST", f"/predictions/{prediction_id}/cancel")
        return True
    except ReplicateError as e:
        print(f"[REPLICATE] cancel {prediction_id} failed: {e.message}")
        return False


def normalize_prediction_status(status: Any) -> str:
    return REPLICATE_STATUS_MAP.get(str(status or "").lower(), "pending")
