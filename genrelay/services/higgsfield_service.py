"""
Higgsfield API HTTP Client.

Base URL: https://platform.higgsfield.ai   (config.HF_API_BASE)
Auth:     hf-api-key / hf-secret headers

Endpoints used:
  POST /v1/image2video/dop     → start a DoP motion job set
  GET  /v1/job-sets/{id}       → poll the job set
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout

from genrelay.config import config
from genrelay.services.extraction import get_path, normalize_status
from genrelay.utils import response_json


CONNECT_TIMEOUT = 15
READ_TIMEOUT = 60

DOP_PATH = "/v1/image2video/dop"
DOP_MODEL = "dop-turbo"

HF_STATUS_MAP = {
    "queued": "pending",
    "in_progress": "pending",
    "processing": "pending",
    "completed": "success",
    "failed": "failed",
    "nsfw": "failed",
    "canceled": "failed",
}


class HiggsfieldError(Exception):
    """Typed exception for Higgsfield API errors."""

    def __init__(self, status_code: int, message: str, *, body: Any = None):
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"Higgsfield API error {status_code}: {message}")


class HiggsfieldConfigError(HiggsfieldError):
    def __init__(self, message: str = "HF_API_KEY / HF_SECRET are not set"):
        super().__init__(status_code=0, message=message)


def _headers() -> Dict[str, str]:
    if not config.HF_CONFIGURED:
        raise HiggsfieldConfigError()
    return {
        "hf-api-key": config.HF_API_KEY,
        "hf-secret": config.HF_SECRET,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _call(method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    try:
        r = requests.request(
            method,
            f"{config.HF_API_BASE}{path}",
            json=payload,
            headers=_headers(),
            timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
        )
    except (Timeout, RequestsConnectionError) as e:
        raise HiggsfieldError(0, f"Connection error: {e}") from e
    except requests.RequestException as e:
        raise HiggsfieldError(0, f"Request failed: {e}") from e
    body = response_json(r)
    if not r.ok:
        msg = ""
        if isinstance(body, dict):
            msg = body.get("message") or body.get("error") or body.get("detail") or body.get("raw") or ""
        raise HiggsfieldError(r.status_code, str(msg or f"HTTP {r.status_code}")[:500], body=body)
    return body


def build_dop_payload(prompt: str, motion_id: str, image_url: str) -> Dict[str, Any]:
    return {
        "params": {
            "model": DOP_MODEL,
            "prompt": prompt,
            "motions": [{"id": motion_id}],
            "input_images": [{"type": "image_url", "image_url": image_url}],
            "input_images_end": [],
            "enhance_prompt": True,
        }
    }


def create_dop_job(prompt: str, motion_id: str, image_url: str) -> Dict[str, Any]:
    return _call("POST", DOP_PATH, build_dop_payload(prompt, motion_id, image_url))


def extract_job_set_id(data: Any) -> str:
    for path in (("id",), ("data", "id")):
        value = get_path(data, path)
        if value:
            return str(value)
    return ""


def get_job_set(job_set_id: str) -> Dict[str, Any]:
    return _call("GET", f"/v1/job-sets/{job_set_id}")


def job_set_result(data: Any) -> Tuple[str, str]:
    """
    (normalized status, result url) of the first job in a job set.
    results.raw.url is preferred over results.min.url. The url is only
    returned once the job reports completed.
    """
    url = get_path(data, ("jobs", 0, "results", "raw", "url")) or get_path(data, ("jobs", 0, "results", "min", "url")) or ""
    raw_status = str(get_path(data, ("jobs", 0, "status")) or "").lower()
    status = HF_STATUS_MAP.get(raw_status) or normalize_status(raw_status)
    if status != "success":
        return status, ""
    return status, url
