"""
KIE API HTTP Client.

Handles authentication, headers and error parsing for the KIE job API and
its file-hosting endpoints.

Base URL:   https://api.kie.ai             (config.KIE_API_BASE)
Upload URL: https://kieai.redpandaai.co    (config.KIE_UPLOAD_BASE)
Auth:       Authorization: Bearer <KIE_API_KEY>

Endpoints used:
  POST /api/v1/jobs/createTask      → nano-banana edit, mj_video
  POST /api/v1/mj/generate          → Midjourney image
  POST /api/v1/runway/generate      → Runway video
  POST /api/v1/veo/generate         → Veo 3 video
  POST /api/v1/aleph/generate       → Aleph video-to-video
  GET  <status candidates>?taskId=  → see IMAGE_STATUS_PATHS / VIDEO_STATUS_PATHS
  POST /api/file-base64-upload      → small uploads (data URL in JSON)
  POST /api/file-stream-upload      → large uploads (multipart)

Every call is tried once; callers decide what a failure means.
Result URLs are ephemeral temp-file links.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout

from genrelay.config import config
from genrelay.utils import response_json


# ── Timeouts ─────────────────────────────────────────────────
CONNECT_TIMEOUT = 15        # seconds
READ_TIMEOUT = 60           # seconds for task creation / status
UPLOAD_TIMEOUT = 300        # seconds for file uploads


# ── Endpoints ────────────────────────────────────────────────
CREATE_TASK = "/api/v1/jobs/createTask"
MJ_GENERATE = "/api/v1/mj/generate"
RUNWAY_GENERATE = "/api/v1/runway/generate"
VEO_GENERATE = "/api/v1/veo/generate"
ALEPH_GENERATE = "/api/v1/aleph/generate"

IMAGE_STATUS_PATHS = [
    "/api/v1/jobs/getTask",
    "/api/v1/jobs/getTaskResult",
    "/api/v1/jobs/result",
    "/api/v1/jobs/recordInfo",
    "/api/v1/mj/getTask",
    "/api/v1/mj/getTaskResult",
    "/api/v1/mj/result",
    "/api/v1/mj/record-info",
]

VIDEO_STATUS_PATHS = {
    "runway": ["/api/v1/runway/record-detail", "/api/v1/jobs/getTask"],
    "veo3": ["/api/v1/veo/record-info", "/api/v1/jobs/getTask"],
    "aleph": ["/api/v1/aleph/record-info", "/api/v1/jobs/getTask"],
    "midjourney": ["/api/v1/mj/record-info", "/api/v1/jobs/recordInfo"],
}

BASE64_UPLOAD = "/api/file-base64-upload"
STREAM_UPLOAD = "/api/file-stream-upload"


# ── Exceptions ───────────────────────────────────────────────
class KieError(Exception):
    """Typed exception for KIE API errors."""

    def __init__(self, status_code: int, message: str, *, body: Any = None):
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"KIE API error {status_code}: {message}")


class KieConfigError(KieError):
    """Raised when KIE is not configured (missing API key)."""

    def __init__(self, message: str = "KIE_API_KEY is not set"):
        super().__init__(status_code=0, message=message)


class KieAuthError(KieError):
    """Raised for 401/403 authentication failures."""

    def __init__(self, message: str = "KIE authentication failed", *, body: Any = None):
        super().__init__(status_code=401, message=message, body=body)


# ── Internal helpers ─────────────────────────────────────────
def _get_api_key() -> str:
    key = config.KIE_API_KEY
    if not key:
        raise KieConfigError()
    return key


def _headers(json_body: bool = True) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {_get_api_key()}",
        "Accept": "application/json",
    }
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


def _parse_error(r: requests.Response) -> KieError:
    """Convert a non-2xx response into a typed KieError."""
    body = response_json(r)
    msg = ""
    if isinstance(body, dict):
        msg = body.get("msg") or body.get("message") or body.get("error") or body.get("raw") or ""
    msg = str(msg or f"HTTP {r.status_code}")[:500]

    if r.status_code in (401, 403):
        return KieAuthError(msg, body=body)
    return KieError(r.status_code, msg, body=body)


def _envelope_error(body: Any) -> Optional[KieError]:
    """
    KIE often answers HTTP 200 with {"code": 4xx/5xx, "msg": ...}.
    Treat a non-200 envelope code as an error.
    """
    if not isinstance(body, dict):
        return None
    code = body.get("code")
    if isinstance(code, int) and code not in (0, 200):
        return KieError(code, str(body.get("msg") or body.get("message") or "KIE error")[:500], body=body)
    return None


def _send(method: str, url: str, *, timeout: Tuple[int, int], **kwargs) -> requests.Response:
    try:
        return requests.request(method, url, timeout=timeout, **kwargs)
    except (Timeout, RequestsConnectionError) as e:
        raise KieError(0, f"Connection error: {e}") from e
    except requests.RequestException as e:
        raise KieError(0, f"Request failed: {e}") from e


# ── Public API ───────────────────────────────────────────────
def kie_post(path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    POST a JSON body to a KIE API endpoint.

    Returns:
        Parsed JSON response

    Raises:
        KieConfigError, KieAuthError, KieError
    """
    url = f"{config.KIE_API_BASE}{path}"
    r = _send("POST", url, json=payload, headers=_headers(), timeout=(CONNECT_TIMEOUT, READ_TIMEOUT))
    if not r.ok:
        raise _parse_error(r)
    body = response_json(r)
    err = _envelope_error(body)
    if err:
        raise err
    return body


def kie_get(path_or_url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    GET a KIE endpoint (path relative to KIE_API_BASE, or an absolute URL).

    Raises:
        KieConfigError, KieAuthError, KieError
    """
    url = path_or_url if path_or_url.startswith("http") else f"{config.KIE_API_BASE}{path_or_url}"
    r = _send("GET", url, params=params, headers=_headers(json_body=False), timeout=(CONNECT_TIMEOUT, READ_TIMEOUT))
    if not r.ok:
        raise _parse_error(r)
    return response_json(r)


def status_paths(kind: str, provider: Optional[str] = None) -> List[str]:
    """Candidate status endpoints for a task, in the order they are tried."""
    if kind == "video":
        return list(VIDEO_STATUS_PATHS.get((provider or "").lower(), VIDEO_STATUS_PATHS["runway"]))
    return list(IMAGE_STATUS_PATHS)


# ── Uploads ──────────────────────────────────────────────────
def upload_base64(data: bytes, content_type: str, file_name: str, upload_path: str) -> Dict[str, Any]:
    """Send the file as a data URL inside one JSON request."""
    data_url = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
    payload = {"base64Data": data_url, "uploadPath": upload_path, "fileName": file_name}
    r = _send(
        "POST",
        f"{config.KIE_UPLOAD_BASE}{BASE64_UPLOAD}",
        json=payload,
        headers=_headers(),
        timeout=(CONNECT_TIMEOUT, UPLOAD_TIMEOUT),
    )
    if not r.ok:
        raise _parse_error(r)
    body = response_json(r)
    err = _envelope_error(body)
    if err:
        raise err
    return body


def upload_stream(data: bytes, content_type: str, file_name: str, upload_path: str) -> Dict[str, Any]:
    """Send the raw bytes as multipart/form-data."""
    files = {"file": (file_name, data, content_type)}
    form = {"uploadPath": upload_path, "fileName": file_name}
    r = _send(
        "POST",
        f"{config.KIE_UPLOAD_BASE}{STREAM_UPLOAD}",
        files=files,
        data=form,
        headers=_headers(json_body=False),
        timeout=(CONNECT_TIMEOUT, UPLOAD_TIMEOUT),
    )
    if not r.ok:
        raise _parse_error(r)
    body = response_json(r)
    err = _envelope_error(body)
    if err:
        raise err
    return body


def forward_multipart(body: bytes, content_type: str) -> requests.Response:
    """Pass a client's multipart body through to KIE_API_URL unchanged."""
    if not config.KIE_API_URL:
        raise KieConfigError("KIE_API_URL is not set")
    headers = _headers(json_body=False)
    headers["Content-Type"] = content_type
    return _send("POST", config.KIE_API_URL, data=body, headers=headers, timeout=(CONNECT_TIMEOUT, UPLOAD_TIMEOUT))
