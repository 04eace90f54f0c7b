"""
General helper utilities shared by routes and services.

These functions are intentionally dependency-light so they can be reused
across services and routes without pulling in Flask app globals.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from datetime import datetime, timezone
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    """Clamp a value to an integer within [minimum, maximum]."""
    try:
        return max(minimum, min(maximum, int(value)))
    except (TypeError, ValueError):
        return default


def default_run_id(user_id: str | None) -> str:
    """Correlation id used when the client did not send one."""
    return f"{user_id or 'anon'}-{now_ms()}"


def sanitize_download_name(name: Any, max_length: int = 150) -> str:
    """
    Make a client-supplied filename safe for a Content-Disposition header.
    - Anything outside [word chars . - space] becomes "_"
    - Capped at max_length
    - Falls back to "file"
    """
    raw = str(name or "")
    safe = re.sub(r"[^\w.\- ]+", "_", raw)[:max_length]
    return safe or "file"


def dated_object_key(prefix: str, name: str) -> str:
    """Object key of the form <prefix>/YYYY/MM/DD/<random>-<name>."""
    today = datetime.now(timezone.utc)
    rand = secrets.token_hex(4)
    stem = f"{today:%Y/%m/%d}/{rand}-{name}"
    return f"{prefix.strip('/')}/{stem}" if prefix else stem


def get_extension_for_content_type(content_type: str) -> str:
    """Get file extension based on content type."""
    ext_map = {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/jpg": ".jpg",
        "image/webp": ".webp",
        "image/gif": ".gif",
        "video/mp4": ".mp4",
        "video/webm": ".webm",
        "video/quicktime": ".mov",
    }
    return ext_map.get((content_type or "").split(";")[0].strip().lower(), "")


def parse_json_safe(text: str | bytes | None) -> Any:
    """json.loads that returns None instead of raising."""
    if text is None:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def response_json(r) -> Any:
    """
    Body of a requests.Response as JSON, or {"raw": text} when it is not JSON.
    """
    try:
        return r.json()
    except ValueError:
        return {"raw": (r.text or "")[:2000]}


def mask_url(url: str, keep: int = 24) -> str:
    if not url:
        return ""
    return url[:keep] + "…" if len(url) > keep else url


# ─────────────────────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────────────────────
_logger = logging.getLogger("genrelay.helpers")


def _mask_value(val: Any, max_len: int = 400) -> str:
    try:
        s = json.dumps(val, ensure_ascii=False)
    except Exception:
        s = str(val)
    if len(s) > max_len:
        return s[:max_len] + "…"
    return s


def _scrub_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        cleaned = {}
        for k, v in data.items():
            key = str(k).lower()
            if any(t in key for t in ("key", "token", "secret", "auth")):
                cleaned[k] = "***"
            else:
                cleaned[k] = _scrub_secrets(v)
        return cleaned
    if isinstance(data, list):
        return [_scrub_secrets(x) for x in data]
    return data


def log_event(event_name: str, data: dict) -> None:
    """Lightweight debug logging that avoids leaking secrets."""
    try:
        safe_payload = _scrub_secrets(data)
        _logger.info("[debug] %s :: %s", event_name, _mask_value(safe_payload))
    except Exception as e:
        _logger.warning("[debug] %s :: failed to log (%s)", event_name, e)


def log_db_continue(op: str, err: Exception) -> None:
    """Log storage errors that should not break the request flow."""
    try:
        _logger.warning("[DB] CONTINUE: %s failed: %s: %s", op, type(err).__name__, err)
    except Exception:
        print(f"[DB] CONTINUE: {op} failed: {type(err).__name__}: {err}")
