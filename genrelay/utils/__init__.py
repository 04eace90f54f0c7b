"""Utility helpers for the relay."""

from .helpers import (
    clamp_int,
    dated_object_key,
    default_run_id,
    get_extension_for_content_type,
    log_db_continue,
    log_event,
    mask_url,
    now_ms,
    parse_json_safe,
    response_json,
    sanitize_download_name,
)

__all__ = [
    "clamp_int",
    "dated_object_key",
    "default_run_id",
    "get_extension_for_content_type",
    "log_db_continue",
    "log_event",
    "mask_url",
    "now_ms",
    "parse_json_safe",
    "response_json",
    "sanitize_download_name",
]
