"""
Shape-tolerant extraction for provider responses.

Providers report the same facts (task id, status, result URLs) under many
spellings and nesting levels, and the shape drifts between endpoints and API
versions. Lookups here are ordered candidate rules: each rule is a path into
the payload plus a predicate the value must satisfy. The first rule that
matches wins. When no rule matches, a recursive scan looks at every node,
bounded by depth and node count so a hostile or cyclic payload cannot run
away.

Result URLs are only ever returned after passing a ResultUrlPolicy (host
allow-list plus path pattern).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence, Tuple
from urllib.parse import urlparse

from genrelay.config import config
from genrelay.utils import parse_json_safe

Path = Tuple[Any, ...]


# ─────────────────────────────────────────────────────────────
# Path lookup and bounded walk
# ─────────────────────────────────────────────────────────────
def get_path(payload: Any, path: Path) -> Any:
    """Follow dict keys / list indexes; None when any hop is missing."""
    cur = payload
    for hop in path:
        if isinstance(hop, int):
            if not isinstance(cur, list) or hop >= len(cur) or hop < -len(cur):
                return None
            cur = cur[hop]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(hop)
        if cur is None:
            return None
    return cur


def walk(payload: Any, *, max_depth: Optional[int] = None, max_nodes: Optional[int] = None) -> Iterator[Tuple[Optional[str], Any]]:
    """
    Depth-first, pre-order traversal yielding (key, value) for every node.
    List items are yielded with key None. Containers already visited are not
    expanded again.
    """
    max_depth = config.EXTRACT_MAX_DEPTH if max_depth is None else max_depth
    max_nodes = config.EXTRACT_MAX_NODES if max_nodes is None else max_nodes

    seen: set = set()
    stack = [(None, payload, 0)]
    visited = 0
    while stack and visited < max_nodes:
        key, value, depth = stack.pop()
        visited += 1
        yield key, value

        if depth >= max_depth or not isinstance(value, (dict, list)):
            continue
        if id(value) in seen:
            continue
        seen.add(id(value))

        if isinstance(value, dict):
            for k, v in reversed(list(value.items())):
                stack.append((str(k), v, depth + 1))
        else:
            for v in reversed(value):
                stack.append((None, v, depth + 1))


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return ""
    return str(value).strip()


def _present(value: Any) -> bool:
    return _scalar_text(value) != ""


def _long_id(value: Any) -> bool:
    return len(_scalar_text(value)) > 8


def first_present(payload: Any, paths: Iterable[Path], accept: Callable[[Any], bool] = _present) -> Any:
    for path in paths:
        value = get_path(payload, path)
        if accept(value):
            return value
    return None


# ─────────────────────────────────────────────────────────────
# Task id
# ─────────────────────────────────────────────────────────────
TASK_ID_RULES: Sequence[Tuple[Path, Callable[[Any], bool]]] = [
    (("data", "taskId"), _present),
    (("taskId",), _present),
    (("result", "taskId"), _present),
    (("data", "task_id"), _present),
    (("task_id",), _present),
    (("result", "task_id"), _present),
    (("data", "requestId"), _present),
    (("requestId",), _present),
    (("result", "requestId"), _present),
    (("data", "request_id"), _present),
    (("request_id",), _present),
    (("result", "request_id"), _present),
    (("data", "id"), _long_id),
    (("id",), _long_id),
]

TASK_ID_KEY = re.compile(r"^(task[_-]?id|request[_-]?id)$", re.IGNORECASE)


def extract_task_id(payload: Any) -> str:
    """Provider task id from any response shape, or "" when absent."""
    if not isinstance(payload, (dict, list)):
        return ""

    for path, accept in TASK_ID_RULES:
        value = get_path(payload, path)
        if accept(value):
            return _scalar_text(value)

    for key, value in walk(payload):
        if key and TASK_ID_KEY.match(key):
            text = _scalar_text(value)
            if len(text) > 3:
                return text
    return ""


# ─────────────────────────────────────────────────────────────
# Status
# ─────────────────────────────────────────────────────────────
STATUS_MAP = {
    "success": "success",
    "succeeded": "success",
    "completed": "success",
    "done": "success",
    "failed": "failed",
    "error": "failed",
}

STATUS_PATHS: Sequence[Path] = [
    ("status",),
    ("state",),
    ("result", "status"),
    ("data", "status"),
    ("data", "state"),
    ("data", "task", "status"),
]


def normalize_status(value: Any) -> str:
    """Collapse a provider status into success / failed / pending."""
    return STATUS_MAP.get(str(value or "").strip().lower(), "pending")


def payload_status(payload: Any) -> str:
    """Raw (un-normalized) status string from a provider payload."""
    value = first_present(payload, STATUS_PATHS)
    return _scalar_text(value)


# ─────────────────────────────────────────────────────────────
# Result URL policy
# ─────────────────────────────────────────────────────────────
URL_RE = re.compile(r"https?://[^\s\"'<>\\]+", re.IGNORECASE)
_URL_TRAILING = ".,;:)]}"


@dataclass(frozen=True)
class ResultUrlPolicy:
    """Host allow-list plus a path pattern a result URL must satisfy."""

    hosts: Tuple[str, ...]
    path_pattern: Optional[re.Pattern] = None
    name: str = ""

    def host_allowed(self, host: str) -> bool:
        host = (host or "").lower()
        if not host:
            return False
        for entry in self.hosts:
            entry = entry.lower()
            if entry.startswith("."):
                if host.endswith(entry) or host == entry[1:]:
                    return True
            elif host == entry:
                return True
        return False

    def allows(self, url: Any) -> bool:
        if not isinstance(url, str) or not url:
            return False
        try:
            parsed = urlparse(url.strip())
        except ValueError:
            return False
        if parsed.scheme not in ("http", "https"):
            return False
        if not self.host_allowed(parsed.hostname or ""):
            return False
        if self.path_pattern is not None and not self.path_pattern.search(parsed.path or ""):
            return False
        return True


KIE_IMAGE_PATH = re.compile(r"/(m|f|workers)/", re.IGNORECASE)
KIE_VIDEO_PATH = re.compile(r"\.mp4$", re.IGNORECASE)
IMAGE_FILE_PATH = re.compile(r"\.(png|jpe?g|webp|gif)$", re.IGNORECASE)


def kie_image_policy() -> ResultUrlPolicy:
    return ResultUrlPolicy(tuple(config.ALLOWED_RESULT_HOSTS), KIE_IMAGE_PATH, "kie-image")


def kie_video_policy() -> ResultUrlPolicy:
    return ResultUrlPolicy(tuple(config.ALLOWED_RESULT_HOSTS), KIE_VIDEO_PATH, "kie-video")


def kie_thumb_policy() -> ResultUrlPolicy:
    return ResultUrlPolicy(tuple(config.ALLOWED_RESULT_HOSTS), IMAGE_FILE_PATH, "kie-thumb")


def replicate_policy() -> ResultUrlPolicy:
    return ResultUrlPolicy(tuple(config.REPLICATE_RESULT_HOSTS), None, "replicate")


def higgsfield_policy() -> ResultUrlPolicy:
    return ResultUrlPolicy(tuple(config.HF_RESULT_HOSTS), None, "higgsfield")


# ─────────────────────────────────────────────────────────────
# Result URL collection
# ─────────────────────────────────────────────────────────────
def _url_values(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        url = value.get("url")
        if isinstance(url, str):
            yield url
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, str):
                yield item
            elif isinstance(item, dict) and isinstance(item.get("url"), str):
                yield item["url"]


def scan_urls(payload: Any) -> Iterator[str]:
    """Every http(s) URL found in any string of the payload."""
    for _, value in walk(payload):
        if isinstance(value, str) and "http" in value:
            for match in URL_RE.findall(value):
                yield match.rstrip(_URL_TRAILING)


def collect_result_urls(
    payload: Any,
    policy: ResultUrlPolicy,
    *,
    preferred_paths: Iterable[Path] = (),
    limit: int = 4,
    exclude: Iterable[str] = (),
    accept: Optional[Callable[[str], bool]] = None,
) -> list:
    """
    Allow-listed result URLs, preferred structural locations first.
    The recursive scan only runs when no preferred location produced a URL.
    Deduplicated, in discovery order, capped at `limit`.
    """
    excluded = {u.strip() for u in exclude if isinstance(u, str)}
    found: list = []

    def consider(url: str) -> bool:
        url = url.strip()
        if not url or url in excluded or url in found:
            return False
        if not policy.allows(url):
            return False
        if accept is not None and not accept(url):
            return False
        found.append(url)
        return len(found) >= limit

    for path in preferred_paths:
        for url in _url_values(get_path(payload, path)):
            if consider(url):
                return found

    if not found:
        for url in scan_urls(payload):
            if consider(url):
                break

    return found[:limit]


INPUT_URL_KEYS = {
    "image_urls",
    "imageurls",
    "originurls",
    "origin_urls",
    "input_urls",
    "inputurls",
    "reference_image",
    "referenceimage",
}


def collect_input_urls(payload: Any) -> set:
    """URLs the client sent as inputs; these must never be taken as results."""
    urls: set = set()
    for key, value in walk(payload):
        # KIE recordInfo carries the original request as a JSON string
        if key == "param" and isinstance(value, str):
            decoded = parse_json_safe(value)
            if isinstance(decoded, (dict, list)):
                urls.update(collect_input_urls(decoded))
            continue
        if key and key.lower() in INPUT_URL_KEYS:
            urls.update(_url_values(value))
            if isinstance(value, str):
                urls.update(u.rstrip(_URL_TRAILING) for u in URL_RE.findall(value))
    return urls


# ─────────────────────────────────────────────────────────────
# Replicate output
# ─────────────────────────────────────────────────────────────
def extract_output_url(output: Any) -> Optional[str]:
    """Replicate `output` may be a string, {url}, or a list of either."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, dict):
        url = output.get("url")
        return url if isinstance(url, str) and url else None
    if isinstance(output, list):
        for item in output:
            url = extract_output_url(item)
            if url:
                return url
    return None
