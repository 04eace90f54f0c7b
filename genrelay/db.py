"""
Storage utilities for the relay.
Thin client over the storage service's REST interface (PostgREST / Supabase
`/rest/v1`). Every call is a single HTTP request authenticated with the
service key.

All functions raise meaningful exceptions on failure - callers that treat
storage as best-effort catch StorageError and continue.

Usage:
    from genrelay import db

    rows = db.select(db.Tables.GENERATIONS, {"user_id": db.eq(uid)}, limit=1)
    db.insert(db.Tables.GENERATIONS, {"user_id": uid, "meta": {...}})
    db.update(db.Tables.GENERATIONS, {"meta->>run_id": db.eq(run_id)}, {"result_url": url})

Filters are PostgREST query parameters: {"column": "op.value"}. JSON fields
are addressed with the arrow syntax, e.g. "meta->>task_id".
"""

from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException

from genrelay.config import config


# ─────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────
class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class StorageNotConfiguredError(StorageError):
    """Raised when the storage endpoint or key is missing."""
    def __init__(self, message: str = "Storage is not configured"):
        super().__init__(message)


class StorageRequestError(StorageError):
    """Raised when the REST call fails or returns a non-2xx status."""
    def __init__(self, message: str, status_code: int = 0, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class Tables:
    """Table name constants (resolved from config at import)."""
    GENERATIONS = config.GENERATIONS_TABLE
    LEGACY_RESULTS = config.LEGACY_RESULTS_TABLE


print(f"[DB] storage REST configured: {config.STORAGE_CONFIGURED}")


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────
def is_configured() -> bool:
    return config.STORAGE_CONFIGURED


def eq(value: Any) -> str:
    return f"eq.{value}"


def is_null() -> str:
    return "is.null"


def rest_url(path: str) -> str:
    return f"{config.SUPABASE_URL}/rest/v1/{path.lstrip('/')}"


def _headers(prefer: Optional[str] = None) -> Dict[str, str]:
    if not is_configured():
        raise StorageNotConfiguredError()
    headers = {
        "apikey": config.SUPABASE_SERVICE_ROLE_KEY,
        "Authorization": f"Bearer {config.SUPABASE_SERVICE_ROLE_KEY}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if prefer:
        headers["Prefer"] = prefer
    return headers


def _request(method: str, path: str, *, params=None, json=None, prefer=None) -> requests.Response:
    try:
        r = requests.request(
            method,
            rest_url(path),
            params=params,
            json=json,
            headers=_headers(prefer),
            timeout=config.STORAGE_TIMEOUT,
        )
    except RequestException as e:
        raise StorageRequestError(f"{method} {path} failed: {e}") from e

    if not r.ok:
        body = (r.text or "")[:500]
        raise StorageRequestError(f"{method} {path} -> {r.status_code}", status_code=r.status_code, body=body)
    return r


def _rows(r: requests.Response) -> List[Dict[str, Any]]:
    if not r.content:
        return []
    try:
        data = r.json()
    except ValueError:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []


# ─────────────────────────────────────────────────────────────
# Table operations
# ─────────────────────────────────────────────────────────────
def select(
    table: str,
    filters: Optional[Dict[str, str]] = None,
    *,
    columns: str = "*",
    order: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """SELECT rows matching all filters."""
    params: Dict[str, Any] = {"select": columns}
    params.update(filters or {})
    if order:
        params["order"] = order
    if limit is not None:
        params["limit"] = str(limit)
    return _rows(_request("GET", table, params=params))


def insert(
    table: str,
    row: Dict[str, Any],
    *,
    returning: bool = False,
    merge_duplicates: bool = False,
) -> List[Dict[str, Any]]:
    """
    INSERT one row. With merge_duplicates the storage side resolves
    primary/unique key conflicts as an upsert.
    """
    prefer = ["return=representation" if returning else "return=minimal"]
    if merge_duplicates:
        prefer.append("resolution=merge-duplicates")
    r = _request("POST", table, json=row, prefer=",".join(prefer))
    return _rows(r) if returning else []


def update(
    table: str,
    filters: Dict[str, str],
    patch: Dict[str, Any],
    *,
    returning: bool = True,
) -> List[Dict[str, Any]]:
    """
    PATCH every row matching the filters. Returns the updated rows when
    returning=True so callers can tell whether anything matched.
    """
    if not filters:
        raise StorageError("refusing to PATCH without filters")
    prefer = "return=representation" if returning else "return=minimal"
    r = _request("PATCH", table, params=dict(filters), json=patch, prefer=prefer)
    return _rows(r) if returning else []


def rpc(function: str, params: Dict[str, Any]) -> Any:
    """Call a storage-side function (POST /rest/v1/rpc/<function>)."""
    r = _request("POST", f"rpc/{function}", json=params)
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return None


def verify_connection() -> bool:
    """
    Cheap reachability probe used by /storage-check.
    Returns True when a one-row select on the generations table succeeds.
    """
    if not is_configured():
        return False
    try:
        select(Tables.GENERATIONS, columns="id", limit=1)
        return True
    except StorageError as e:
        print(f"[DB] verify_connection failed: {e}")
        return False
