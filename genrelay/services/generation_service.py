"""
Generation record bookkeeping.

One row per (user, run id) in the generations table is the intent. Rows start
as placeholders (result_url null, meta.status "processing") and are patched in
place when a result arrives through a poll, a webhook or a client report.

All writes are best-effort: storage errors are logged with log_db_continue
and reported as False / None, never raised to the request handler.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from genrelay import db
from genrelay.db import StorageError, Tables
from genrelay.utils import log_db_continue, log_event


def _first(rows) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


def _merge_meta(existing: Optional[Dict[str, Any]], updates: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict((existing or {}).get("meta") or {})
    for k, v in (updates or {}).items():
        if v is not None:
            merged[k] = v
    return merged


def find_generation(user_id: Optional[str], run_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Row for (user, run id); when user is unknown, the newest row for the run id."""
    if not run_id:
        return None
    filters = {"meta->>run_id": db.eq(run_id)}
    if user_id:
        filters["user_id"] = db.eq(user_id)
    return _first(db.select(Tables.GENERATIONS, filters, columns="id,user_id,meta,result_url", order="created_at.desc", limit=1))


def find_by_task(task_id: str, id_key: str = "task_id", user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not task_id:
        return None
    filters = {f"meta->>{id_key}": db.eq(task_id)}
    if user_id:
        filters["user_id"] = db.eq(user_id)
    return _first(db.select(Tables.GENERATIONS, filters, columns="id,user_id,meta,result_url", order="created_at.desc", limit=1))


def find_owner(task_id: str, id_key: str = "task_id") -> Tuple[Optional[str], Dict[str, Any]]:
    """
    (user_id, meta) of the row that carries this provider task id.
    Used by webhooks that arrive without correlation data.
    """
    if not task_id or not db.is_configured():
        return None, {}
    try:
        row = find_by_task(task_id, id_key)
    except StorageError as e:
        log_db_continue("find_owner", e)
        return None, {}
    if not row:
        return None, {}
    return row.get("user_id"), dict(row.get("meta") or {})


def seed_placeholder(
    user_id: str,
    run_id: str,
    *,
    provider: str,
    kind: str,
    prompt: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> Optional[Any]:
    """
    Create (or refresh) the processing row for a submission.
    Returns the row id when known.
    """
    if not user_id or not run_id or not db.is_configured():
        return None

    row_meta = {"run_id": run_id, "status": "processing"}
    row_meta.update({k: v for k, v in (meta or {}).items() if v is not None})

    try:
        existing = find_generation(user_id, run_id)
        if existing:
            db.update(
                Tables.GENERATIONS,
                {"id": db.eq(existing["id"])},
                {"meta": _merge_meta(existing, row_meta)},
                returning=False,
            )
            return existing["id"]

        rows = db.insert(
            Tables.GENERATIONS,
            {
                "user_id": user_id,
                "provider": provider,
                "kind": kind,
                "prompt": prompt or None,
                "result_url": None,
                "meta": row_meta,
            },
            returning=True,
        )
        row = _first(rows)
        return row.get("id") if row else None
    except StorageError as e:
        log_db_continue(f"seed_placeholder run_id={run_id}", e)
        return None


def attach_task_id(user_id: str, run_id: str, meta_updates: Dict[str, Any], row_id: Any = None) -> bool:
    """Backfill provider ids (task_id / prediction_id / job_set_id) into meta."""
    if not run_id or not db.is_configured():
        return False
    try:
        if row_id:
            existing = _first(db.select(Tables.GENERATIONS, {"id": db.eq(row_id)}, columns="id,meta", limit=1))
        else:
            existing = find_generation(user_id, run_id)
        if not existing:
            return False
        db.update(
            Tables.GENERATIONS,
            {"id": db.eq(existing["id"])},
            {"meta": _merge_meta(existing, meta_updates)},
            returning=False,
        )
        return True
    except StorageError as e:
        log_db_continue(f"attach_task_id run_id={run_id}", e)
        return False


def save_result(
    *,
    user_id: Optional[str],
    run_id: Optional[str],
    result_url: str,
    provider: str,
    kind: str,
    task_id: Optional[str] = None,
    id_key: str = "task_id",
    row_id: Any = None,
    prompt: Optional[str] = None,
    thumb_url: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    patch_latest_pending: bool = False,
) -> bool:
    """
    Write a completed result.

    Match order: row id, (user, run id), run id alone, provider task id.
    Nothing matched: insert a new row when the user is known. When that insert
    fails and patch_latest_pending is set, the user's newest row without a
    result is patched instead.
    """
    if not result_url or not db.is_configured():
        return False

    updates: Dict[str, Any] = {"status": "done"}
    if run_id:
        updates["run_id"] = run_id
    if task_id:
        updates[id_key] = task_id
    updates.update(meta or {})

    try:
        existing = None
        if row_id:
            existing = _first(db.select(Tables.GENERATIONS, {"id": db.eq(row_id)}, columns="id,user_id,meta,result_url", limit=1))
        if not existing and run_id:
            existing = find_generation(user_id, run_id)
        if not existing and task_id:
            existing = find_by_task(task_id, id_key, user_id)

        if existing:
            patch: Dict[str, Any] = {"result_url": result_url, "meta": _merge_meta(existing, updates)}
            if thumb_url:
                patch["thumb_url"] = thumb_url
            db.update(Tables.GENERATIONS, {"id": db.eq(existing["id"])}, patch, returning=False)
            log_event("generation.patched", {"id": existing["id"], "run_id": run_id, "provider": provider})
            return True
    except StorageError as e:
        log_db_continue(f"save_result lookup run_id={run_id}", e)

    if not user_id:
        print(f"[DB] save_result: no row matched and no user for run_id={run_id} task_id={task_id}")
        return False

    try:
        row = {
            "user_id": user_id,
            "provider": provider,
            "kind": kind,
            "prompt": prompt or None,
            "result_url": result_url,
            "meta": {k: v for k, v in updates.items() if v is not None},
        }
        if thumb_url:
            row["thumb_url"] = thumb_url
        db.insert(Tables.GENERATIONS, row)
        log_event("generation.inserted", {"user_id": user_id, "run_id": run_id, "provider": provider})
        return True
    except StorageError as e:
        log_db_continue(f"save_result insert run_id={run_id}", e)

    if patch_latest_pending:
        return _patch_latest_pending(user_id, result_url, updates)
    return False


def mark_failed(
    user_id: Optional[str],
    run_id: Optional[str],
    *,
    task_id: Optional[str] = None,
    id_key: str = "task_id",
    row_id: Any = None,
) -> bool:
    """Flag the matching row as failed. Rows that already hold a result are left alone."""
    if not db.is_configured():
        return False
    try:
        existing = None
        if row_id:
            existing = _first(db.select(Tables.GENERATIONS, {"id": db.eq(row_id)}, columns="id,user_id,meta,result_url", limit=1))
        if not existing and run_id:
            existing = find_generation(user_id, run_id)
        if not existing and task_id:
            existing = find_by_task(task_id, id_key, user_id)
        if not existing or existing.get("result_url"):
            return False
        db.update(
            Tables.GENERATIONS,
            {"id": db.eq(existing["id"])},
            {"meta": _merge_meta(existing, {"status": "failed"})},
            returning=False,
        )
        return True
    except StorageError as e:
        log_db_continue(f"mark_failed run_id={run_id}", e)
        return False


def _patch_latest_pending(user_id: str, result_url: str, updates: Dict[str, Any]) -> bool:
    try:
        latest = _first(
            db.select(
                Tables.GENERATIONS,
                {"user_id": db.eq(user_id), "result_url": db.is_null()},
                columns="id,meta",
                order="created_at.desc",
                limit=1,
            )
        )
        if not latest:
            return False
        db.update(
            Tables.GENERATIONS,
            {"id": db.eq(latest["id"])},
            {"result_url": result_url, "meta": _merge_meta(latest, updates)},
            returning=False,
        )
        return True
    except StorageError as e:
        log_db_continue("save_result latest-pending fallback", e)
        return False


def mirror_legacy_result(user_id: Optional[str], run_id: Optional[str], task_id: Optional[str], image_url: str) -> bool:
    """Compatibility copy into the legacy results table (upsert)."""
    if not image_url or not db.is_configured():
        return False
    try:
        db.insert(
            Tables.LEGACY_RESULTS,
            {"user_id": user_id or None, "run_id": run_id or None, "task_id": task_id or None, "image_url": image_url},
            merge_duplicates=True,
        )
        return True
    except StorageError as e:
        log_db_continue(f"mirror_legacy_result run_id={run_id}", e)
        return False
