"""
Credit debits against the profiles balance.

The decrement happens inside the storage service (rpc/debit_credits), which
only subtracts when the balance covers the cost and returns the new balance,
or null when it does not. No balance is read and written back from here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from genrelay import db
from genrelay.config import config
from genrelay.db import StorageError

ANONYMOUS_USERS = {"", "anon", "anonymous"}


@dataclass
class DebitResult:
    ok: bool
    credits: Optional[float] = None
    error: Optional[str] = None
    skipped: bool = False


def _balance_from(result: Any) -> Optional[float]:
    # The function may come back as a bare scalar, a row, or a one-row list.
    if isinstance(result, list):
        result = result[0] if result else None
    if isinstance(result, dict):
        result = result.get("credits", result.get(config.DEBIT_FUNCTION))
    if result is None or isinstance(result, bool):
        return None
    try:
        return float(result)
    except (TypeError, ValueError):
        return None


def debit_credits(user_id: Optional[str], cost: Optional[float]) -> DebitResult:
    """
    Atomically subtract `cost` from the user's balance.

    Anonymous callers and zero costs are skipped (ok=True, skipped=True).
    """
    uid = (user_id or "").strip()
    if uid.lower() in ANONYMOUS_USERS or not cost:
        return DebitResult(ok=True, skipped=True)
    if not db.is_configured():
        return DebitResult(ok=False, error="storage_not_configured")

    try:
        result = db.rpc(config.DEBIT_FUNCTION, {"p_user_id": uid, "p_cost": cost})
    except StorageError as e:
        print(f"[CREDITS] debit {cost} for {uid} failed: {e}")
        return DebitResult(ok=False, error="debit_failed")

    balance = _balance_from(result)
    if balance is None:
        print(f"[CREDITS] insufficient credits for {uid} (cost={cost})")
        return DebitResult(ok=False, error="insufficient_credits")

    print(f"[CREDITS] debited {cost} from {uid}, balance now {balance}")
    return DebitResult(ok=True, credits=balance)
