"""
Tests for atomic credit debits.
"""

from __future__ import annotations

from genrelay import db
from genrelay.db import StorageRequestError
from genrelay.services.credits_service import debit_credits


class TestDebitCredits:
    def test_debits_when_balance_covers(self, storage):
        storage.balances["u1"] = 10
        result = debit_credits("u1", 4)
        assert result.ok
        assert result.credits == 6.0
        assert storage.calls[-1] == ("rpc", "debit_credits", {"p_user_id": "u1", "p_cost": 4})

    def test_insufficient(self, storage):
        storage.balances["u1"] = 1
        result = debit_credits("u1", 4)
        assert not result.ok
        assert result.error == "insufficient_credits"
        assert storage.balances["u1"] == 1

    def test_anonymous_skipped(self, storage):
        for uid in ("", None, "anon"):
            result = debit_credits(uid, 4)
            assert result.ok and result.skipped
        assert storage.calls == []

    def test_row_shaped_result(self, monkeypatch):
        monkeypatch.setattr(db, "rpc", lambda fn, params: [{"credits": 12}])
        assert debit_credits("u1", 1).credits == 12.0

    def test_storage_error(self, monkeypatch):
        def boom(fn, params):
            raise StorageRequestError("down", status_code=503)

        monkeypatch.setattr(db, "rpc", boom)
        result = debit_credits("u1", 1)
        assert not result.ok
        assert result.error == "debit_failed"
