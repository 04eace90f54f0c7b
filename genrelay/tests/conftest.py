"""
Shared fixtures.

Environment is fixed before genrelay is imported so the config singleton sees
test values. Storage is replaced by an in-memory fake for every test; provider
clients are patched per test, so nothing here touches the network.
"""

from __future__ import annotations

import copy
import itertools
import os

os.environ.update({
    "FLASK_ENV": "testing",
    "SUPABASE_URL": "https://storage.test",
    "SUPABASE_SERVICE_ROLE_KEY": "service-role-test",
    "KIE_API_KEY": "kie-test-key",
    "REPLICATE_API_KEY": "r8-test-key",
    "OPENAI_API_KEY": "sk-test",
    "HF_API_KEY": "hf-test-key",
    "HF_SECRET": "hf-test-secret",
    "PUBLIC_BASE_URL": "https://relay.test",
    "AWS_BUCKET_DOWNLOADS": "",
    "POLL_CANDIDATE_DELAY": "0",
})

import pytest

from genrelay import db


class FakeStorage:
    """Tiny PostgREST stand-in: eq./is.null filters, created_at ordering, one RPC."""

    def __init__(self):
        self.tables = {}
        self.balances = {}
        self.calls = []
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    # helpers
    def rows(self, table):
        return self.tables.setdefault(table, [])

    @staticmethod
    def _value(row, key):
        if key.startswith("meta->>"):
            value = (row.get("meta") or {}).get(key[len("meta->>"):])
            return None if value is None else str(value)
        return row.get(key)

    def _matches(self, row, filters):
        for key, cond in (filters or {}).items():
            value = self._value(row, key)
            if cond == "is.null":
                if value is not None:
                    return False
            elif cond.startswith("eq."):
                if value is None or str(value) != cond[3:]:
                    return False
        return True

    # db API
    def select(self, table, filters=None, *, columns="*", order=None, limit=None):
        self.calls.append(("select", table, dict(filters or {})))
        found = [r for r in self.rows(table) if self._matches(r, filters)]
        if order and order.endswith(".desc"):
            found.sort(key=lambda r: r.get(order[: -len(".desc")]) or 0, reverse=True)
        if limit is not None:
            found = found[:limit]
        return copy.deepcopy(found)

    def insert(self, table, row, *, returning=False, merge_duplicates=False):
        self.calls.append(("insert", table, dict(row)))
        stored = copy.deepcopy(row)
        stored.setdefault("id", next(self._ids))
        stored["created_at"] = next(self._clock)
        self.rows(table).append(stored)
        return [copy.deepcopy(stored)] if returning else []

    def update(self, table, filters, patch, *, returning=True):
        self.calls.append(("update", table, dict(filters)))
        changed = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update(copy.deepcopy(patch))
                changed.append(copy.deepcopy(row))
        return changed if returning else []

    def rpc(self, function, params):
        self.calls.append(("rpc", function, dict(params)))
        uid, cost = params["p_user_id"], params["p_cost"]
        balance = self.balances.get(uid, 0)
        if balance < cost:
            return None
        self.balances[uid] = balance - cost
        return self.balances[uid]


@pytest.fixture(autouse=True)
def storage(monkeypatch):
    fake = FakeStorage()
    monkeypatch.setattr(db, "is_configured", lambda: True)
    monkeypatch.setattr(db, "select", fake.select)
    monkeypatch.setattr(db, "insert", fake.insert)
    monkeypatch.setattr(db, "update", fake.update)
    monkeypatch.setattr(db, "rpc", fake.rpc)
    return fake


@pytest.fixture
def app():
    from genrelay.app import create_app

    flask_app = create_app()
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def generations(storage):
    from genrelay.config import config

    return lambda: storage.rows(config.GENERATIONS_TABLE)
