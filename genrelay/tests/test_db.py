"""
Tests for the PostgREST client in genrelay.db.

The shared in-memory storage fixture is overridden here so the real module
functions run; only requests.request is patched.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
import requests

from genrelay import db
from genrelay.config import config


@pytest.fixture(autouse=True)
def storage():
    """Leave genrelay.db untouched for this module."""
    return None


def _response(status: int = 200, body=None, raw: bytes | None = None) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    if raw is not None:
        r._content = raw
    elif body is not None:
        r._content = json.dumps(body).encode("utf-8")
    else:
        r._content = b""
    return r


def _sent(mock_request):
    args, kwargs = mock_request.call_args
    return args[0], args[1], kwargs


class TestSelect:
    def test_builds_url_params_and_headers(self):
        rows = [{"id": 1, "meta": {"run_id": "r1"}}]
        with patch("genrelay.db.requests.request", return_value=_response(200, rows)) as req:
            out = db.select(
                db.Tables.GENERATIONS,
                {"user_id": db.eq("u1"), "meta->>run_id": db.eq("r1")},
                order="created_at.desc",
                limit=1,
            )

        assert out == rows
        method, url, kwargs = _sent(req)
        assert method == "GET"
        assert url == "https://storage.test/rest/v1/user_generations"
        assert kwargs["params"] == {
            "select": "*",
            "user_id": "eq.u1",
            "meta->>run_id": "eq.r1",
            "order": "created_at.desc",
            "limit": "1",
        }
        assert kwargs["json"] is None
        assert kwargs["timeout"] == config.STORAGE_TIMEOUT
        headers = kwargs["headers"]
        assert headers["apikey"] == "service-role-test"
        assert headers["Authorization"] == "Bearer service-role-test"
        assert "Prefer" not in headers

    def test_empty_body_is_no_rows(self):
        with patch("genrelay.db.requests.request", return_value=_response(200)):
            assert db.select(db.Tables.GENERATIONS, columns="id") == []

    def test_non_json_body_is_no_rows(self):
        with patch("genrelay.db.requests.request", return_value=_response(200, raw=b"<html>oops</html>")):
            assert db.select(db.Tables.GENERATIONS) == []

    def test_single_object_body_is_one_row(self):
        with patch("genrelay.db.requests.request", return_value=_response(200, {"id": 3})):
            assert db.select(db.Tables.GENERATIONS) == [{"id": 3}]


class TestInsert:
    def test_minimal_by_default(self):
        row = {"user_id": "u1", "meta": {"run_id": "r1"}}
        with patch("genrelay.db.requests.request", return_value=_response(201)) as req:
            assert db.insert(db.Tables.GENERATIONS, row) == []

        method, url, kwargs = _sent(req)
        assert method == "POST"
        assert url == "https://storage.test/rest/v1/user_generations"
        assert kwargs["json"] == row
        assert kwargs["params"] is None
        assert kwargs["headers"]["Prefer"] == "return=minimal"

    def test_representation_with_merge_duplicates(self):
        with patch("genrelay.db.requests.request", return_value=_response(201, [{"id": 9}])) as req:
            out = db.insert(db.Tables.LEGACY_RESULTS, {"run_id": "r1"}, returning=True, merge_duplicates=True)

        assert out == [{"id": 9}]
        _, url, kwargs = _sent(req)
        assert url == "https://storage.test/rest/v1/nb_results"
        assert kwargs["headers"]["Prefer"] == "return=representation,resolution=merge-duplicates"


class TestUpdate:
    def test_refuses_without_filters(self):
        with patch("genrelay.db.requests.request") as req:
            with pytest.raises(db.StorageError):
                db.update(db.Tables.GENERATIONS, {}, {"result_url": "https://x.test/a.png"})
        req.assert_not_called()

    def test_patch_by_filter(self):
        updated = [{"id": 1, "result_url": "https://x.test/a.png"}]
        with patch("genrelay.db.requests.request", return_value=_response(200, updated)) as req:
            out = db.update(db.Tables.GENERATIONS, {"meta->>task_id": db.eq("t1")}, {"result_url": "https://x.test/a.png"})

        assert out == updated
        method, _, kwargs = _sent(req)
        assert method == "PATCH"
        assert kwargs["params"] == {"meta->>task_id": "eq.t1"}
        assert kwargs["json"] == {"result_url": "https://x.test/a.png"}
        assert kwargs["headers"]["Prefer"] == "return=representation"

    def test_minimal_returns_nothing(self):
        with patch("genrelay.db.requests.request", return_value=_response(204)) as req:
            out = db.update(db.Tables.GENERATIONS, {"id": db.eq(1)}, {"thumb_url": None}, returning=False)
        assert out == []
        assert _sent(req)[2]["headers"]["Prefer"] == "return=minimal"


class TestRpc:
    def test_scalar_result(self):
        with patch("genrelay.db.requests.request", return_value=_response(200, raw=b"7")) as req:
            assert db.rpc("debit_credits", {"p_user_id": "u1", "p_amount": 3}) == 7

        method, url, kwargs = _sent(req)
        assert method == "POST"
        assert url == "https://storage.test/rest/v1/rpc/debit_credits"
        assert kwargs["json"] == {"p_user_id": "u1", "p_amount": 3}

    def test_empty_and_non_json(self):
        with patch("genrelay.db.requests.request", return_value=_response(200)):
            assert db.rpc("debit_credits", {}) is None
        with patch("genrelay.db.requests.request", return_value=_response(200, raw=b"not json")):
            assert db.rpc("debit_credits", {}) is None


class TestErrors:
    def test_non_2xx_raises_with_status_and_body(self):
        with patch("genrelay.db.requests.request", return_value=_response(409, raw=b'{"code":"23505"}')):
            with pytest.raises(db.StorageRequestError) as exc:
                db.insert(db.Tables.GENERATIONS, {"user_id": "u1"})
        assert exc.value.status_code == 409
        assert "23505" in exc.value.body

    def test_transport_error_raises(self):
        with patch("genrelay.db.requests.request", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(db.StorageRequestError) as exc:
                db.select(db.Tables.GENERATIONS)
        assert exc.value.status_code == 0

    def test_not_configured(self):
        with patch.object(config, "SUPABASE_SERVICE_ROLE_KEY", ""), \
                patch("genrelay.db.requests.request") as req:
            with pytest.raises(db.StorageNotConfiguredError):
                db.select(db.Tables.GENERATIONS)
        req.assert_not_called()


class TestVerifyConnection:
    def test_reachable(self):
        with patch("genrelay.db.requests.request", return_value=_response(200, [])) as req:
            assert db.verify_connection() is True
        assert _sent(req)[2]["params"] == {"select": "id", "limit": "1"}

    def test_unreachable(self):
        with patch("genrelay.db.requests.request", return_value=_response(503, raw=b"down")):
            assert db.verify_connection() is False

    def test_not_configured(self):
        with patch.object(config, "SUPABASE_URL", ""), \
                patch("genrelay.db.requests.request") as req:
            assert db.verify_connection() is False
        req.assert_not_called()
