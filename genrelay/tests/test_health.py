"""
Tests for health, diagnostics and app wiring.
"""

from __future__ import annotations

from genrelay import db
from genrelay.config import config
from genrelay.db import StorageRequestError

API = "/api/functions"


class TestHealth:
    def test_health(self, client):
        assert client.get(f"{API}/health").get_json() == {"ok": True}

    def test_storage_check(self, client, monkeypatch):
        assert client.get(f"{API}/storage-check").status_code == 200
        monkeypatch.setattr(db, "verify_connection", lambda: False)
        assert client.get(f"{API}/storage-check").status_code == 503

    def test_nb_diag_reports_insert(self, client, storage):
        body = client.get(f"{API}/nb-diag").get_json()
        assert body["has_url"] is True
        assert body["has_service_key"] is True
        assert body["insert_ok"] is True
        assert storage.rows(config.LEGACY_RESULTS_TABLE)[0]["user_id"] == "diag"

    def test_nb_diag_failure_still_200(self, client, monkeypatch):
        def reject(*a, **kw):
            raise StorageRequestError("denied", status_code=401, body='{"message":"bad key"}')

        monkeypatch.setattr(db, "insert", reject)
        resp = client.get(f"{API}/nb-diag")
        assert resp.status_code == 200
        assert resp.get_json()["insert_status"] == 401


class TestAppWiring:
    def test_unknown_route_json_404(self, client):
        resp = client.get(f"{API}/nope")
        assert resp.status_code == 404
        assert resp.get_json()["ok"] is False

    def test_preflight(self, client):
        resp = client.options(
            f"{API}/run-midjourney",
            headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code in (200, 204)
        assert resp.headers.get("Access-Control-Allow-Origin") in ("*", "https://app.example.com")

    def test_legacy_prefix_health(self, client):
        assert client.get("/.netlify/functions/health").get_json() == {"ok": True}

    def test_config_to_dict_has_no_secrets(self):
        exported = str(config.to_dict())
        assert "service-role-test" not in exported
        assert "kie-test-key" not in exported
