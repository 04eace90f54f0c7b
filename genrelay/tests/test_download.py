"""
Tests for the download relay: inline vs redirect, filename sanitizing, SSRF guard.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import requests

from genrelay.services.download_service import is_public_http_url, probe_length

API = "/api/functions"
REMOTE = "https://cdn.example.com/a/b/image.png"


def _response(status=200, content=b"", headers=None):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 400
    r.content = content
    r.headers = headers or {}
    return r


class TestGuard:
    def test_rejects_non_http_and_private(self):
        assert not is_public_http_url("ftp://cdn.example.com/x")
        assert not is_public_http_url("http://127.0.0.1/x")
        assert not is_public_http_url("http://10.1.2.3/x")
        assert not is_public_http_url("http://localhost/x")

    def test_route_rejects(self, client):
        assert client.get(f"{API}/download-proxy").status_code == 400
        assert client.get(f"{API}/download-proxy?url=http://192.168.0.1/x").status_code == 400


class TestProbeLength:
    def test_head_content_length(self):
        with patch("genrelay.services.download_service.requests.head", return_value=_response(headers={"Content-Length": "1234"})):
            assert probe_length(REMOTE) == 1234

    def test_ranged_get_fallback(self):
        with patch("genrelay.services.download_service.requests.head", side_effect=requests.ConnectionError("nope")), \
                patch("genrelay.services.download_service.requests.get",
                      return_value=_response(206, headers={"Content-Range": "bytes 0-0/12345"})):
            assert probe_length(REMOTE) == 12345

    def test_unknown(self):
        with patch("genrelay.services.download_service.requests.head", return_value=_response(405)), \
                patch("genrelay.services.download_service.requests.get", return_value=_response(500)):
            assert probe_length(REMOTE) is None


class TestDownloadProxy:
    def _get(self, client, **params):
        query = "&".join(f"{k}={v}" for k, v in {"url": REMOTE, **params}.items())
        with patch("genrelay.routes.download.is_public_http_url", return_value=True):
            return client.get(f"{API}/download-proxy?{query}")

    def test_small_file_inline_with_sanitized_name(self, client):
        with patch("genrelay.services.download_service.probe_length", return_value=3), \
                patch("genrelay.services.download_service.requests.get",
                      return_value=_response(content=b"png", headers={"Content-Type": "image/png"})):
            resp = self._get(client, name="my%2Fcat%3F.png")
        assert resp.status_code == 200
        assert resp.data == b"png"
        assert resp.headers["Content-Disposition"] == 'attachment; filename="my_cat_.png"'
        assert "no-store" in resp.headers["Cache-Control"]

    def test_default_filename(self, client):
        with patch("genrelay.services.download_service.probe_length", return_value=3), \
                patch("genrelay.services.download_service.requests.get", return_value=_response(content=b"abc")):
            resp = self._get(client)
        assert resp.headers["Content-Disposition"] == 'attachment; filename="file"'

    def test_upstream_error_status(self, client):
        with patch("genrelay.services.download_service.probe_length", return_value=3), \
                patch("genrelay.services.download_service.requests.get", return_value=_response(404)):
            assert self._get(client).status_code == 404

    def test_large_without_bucket_redirects_to_origin(self, client):
        with patch("genrelay.services.download_service.probe_length", return_value=10_000_000):
            resp = self._get(client)
        assert resp.status_code == 302
        assert resp.headers["Location"] == REMOTE

    def test_unknown_size_with_bucket_redirects_to_signed_url(self, client):
        signed = "https://relay-downloads.s3.eu-west-2.amazonaws.com/downloads/x?X-Amz-Signature=abc"
        with patch("genrelay.services.download_service.probe_length", return_value=None), \
                patch("genrelay.services.download_service.s3_service.is_configured", return_value=True), \
                patch("genrelay.services.download_service.s3_service.cache_remote_for_download", return_value=signed) as cache:
            resp = self._get(client, name="clip.mp4")
        assert resp.status_code == 302
        assert resp.headers["Location"] == signed
        cache.assert_called_once_with(REMOTE, "clip.mp4")
