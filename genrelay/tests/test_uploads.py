"""
Tests for the upload relay: MIME sniffing, size limits, transport choice.
"""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest

from genrelay.config import config
from genrelay.services.kie_service import KieError
from genrelay.services.upload_service import (
    IMAGE_FAMILY,
    VIDEO_FAMILY,
    UploadError,
    resolve_content_type,
    sniff_content_type,
)

API = "/api/functions"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
MP4 = b"\x00\x00\x00\x18ftypisom" + b"\x00" * 16
HOSTED = {"code": 200, "data": {"downloadUrl": "https://kieai.redpandaai.co/download/x"}}


def _multipart(data, name="upload.bin", content_type="application/octet-stream", field="file"):
    return {field: (io.BytesIO(data), name, content_type)}


class TestSniff:
    def test_signatures(self):
        assert sniff_content_type(PNG) == "image/png"
        assert sniff_content_type(b"\xff\xd8\xff\xe0") == "image/jpeg"
        assert sniff_content_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
        assert sniff_content_type(b"GIF89a....") == "image/gif"
        assert sniff_content_type(MP4) == "video/mp4"
        assert sniff_content_type(b"\x00\x00\x00\x14ftypqt  ") == "video/quicktime"
        assert sniff_content_type(b"\x1a\x45\xdf\xa3\x01") == "video/webm"
        assert sniff_content_type(b"hello") is None

    def test_sniffed_type_overrides_declared(self):
        assert resolve_content_type(PNG, "image/jpeg", IMAGE_FAMILY) == "image/png"

    def test_declared_type_must_match_family(self):
        assert resolve_content_type(b"????", "image/avif", IMAGE_FAMILY) == "image/avif"
        with pytest.raises(UploadError) as exc_info:
            resolve_content_type(b"????", "text/plain", IMAGE_FAMILY)
        assert exc_info.value.status_code == 415

    def test_video_falls_back_to_mp4(self):
        assert resolve_content_type(b"????", "application/octet-stream", VIDEO_FAMILY) == "video/mp4"


class TestKieUpload:
    def test_png_regardless_of_declared_type(self, client):
        with patch("genrelay.services.upload_service.upload_base64", return_value=HOSTED) as upload:
            resp = client.post(
                f"{API}/kie-upload",
                data=_multipart(PNG, content_type="application/octet-stream", field="whatever"),
                content_type="multipart/form-data",
            )
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["downloadUrl"] == HOSTED["data"]["downloadUrl"]
        assert body["contentType"] == "image/png"
        assert body["fileName"].endswith(".png")
        assert body["transport"] == "base64"
        data, content_type, file_name, upload_path = upload.call_args[0]
        assert data == PNG
        assert content_type == "image/png"
        assert upload_path == "images/user-uploads"

    def test_large_file_streams(self, client, monkeypatch):
        monkeypatch.setattr(config, "UPLOAD_STREAM_THRESHOLD", 16)
        with patch("genrelay.services.upload_service.upload_stream", return_value=HOSTED) as stream:
            resp = client.post(f"{API}/kie-upload-video", data=_multipart(MP4), content_type="multipart/form-data")
        assert resp.get_json()["transport"] == "stream"
        assert stream.call_args[0][3] == "videos/user-uploads"

    def test_empty_file(self, client):
        resp = client.post(f"{API}/kie-upload", data=_multipart(b""), content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_too_large(self, client, monkeypatch):
        monkeypatch.setattr(config, "IMAGE_UPLOAD_MAX_BYTES", 8)
        resp = client.post(f"{API}/kie-upload", data=_multipart(PNG), content_type="multipart/form-data")
        assert resp.status_code == 413

    def test_unsupported_image(self, client):
        resp = client.post(
            f"{API}/kie-upload",
            data=_multipart(b"just text", content_type="text/plain"),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 415

    def test_provider_failure(self, client):
        with patch("genrelay.services.upload_service.upload_base64", side_effect=KieError(500, "storage down")):
            resp = client.post(f"{API}/kie-upload", data=_multipart(PNG), content_type="multipart/form-data")
        assert resp.status_code == 502
        assert resp.get_json() == {"error": "upload_failed", "status": 500, "detail": "storage down"}

    def test_requires_multipart(self, client):
        resp = client.post(f"{API}/kie-upload", json={"file": "x"})
        assert resp.status_code == 400
