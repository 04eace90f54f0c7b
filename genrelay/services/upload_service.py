"""
Upload relay: client file → KIE file hosting → public download URL.

MIME type is decided from the file's leading bytes first; the client's
declared type only counts when no known signature matches and it belongs to
the expected family.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from genrelay.config import config
from genrelay.services.extraction import first_present
from genrelay.services.kie_service import KieError, upload_base64, upload_stream
from genrelay.utils import get_extension_for_content_type, now_ms


IMAGE_UPLOAD_PATH = "images/user-uploads"
VIDEO_UPLOAD_PATH = "videos/user-uploads"

DOWNLOAD_URL_PATHS = [
    ("data", "downloadUrl"),
    ("downloadUrl",),
    ("data", "fileUrl"),
    ("data", "url"),
    ("url",),
]


class UploadError(Exception):
    """Client-side upload problem mapped to an HTTP status by the route."""

    def __init__(self, status_code: int, error: str, detail: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        self.detail = detail
        super().__init__(f"{error} ({status_code})")


class UploadRelayError(Exception):
    """The provider refused or failed the upload."""

    def __init__(self, status: int, detail: str):
        self.status = status
        self.detail = detail
        super().__init__(f"upload_failed {status}: {detail}")


@dataclass(frozen=True)
class UploadFamily:
    name: str
    prefix: str
    upload_path: str
    fallback_type: Optional[str]

    @property
    def max_bytes(self) -> int:
        return config.IMAGE_UPLOAD_MAX_BYTES if self.name == "image" else config.VIDEO_UPLOAD_MAX_BYTES


IMAGE_FAMILY = UploadFamily("image", "image/", IMAGE_UPLOAD_PATH, None)
VIDEO_FAMILY = UploadFamily("video", "video/", VIDEO_UPLOAD_PATH, "video/mp4")


def sniff_content_type(head: bytes) -> Optional[str]:
    """Known container signatures only; None when nothing matches."""
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand == b"qt  ":
            return "video/quicktime"
        return "video/mp4"
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm"
    return None


def resolve_content_type(data: bytes, declared: Optional[str], family: UploadFamily) -> str:
    sniffed = sniff_content_type(data[:16])
    if sniffed:
        return sniffed
    declared = (declared or "").split(";")[0].strip().lower()
    if declared.startswith(family.prefix):
        return declared
    if family.fallback_type:
        return family.fallback_type
    raise UploadError(415, "unsupported_type", declared or "unknown")


def relay_upload(data: bytes, declared_type: Optional[str], family: UploadFamily) -> dict:
    """
    Validate and forward one file. Returns {"downloadUrl", "contentType",
    "fileName", "transport"}.

    Raises UploadError for client problems and UploadRelayError when the
    provider fails.
    """
    if not data:
        raise UploadError(400, "empty_file")
    if len(data) > family.max_bytes:
        raise UploadError(413, "file_too_large", f"max {family.max_bytes} bytes")

    content_type = resolve_content_type(data, declared_type, family)
    ext = get_extension_for_content_type(content_type) or (".mp4" if family.name == "video" else ".bin")
    file_name = f"upload-{now_ms()}{ext}"

    if len(data) >= config.UPLOAD_STREAM_THRESHOLD:
        transport, send = "stream", upload_stream
    else:
        transport, send = "base64", upload_base64

    print(f"[UPLOAD] {family.name} {len(data)} bytes {content_type} via {transport}")
    try:
        body = send(data, content_type, file_name, family.upload_path)
    except KieError as e:
        raise UploadRelayError(e.status_code, e.message) from e

    url = first_present(body, DOWNLOAD_URL_PATHS)
    if not url:
        raise UploadRelayError(502, "no downloadUrl in provider response")
    return {"downloadUrl": str(url), "contentType": content_type, "fileName": file_name, "transport": transport}
