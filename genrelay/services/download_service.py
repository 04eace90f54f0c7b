"""
Download relay: make a remote asset save as a file in the browser.

Small files (known length within config.DOWNLOAD_INLINE_LIMIT) are streamed
back through this process with an attachment disposition. Anything larger or
of unknown size is copied to the downloads bucket and served by a presigned
URL; without a bucket the client is redirected to the origin.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from genrelay.config import config
from genrelay.services import s3_service
from genrelay.utils import sanitize_download_name


PROBE_TIMEOUT = (10, 20)
FETCH_TIMEOUT = (15, 120)
CONTENT_RANGE_TOTAL = re.compile(r"/\s*(\d+)\s*$")


@dataclass
class DownloadDecision:
    mode: str                     # "inline" | "redirect" | "error"
    status: int = 200
    location: str = ""
    body: bytes = b""
    content_type: str = "application/octet-stream"
    filename: str = "file"
    headers: Dict[str, str] = field(default_factory=dict)


def _is_private_ip(host: str) -> bool:
    """Reject private/loopback/reserved IPs to prevent SSRF."""
    try:
        ip = ipaddress.ip_address(host)
        return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast
    except ValueError:
        return False


def is_public_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    if host == "localhost" or _is_private_ip(host):
        return False
    try:
        for res in socket.getaddrinfo(host, parsed.port or 443):
            if _is_private_ip(res[4][0]):
                return False
    except (socket.gaierror, UnicodeError):
        # If DNS fails, treat as not allowed
        return False
    return True


def _int_header(headers, name: str) -> Optional[int]:
    try:
        value = int(headers.get(name, ""))
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def probe_length(url: str) -> Optional[int]:
    """
    Total size of the remote object, or None when it cannot be learned.
    HEAD first; a one-byte ranged GET when HEAD fails or omits the length.
    """
    try:
        r = requests.head(url, allow_redirects=True, timeout=PROBE_TIMEOUT)
        if r.ok:
            length = _int_header(r.headers, "Content-Length")
            if length is not None:
                return length
    except requests.RequestException as e:
        print(f"[DOWNLOAD] HEAD failed for {url[:80]}: {e}")

    try:
        r = requests.get(url, headers={"Range": "bytes=0-0"}, stream=True, allow_redirects=True, timeout=PROBE_TIMEOUT)
        try:
            if r.status_code == 206:
                match = CONTENT_RANGE_TOTAL.search(r.headers.get("Content-Range", ""))
                return int(match.group(1)) if match else None
            if r.ok:
                return _int_header(r.headers, "Content-Length")
        finally:
            r.close()
    except requests.RequestException as e:
        print(f"[DOWNLOAD] ranged GET failed for {url[:80]}: {e}")
    return None


def _redirect_to_origin(url: str, filename: str) -> DownloadDecision:
    return DownloadDecision(
        mode="redirect",
        status=302,
        location=url,
        filename=filename,
        headers={"Cache-Control": "private, max-age=0, no-cache"},
    )


def relay_download(url: str, name: Optional[str]) -> DownloadDecision:
    filename = sanitize_download_name(name)
    length = probe_length(url)

    if length is not None and 0 < length <= config.DOWNLOAD_INLINE_LIMIT:
        try:
            r = requests.get(url, allow_redirects=True, timeout=FETCH_TIMEOUT)
        except requests.RequestException as e:
            print(f"[DOWNLOAD] fetch failed for {url[:80]}: {e}")
            return DownloadDecision(mode="error", status=502, filename=filename)
        if not r.ok:
            return DownloadDecision(mode="error", status=r.status_code, filename=filename)
        return DownloadDecision(
            mode="inline",
            status=200,
            body=r.content,
            content_type=r.headers.get("Content-Type") or "application/octet-stream",
            filename=filename,
            headers={"Cache-Control": "no-store, no-cache, must-revalidate"},
        )

    if not s3_service.is_configured():
        return _redirect_to_origin(url, filename)

    try:
        signed = s3_service.cache_remote_for_download(url, filename)
    except s3_service.S3CacheError as e:
        print(f"[DOWNLOAD] caching failed, redirecting to origin: {e}")
        return _redirect_to_origin(url, filename)

    print(f"[DOWNLOAD] {url[:80]} (size={length}) served via signed URL")
    return DownloadDecision(
        mode="redirect",
        status=302,
        location=signed,
        filename=filename,
        headers={"Cache-Control": "no-store"},
    )
