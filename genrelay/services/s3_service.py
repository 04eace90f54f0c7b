"""
S3 helpers for the download relay and result caching.

Objects are written under dated keys and handed out through presigned GET
URLs that expire after config.SIGNED_URL_EXPIRY seconds. Nothing here
deduplicates: every call stores a fresh object.
"""

from __future__ import annotations

import requests
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from genrelay.config import config
from genrelay.utils import dated_object_key, get_extension_for_content_type, sanitize_download_name

FETCH_TIMEOUT = (15, 300)


_s3 = boto3.client(
    "s3",
    region_name=config.AWS_REGION,
    aws_access_key_id=config.AWS_ACCESS_KEY_ID or None,
    aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY or None,
)


class S3CacheError(Exception):
    """Raised when an object cannot be fetched, stored or presigned."""


def is_configured() -> bool:
    return config.AWS_CONFIGURED


def build_s3_url(key: str) -> str:
    return f"https://{config.AWS_BUCKET_DOWNLOADS}.s3.{config.AWS_REGION}.amazonaws.com/{key}"


def put_bytes(key: str, body: bytes, content_type: str) -> str:
    try:
        _s3.put_object(
            Bucket=config.AWS_BUCKET_DOWNLOADS,
            Key=key,
            Body=body,
            ContentType=content_type or "application/octet-stream",
        )
    except (ClientError, BotoCoreError) as e:
        raise S3CacheError(f"put_object {key} failed: {e}") from e
    print(f"[S3] stored {key} ({len(body)} bytes, {content_type})")
    return key


def presign_key(key: str, download_name: str | None = None, expires_in: int | None = None) -> str:
    """
    Presigned GET for an object. With download_name the URL carries a
    response-content-disposition so browsers save instead of navigating.
    """
    params = {"Bucket": config.AWS_BUCKET_DOWNLOADS, "Key": key}
    if download_name:
        params["ResponseContentDisposition"] = f'attachment; filename="{download_name}"'
    try:
        return _s3.generate_presigned_url(
            "get_object",
            Params=params,
            ExpiresIn=expires_in or config.SIGNED_URL_EXPIRY,
        )
    except (ClientError, BotoCoreError) as e:
        raise S3CacheError(f"presign {key} failed: {e}") from e


def fetch_remote(url: str) -> tuple[bytes, str]:
    """GET a remote object fully into memory. Returns (body, content_type)."""
    try:
        r = requests.get(url, timeout=FETCH_TIMEOUT)
    except requests.RequestException as e:
        raise S3CacheError(f"fetch {url[:80]} failed: {e}") from e
    if not r.ok:
        raise S3CacheError(f"fetch {url[:80]} -> {r.status_code}")
    content_type = (r.headers.get("Content-Type") or "application/octet-stream").split(";")[0].strip()
    return r.content, content_type


def cache_remote_for_download(url: str, name: str) -> str:
    """
    Copy a remote file into the downloads bucket and return a presigned URL
    that forces a download under `name`.
    """
    safe = sanitize_download_name(name)
    body, content_type = fetch_remote(url)
    key = dated_object_key("downloads", safe)
    put_bytes(key, body, content_type)
    return presign_key(key, download_name=safe)


def cache_result(url: str, prefix: str, stem: str) -> str:
    """
    Copy a provider result URL (which usually expires) into the bucket and
    return the object's canonical S3 URL. Stored rows keep the canonical URL;
    readers presign it when the bucket is private.
    """
    body, content_type = fetch_remote(url)
    ext = get_extension_for_content_type(content_type) or ".bin"
    key = dated_object_key(prefix, f"{sanitize_download_name(stem, 60)}{ext}")
    put_bytes(key, body, content_type)
    return build_s3_url(key)
