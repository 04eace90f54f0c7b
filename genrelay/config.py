"""
Configuration module for the generation relay.
Centralizes all environment variables and settings.

Usage:
    from genrelay.config import config

    if config.KIE_CONFIGURED:
        print("KIE key present")

    base = config.SUPABASE_URL
"""

import os
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file (safe - won't override existing env vars)
load_dotenv()


def _get_env(key: str, default: str = "") -> str:
    """Safely get and strip an environment variable."""
    return os.getenv(key, default).strip()


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get an environment variable as boolean."""
    val = _get_env(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    """Get an environment variable as integer."""
    try:
        return int(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float = 0.0) -> float:
    try:
        return float(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_list(key: str, default: List[str] = None) -> List[str]:
    """Get a comma-separated environment variable as list."""
    val = _get_env(key, "")
    if not val:
        return list(default or [])
    return [item.strip() for item in val.split(",") if item.strip()]


DEFAULT_KIE_RESULT_HOSTS = ["tempfile.aiquickdraw.com", "tempfile.redpandaai.co"]
DEFAULT_REPLICATE_RESULT_HOSTS = ["replicate.delivery", ".replicate.delivery"]
DEFAULT_HF_RESULT_HOSTS = [".higgsfield.ai", ".cloudfront.net"]


@dataclass
class Config:
    """
    Application configuration with all settings.
    Loaded from environment variables with sensible defaults.
    """

    # ─────────────────────────────────────────────────────────────
    # Environment / Server
    # ─────────────────────────────────────────────────────────────
    FLASK_ENV: str = field(default_factory=lambda: _get_env("FLASK_ENV", "production").lower())
    PORT: int = field(default_factory=lambda: _get_env_int("PORT", 5001))
    HOST: str = field(default_factory=lambda: _get_env("HOST", "0.0.0.0"))

    @property
    def IS_DEV(self) -> bool:
        return self.FLASK_ENV in ("development", "dev", "local")

    # Public base for callback URLs (falls back to the request host when empty)
    PUBLIC_BASE_URL: str = field(default_factory=lambda: _get_env("PUBLIC_BASE_URL").rstrip("/"))

    # Route prefixes: the main one plus the legacy serverless path
    API_PREFIX: str = "/api/functions"
    LEGACY_PREFIX: str = "/.netlify/functions"

    # Print the route map at startup (always on in dev)
    LOG_ROUTES: bool = field(default_factory=lambda: _get_env_bool("LOG_ROUTES", False))

    # ─────────────────────────────────────────────────────────────
    # Storage REST (Supabase / PostgREST)
    # ─────────────────────────────────────────────────────────────
    SUPABASE_URL: str = field(default_factory=lambda: _get_env("SUPABASE_URL").rstrip("/"))
    SUPABASE_SERVICE_ROLE_KEY: str = field(
        default_factory=lambda: _get_env("SUPABASE_SERVICE_ROLE_KEY") or _get_env("SUPABASE_SERVICE_KEY")
    )
    GENERATIONS_TABLE: str = field(default_factory=lambda: _get_env("GENERATIONS_TABLE", "user_generations"))
    LEGACY_RESULTS_TABLE: str = field(default_factory=lambda: _get_env("LEGACY_RESULTS_TABLE", "nb_results"))
    DEBIT_FUNCTION: str = field(default_factory=lambda: _get_env("DEBIT_FUNCTION", "debit_credits"))
    STORAGE_TIMEOUT: int = field(default_factory=lambda: _get_env_int("STORAGE_TIMEOUT", 15))

    @property
    def STORAGE_CONFIGURED(self) -> bool:
        """True if the storage REST endpoint and service key are set."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)

    # ─────────────────────────────────────────────────────────────
    # AWS S3 (download relay cache, result caching)
    # ─────────────────────────────────────────────────────────────
    AWS_REGION: str = field(default_factory=lambda: _get_env("AWS_REGION", "eu-west-2"))
    AWS_BUCKET_DOWNLOADS: str = field(default_factory=lambda: _get_env("AWS_BUCKET_DOWNLOADS"))
    AWS_ACCESS_KEY_ID: str = field(default_factory=lambda: _get_env("AWS_ACCESS_KEY_ID"))
    AWS_SECRET_ACCESS_KEY: str = field(default_factory=lambda: _get_env("AWS_SECRET_ACCESS_KEY"))
    SIGNED_URL_EXPIRY: int = 3600

    @property
    def AWS_CONFIGURED(self) -> bool:
        """True if AWS S3 is configured."""
        return bool(self.AWS_BUCKET_DOWNLOADS and self.AWS_ACCESS_KEY_ID and self.AWS_SECRET_ACCESS_KEY)

    # ─────────────────────────────────────────────────────────────
    # KIE
    # ─────────────────────────────────────────────────────────────
    KIE_API_KEY: str = field(default_factory=lambda: _get_env("KIE_API_KEY"))
    KIE_API_BASE: str = field(default_factory=lambda: _get_env("KIE_API_BASE", "https://api.kie.ai").rstrip("/"))
    KIE_UPLOAD_BASE: str = field(
        default_factory=lambda: _get_env("KIE_UPLOAD_BASE", "https://kieai.redpandaai.co").rstrip("/")
    )
    # Raw multipart pass-through target for /kie
    KIE_API_URL: str = field(default_factory=lambda: _get_env("KIE_API_URL"))
    # Single status URL used by /poll-nb-result
    KIE_STATUS_URL: str = field(
        default_factory=lambda: _get_env("KIE_STATUS_URL", "https://api.kie.ai/api/v1/jobs/recordInfo")
    )
    KIE_IMAGE_MODEL: str = field(default_factory=lambda: _get_env("KIE_IMAGE_MODEL", "google/nano-banana-edit"))

    @property
    def KIE_CONFIGURED(self) -> bool:
        return bool(self.KIE_API_KEY)

    # ─────────────────────────────────────────────────────────────
    # Replicate
    # ─────────────────────────────────────────────────────────────
    REPLICATE_API_KEY: str = field(
        default_factory=lambda: _get_env("REPLICATE_API_KEY") or _get_env("REPLICATE_API_TOKEN")
    )
    REPLICATE_BASE_URL: str = field(
        default_factory=lambda: _get_env("REPLICATE_BASE_URL", "https://api.replicate.com/v1").rstrip("/")
    )
    # gpt-image-1 on Replicate needs the caller's OpenAI key passed through
    OPENAI_API_KEY: str = field(default_factory=lambda: _get_env("OPENAI_API_KEY"))

    @property
    def REPLICATE_CONFIGURED(self) -> bool:
        return bool(self.REPLICATE_API_KEY)

    # ─────────────────────────────────────────────────────────────
    # Higgsfield
    # ─────────────────────────────────────────────────────────────
    HF_API_KEY: str = field(default_factory=lambda: _get_env("HF_API_KEY"))
    HF_SECRET: str = field(default_factory=lambda: _get_env("HF_SECRET"))
    HF_API_BASE: str = field(
        default_factory=lambda: _get_env("HF_API_BASE", "https://platform.higgsfield.ai").rstrip("/")
    )

    @property
    def HF_CONFIGURED(self) -> bool:
        return bool(self.HF_API_KEY and self.HF_SECRET)

    # ─────────────────────────────────────────────────────────────
    # Result URL allow-lists
    # Entries starting with "." match any subdomain.
    # ─────────────────────────────────────────────────────────────
    ALLOWED_RESULT_HOSTS: List[str] = field(
        default_factory=lambda: _merge_hosts(DEFAULT_KIE_RESULT_HOSTS, _get_env_list("ALLOWED_RESULT_HOSTS"))
    )
    REPLICATE_RESULT_HOSTS: List[str] = field(
        default_factory=lambda: _get_env_list("REPLICATE_RESULT_HOSTS", DEFAULT_REPLICATE_RESULT_HOSTS)
    )
    HF_RESULT_HOSTS: List[str] = field(
        default_factory=lambda: _get_env_list("HF_RESULT_HOSTS", DEFAULT_HF_RESULT_HOSTS)
    )

    # ─────────────────────────────────────────────────────────────
    # Size thresholds
    # ─────────────────────────────────────────────────────────────
    DOWNLOAD_INLINE_LIMIT: int = field(default_factory=lambda: _get_env_int("DOWNLOAD_INLINE_LIMIT", 5_500_000))
    UPLOAD_STREAM_THRESHOLD: int = field(default_factory=lambda: _get_env_int("UPLOAD_STREAM_THRESHOLD", 4_000_000))
    IMAGE_UPLOAD_MAX_BYTES: int = field(default_factory=lambda: _get_env_int("IMAGE_UPLOAD_MAX_BYTES", 10 * 1024 * 1024))
    VIDEO_UPLOAD_MAX_BYTES: int = field(default_factory=lambda: _get_env_int("VIDEO_UPLOAD_MAX_BYTES", 100 * 1024 * 1024))

    @property
    def MAX_CONTENT_LENGTH(self) -> int:
        """Hard request ceiling for Flask; a little above the largest upload."""
        return max(self.IMAGE_UPLOAD_MAX_BYTES, self.VIDEO_UPLOAD_MAX_BYTES) + 1024 * 1024

    # ─────────────────────────────────────────────────────────────
    # Polling / extraction
    # ─────────────────────────────────────────────────────────────
    POLL_CANDIDATE_DELAY: float = field(default_factory=lambda: _get_env_float("POLL_CANDIDATE_DELAY", 0.25))
    SYNC_WAIT_TIMEOUT: int = field(default_factory=lambda: _get_env_int("SYNC_WAIT_TIMEOUT", 120))
    SYNC_WAIT_INTERVAL: float = field(default_factory=lambda: _get_env_float("SYNC_WAIT_INTERVAL", 2.0))
    EXTRACT_MAX_DEPTH: int = field(default_factory=lambda: _get_env_int("EXTRACT_MAX_DEPTH", 12))
    EXTRACT_MAX_NODES: int = field(default_factory=lambda: _get_env_int("EXTRACT_MAX_NODES", 5000))
    MAX_RESULT_IMAGES: int = 4

    # ─────────────────────────────────────────────────────────────
    # Credit costs (per submission)
    # ─────────────────────────────────────────────────────────────
    CREDIT_COSTS: Dict[str, float] = field(default_factory=lambda: {
        "imagen_fast": 0.5,
        "imagen_ultra": 1.0,
        "gpt_image_1": 4.0,
        "kling_5s": 7.0,
        "kling_10s": 13.0,
    })

    def cost_for(self, action: str) -> Optional[float]:
        return self.CREDIT_COSTS.get(action)

    # ─────────────────────────────────────────────────────────────
    # Startup helpers
    # ─────────────────────────────────────────────────────────────
    def log_summary(self) -> None:
        """Print configuration summary for debugging."""
        print("=" * 60)
        print("[CONFIG] Generation Relay Configuration")
        print("=" * 60)
        print(f"  Environment: {self.FLASK_ENV} (IS_DEV={self.IS_DEV})")
        print(f"  Port: {self.PORT}")
        print("-" * 60)
        print(f"  Storage configured: {self.STORAGE_CONFIGURED}")
        print(f"  S3 configured: {self.AWS_CONFIGURED}")
        print(f"  KIE configured: {self.KIE_CONFIGURED}")
        print(f"  Replicate configured: {self.REPLICATE_CONFIGURED}")
        print(f"  Higgsfield configured: {self.HF_CONFIGURED}")
        print(f"  Public base URL: {self.PUBLIC_BASE_URL or '(request host)'}")
        print(f"  Result hosts: {', '.join(self.ALLOWED_RESULT_HOSTS)}")
        print("=" * 60)

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of warnings.
        Returns empty list if all critical config is present.
        """
        warnings = []
        if not self.STORAGE_CONFIGURED:
            warnings.append("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set - results won't be persisted")
        if not (self.KIE_CONFIGURED or self.REPLICATE_CONFIGURED or self.HF_CONFIGURED):
            warnings.append("No provider key set - every submission will fail")
        if not self.AWS_CONFIGURED:
            warnings.append("AWS_BUCKET_DOWNLOADS not set - large downloads redirect to the origin")
        if not self.PUBLIC_BASE_URL:
            warnings.append("PUBLIC_BASE_URL not set - callback URLs use the request host")
        return warnings

    def to_dict(self) -> dict:
        """Export safe configuration as dictionary (no secrets)."""
        return {
            "environment": self.FLASK_ENV,
            "is_dev": self.IS_DEV,
            "port": self.PORT,
            "storage_configured": self.STORAGE_CONFIGURED,
            "aws_configured": self.AWS_CONFIGURED,
            "kie_configured": self.KIE_CONFIGURED,
            "replicate_configured": self.REPLICATE_CONFIGURED,
            "hf_configured": self.HF_CONFIGURED,
            "allowed_result_hosts": list(self.ALLOWED_RESULT_HOSTS),
            "download_inline_limit": self.DOWNLOAD_INLINE_LIMIT,
            "upload_stream_threshold": self.UPLOAD_STREAM_THRESHOLD,
        }


def _merge_hosts(defaults: List[str], extra: List[str]) -> List[str]:
    merged = []
    for host in list(defaults) + list(extra):
        host = host.lower()
        if host and host not in merged:
            merged.append(host)
    return merged


# ─────────────────────────────────────────────────────────────
# Singleton instance
# ─────────────────────────────────────────────────────────────
try:
    config = Config()
    print(f"[CONFIG] Loaded successfully (IS_DEV={config.IS_DEV}, storage={config.STORAGE_CONFIGURED})")
except Exception as e:
    print(f"[CONFIG] FATAL: Failed to load config: {repr(e)}")
    raise
