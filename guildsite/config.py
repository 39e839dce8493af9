"""
Configuration

Settings are read from the environment (optionally seeded from a .env file).
Thresholds and limits live on the same object so tests can shrink them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from dotenv import load_dotenv

API_PREFIX = "/api"
MEDIA_URL_PREFIX = "/uploads/chat/"

ALLOWED_UPLOAD_MIMES = frozenset(
    {
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/gif",
        "video/mp4",
        "video/webm",
    }
)


@dataclass
class Settings:
    # Backup webhook
    backup_webhook: Optional[str] = None
    backup_timeout_s: float = 10.0
    backup_cooldown_ms: int = 10 * 60 * 1000

    # Metrics window
    window_ms: int = 60_000
    prune_interval_ms: int = 5_000
    rpm_warn: int = 400
    rpm_crit: int = 600
    error_warn: float = 0.10
    error_crit: float = 0.20
    top_sources: int = 5

    # Chat
    chat_limit: int = 200
    chat_throttle_ms: int = 1200
    chat_text_max: int = 300
    chat_author_max: int = 30
    chat_url_max: int = 2048
    chat_anonymous: str = "Anonymous"

    # Files
    data_dir: str = "./data"
    reports_dir: str = "./reports"
    uploads_dir: str = "./uploads/chat"
    upload_max_bytes: int = 10 * 1024 * 1024
    allowed_mimes: FrozenSet[str] = ALLOWED_UPLOAD_MIMES

    # Server status proxy
    status_api_base: str = "https://api.mcsrvstat.us/2"
    status_default_host: str = "flash.ateex.cloud"
    status_default_port: str = "18786"
    status_timeout_s: float = 10.0

    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def chat_file(self) -> str:
        return os.path.join(self.data_dir, "chat.json")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    """Build Settings from the process environment."""
    load_dotenv()

    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    return Settings(
        backup_webhook=os.getenv("CLOUD_BACKUP_WEBHOOK") or None,
        backup_timeout_s=_float_env("BACKUP_WEBHOOK_TIMEOUT", 10.0),
        data_dir=os.getenv("DATA_DIR", "./data"),
        reports_dir=os.getenv("REPORTS_DIR", "./reports"),
        uploads_dir=os.getenv("UPLOADS_DIR", "./uploads/chat"),
        status_api_base=os.getenv("STATUS_API_BASE", "https://api.mcsrvstat.us/2").rstrip("/"),
        status_default_host=os.getenv("STATUS_DEFAULT_HOST", "flash.ateex.cloud"),
        status_default_port=os.getenv("STATUS_DEFAULT_PORT", "18786"),
        cors_origins=origins or ["*"],
    )
