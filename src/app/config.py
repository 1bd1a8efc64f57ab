"""
Web layer settings for Reengage.

Only HTTP concerns live here (prefix, CORS, ingestion autostart, bind
address). Detection thresholds, collaborator credentials and the call
history database are read by ``src.outreach.config``.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ORIGINS = ["http://localhost:5173", "http://localhost:3000"]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class AppConfig:
    """HTTP surface of the Reengage API."""

    api_prefix: str = "/api/v1"
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    # When false, POST /telemetry hands snapshots straight to the pipeline
    autostart_ingestion: bool = True
    ingestion_poll_seconds: float = 0.2
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000


def get_app_config() -> AppConfig:
    """Read web settings from the environment."""
    return AppConfig(
        api_prefix=os.getenv("API_PREFIX", "/api/v1").rstrip("/"),
        cors_origins=_env_list("CORS_ORIGINS", DEFAULT_ORIGINS),
        autostart_ingestion=_env_flag("AUTOSTART_INGESTION", True),
        ingestion_poll_seconds=float(os.getenv("INGESTION_POLL_SECONDS", "0.2")),
        debug=_env_flag("DEBUG", False),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
