"""Configuration helpers for the portrait/video workflow."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


def _env_str(*names: str) -> Optional[str]:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


@dataclass
class Settings:
    """Environment-driven configuration.

    Values are read once at import time; tests override individual attributes
    with ``monkeypatch.setattr`` on the module-level ``settings`` instance.
    """

    # API_KEY is the name used by hosted studio environments.
    gemini_api_key: Optional[str] = _env_str("GEMINI_API_KEY", "API_KEY")
    gemini_api_base: str = os.getenv(
        "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
    )
    gemini_image_model: str = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
    gemini_video_model: str = os.getenv("GEMINI_VIDEO_MODEL", "veo-3.1-fast-generate-preview")
    gemini_request_timeout_seconds: float = float(os.getenv("GEMINI_REQUEST_TIMEOUT_SECONDS", "120"))
    gemini_http2: bool = _env_bool("GEMINI_HTTP2", True)

    # Long-running video operation.
    video_poll_interval_seconds: float = float(os.getenv("VIDEO_POLL_INTERVAL_SECONDS", "10"))
    # 0 disables the ceiling and polls until the service reports completion.
    video_max_wait_seconds: float = float(os.getenv("VIDEO_MAX_WAIT_SECONDS", "900"))
    video_resolution: str = os.getenv("VIDEO_RESOLUTION", "720p")
    video_aspect_ratio: str = os.getenv("VIDEO_ASPECT_RATIO", "16:9")
    video_download_filename: str = os.getenv("VIDEO_DOWNLOAD_FILENAME", "ps-tet-family-moment.mp4")
    video_progress_interval_seconds: float = float(os.getenv("VIDEO_PROGRESS_INTERVAL_SECONDS", "3"))

    # Upload guardrails
    max_upload_files: int = int(os.getenv("MAX_UPLOAD_FILES", "5"))
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(12 * 1024 * 1024)))

    # Web server
    web_host: str = os.getenv("WEB_HOST", "127.0.0.1")
    web_port: int = int(os.getenv("WEB_PORT", "8000"))
    web_reload: bool = _env_bool("WEB_RELOAD", False)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install a console handler on the root logger once per process."""
    resolved = (level or settings.log_level or "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
