# stitcher/config.py
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from stitcher.errors import ConfigurationError

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(module)s] %(message)s"

# --- Composition defaults ---
FADE_OUT_SECONDS = 2.0
SHORT_FORM_SECONDS = 5.0
SHORT_FORM_FADE_SECONDS = 0.5
AUDIO_CODEC = "aac"
VIDEO_CODEC = "libx264"
PIXEL_FORMAT = "yuv420p"


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got '{value}'") from e


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'") from e


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration. Built once at startup and handed to every
    collaborator instead of being read from the environment piecemeal.
    """
    work_dir: Path = Path("/tmp/stitcher")
    output_dir: Path = Path("/tmp/stitcher/output")
    public_dir: Path = Path("/tmp/stitcher/public")
    public_base_url: str = "/files"

    # --- Job record store (Supabase REST) ---
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "video_jobs"

    # --- Lip-sync provider ---
    lipsync_api_url: Optional[str] = None
    lipsync_auth_header_value: Optional[str] = None
    lipsync_poll_interval: float = 5.0
    lipsync_error_interval: float = 10.0
    lipsync_early_error_checks: int = 3
    lipsync_max_attempts: int = 120

    # --- Rendering ---
    max_concurrent_renders: int = 2
    music_volume_db: float = -2.0
    download_timeout: float = 60.0

    # --- Retention ---
    output_retention_seconds: int = 3600
    cleanup_interval_seconds: int = 600

    log_level: str = "INFO"

    def __post_init__(self):
        if self.max_concurrent_renders < 1:
            raise ConfigurationError("MAX_CONCURRENT_RENDERS must be at least 1")
        if self.lipsync_max_attempts < 1:
            raise ConfigurationError("LIPSYNC_MAX_ATTEMPTS must be at least 1")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        # Load environment variables from .env file
        load_dotenv(dotenv_path)

        work_dir = Path(os.getenv("STITCHER_WORK_DIR", "/tmp/stitcher"))
        return cls(
            work_dir=work_dir,
            output_dir=Path(os.getenv("STITCHER_OUTPUT_DIR", str(work_dir / "output"))),
            public_dir=Path(os.getenv("STITCHER_PUBLIC_DIR", str(work_dir / "public"))),
            public_base_url=os.getenv("STITCHER_PUBLIC_BASE_URL", "/files").rstrip("/"),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_KEY") or None,
            supabase_table=os.getenv("SUPABASE_TABLE", "video_jobs"),
            lipsync_api_url=os.getenv("LIPSYNC_API_URL") or None,
            lipsync_auth_header_value=os.getenv("LIPSYNC_AUTH_HEADER_VALUE") or None,
            lipsync_poll_interval=_get_float("LIPSYNC_POLL_INTERVAL", 5.0),
            lipsync_error_interval=_get_float("LIPSYNC_ERROR_INTERVAL", 10.0),
            lipsync_early_error_checks=_get_int("LIPSYNC_EARLY_ERROR_CHECKS", 3),
            lipsync_max_attempts=_get_int("LIPSYNC_MAX_ATTEMPTS", 120),
            max_concurrent_renders=_get_int("MAX_CONCURRENT_RENDERS", 2),
            music_volume_db=_get_float("MUSIC_VOLUME_DB", -2.0),
            download_timeout=_get_float("DOWNLOAD_TIMEOUT", 60.0),
            output_retention_seconds=_get_int("OUTPUT_RETENTION_SECONDS", 3600),
            cleanup_interval_seconds=_get_int("CLEANUP_INTERVAL_SECONDS", 600),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def validate_lipsync(self):
        if not self.lipsync_api_url or not self.lipsync_auth_header_value:
            raise ConfigurationError(
                "Lip-sync was requested but LIPSYNC_API_URL or "
                "LIPSYNC_AUTH_HEADER_VALUE is missing from your .env file."
            )


def configure_logging(settings: Settings):
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)


def ensure_directories(settings: Settings):
    """Creates the work, output and public directories if they don't exist."""
    for directory in (settings.work_dir, settings.output_dir, settings.public_dir):
        directory.mkdir(parents=True, exist_ok=True)
    logging.info(f"Workspace ready under {settings.work_dir}")
