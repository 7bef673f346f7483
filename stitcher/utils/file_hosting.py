# stitcher/utils/file_hosting.py
"""
Output publication. Finished videos are copied into the public directory
under a name derived from the job type, job id and a timestamp, and served
from there (plain download or byte-range streaming by whatever fronts it).
"""
import logging
import shutil
import time
from pathlib import Path
from typing import Optional

from stitcher.config import Settings


def get_timestamp() -> str:
    """Returns a formatted timestamp string for filenames."""
    return time.strftime("%Y%m%d_%H%M%S")


def public_filename(job_type: str, job_id: str, timestamp: str, suffix: str = ".mp4") -> str:
    safe_type = "".join(c if c.isalnum() or c in "-_" else "_" for c in job_type) or "video"
    return f"{safe_type}_{job_id}_{timestamp}{suffix}"


def publish_output(
    local_path: Path,
    settings: Settings,
    job_type: str,
    job_id: str,
    timestamp: Optional[str] = None,
) -> tuple:
    """
    Copies the file into the public directory. Returns (public_path, public_url).

    This is a SYNCHRONOUS function; run it with asyncio.to_thread.
    """
    local_path = Path(local_path)
    timestamp = timestamp or get_timestamp()
    settings.public_dir.mkdir(parents=True, exist_ok=True)

    filename = public_filename(job_type, job_id, timestamp, local_path.suffix or ".mp4")
    public_path = settings.public_dir / filename
    shutil.copyfile(local_path, public_path)

    public_url = f"{settings.public_base_url}/{filename}"
    logging.info(f"Published {local_path.name} as {public_url}")
    return public_path, public_url
