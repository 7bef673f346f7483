# stitcher/utils/cleanup.py
import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import Iterable, Optional


def sweep_outputs(directory: Path, max_age_seconds: float, now: Optional[float] = None) -> list:
    """Deletes files in `directory` older than the retention window."""
    directory = Path(directory)
    if not directory.exists():
        return []

    now = now if now is not None else time.time()
    removed = []
    for path in directory.iterdir():
        if not path.is_file():
            continue
        try:
            age = now - path.stat().st_mtime
            if age > max_age_seconds:
                path.unlink()
                removed.append(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logging.warning(f"Error removing expired file {path.name}: {e}")

    if removed:
        logging.info(f"Removed {len(removed)} expired file(s) from {directory}")
    return removed


def remove_workspace(job_dir: Path):
    """Removes a job's working directory; it is never reused."""
    if Path(job_dir).exists():
        shutil.rmtree(job_dir, ignore_errors=True)
        logging.debug(f"Removed workspace {job_dir}")


async def run_periodic_sweep(directories: Iterable[Path], max_age_seconds: float, interval_seconds: float):
    directories = list(directories)
    while True:
        for directory in directories:
            await asyncio.to_thread(sweep_outputs, directory, max_age_seconds)
        await asyncio.sleep(interval_seconds)
