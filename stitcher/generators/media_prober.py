# stitcher/generators/media_prober.py
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import ffmpeg

from stitcher.errors import ProbeError
from stitcher.models import AssetKind, MediaAsset


@dataclass(frozen=True)
class ProbeResult:
    duration_seconds: float
    has_audio: bool
    width: Optional[int] = None
    height: Optional[int] = None


def parse_probe(metadata: dict, path) -> ProbeResult:
    """
    Reads the ffprobe JSON for one file. Audio presence comes from the stream
    list only, duration from the container (format) metadata.
    """
    streams = metadata.get("streams")
    format_info = metadata.get("format") or {}
    if streams is None:
        raise ProbeError(path, "ffprobe returned no stream list")

    has_audio = any(s.get("codec_type") == "audio" for s in streams)
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)

    try:
        duration = float(format_info["duration"])
    except (KeyError, TypeError, ValueError):
        # Still images have no container duration
        if video_stream is not None and not has_audio and len(streams) == 1:
            duration = 0.0
        else:
            raise ProbeError(path, f"container reports no duration (format={format_info.get('format_name')})")

    width = height = None
    if video_stream:
        width = int(video_stream.get("width") or 0) or None
        height = int(video_stream.get("height") or 0) or None

    return ProbeResult(duration_seconds=duration, has_audio=has_audio, width=width, height=height)


def probe(path) -> ProbeResult:
    """
    Extracts duration, dimensions and audio-stream presence with ffprobe.

    This is a SYNCHRONOUS function; the pipeline runs it in asyncio.to_thread.
    """
    path = Path(path)
    if not path.exists():
        raise ProbeError(path, "file does not exist")

    try:
        metadata = ffmpeg.probe(str(path))
    except ffmpeg.Error as e:
        stderr_str = e.stderr.decode(errors="ignore") if e.stderr else str(e)
        logging.error(f"FFprobe error for {path.name}: {stderr_str[:300]}")
        raise ProbeError(path, stderr_str.strip() or "not a recognized media container") from e
    except FileNotFoundError as e:
        raise ProbeError(path, "ffprobe executable not found") from e

    result = parse_probe(metadata, path)
    logging.debug(
        f"Probed {path.name}: {result.duration_seconds:.2f}s, "
        f"{result.width}x{result.height}, audio={result.has_audio}"
    )
    return result


def probe_asset(path, kind: AssetKind) -> MediaAsset:
    result = probe(path)
    return MediaAsset(
        local_path=Path(path),
        kind=kind,
        duration_seconds=result.duration_seconds,
        has_audio=result.has_audio,
        width=result.width,
        height=result.height,
    )
