import io
from pathlib import Path

import pytest

from stitcher.config import Settings
from stitcher.models import AssetKind, MediaAsset


@pytest.fixture
def settings(tmp_path):
    return Settings(
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "output",
        public_dir=tmp_path / "public",
        public_base_url="https://files.example.com/videos",
        lipsync_api_url="https://lipsync.example.com/v1",
        lipsync_auth_header_value="Bearer test-key",
    )


def make_video(name="video.mp4", duration=10.0, has_audio=True, width=1920, height=1080):
    return MediaAsset(
        local_path=Path("/tmp/assets") / name,
        kind=AssetKind.VIDEO,
        duration_seconds=duration,
        has_audio=has_audio,
        width=width,
        height=height,
    )


def make_audio(name="music.mp3", duration=25.0):
    return MediaAsset(
        local_path=Path("/tmp/assets") / name,
        kind=AssetKind.AUDIO,
        duration_seconds=duration,
        has_audio=True,
    )


def filter_complex(args):
    return args[args.index("-filter_complex") + 1]


def mapped(args):
    return [args[i + 1] for i, arg in enumerate(args) if arg == "-map"]


class FakeProcess:
    """Stands in for the Popen handle ffmpeg.run_async returns."""

    def __init__(self, stdout_lines=(), stderr_lines=(), returncode=0):
        self.stdout = io.BytesIO("".join(f"{line}\n" for line in stdout_lines).encode())
        self.stderr = io.BytesIO("".join(f"{line}\n" for line in stderr_lines).encode())
        self._returncode = returncode
        self._finished = False
        self.killed = False

    def wait(self):
        self._finished = True
        return self._returncode

    def poll(self):
        return self._returncode if self._finished else None

    def kill(self):
        self.killed = True
        self._finished = True
