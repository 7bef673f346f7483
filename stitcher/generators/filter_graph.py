# stitcher/generators/filter_graph.py
"""
Chooses and builds the ffmpeg filter graph for a composition step.

Four topologies are supported:
  concat        N >= 2 videos joined end to end
  audio_attach  conditioned music mixed into (or attached to) one video
  overlay       audio_attach plus an image composited onto the frames
  audio_replace short fixed-length audio laid onto an untouched video

Every builder returns a FilterGraph whose output explicitly maps one video
stream and at most one audio stream. Nothing here starts a process.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import ffmpeg

from stitcher import config
from stitcher.errors import GraphBuildError
from stitcher.generators import overlay_geometry
from stitcher.models import AssetKind, MediaAsset, OverlaySpec

SILENCE_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=44100"


@dataclass
class FilterGraph:
    topology: str
    output: object  # ffmpeg-python OutputStream
    output_path: Path
    stages: List[str] = field(default_factory=list)
    video_label: str = ""
    audio_label: Optional[str] = None
    video_codec: str = "copy"
    audio_codec: Optional[str] = None
    expected_duration: Optional[float] = None

    @property
    def has_audio(self) -> bool:
        return self.audio_label is not None

    def compile(self, cmd: str = "ffmpeg") -> List[str]:
        return ffmpeg.compile(self.output, cmd=cmd, overwrite_output=True)

    def describe(self) -> str:
        stages = " -> ".join(self.stages) or "none"
        return (
            f"{self.topology} [{stages}] video={self.video_label}({self.video_codec}) "
            f"audio={self.audio_label}({self.audio_codec})"
        )


def _require_duration(asset: MediaAsset, role: str) -> float:
    if asset.duration_seconds is None:
        raise GraphBuildError(f"Duration of {role} '{asset.local_path}' is unknown; probe it first")
    return asset.duration_seconds


def _require_probed_video(asset: MediaAsset, role: str):
    if asset.kind != AssetKind.VIDEO:
        raise GraphBuildError(f"{role} '{asset.local_path}' is a {asset.kind.value}, expected a video")
    if asset.has_audio is None:
        raise GraphBuildError(f"Audio presence of {role} '{asset.local_path}' is unknown; probe it first")
    _require_duration(asset, role)


def _video_encode_args() -> dict:
    return {"vcodec": config.VIDEO_CODEC, "pix_fmt": config.PIXEL_FORMAT}


def build_concat_graph(videos: Sequence[MediaAsset], output_path: Path) -> FilterGraph:
    """
    Joins the videos in order. When any clip has audio every clip must give
    the concat filter a (video, audio) pair; clips without audio are paired
    with generated silence of their own length. When no clip has audio the
    result is video-only.
    """
    if len(videos) < 2:
        raise GraphBuildError(f"Concatenation needs at least 2 videos, got {len(videos)}")
    for index, video in enumerate(videos):
        _require_probed_video(video, f"video {index}")

    inputs = [ffmpeg.input(str(v.local_path)) for v in videos]
    any_audio = any(v.has_audio for v in videos)
    total_duration = sum(v.duration_seconds for v in videos)

    if not any_audio:
        logging.info(f"No clip has audio, concatenating {len(videos)} videos video-only")
        joined = ffmpeg.concat(*[inp["v"] for inp in inputs], v=1, a=0)
        output = ffmpeg.output(joined, str(output_path), **_video_encode_args())
        return FilterGraph(
            topology="concat",
            output=output,
            output_path=Path(output_path),
            stages=["concat"],
            video_label="concat:v",
            video_codec=config.VIDEO_CODEC,
            expected_duration=total_duration,
        )

    segments = []
    stages = []
    for index, (inp, video) in enumerate(zip(inputs, videos)):
        segments.append(inp["v"])
        if video.has_audio:
            segments.append(inp["a"])
        else:
            # concat only binds audio pads to audio streams
            silence = ffmpeg.input(SILENCE_SOURCE, f="lavfi", t=video.duration_seconds)
            segments.append(silence["a"])
            stages.append(f"anullsrc[{index}]")
            logging.debug(f"Clip {index} has no audio, filling {video.duration_seconds:.2f}s of silence")
    stages.append("concat")

    joined = ffmpeg.concat(*segments, v=1, a=1).node
    output = ffmpeg.output(
        joined[0],
        joined[1],
        str(output_path),
        acodec=config.AUDIO_CODEC,
        **_video_encode_args(),
    )
    return FilterGraph(
        topology="concat",
        output=output,
        output_path=Path(output_path),
        stages=stages,
        video_label="concat:v",
        audio_label="concat:a",
        video_codec=config.VIDEO_CODEC,
        audio_codec=config.AUDIO_CODEC,
        expected_duration=total_duration,
    )


def build_audio_graph(
    video: MediaAsset,
    music: MediaAsset,
    output_path: Path,
    overlay: Optional[OverlaySpec] = None,
    overlay_path: Optional[Path] = None,
    music_volume_db: float = -2.0,
) -> FilterGraph:
    """
    Puts the conditioned music under the video.

    Video with its own audio: music is attenuated and mixed in, the mix ends
    with the shorter stream. Video without audio: music is the only track.
    Without an overlay the video stream is copied; with one it is re-rendered.
    The audio branch is the same either way.
    """
    _require_probed_video(video, "video")
    music_duration = _require_duration(music, "music")
    if overlay is not None:
        if overlay_path is None or not Path(overlay_path).exists():
            raise GraphBuildError(f"Overlay image '{overlay_path}' does not exist")

    video_in = ffmpeg.input(str(video.local_path))
    music_in = ffmpeg.input(str(music.local_path))
    stages = []

    # --- video branch ---
    if overlay is not None:
        overlay_in = ffmpeg.input(str(overlay_path))
        width, height = overlay_geometry.scale_instruction(overlay.width_pixels)
        x, y = overlay_geometry.resolve(overlay.anchor, overlay.margin_pixels)
        scaled = overlay_in["v"].filter("scale", width, height)
        video_out = (
            video_in["v"]
            .overlay(scaled, x=x, y=y, format="auto")
            .filter("format", config.PIXEL_FORMAT)
        )
        stages += ["scale", "overlay", "format"]
        video_label = "overlay:v"
        video_args = _video_encode_args()
        topology = "overlay"
    else:
        video_out = video_in["v:0"]
        video_label = "0:v:0"
        video_args = {"vcodec": "copy"}
        topology = "audio_attach"

    # --- audio branch ---
    if video.has_audio:
        music_stream = music_in["a"].filter("volume", f"{music_volume_db}dB")
        audio_out = ffmpeg.filter([video_in["a"], music_stream], "amix", inputs=2, duration="shortest")
        stages += ["volume", "amix"]
        audio_label = "amix:a"
        expected = min(video.duration_seconds, music_duration)
    else:
        audio_out = music_in["a:0"]
        audio_label = "1:a:0"
        expected = min(video.duration_seconds, music_duration)

    output = ffmpeg.output(
        video_out,
        audio_out,
        str(output_path),
        acodec=config.AUDIO_CODEC,
        shortest=None,
        **video_args,
    )
    return FilterGraph(
        topology=topology,
        output=output,
        output_path=Path(output_path),
        stages=stages,
        video_label=video_label,
        audio_label=audio_label,
        video_codec=video_args["vcodec"],
        audio_codec=config.AUDIO_CODEC,
        expected_duration=expected,
    )


def short_form_chain(audio_stream, duration: float = config.SHORT_FORM_SECONDS,
                     fade: float = config.SHORT_FORM_FADE_SECONDS):
    """Trims to a fixed short length with symmetric fade-in/fade-out."""
    return (
        audio_stream
        .filter("atrim", start=0, duration=duration)
        .filter("asetpts", "PTS-STARTPTS")
        .filter("afade", t="in", st=0, d=fade)
        .filter("afade", t="out", st=max(0.0, duration - fade), d=fade)
    )


def build_audio_replace_graph(video: MediaAsset, audio: MediaAsset, output_path: Path) -> FilterGraph:
    """
    Lays the second input's audio, cut to the short fixed length, onto the
    first input's untouched video.
    """
    if video.kind != AssetKind.VIDEO:
        raise GraphBuildError(f"'{video.local_path}' is a {video.kind.value}, expected a video")
    if audio.has_audio is False:
        raise GraphBuildError(f"'{audio.local_path}' has no audio stream to lay onto the video")

    video_in = ffmpeg.input(str(video.local_path))
    audio_in = ffmpeg.input(str(audio.local_path))
    audio_out = short_form_chain(audio_in["a"])
    output = ffmpeg.output(
        video_in["v:0"],
        audio_out,
        str(output_path),
        vcodec="copy",
        acodec=config.AUDIO_CODEC,
    )
    return FilterGraph(
        topology="audio_replace",
        output=output,
        output_path=Path(output_path),
        stages=["atrim", "asetpts", "afade-in", "afade-out"],
        video_label="0:v:0",
        audio_label="afade:a",
        video_codec="copy",
        audio_codec=config.AUDIO_CODEC,
        expected_duration=video.duration_seconds,
    )
