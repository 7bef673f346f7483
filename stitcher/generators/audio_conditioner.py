# stitcher/generators/audio_conditioner.py
import asyncio
import logging
from pathlib import Path
from typing import Optional

import ffmpeg

from stitcher import config
from stitcher.errors import GraphBuildError
from stitcher.generators import media_prober
from stitcher.generators.filter_graph import FilterGraph, short_form_chain
from stitcher.models import AssetKind, MediaAsset


def fade_out_start(target_duration: float, fade_seconds: float = config.FADE_OUT_SECONDS) -> float:
    """The fade ends exactly at the target, never starting before 0."""
    return max(0.0, target_duration - fade_seconds)


def needs_loop(source_duration: Optional[float], target_duration: float) -> bool:
    return source_duration is not None and source_duration < target_duration


def build_conditioning_graph(audio: MediaAsset, target_duration: float, output_path: Path) -> FilterGraph:
    """
    Loops the track when it is shorter than the target, hard-trims it to
    [0, target) and fades the last two seconds out.
    """
    if target_duration is None:
        raise GraphBuildError("Target duration for the music track is unknown")
    if target_duration < 0:
        raise GraphBuildError(f"Target duration must not be negative, got {target_duration}")
    if audio.has_audio is False:
        raise GraphBuildError(f"'{audio.local_path}' has no audio stream")

    stages = []
    if needs_loop(audio.duration_seconds, target_duration):
        source = ffmpeg.input(str(audio.local_path), stream_loop=-1)
        stages.append("loop")
    else:
        source = ffmpeg.input(str(audio.local_path))

    stream = (
        source["a"]
        .filter("atrim", start=0, duration=target_duration)
        .filter("asetpts", "PTS-STARTPTS")
    )
    stages += ["atrim", "asetpts"]

    start = fade_out_start(target_duration)
    fade_length = target_duration - start
    if fade_length > 0:
        stream = stream.filter("afade", t="out", st=start, d=fade_length)
        stages.append("afade-out")

    output = ffmpeg.output(stream, str(output_path), acodec=config.AUDIO_CODEC, t=target_duration)
    return FilterGraph(
        topology="condition",
        output=output,
        output_path=Path(output_path),
        stages=stages,
        video_label="",
        audio_label="afade:a" if fade_length > 0 else "atrim:a",
        video_codec="none",
        audio_codec=config.AUDIO_CODEC,
        expected_duration=target_duration,
    )


def build_short_form_graph(audio: MediaAsset, output_path: Path) -> FilterGraph:
    duration = config.SHORT_FORM_SECONDS
    if needs_loop(audio.duration_seconds, duration):
        source = ffmpeg.input(str(audio.local_path), stream_loop=-1)
    else:
        source = ffmpeg.input(str(audio.local_path))
    stream = short_form_chain(source["a"], duration=duration)
    output = ffmpeg.output(stream, str(output_path), acodec=config.AUDIO_CODEC, t=duration)
    return FilterGraph(
        topology="condition_short_form",
        output=output,
        output_path=Path(output_path),
        stages=["atrim", "asetpts", "afade-in", "afade-out"],
        video_label="",
        audio_label="afade:a",
        video_codec="none",
        audio_codec=config.AUDIO_CODEC,
        expected_duration=duration,
    )


class AudioConditioner:
    """Prepares a music track for mixing. Runs its graphs through the executor."""

    def __init__(self, executor):
        self.executor = executor

    async def _probe(self, audio_path: Path) -> MediaAsset:
        return await asyncio.to_thread(media_prober.probe_asset, audio_path, AssetKind.AUDIO)

    async def condition(self, audio_path: Path, target_duration: float, output_path: Optional[Path] = None) -> Path:
        audio_path = Path(audio_path)
        output_path = Path(output_path) if output_path else audio_path.with_name(f"{audio_path.stem}_conditioned.m4a")
        audio = await self._probe(audio_path)

        graph = build_conditioning_graph(audio, target_duration, output_path)
        logging.info(
            f"Conditioning {audio_path.name} ({audio.duration_seconds:.2f}s) to {target_duration:.2f}s"
            f"{' (looping)' if 'loop' in graph.stages else ''}"
        )
        return await self.executor.execute(graph)

    async def condition_short_form(self, audio_path: Path, output_path: Optional[Path] = None) -> Path:
        audio_path = Path(audio_path)
        output_path = Path(output_path) if output_path else audio_path.with_name(f"{audio_path.stem}_short.m4a")
        audio = await self._probe(audio_path)
        logging.info(f"Cutting {audio_path.name} to a {config.SHORT_FORM_SECONDS:.0f}s clip")
        graph = build_short_form_graph(audio, output_path)
        return await self.executor.execute(graph)
