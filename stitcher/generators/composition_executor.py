# stitcher/generators/composition_executor.py
import asyncio
import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional

import ffmpeg

from stitcher.errors import TranscodeError
from stitcher.generators.filter_graph import FilterGraph

ProgressCallback = Callable[[float], None]

STDERR_TAIL_LINES = 200


def _drain(stream, lines: List[str]):
    for raw in stream:
        lines.append(raw.decode(errors="ignore").rstrip())
        if len(lines) > STDERR_TAIL_LINES:
            del lines[0]


def parse_progress(line: str, expected_duration: Optional[float]) -> Optional[float]:
    """
    Turns one '-progress' line into a percentage. ffmpeg reports out_time_ms
    (and out_time_us) in microseconds.
    """
    if not expected_duration or expected_duration <= 0:
        return None
    key, _, value = line.partition("=")
    if key not in ("out_time_ms", "out_time_us"):
        return None
    try:
        seconds = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(100.0, seconds / expected_duration * 100.0))


class CompositionExecutor:
    """
    Runs filter graphs through ffmpeg. At most `max_concurrent` processes run
    at once across all jobs sharing this executor.
    """

    def __init__(self, max_concurrent: int = 2, ffmpeg_cmd: str = "ffmpeg"):
        self.ffmpeg_cmd = ffmpeg_cmd
        self._slots = asyncio.Semaphore(max_concurrent)

    async def execute(self, graph: FilterGraph, on_progress: Optional[ProgressCallback] = None) -> Path:
        """
        Materializes the graph and returns its output path, or raises
        TranscodeError with ffmpeg's diagnostics. Progress callbacks are
        called from the worker thread.
        """
        handle = {}
        async with self._slots:
            logging.info(f"Running FFmpeg: {graph.describe()}")
            try:
                return await asyncio.to_thread(self._run_blocking, graph, on_progress, handle)
            except asyncio.CancelledError:
                process = handle.get("process")
                if process is not None and process.poll() is None:
                    logging.warning(f"Cancelled, killing FFmpeg for {graph.output_path.name}")
                    process.kill()
                raise

    def _run_blocking(self, graph: FilterGraph, on_progress, handle: dict) -> Path:
        graph.output_path.parent.mkdir(parents=True, exist_ok=True)
        stream = graph.output.global_args("-progress", "pipe:1", "-nostats")
        try:
            process = ffmpeg.run_async(
                stream,
                cmd=self.ffmpeg_cmd,
                pipe_stdout=True,
                pipe_stderr=True,
                overwrite_output=True,
            )
        except FileNotFoundError as e:
            raise TranscodeError("FFmpeg executable not found", str(e)) from e
        handle["process"] = process

        stderr_lines: List[str] = []
        drain = threading.Thread(target=_drain, args=(process.stderr, stderr_lines), daemon=True)
        drain.start()
        try:
            for raw in process.stdout:
                percent = parse_progress(raw.decode(errors="ignore").strip(), graph.expected_duration)
                if percent is not None and on_progress is not None:
                    try:
                        on_progress(percent)
                    except Exception as e:
                        logging.warning(f"Progress callback failed: {e}")
            returncode = process.wait()
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()
            drain.join(timeout=5)
            process.stdout.close()
            process.stderr.close()

        stderr_output = "\n".join(stderr_lines)
        if returncode != 0:
            logging.error(f"FFmpeg exited with {returncode}. Stderr (last 15 lines):\n" + "\n".join(stderr_lines[-15:]))
            raise TranscodeError(f"FFmpeg exited with code {returncode}", stderr_output)

        if not graph.output_path.exists():
            raise TranscodeError(f"FFmpeg finished but {graph.output_path} was not written", stderr_output)

        logging.info(f"FFmpeg finished: {graph.output_path.name}")
        return graph.output_path
