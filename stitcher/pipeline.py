# stitcher/pipeline.py
import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx

from stitcher.config import Settings
from stitcher.errors import InvalidRequestError, JobConflictError, StitcherError
from stitcher.generators import filter_graph, media_prober, overlay_geometry
from stitcher.generators.audio_conditioner import AudioConditioner
from stitcher.generators.composition_executor import CompositionExecutor
from stitcher.models import (
    AssetKind,
    CompositionJob,
    ExternalTask,
    JobRequest,
    JobResult,
    JobStage,
    JobStatus,
    MediaAsset,
)
from stitcher.services.job_store import build_job_store
from stitcher.services.lipsync_client import LipSyncClient, ProviderState, StatusReport
from stitcher.services.task_poller import TaskPoller
from stitcher.utils import downloader, file_hosting
from stitcher.utils.cleanup import remove_workspace


class JobRunner:
    """
    Owns every in-flight job of this process. start() returns as soon as the
    job is recorded; the pipeline keeps running as a background task.
    """

    def __init__(
        self,
        settings: Settings,
        store=None,
        executor: Optional[CompositionExecutor] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
        poller_sleep=asyncio.sleep,
    ):
        self.settings = settings
        self.store = store if store is not None else build_job_store(settings)
        self.executor = executor or CompositionExecutor(settings.max_concurrent_renders)
        self.conditioner = AudioConditioner(self.executor)
        self.http_client_factory = http_client_factory
        self.poller_sleep = poller_sleep
        self.jobs: Dict[str, CompositionJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # --- public API ---

    async def start(self, request: JobRequest) -> str:
        job_id = request.job_id or CompositionJob.new_id()
        running = self._tasks.get(job_id)
        if running is not None and not running.done():
            raise JobConflictError(f"Job {job_id} is already running")
        if request.lipsync is not None:
            self.settings.validate_lipsync()

        job = CompositionJob(id=job_id, request=request, overlay=request.overlay)
        self.jobs[job_id] = job
        await self._record(job)

        logging.info(f"Starting job {job_id} ({len(request.videos)} video(s))")
        self._tasks[job_id] = asyncio.create_task(self._run(job), name=f"job-{job_id}")
        return job_id

    async def wait(self, job_id: str) -> CompositionJob:
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self.jobs[job_id]

    async def run(self, request: JobRequest) -> CompositionJob:
        """Starts a job and waits for it to reach a terminal stage."""
        job_id = await self.start(request)
        return await self.wait(job_id)

    async def get_status(self, job_id: str) -> Optional[dict]:
        job = self.jobs.get(job_id)
        if job is not None:
            return job.to_record()
        rows = await asyncio.to_thread(self.store.select, {"id": job_id})
        return rows[0] if rows else None

    # --- job boundary ---

    async def _run(self, job: CompositionJob):
        job_dir = self.settings.work_dir / job.id
        try:
            job_dir.mkdir(parents=True, exist_ok=True)
            await self._process(job, job_dir)
        except StitcherError as e:
            logging.error(f"Job {job.id} failed: {e}")
            await self._fail(job, str(e))
        except Exception as e:
            logging.exception(f"Job {job.id} failed with an unexpected error")
            await self._fail(job, f"{e.__class__.__name__}: {e}")
        finally:
            remove_workspace(job_dir)

    async def _fail(self, job: CompositionJob, message: str):
        if job.stage.is_terminal:
            logging.error(f"Job {job.id} is already {job.stage.value}, not marking it failed: {message}")
            return
        job.error = message
        job.advance(JobStage.FAILED, JobStatus.FAILED)
        try:
            await self._record(job)
        except StitcherError as e:
            logging.error(f"Could not record failure of job {job.id}: {e}")

    async def _record(self, job: CompositionJob):
        await asyncio.to_thread(self.store.upsert, job.to_record())

    async def _set_status(self, job: CompositionJob, stage: JobStage, status: str):
        job.advance(stage, status)
        await self._record(job)

    # --- pipeline ---

    async def _process(self, job: CompositionJob, job_dir: Path):
        request = job.request
        total_steps = 5 if request.lipsync else 4

        async with self.http_client_factory() as client:
            logging.info(f"--- [Job {job.id}] Step 1/{total_steps}: Acquiring assets ---")
            await self._set_status(job, JobStage.ACQUIRING, JobStatus.DOWNLOADING)
            videos, music_path, overlay_path = await self._acquire(job, job_dir, client)
            job.inputs = list(videos)

            logging.info(f"--- [Job {job.id}] Step 2/{total_steps}: Conditioning audio ---")
            await self._set_status(job, JobStage.CONDITIONING, job.status)
            target_duration = sum(v.duration_seconds for v in videos)
            if request.short_form:
                music = await asyncio.to_thread(media_prober.probe_asset, music_path, AssetKind.AUDIO)
            else:
                conditioned = await self.conditioner.condition(
                    music_path, target_duration, job_dir / "audio_conditioned.m4a"
                )
                music = await asyncio.to_thread(media_prober.probe_asset, conditioned, AssetKind.AUDIO)

            logging.info(f"--- [Job {job.id}] Step 3/{total_steps}: Composing video ---")
            final_path = await self._compose(job, job_dir, videos, music, overlay_path)
            job.output_path = final_path

            logging.info(f"--- [Job {job.id}] Step 4/{total_steps}: Publishing output ---")
            await self._set_status(job, JobStage.COMPOSING, JobStatus.PUBLISHING)
            job.result = await self._publish(job, final_path)

            if request.lipsync:
                logging.info(f"--- [Job {job.id}] Step 5/{total_steps}: Lip-sync ---")
                await self._lipsync(job, client)

        # The store must accept the final record before the job counts as done
        record = job.to_record()
        record.update(stage=JobStage.DONE.value, status=JobStatus.COMPLETED)
        await asyncio.to_thread(self.store.upsert, record)
        job.advance(JobStage.DONE, JobStatus.COMPLETED)
        logging.info(f"Job {job.id} completed successfully: {job.result.download_url}")

    async def _acquire(self, job: CompositionJob, job_dir: Path, client: httpx.AsyncClient):
        request = job.request
        timeout = self.settings.download_timeout

        music_path = await downloader.download_file(request.music_url, job_dir / "audio.mp3", client, timeout)

        overlay_path = None
        if request.overlay_image_url:
            overlay_path = await downloader.download_file(
                request.overlay_image_url, job_dir / "overlay_image.png", client, timeout
            )
        elif request.overlay_image_path:
            if not request.overlay_image_path.exists():
                raise InvalidRequestError(f"Overlay image '{request.overlay_image_path}' does not exist")
            overlay_path = job_dir / f"overlay_image{request.overlay_image_path.suffix or '.png'}"
            await asyncio.to_thread(shutil.copyfile, request.overlay_image_path, overlay_path)

        logging.info("Video processing order: " + " -> ".join(f"Scene {v.scene_number}" for v in request.videos))
        videos: List[MediaAsset] = []
        for index, video in enumerate(request.videos):
            path = job_dir / f"video_{video.scene_number:03d}.mp4"
            if path.exists():
                path = job_dir / f"video_{video.scene_number:03d}_{index}.mp4"
            await downloader.download_file(video.url, path, client, timeout)
            asset = await asyncio.to_thread(media_prober.probe_asset, path, AssetKind.VIDEO)
            videos.append(asset)
            logging.info(
                f"Downloaded video {index + 1}/{len(request.videos)}: Scene {video.scene_number} "
                f"({asset.duration_seconds:.2f}s, audio={asset.has_audio})"
            )
        return videos, music_path, overlay_path

    async def _compose(self, job, job_dir, videos, music, overlay_path) -> Path:
        request = job.request
        await self._set_status(job, JobStage.COMPOSING, JobStatus.STITCHING if len(videos) > 1 else job.status)

        if len(videos) > 1:
            graph = filter_graph.build_concat_graph(videos, job_dir / "stitched_video.mp4")
            stitched_path = await self.executor.execute(graph, on_progress=_progress_logger(job.id, "stitch"))
            video = await asyncio.to_thread(media_prober.probe_asset, stitched_path, AssetKind.VIDEO)
        else:
            video = videos[0]

        await self._set_status(job, JobStage.COMPOSING, JobStatus.MERGING_AUDIO)
        self.settings.output_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.settings.output_dir / f"{request.job_type}_{job.id}.mp4"

        if job.overlay is not None:
            await self._check_overlay_fit(job.overlay, video, overlay_path)

        if request.short_form:
            graph = filter_graph.build_audio_replace_graph(video, music, final_path)
        else:
            graph = filter_graph.build_audio_graph(
                video,
                music,
                final_path,
                overlay=job.overlay,
                overlay_path=overlay_path,
                music_volume_db=self.settings.music_volume_db,
            )
        return await self.executor.execute(graph, on_progress=_progress_logger(job.id, "merge"))

    async def _check_overlay_fit(self, overlay, video: MediaAsset, overlay_path: Path):
        image = await asyncio.to_thread(media_prober.probe_asset, overlay_path, AssetKind.IMAGE)
        if not (video.width and video.height and image.width and image.height):
            return
        frame = (video.width, video.height)
        box = overlay_geometry.placement(
            overlay.anchor, overlay.margin_pixels, overlay.width_pixels, frame, (image.width, image.height)
        )
        if not overlay_geometry.fits(box, frame):
            logging.warning(
                f"Overlay {box[2]}x{box[3]} at ({box[0]}, {box[1]}) does not fit the "
                f"{video.width}x{video.height} frame and will be cropped"
            )

    async def _publish(self, job: CompositionJob, final_path: Path) -> JobResult:
        request = job.request
        final = await asyncio.to_thread(media_prober.probe, final_path)
        file_size = final_path.stat().st_size
        _, public_url = await asyncio.to_thread(
            file_hosting.publish_output, final_path, self.settings, request.job_type, job.id
        )
        overlay_applied = job.overlay is not None
        return JobResult(
            duration=final.duration_seconds,
            file_size=file_size,
            processed_videos=len(request.videos),
            scene_order=[v.scene_number for v in request.videos],
            overlay_applied=overlay_applied,
            download_url=public_url,
            message=(
                f"Successfully processed {len(request.videos)} videos with audio track"
                f"{' and image overlay' if overlay_applied else ''}"
            ),
        )

    async def _lipsync(self, job: CompositionJob, client: httpx.AsyncClient):
        request = job.request
        if not job.result.download_url.startswith(("http://", "https://")):
            logging.warning(
                f"Published URL '{job.result.download_url}' is not absolute; "
                "set STITCHER_PUBLIC_BASE_URL so the lip-sync provider can fetch it."
            )

        poller = TaskPoller.from_settings(LipSyncClient(client, self.settings), self.settings, sleep=self.poller_sleep)
        await self._set_status(job, JobStage.POLLING_EXTERNAL, JobStatus.LIPSYNC_SUBMITTED)

        async def on_submitted(task: ExternalTask):
            job.external_task = task
            await self._record(job)

        async def on_status(report: StatusReport):
            status = JobStatus.LIPSYNC_PROCESSING
            if report.state == ProviderState.COMPLETED and report.result_url:
                status = JobStatus.LIPSYNC_COMPLETED
            await self._set_status(job, JobStage.POLLING_EXTERNAL, status)

        task = await poller.submit_and_wait(
            video_url=job.result.download_url,
            audio_url=request.lipsync.audio_url or request.music_url,
            video_params=request.lipsync.params,
            on_submitted=on_submitted,
            on_status=on_status,
        )
        job.external_task = task
        job.result.lipsync_result_url = task.result_url


def _progress_logger(job_id: str, step: str):
    last_bucket = {"value": -1}

    def report(percent: float):
        bucket = int(percent // 10)
        if bucket != last_bucket["value"]:
            last_bucket["value"] = bucket
            logging.info(f"[Job {job_id}] {step}: {percent:.0f}%")

    return report
