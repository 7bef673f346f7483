# stitcher/models.py
import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional

from stitcher.errors import InvalidRequestError

ANCHORS = ("top-left", "top-right", "bottom-left", "bottom-right")
DEFAULT_ANCHOR = "bottom-right"


class AssetKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"


class JobStage(str, Enum):
    ACQUIRING = "acquiring"
    CONDITIONING = "conditioning"
    COMPOSING = "composing"
    POLLING_EXTERNAL = "polling-external"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.DONE, JobStage.FAILED)


# Status strings written to the job record store
class JobStatus:
    PROCESSING_STARTED = "processing_started"
    DOWNLOADING = "downloading"
    STITCHING = "stitching"
    MERGING_AUDIO = "merging_audio"
    PUBLISHING = "publishing"
    LIPSYNC_SUBMITTED = "lipsync_submitted"
    LIPSYNC_PROCESSING = "lipsync_processing"
    LIPSYNC_COMPLETED = "lipsync_completed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class MediaAsset:
    local_path: Path
    kind: AssetKind
    duration_seconds: Optional[float] = None
    has_audio: Optional[bool] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class OverlaySpec:
    anchor: str = DEFAULT_ANCHOR
    width_pixels: int = 150
    margin_pixels: int = 20
    opacity: float = 1.0  # advisory, not applied to the graph

    @classmethod
    def from_options(cls, options: Optional[dict]) -> "OverlaySpec":
        """
        Builds an overlay spec from request options. Values may arrive as
        strings ("150") or numbers, and the request uses 'position'/'size'
        for what we call anchor/width.
        """
        options = options or {}
        try:
            return cls(
                anchor=str(options.get("position", options.get("anchor", DEFAULT_ANCHOR))),
                width_pixels=int(float(options.get("size", options.get("width", 150)))),
                margin_pixels=int(float(options.get("margin", 20))),
                opacity=float(options.get("opacity", 1.0)),
            )
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"Invalid overlay_options {options}: {e}") from e


@dataclass
class ExternalTask:
    provider_task_id: str
    attempts: int = 0
    last_status: Optional[str] = None
    result_url: Optional[str] = None


@dataclass(frozen=True)
class VideoInput:
    scene_number: int
    url: str


@dataclass(frozen=True)
class LipSyncRequest:
    audio_url: Optional[str] = None
    params: dict = field(default_factory=dict)


@dataclass(frozen=True)
class JobRequest:
    videos: tuple
    music_url: Optional[str] = None
    overlay_image_url: Optional[str] = None
    overlay_image_path: Optional[Path] = None
    overlay: Optional[OverlaySpec] = None
    job_id: Optional[str] = None
    job_type: str = "final_video"
    short_form: bool = False
    lipsync: Optional[LipSyncRequest] = None

    @classmethod
    def from_dict(cls, data: dict) -> "JobRequest":
        """Parses the JSON body accepted by the service."""
        if not isinstance(data, dict):
            raise InvalidRequestError("Expected a JSON object")

        raw_videos = data.get("videos")
        music_url = data.get("mv_audio") or data.get("music_url")
        if not raw_videos or not isinstance(raw_videos, list):
            raise InvalidRequestError("Invalid input. Expected videos array and mv_audio URL")

        videos = []
        for position, item in enumerate(raw_videos):
            if isinstance(item, str):
                videos.append(VideoInput(scene_number=position + 1, url=item))
                continue
            if not isinstance(item, dict):
                raise InvalidRequestError(f"Invalid video entry at index {position}: {item!r}")
            url = item.get("final_video_url") or item.get("url")
            if not url:
                raise InvalidRequestError(f"Video entry at index {position} has no URL")
            try:
                scene_number = int(item.get("scene_number", position + 1))
            except (TypeError, ValueError) as e:
                raise InvalidRequestError(f"Invalid scene_number {item.get('scene_number')!r}") from e
            videos.append(VideoInput(scene_number=scene_number, url=url))

        # Scenes are always processed in scene order, whatever order they were sent in
        videos.sort(key=lambda v: v.scene_number)

        short_form = bool(data.get("short_form", False))
        if not music_url:
            raise InvalidRequestError("Invalid input. Expected videos array and mv_audio URL")

        overlay_image_url = data.get("overlay_image_url")
        overlay_image_path = data.get("overlay_image_path")
        overlay = None
        if overlay_image_url or overlay_image_path:
            overlay = OverlaySpec.from_options(data.get("overlay_options"))
            if short_form:
                raise InvalidRequestError("Image overlays are not supported for short_form jobs")

        lipsync = None
        lipsync_data = data.get("lipsync")
        if lipsync_data:
            if not isinstance(lipsync_data, dict):
                lipsync_data = {}
            lipsync = LipSyncRequest(
                audio_url=lipsync_data.get("audio_url"),
                params=dict(lipsync_data.get("params") or {}),
            )

        return cls(
            videos=tuple(videos),
            music_url=music_url,
            overlay_image_url=overlay_image_url,
            overlay_image_path=Path(overlay_image_path) if overlay_image_path else None,
            overlay=overlay,
            job_id=data.get("job_id") or data.get("jobId"),
            job_type=data.get("job_type", "final_video"),
            short_form=short_form,
            lipsync=lipsync,
        )


@dataclass
class JobResult:
    duration: Optional[float]
    file_size: int
    processed_videos: int
    scene_order: list
    overlay_applied: bool
    download_url: str
    message: str
    lipsync_result_url: Optional[str] = None

    @property
    def file_size_mb(self) -> str:
        return f"{self.file_size / (1024 * 1024):.2f}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["file_size_mb"] = self.file_size_mb
        return data


@dataclass
class CompositionJob:
    id: str
    request: JobRequest
    stage: JobStage = JobStage.ACQUIRING
    status: str = JobStatus.PROCESSING_STARTED
    inputs: list = field(default_factory=list)
    overlay: Optional[OverlaySpec] = None
    output_path: Optional[Path] = None
    external_task: Optional[ExternalTask] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def advance(self, stage: JobStage, status: Optional[str] = None):
        if self.stage.is_terminal:
            raise RuntimeError(f"Job {self.id} is already {self.stage.value}")
        self.stage = stage
        if status:
            self.status = status
        self.updated_at = time.time()

    def to_record(self) -> dict:
        """Fields persisted to the job record store."""
        record = {
            "id": self.id,
            "job_type": self.request.job_type,
            "stage": self.stage.value,
            "status": self.status,
            "error": self.error,
            "output_path": str(self.output_path) if self.output_path else None,
            "result_url": self.result.download_url if self.result else None,
            "lipsync_task_id": self.external_task.provider_task_id if self.external_task else None,
            "lipsync_result_url": self.external_task.result_url if self.external_task else None,
            "result": self.result.to_dict() if self.result else None,
        }
        return record
