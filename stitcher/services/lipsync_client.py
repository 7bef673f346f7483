# stitcher/services/lipsync_client.py
"""
Client for the third-party lip-sync processor.

The provider does not keep its field names or status words stable, so every
alias we know of lives in the tables below and responses are normalised into
a StatusReport before anything else looks at them.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import httpx

from stitcher.config import Settings
from stitcher.errors import NoTaskIdError

TASK_ID_FIELDS = ("id", "task_id", "taskId", "request_id", "requestId", "job_id", "jobId")
STATUS_FIELDS = ("status", "state", "task_status", "taskStatus")
RESULT_URL_FIELDS = ("result_url", "resultUrl", "output_url", "outputUrl", "output")
# Top-level video_url/url can echo the submitted input, so these only count inside an envelope
ENVELOPE_URL_FIELDS = ("video_url", "videoUrl", "url")
ERROR_FIELDS = ("error", "error_message", "errorMessage", "failure_reason", "failureReason", "message", "detail", "reason")
ENVELOPE_FIELDS = ("data", "result", "task")

COMPLETED_STATUSES = {"completed", "complete", "done", "succeeded", "success", "successful", "finished"}
FAILED_STATUSES = {"failed", "failure", "error", "errored", "cancelled", "canceled", "rejected", "timeout"}
PROCESSING_STATUSES = {"processing", "running", "in_progress", "inprogress", "started", "generating", "rendering"}
PENDING_STATUSES = {"pending", "queued", "created", "submitted", "waiting", "starting", "in_queue"}


class ProviderState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusReport:
    state: ProviderState
    raw_status: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    payload: dict = field(default_factory=dict, compare=False, repr=False)


def _layers(payload: dict):
    """The payload itself followed by any nested envelopes."""
    yield payload
    for name in ENVELOPE_FIELDS:
        nested = payload.get(name)
        if isinstance(nested, dict):
            yield nested


def _first_in(layer: dict, names) -> Optional[str]:
    for name in names:
        value = layer.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first(payload: dict, names) -> Optional[str]:
    for layer in _layers(payload):
        value = _first_in(layer, names)
        if value:
            return value
    return None


def _result_url(payload: dict) -> Optional[str]:
    url = _first(payload, RESULT_URL_FIELDS)
    if url:
        return url
    for layer in list(_layers(payload))[1:]:
        url = _first_in(layer, ENVELOPE_URL_FIELDS)
        if url:
            return url
    return None


def _error_text(payload: dict) -> Optional[str]:
    for layer in _layers(payload):
        for name in ERROR_FIELDS:
            value = layer.get(name)
            if isinstance(value, dict):
                value = value.get("message") or value.get("description") or str(value)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def extract_task_id(payload) -> str:
    if isinstance(payload, dict):
        task_id = _first(payload, TASK_ID_FIELDS)
        if task_id:
            return task_id
    raise NoTaskIdError(payload)


def normalize_status(raw_status: Optional[str]) -> ProviderState:
    if not raw_status:
        return ProviderState.PENDING
    status = raw_status.strip().lower().replace("-", "_").replace(" ", "_")
    if status in COMPLETED_STATUSES:
        return ProviderState.COMPLETED
    if status in FAILED_STATUSES:
        return ProviderState.FAILED
    if status in PROCESSING_STATUSES:
        return ProviderState.PROCESSING
    if status not in PENDING_STATUSES:
        logging.warning(f"Unknown lip-sync status '{raw_status}', treating it as pending")
    return ProviderState.PENDING


def parse_status(payload: dict) -> StatusReport:
    raw_status = _first(payload, STATUS_FIELDS)
    state = normalize_status(raw_status)
    result_url = _result_url(payload)
    if result_url and not result_url.startswith(("http://", "https://")):
        result_url = None
    return StatusReport(
        state=state,
        raw_status=raw_status,
        result_url=result_url,
        error=_error_text(payload) if state == ProviderState.FAILED else None,
        payload=payload,
    )


class LipSyncClient:
    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.base_url = (settings.lipsync_api_url or "").rstrip("/")
        self.auth_header_value = settings.lipsync_auth_header_value

    def _headers(self, json_body: bool = False) -> dict:
        headers = {"Authorization": self.auth_header_value or ""}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def submit(self, video_url: str, audio_url: str, video_params: Optional[dict] = None) -> str:
        """
        Starts the lip-sync job. Returns the provider's task id for polling.
        """
        logging.info("Connecting to lip-sync API to start job...")
        payload = {
            "video_url": video_url,
            "audio_url": audio_url,
            "video_params": dict(video_params or {}),
        }
        try:
            response = await self.client.post(
                f"{self.base_url}/lipsync", headers=self._headers(json_body=True), json=payload, timeout=30.0
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            logging.error(f"Lip-sync API HTTP error: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.HTTPError as e:
            logging.error(f"Error starting lip-sync job: {e}")
            raise

        task_id = extract_task_id(result)
        logging.info(f"Lip-sync job started successfully. Task ID: {task_id}")
        return task_id

    async def get_status(self, task_id: str) -> StatusReport:
        response = await self.client.get(f"{self.base_url}/lipsync/{task_id}", headers=self._headers(), timeout=30.0)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            payload = {"status": str(payload)}
        return parse_status(payload)
