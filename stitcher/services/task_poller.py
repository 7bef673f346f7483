# stitcher/services/task_poller.py
"""
Drives a lip-sync task from submission to a terminal state.

    submitted -> polling -> completed | failed | timed-out

The number of status checks is capped; a check that fails in transport
(non-2xx, network error, unreadable body) uses up one attempt and is retried
after a backoff, it never ends the task by itself.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from stitcher.config import Settings
from stitcher.errors import ExternalTaskFailed, ExternalTaskTimeout
from stitcher.models import ExternalTask
from stitcher.services.lipsync_client import LipSyncClient, ProviderState, StatusReport

StatusObserver = Callable[[StatusReport], Awaitable[None]]


class PollState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed-out"

    @property
    def is_terminal(self) -> bool:
        return self in (PollState.COMPLETED, PollState.FAILED, PollState.TIMED_OUT)


class TaskPoller:
    def __init__(
        self,
        client: LipSyncClient,
        poll_interval: float = 5.0,
        error_interval: float = 10.0,
        early_error_checks: int = 3,
        max_attempts: int = 120,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.error_interval = error_interval
        self.early_error_checks = early_error_checks
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.state = PollState.SUBMITTED

    @classmethod
    def from_settings(cls, client: LipSyncClient, settings: Settings, **kwargs) -> "TaskPoller":
        return cls(
            client,
            poll_interval=settings.lipsync_poll_interval,
            error_interval=settings.lipsync_error_interval,
            early_error_checks=settings.lipsync_early_error_checks,
            max_attempts=settings.lipsync_max_attempts,
            **kwargs,
        )

    def _transition(self, state: PollState):
        if self.state.is_terminal:
            raise RuntimeError(f"Poller is already {self.state.value}")
        logging.debug(f"Poller {self.state.value} -> {state.value}")
        self.state = state

    async def submit_and_wait(
        self,
        video_url: str,
        audio_url: str,
        video_params: Optional[dict] = None,
        on_submitted: Optional[Callable[[ExternalTask], Awaitable[None]]] = None,
        on_status: Optional[StatusObserver] = None,
    ) -> ExternalTask:
        task_id = await self.client.submit(video_url, audio_url, video_params)
        task = ExternalTask(provider_task_id=task_id)
        if on_submitted is not None:
            await on_submitted(task)
        return await self.wait(task, on_status=on_status)

    async def wait(self, task: ExternalTask, on_status: Optional[StatusObserver] = None) -> ExternalTask:
        """
        Polls until the task completes with a result URL. Raises
        ExternalTaskFailed or ExternalTaskTimeout otherwise.
        """
        self._transition(PollState.POLLING)
        logging.info(f"Polling lip-sync for result (Task ID: {task.provider_task_id})...")
        transport_errors = 0

        while task.attempts < self.max_attempts:
            task.attempts += 1
            try:
                report = await self.client.get_status(task.provider_task_id)
            except (httpx.HTTPError, ValueError) as e:
                transport_errors += 1
                delay = self.error_interval if transport_errors <= self.early_error_checks else self.poll_interval
                logging.warning(
                    f"Lip-sync status check {task.attempts}/{self.max_attempts} failed: {e}. Retrying in {delay}s"
                )
                if task.attempts < self.max_attempts:
                    await self.sleep(delay)
                continue

            task.last_status = report.state.value
            if on_status is not None:
                await on_status(report)

            if report.state == ProviderState.COMPLETED and report.result_url:
                task.result_url = report.result_url
                self._transition(PollState.COMPLETED)
                logging.info(f"Lip-sync task {task.provider_task_id} is complete. URL: {report.result_url}")
                return task

            if report.state == ProviderState.FAILED:
                self._transition(PollState.FAILED)
                reason = report.error or f"provider reported '{report.raw_status}'"
                logging.error(f"Lip-sync task {task.provider_task_id} failed: {reason}")
                raise ExternalTaskFailed(task.provider_task_id, reason)

            if report.state == ProviderState.COMPLETED:
                # The URL can show up a tick after the status flips
                logging.info(f"Task {task.provider_task_id} reports '{report.raw_status}' without a result URL yet")
            else:
                logging.debug(f"Task status is '{report.raw_status}'. Waiting {self.poll_interval}s...")

            if task.attempts < self.max_attempts:
                await self.sleep(self.poll_interval)

        self._transition(PollState.TIMED_OUT)
        logging.error(f"Lip-sync task {task.provider_task_id} timed out after {task.attempts} status checks")
        raise ExternalTaskTimeout(task.provider_task_id, task.attempts)
