import httpx
import pytest

from stitcher.errors import ExternalTaskFailed, ExternalTaskTimeout
from stitcher.models import ExternalTask
from stitcher.services.lipsync_client import parse_status
from stitcher.services.task_poller import PollState, TaskPoller


class ScriptedClient:
    """Returns queued status payloads; exceptions in the script are raised."""

    def __init__(self, script, task_id="task-1"):
        self.script = list(script)
        self.task_id = task_id
        self.status_calls = 0

    async def submit(self, video_url, audio_url, video_params=None):
        return self.task_id

    async def get_status(self, task_id):
        self.status_calls += 1
        item = self.script.pop(0) if self.script else {"status": "processing"}
        if isinstance(item, Exception):
            raise item
        return parse_status(item)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _poller(client, sleep, **kwargs):
    options = {"poll_interval": 5.0, "error_interval": 10.0, "early_error_checks": 2, "max_attempts": 10}
    options.update(kwargs)
    return TaskPoller(client, sleep=sleep, **options)


async def test_completes_with_result_url():
    client = ScriptedClient([{"status": "queued"}, {"status": "processing"}, {"status": "done", "result_url": "https://cdn/x.mp4"}])
    sleep = RecordingSleep()
    poller = _poller(client, sleep)

    task = await poller.submit_and_wait("https://v", "https://a")

    assert task.result_url == "https://cdn/x.mp4"
    assert task.attempts == 3
    assert poller.state == PollState.COMPLETED
    assert sleep.delays == [5.0, 5.0]


async def test_completed_without_url_keeps_polling():
    client = ScriptedClient([
        {"status": "completed"},
        {"status": "completed"},
        {"status": "completed", "result_url": "https://cdn/late.mp4"},
    ])
    poller = _poller(client, RecordingSleep())

    task = await poller.wait(ExternalTask(provider_task_id="task-1"))

    assert client.status_calls == 3
    assert task.result_url == "https://cdn/late.mp4"


async def test_completed_without_url_never_terminates_early():
    client = ScriptedClient([{"status": "completed"}] * 10)
    poller = _poller(client, RecordingSleep(), max_attempts=4)

    with pytest.raises(ExternalTaskTimeout):
        await poller.wait(ExternalTask(provider_task_id="task-1"))
    assert poller.state == PollState.TIMED_OUT


async def test_failure_reason_from_payload():
    client = ScriptedClient([{"status": "processing"}, {"status": "error", "error_message": "no face found"}])
    poller = _poller(client, RecordingSleep())

    with pytest.raises(ExternalTaskFailed, match="no face found"):
        await poller.wait(ExternalTask(provider_task_id="task-1"))
    assert poller.state == PollState.FAILED


async def test_timeout_after_attempt_ceiling():
    client = ScriptedClient([])
    sleep = RecordingSleep()
    poller = _poller(client, sleep, max_attempts=5)

    with pytest.raises(ExternalTaskTimeout) as exc_info:
        await poller.wait(ExternalTask(provider_task_id="task-1"))

    assert exc_info.value.attempts == 5
    assert client.status_calls == 5
    assert len(sleep.delays) == 4


async def test_transport_errors_count_toward_ceiling_and_back_off():
    request = httpx.Request("GET", "https://lipsync.example.com/v1/lipsync/task-1")
    server_error = httpx.HTTPStatusError("503", request=request, response=httpx.Response(503, request=request))
    client = ScriptedClient([
        httpx.ConnectError("refused", request=request),
        server_error,
        server_error,
        {"status": "processing"},
        {"status": "completed", "result_url": "https://cdn/x.mp4"},
    ])
    sleep = RecordingSleep()
    poller = _poller(client, sleep)

    task = await poller.wait(ExternalTask(provider_task_id="task-1"))

    assert task.attempts == 5
    # first two failures wait the longer interval, later ones the steady one
    assert sleep.delays == [10.0, 10.0, 5.0, 5.0]


async def test_transport_errors_alone_time_out():
    request = httpx.Request("GET", "https://lipsync.example.com")
    client = ScriptedClient([httpx.ReadTimeout("slow", request=request)] * 3)
    poller = _poller(client, RecordingSleep(), max_attempts=3)

    with pytest.raises(ExternalTaskTimeout):
        await poller.wait(ExternalTask(provider_task_id="task-1"))


async def test_status_observer_sees_every_successful_check():
    client = ScriptedClient([{"status": "queued"}, {"status": "done", "output_url": "https://cdn/x.mp4"}])
    seen = []

    async def observe(report):
        seen.append(report.state.value)

    await _poller(client, RecordingSleep()).wait(ExternalTask(provider_task_id="task-1"), on_status=observe)
    assert seen == ["pending", "completed"]
