# stitcher/errors.py


class StitcherError(Exception):
    """Base class for every failure that ends a job."""


class ConfigurationError(StitcherError):
    pass


class InvalidRequestError(StitcherError):
    pass


class JobConflictError(StitcherError):
    """Raised when a job id is reused while its first run is still in flight."""


class DownloadError(StitcherError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to download {url}: {reason}")


class ProbeError(StitcherError):
    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not probe '{path}': {reason}")


class GraphBuildError(StitcherError):
    pass


class TranscodeError(StitcherError):
    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(f"{message}: {stderr}" if stderr else message)


class NoTaskIdError(StitcherError):
    def __init__(self, payload):
        self.payload = payload
        super().__init__(f"Lip-sync provider did not return a task id. Response: {payload}")


class ExternalTaskFailed(StitcherError):
    def __init__(self, task_id: str, reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Lip-sync task {task_id} failed: {reason}")


class ExternalTaskTimeout(StitcherError):
    def __init__(self, task_id: str, attempts: int):
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(f"Lip-sync task {task_id} did not finish after {attempts} status checks")


class JobStoreError(StitcherError):
    pass
