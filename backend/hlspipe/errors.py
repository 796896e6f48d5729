"""Exception types raised by the pipeline and its stages."""
from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class JobNotFoundError(PipelineError):
    """No job record exists for the identifier."""

    def __init__(self, job_id: str):
        super().__init__(f"job {job_id} not found")
        self.job_id = job_id


class JobAlreadyExistsError(PipelineError):
    """A job record with the identifier is already stored."""

    def __init__(self, job_id: str):
        super().__init__(f"job {job_id} already exists")
        self.job_id = job_id


class InvalidStatusTransition(PipelineError):
    """A status change would move a job backward or out of a terminal state."""


class PersistenceError(PipelineError):
    """I/O failure while reading or writing the job store."""


class CommandError(PipelineError):
    """An external command could not be started or exited non-zero."""

    def __init__(self, binary: str, returncode: Optional[int], output: str = ""):
        self.binary = binary
        self.returncode = returncode
        self.output = output
        if returncode is None:
            message = f"{binary} could not be run"
        else:
            message = f"{binary} exited with status {returncode}"
        tail = output.strip()[-2000:]
        if tail:
            message = f"{message}: {tail}"
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """An external command was killed after exceeding its deadline."""

    def __init__(self, binary: str, timeout: float, output: str = ""):
        self.timeout = timeout
        super().__init__(binary, None, output)
        self.args = (f"{binary} timed out after {timeout:g}s",)


class ProbeError(PipelineError):
    """ffprobe failed or its output could not be parsed."""


class ThumbnailError(PipelineError):
    """A preview frame could not be extracted.

    ``thumbnails`` holds the relative paths produced before the failure.
    """

    def __init__(self, message: str, thumbnails: Optional[list] = None):
        super().__init__(message)
        self.thumbnails = list(thumbnails or [])


class PreviewTimeoutError(ThumbnailError):
    """A single preview frame was not extracted before its deadline."""


class TranscodeError(PipelineError):
    """A rendition could not be encoded or the master playlist written."""


class UploadRejected(PipelineError):
    """An upload failed validation."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
