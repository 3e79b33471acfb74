"""
Error Taxonomy
==============
Every failure the worker can hit while handling one job.

Only ``BuildExecutor.execute`` and the intake loop catch these; everything
below them raises. None of them is retried: a failed job stays failed unless
the queue redelivers the message.

    MalformedJobError     — message body is not a valid BuildJob
    ProvisionError        — build container failed to start
    CommandError          — in-container command exited non-zero
    ExtractionError       — copying the build output out of the container failed
    PublishError          — an artifact upload failed
    LogPersistenceError   — the deployment log record could not be written
    TeardownWarning       — container removal failed (logged, never escalated)
"""
from typing import Optional


class BuildWorkerError(Exception):
    """Base class for all build worker failures."""


class MalformedJobError(BuildWorkerError):
    def __init__(self, message: str, message_id: Optional[str] = None) -> None:
        self.message_id = message_id
        prefix = f"Message {message_id}: " if message_id else ""
        super().__init__(f"{prefix}{message}")


class ProvisionError(BuildWorkerError):
    pass


class CommandError(BuildWorkerError):
    """
    Raised when a command run inside the build container exits non-zero.

    Fields
    ------
    command_name : str
        Logical step name (clone, install, build).
    container_id : str
        Name of the container the command ran in.
    exit_code : int
        Exit code reported by the runtime.
    output : str
        Combined stdout + stderr captured for diagnostics.
    """

    def __init__(self, command_name: str, container_id: str,
                 exit_code: int, output: str = "") -> None:
        self.command_name = command_name
        self.container_id = container_id
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"'{command_name}' failed in {container_id} with exit code {exit_code}"
        )


class ExtractionError(BuildWorkerError):
    pass


class PublishError(BuildWorkerError):
    def __init__(self, message: str, key: Optional[str] = None) -> None:
        self.key = key
        super().__init__(message)


class LogPersistenceError(BuildWorkerError):
    pass


class TeardownWarning(BuildWorkerError):
    pass
