"""
Build Executor
==============
Runs one BuildJob inside an ephemeral, resource-capped Docker container
and publishes its output directory.

Lifecycle (each step aborts the rest on failure):
    1. Derive container name, workspace path and local artifact path
    2. Provision the container (memory + CPU ceilings, no-new-privileges)
    3. Clone the repository (shallow, single branch) into the workspace
    4. Install dependencies in the workspace
    5. Run the job's build script with its envVars, streaming output
    6. Store the captured log on the deployment record
    7. Copy the build output directory out of the container
    8. Upload it under the job's key prefix
    9. Always: force-remove the container, delete the local artifact copy

CONTRACT:
    - ``execute`` never raises. Every failure collapses into a BuildOutcome
      with ``success=False`` and the step that failed.
    - Non-zero exit of clone / install / build is fatal; nothing is retried.
    - A failed build publishes nothing.
    - A failed log write is reported but does not fail the job.
    - A failed teardown is a warning; it never changes the outcome.

SECRETS:
    The git token only ever appears inside the clone argv. URLs are logged
    masked and captured output is scrubbed of the token before it is
    recorded or logged.
"""
import logging
import shutil
import time
from typing import Optional
from urllib.parse import quote

from build_worker.core.config import (
    BUILDER_IMAGE,
    CONTAINER_CPUS,
    CONTAINER_MEMORY_LIMIT,
    CONTAINER_NETWORK_MODE,
    CONTAINER_WORKSPACE,
    PACKAGE_MANAGER,
    VISIBILITY_TIMEOUT,
)
from build_worker.core.constants import (
    STEP_BUILD,
    STEP_CLONE,
    STEP_EXTRACT,
    STEP_INSTALL,
    STEP_PROVISION,
    STEP_PUBLISH,
)
from build_worker.core.errors import (
    BuildWorkerError,
    CommandError,
    LogPersistenceError,
    MalformedJobError,
    TeardownWarning,
)
from build_worker.executor.command_resolver import resolve_commands
from build_worker.executor.container_runtime import ContainerRuntime
from build_worker.executor.log_stream import BuildLogSink
from build_worker.models.build_execution import BuildExecution, BuildOutcome
from build_worker.models.build_job import BuildJob
from build_worker.services.artifact_publisher import ArtifactPublisher
from build_worker.services.log_store import DeploymentLogStore
from build_worker.utils.url_utils import build_authenticated_url, mask_url_credentials

logger = logging.getLogger(__name__)

_REDACTED = "***"


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    Parameters
    ----------
    full_log : str
        The complete command output.
    head : int
        Number of lines to keep from the start.
    tail : int
        Number of lines to keep from the end.

    Returns
    -------
    str
        Abbreviated log string. If the log is short enough, returns it as-is.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    head_lines = lines[:head]
    tail_lines = lines[-tail:]
    omitted = total - head - tail

    return "\n".join(
        head_lines
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + tail_lines
    )


class _RedactingSink:
    """Wraps a line callback, replacing a secret before the line goes anywhere."""

    def __init__(self, sink: BuildLogSink, secret: Optional[str]) -> None:
        self._sink = sink
        # The clone URL carries the token percent-encoded; git may echo either form
        self._secrets = sorted({secret, quote(secret, safe="")}, key=len, reverse=True) if secret else []

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, _REDACTED)
        return text

    def __call__(self, line: str) -> None:
        self._sink(self.redact(line))


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------
class BuildExecutor:
    """
    Executes build jobs one at a time. Holds only shared, job-agnostic
    collaborators; all per-job state lives in a BuildExecution.
    """

    def __init__(
        self,
        runtime: Optional[ContainerRuntime] = None,
        publisher: Optional[ArtifactPublisher] = None,
        log_store: Optional[DeploymentLogStore] = None,
        image: str = BUILDER_IMAGE,
        workspace_root: str = CONTAINER_WORKSPACE,
        mem_limit: str = CONTAINER_MEMORY_LIMIT,
        cpus: float = CONTAINER_CPUS,
        network_mode: Optional[str] = CONTAINER_NETWORK_MODE,
        package_manager: str = PACKAGE_MANAGER,
        temp_root: Optional[str] = None,
        visibility_timeout: int = VISIBILITY_TIMEOUT,
    ) -> None:
        self.runtime = runtime or ContainerRuntime()
        self.publisher = publisher or ArtifactPublisher()
        self.log_store = log_store
        self.image = image
        self.workspace_root = workspace_root
        self.mem_limit = mem_limit
        self.cpus = cpus
        self.network_mode = network_mode
        self.package_manager = package_manager
        self.temp_root = temp_root
        self.visibility_timeout = visibility_timeout

    def execute(self, job: BuildJob) -> BuildOutcome:
        """
        Run ``job`` end to end.

        Returns
        -------
        BuildOutcome
            Always returned, never raises. ``failed_step`` and ``error``
            are set when the job failed.
        """
        start_time = time.monotonic()
        execution = BuildExecution.create(job.repo_name, self.workspace_root, self.temp_root)
        outcome = BuildOutcome(job_id=job.key_prefix, container_id=execution.container_id)
        sink = _RedactingSink(BuildLogSink(job.key_prefix, execution.logs), job.git_token)
        step = STEP_PROVISION

        logger.info(
            "Build started | job=%s | repo=%s | container=%s",
            job.key_prefix, job.repo_name, execution.container_id,
        )

        try:
            self.runtime.provision(
                name=execution.container_id,
                image=self.image,
                mem_limit=self.mem_limit,
                cpus=self.cpus,
                network_mode=self.network_mode,
                labels={"job-id": job.key_prefix},
            )

            step = STEP_CLONE
            try:
                clone_url = build_authenticated_url(job.repo_url, job.git_token)
            except ValueError as e:
                raise MalformedJobError(f"repoUrl cannot carry gitToken: {e}") from e
            commands = resolve_commands(
                clone_url=clone_url,
                workspace_path=execution.workspace_path,
                build_script=job.build_command,
                package_manager=self.package_manager,
                branch=job.build_branch,
            )

            try:
                logger.info("Cloning %s into %s", mask_url_credentials(clone_url), execution.workspace_path)
                self._run(execution, step, commands.clone_command, sink)

                step = STEP_INSTALL
                self._run(execution, step, commands.install_command, sink,
                          workdir=execution.workspace_path)

                step = STEP_BUILD
                self._run(execution, step, commands.build_command, sink,
                          workdir=execution.workspace_path, environment=job.env_vars)
            finally:
                self._persist_logs(job, execution)

            step = STEP_EXTRACT
            source_path = f"{execution.workspace_path}/{job.build_out_dir.strip('/')}"
            self.runtime.copy_out(execution.container_id, source_path, execution.local_artifact_path)

            step = STEP_PUBLISH
            keys = self.publisher.publish(execution.local_artifact_path, job.key_prefix)

            outcome.success = True
            outcome.uploaded_files = len(keys)

        except CommandError as e:
            outcome.failed_step = step
            outcome.error = str(e)
            logger.error(
                "Job %s failed at %s: %s\n%s",
                job.key_prefix, step, e, create_log_excerpt(e.output),
            )

        except BuildWorkerError as e:
            outcome.failed_step = step
            outcome.error = sink.redact(str(e))
            logger.error("Job %s failed at %s: %s", job.key_prefix, step, outcome.error)

        except Exception as e:
            # Catch-all: the intake loop must always receive an outcome
            outcome.failed_step = step
            outcome.error = sink.redact(f"Unexpected executor error: {type(e).__name__}: {e}")
            logger.exception("Job %s failed at %s: %s", job.key_prefix, step, outcome.error)

        finally:
            self._teardown(execution)
            shutil.rmtree(execution.local_artifact_path, ignore_errors=True)

        outcome.log_line_count = len(execution.logs)
        outcome.execution_time_seconds = round(time.monotonic() - start_time, 3)

        logger.info(
            "Build finished | job=%s | success=%s | time=%.2fs | files=%d",
            job.key_prefix, outcome.success, outcome.execution_time_seconds, outcome.uploaded_files,
        )
        if outcome.execution_time_seconds > self.visibility_timeout:
            logger.warning(
                "Job %s ran %.0fs, longer than the %ds visibility timeout; "
                "the message may have been redelivered to another worker",
                job.key_prefix, outcome.execution_time_seconds, self.visibility_timeout,
            )
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _run(
        self,
        execution: BuildExecution,
        step: str,
        argv: tuple[str, ...],
        sink: _RedactingSink,
        workdir: Optional[str] = None,
        environment: Optional[dict[str, str]] = None,
    ) -> None:
        logger.info("Running %s in %s", step, execution.container_id)
        result = self.runtime.exec(
            execution.container_id,
            list(argv),
            on_line=sink,
            environment=environment,
            workdir=workdir,
        )
        if result.exit_code != 0:
            raise CommandError(
                command_name=step,
                container_id=execution.container_id,
                exit_code=result.exit_code,
                output=sink.redact(result.output_text),
            )

    def _persist_logs(self, job: BuildJob, execution: BuildExecution) -> None:
        if self.log_store is None:
            logger.debug("Log persistence disabled; %d lines for job %s not stored",
                         len(execution.logs), job.key_prefix)
            return
        try:
            self.log_store.save_logs(job.id, execution.logs)
        except LogPersistenceError as e:
            logger.error("Job %s: %s", job.key_prefix, e)

    def _teardown(self, execution: BuildExecution) -> None:
        try:
            self.runtime.remove(execution.container_id)
        except TeardownWarning as e:
            logger.warning("%s; manual cleanup required", e)
        except Exception:
            logger.warning(
                "Failed to remove container %s; manual cleanup required",
                execution.container_id, exc_info=True,
            )
