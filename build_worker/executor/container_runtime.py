"""
Container Runtime
=================
The four operations the build executor needs from a container engine,
implemented over the Docker Engine API (``docker`` SDK):

    provision  — start an idle, resource-capped container
    exec       — run an argv inside it, streaming output line by line
    copy_out   — copy a directory from the container to the host
    remove     — force-remove the container

Any engine exposing these four can stand in for this class; the executor
never touches the Docker client directly.
"""
import logging
import os
import tarfile
import tempfile
from dataclasses import dataclass, field
from typing import Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from build_worker.core.constants import (
    CONTAINER_KEEPALIVE_COMMAND,
    CONTAINER_LABELS,
    NO_NEW_PRIVILEGES,
)
from build_worker.core.errors import ExtractionError, ProvisionError, TeardownWarning
from build_worker.executor.log_stream import LineCallback, iter_lines

logger = logging.getLogger(__name__)

# Archives larger than this spill from memory to disk while copying out
_ARCHIVE_SPOOL_BYTES = 64 * 1024 * 1024


@dataclass
class CommandResult:
    exit_code: int
    output: list[str] = field(default_factory=list)

    @property
    def output_text(self) -> str:
        return "\n".join(self.output)


class ContainerRuntime:
    """Docker-backed build environment operations."""

    def __init__(self, client: Optional[docker.DockerClient] = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    # ------------------------------------------------------------------
    # Provision
    # ------------------------------------------------------------------
    def provision(
        self,
        name: str,
        image: str,
        mem_limit: str,
        cpus: float,
        network_mode: Optional[str] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> str:
        """
        Start a detached container that idles until removed.

        Returns the container name, used as its id by the other operations.

        Raises
        ------
        ProvisionError
            Image missing or the daemon refused to start the container.
        """
        logger.info(
            "Provisioning container | name=%s | image=%s | memory=%s | cpus=%s",
            name, image, mem_limit, cpus,
        )
        try:
            self.client.containers.run(
                image=image,
                command=CONTAINER_KEEPALIVE_COMMAND,
                name=name,
                detach=True,
                mem_limit=mem_limit,
                nano_cpus=int(cpus * 1_000_000_000),
                security_opt=[NO_NEW_PRIVILEGES],
                network_mode=network_mode,
                labels={**CONTAINER_LABELS, **(labels or {})},
            )
        except ImageNotFound as e:
            raise ProvisionError(f"Docker image '{image}' not found: {e}") from e
        except DockerException as e:
            raise ProvisionError(f"Failed to start container {name}: {e}") from e
        return name

    # ------------------------------------------------------------------
    # Exec
    # ------------------------------------------------------------------
    def exec(
        self,
        container_id: str,
        argv: list[str],
        on_line: Optional[LineCallback] = None,
        environment: Optional[dict[str, str]] = None,
        workdir: Optional[str] = None,
    ) -> CommandResult:
        """
        Run ``argv`` inside the container and wait for it to exit.

        Combined stdout/stderr is consumed while the process runs; every
        non-empty line is handed to ``on_line`` as soon as it is complete.
        A non-zero exit is reported in the result, not raised: the caller
        decides what a failure means.
        """
        api = self.client.api
        exec_id = api.exec_create(
            container_id,
            argv,
            stdout=True,
            stderr=True,
            environment=environment or None,
            workdir=workdir,
        )["Id"]

        result = CommandResult(exit_code=-1)
        for line in iter_lines(api.exec_start(exec_id, stream=True)):
            result.output.append(line)
            if on_line is not None:
                on_line(line)

        exit_code = api.exec_inspect(exec_id).get("ExitCode")
        result.exit_code = exit_code if exit_code is not None else -1
        return result

    # ------------------------------------------------------------------
    # Copy out
    # ------------------------------------------------------------------
    def copy_out(self, container_id: str, source_path: str, dest_dir: str) -> None:
        """
        Copy the contents of ``source_path`` (a directory in the container)
        into ``dest_dir`` on the host, creating it if absent.

        Raises
        ------
        ExtractionError
            Source missing or not a directory, daemon error, or unreadable archive.
        """
        os.makedirs(dest_dir, exist_ok=True)
        try:
            bits, _stat = self.client.api.get_archive(container_id, source_path)
            with tempfile.SpooledTemporaryFile(max_size=_ARCHIVE_SPOOL_BYTES) as buffer:
                for chunk in bits:
                    buffer.write(chunk)
                buffer.seek(0)
                with tarfile.open(fileobj=buffer, mode="r:*") as archive:
                    # The archive root is the source directory itself; strip it
                    for member in archive:
                        _, _, relative = member.name.partition("/")
                        if not relative:
                            if not member.isdir():
                                raise ExtractionError(f"{source_path} in {container_id} is not a directory")
                            continue
                        member.name = relative
                        archive.extract(member, dest_dir, filter="data")
        except NotFound as e:
            raise ExtractionError(f"{source_path} does not exist in {container_id}") from e
        except (APIError, tarfile.TarError, OSError) as e:
            raise ExtractionError(f"Failed to copy {source_path} out of {container_id}: {e}") from e

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------
    def remove(self, container_id: str) -> None:
        """
        Force-remove the container.

        A container that never came into existence is not an error.

        Raises
        ------
        TeardownWarning
            The daemon failed to remove an existing container.
        """
        try:
            self.client.api.remove_container(container_id, force=True)
        except NotFound:
            logger.debug("Container %s already gone", container_id)
            return
        except DockerException as e:
            raise TeardownWarning(f"Failed to remove container {container_id}: {e}") from e
        logger.info("Container %s destroyed", container_id)
