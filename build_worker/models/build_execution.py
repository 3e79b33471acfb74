"""
Build Execution Models
Per-job runtime state owned by the executor, and the outcome it returns.
Neither is persisted; only the log text reaches the deployment record.
"""
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import Optional

from build_worker.core.constants import CONTAINER_NAME_PREFIX


@dataclass
class BuildExecution:
    """
    Everything one ``execute`` call owns.

    Fields
    ------
    container_id : str
        Name of the build container, ``build-<uuid4>``.
    workspace_path : str
        Repository checkout path inside the container.
    local_artifact_path : str
        Host directory that receives the extracted build output.
    logs : list[str]
        Captured output lines, in the order the build emitted them.
    """
    container_id: str
    workspace_path: str
    local_artifact_path: str
    logs: list[str] = field(default_factory=list)

    @classmethod
    def create(cls, repo_name: str, workspace_root: str,
               temp_root: Optional[str] = None) -> "BuildExecution":
        container_id = f"{CONTAINER_NAME_PREFIX}{uuid.uuid4()}"
        workspace_path = f"{workspace_root.rstrip('/')}/{repo_name}"
        local_artifact_path = os.path.join(temp_root or tempfile.gettempdir(), container_id)
        return cls(
            container_id=container_id,
            workspace_path=workspace_path,
            local_artifact_path=local_artifact_path,
        )

    @property
    def log_text(self) -> str:
        return "\n".join(self.logs)


@dataclass
class BuildOutcome:
    """
    Terminal result of one job. Always returned, never raised.

    ``failed_step`` names the step that aborted the execution (see
    ``core.constants``); it is None on success.
    """
    job_id: str
    success: bool = False
    container_id: str = ""
    failed_step: Optional[str] = None
    error: Optional[str] = None
    log_line_count: int = 0
    uploaded_files: int = 0
    execution_time_seconds: float = 0.0
