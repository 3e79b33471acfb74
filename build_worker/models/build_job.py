"""
Build Job Model
===============
Pydantic model for one build request, exactly as it travels on the queue.
This is the contract between the deployment API (producer) and the worker.

Wire fields (camelCase on the queue, snake_case in Python):
    id            — deployment identifier, string or integer; also the artifact key prefix
    repoName      — logical name, used for the in-container workspace directory
    repoUrl       — repository to clone
    gitToken      — optional credential for private repositories (never logged)
    buildCommand  — package script to run (e.g. "build")
    buildOutDir   — build output directory, relative to the repository root
    envVars       — optional flat string → string mapping injected into the build
    buildBranch   — optional branch for the single-branch clone
"""
import json
from typing import Annotated, Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StringConstraints,
    ValidationError,
    model_validator,
)

from build_worker.core.errors import MalformedJobError

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]


class BuildJob(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Union[StrictInt, NonEmptyStr]
    repo_name: NonEmptyStr = Field(alias="repoName")
    repo_url: NonEmptyStr = Field(alias="repoUrl")
    build_command: NonEmptyStr = Field(alias="buildCommand")
    build_out_dir: NonEmptyStr = Field(alias="buildOutDir")
    git_token: Optional[Annotated[str, StringConstraints(strict=True)]] = Field(
        default=None, alias="gitToken", repr=False
    )
    env_vars: Optional[dict[Annotated[str, StringConstraints(strict=True)],
                            Annotated[str, StringConstraints(strict=True)]]] = Field(
        default=None, alias="envVars"
    )
    build_branch: Optional[NonEmptyStr] = Field(default=None, alias="buildBranch")

    @model_validator(mode="before")
    @classmethod
    def _reject_null_env_vars(cls, data: Any) -> Any:
        # envVars may be omitted, but an explicit null is not a mapping
        if isinstance(data, dict) and "envVars" in data and data["envVars"] is None:
            raise ValueError("envVars must be an object of string values when present")
        return data

    @property
    def key_prefix(self) -> str:
        """Storage namespace for this job's artifacts and log record."""
        return str(self.id)

    @classmethod
    def from_message_body(cls, body: Optional[str],
                          message_id: Optional[str] = None) -> "BuildJob":
        """
        Decode and validate a queue message body.

        Raises
        ------
        MalformedJobError
            Body missing, not JSON, not an object, or not a valid BuildJob.
            The error text never echoes field values, so a token cannot
            leak into logs through it.
        """
        if not body:
            raise MalformedJobError("message has no body", message_id)

        try:
            payload = json.loads(body)
        except (ValueError, RecursionError):
            # JSONDecodeError is a ValueError; so are oversized integer literals
            raise MalformedJobError("body is not valid JSON", message_id) from None

        if not isinstance(payload, dict):
            raise MalformedJobError("body is not a JSON object", message_id)

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
                for err in e.errors()
            )
            raise MalformedJobError(f"invalid BuildJob payload: {problems}", message_id) from None

    def to_message_body(self) -> str:
        """Serialize back to the queue wire format (absent optionals omitted)."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
