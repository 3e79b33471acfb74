"""
Unit Tests — Build Executor
===========================
Step ordering, failure collapsing, teardown guarantees, secret handling
and the end-to-end job scenario — all against fake or mocked runtimes.

No real Docker daemon, S3 bucket or database server is required.
"""
import logging
import os
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text

from build_worker.core.errors import (
    ExtractionError,
    LogPersistenceError,
    ProvisionError,
    PublishError,
    TeardownWarning,
)
from build_worker.executor.build_executor import BuildExecutor, create_log_excerpt
from build_worker.executor.command_resolver import (
    get_supported_package_managers,
    resolve_commands,
)
from build_worker.executor.container_runtime import CommandResult
from build_worker.models.build_job import BuildJob
from build_worker.services.artifact_publisher import ArtifactPublisher
from build_worker.services.log_store import DeploymentLogStore


def _job(**overrides):
    fields = {
        "id": "7",
        "repoName": "demo",
        "repoUrl": "https://example.com/demo.git",
        "buildCommand": "build",
        "buildOutDir": "dist",
    }
    fields.update(overrides)
    return BuildJob.model_validate(fields)


def _step_of(argv):
    if argv[0] == "git":
        return "clone"
    return "install" if argv[1] == "install" else "build"


def _mock_runtime(fail_step=None, exit_code=1):
    runtime = MagicMock()

    def fake_exec(container_id, argv, on_line=None, environment=None, workdir=None):
        step = _step_of(argv)
        line = f"{step} output"
        if on_line:
            on_line(line)
        return CommandResult(exit_code=exit_code if step == fail_step else 0, output=[line])

    runtime.exec.side_effect = fake_exec
    return runtime


def _executor(runtime, publisher=None, log_store=None, tmp_path=None, **kwargs):
    return BuildExecutor(
        runtime=runtime,
        publisher=publisher or MagicMock(),
        log_store=log_store,
        image="builder:test",
        workspace_root="/workspace",
        temp_root=str(tmp_path) if tmp_path else None,
        **kwargs,
    )


class FakeRuntime:
    """In-memory runtime: the build step 'writes' dist files into the container."""

    def __init__(self, build_exit=0):
        self.build_exit = build_exit
        self.container_files = {}
        self.removed = []
        self.exec_calls = []

    def provision(self, name, image, mem_limit, cpus, network_mode=None, labels=None):
        return name

    def exec(self, container_id, argv, on_line=None, environment=None, workdir=None):
        self.exec_calls.append((argv, environment, workdir))
        step = _step_of(argv)
        if step == "clone":
            lines = ["Cloning into '/workspace/demo'..."]
        elif step == "install":
            lines = ["added 12 packages in 2s"]
        else:
            lines = ["> demo@1.0.0 build", "vite v5.0.0 building for production..."]
            if self.build_exit == 0:
                self.container_files = {
                    "/workspace/demo/dist/index.html": "<html></html>",
                    "/workspace/demo/dist/app.js": "console.log('hi')",
                }
            else:
                lines.append("error: build failed")
        for line in lines:
            on_line(line)
        exit_code = self.build_exit if step == "build" else 0
        return CommandResult(exit_code=exit_code, output=lines)

    def copy_out(self, container_id, source_path, dest_dir):
        matched = {p: c for p, c in self.container_files.items() if p.startswith(source_path + "/")}
        if not matched:
            raise ExtractionError(f"{source_path} does not exist in {container_id}")
        os.makedirs(dest_dir, exist_ok=True)
        for path, content in matched.items():
            with open(os.path.join(dest_dir, os.path.relpath(path, source_path)), "w") as f:
                f.write(content)

    def remove(self, container_id):
        self.removed.append(container_id)


@pytest.fixture
def log_engine():
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE deployment (deployment_id TEXT PRIMARY KEY, build_logs TEXT)"))
        conn.execute(text("INSERT INTO deployment (deployment_id) VALUES ('7')"))
    return engine


def _stored_logs(engine, job_id="7"):
    with engine.connect() as conn:
        return conn.execute(
            text("SELECT build_logs FROM deployment WHERE deployment_id = :id"), {"id": job_id}
        ).scalar()


# ---------------------------------------------------------------------------
# 1. Command resolution
# ---------------------------------------------------------------------------
class TestCommandResolver:

    def test_default_npm_commands(self):
        cmds = resolve_commands("https://example.com/demo.git", "/workspace/demo", "build")
        assert cmds.clone_command == (
            "git", "clone", "--depth", "1", "--single-branch",
            "https://example.com/demo.git", "/workspace/demo",
        )
        assert cmds.install_command == ("npm", "install")
        assert cmds.build_command == ("npm", "run", "build")
        assert cmds.package_manager == "npm"

    def test_branch_added_to_clone(self):
        cmds = resolve_commands("https://x/r.git", "/workspace/r", "build", branch="release")
        assert cmds.clone_command[5:7] == ("--branch", "release")

    def test_pnpm(self):
        cmds = resolve_commands("https://x/r.git", "/workspace/r", "export", package_manager="pnpm")
        assert cmds.install_command == ("pnpm", "install")
        assert cmds.build_command == ("pnpm", "run", "export")

    def test_unknown_package_manager_falls_back_to_npm(self):
        cmds = resolve_commands("https://x/r.git", "/workspace/r", "build", package_manager="bun")
        assert cmds.package_manager == "npm"

    def test_resolved_commands_is_frozen(self):
        cmds = resolve_commands("https://x/r.git", "/workspace/r", "build")
        with pytest.raises(AttributeError):
            cmds.build_command = ("make",)

    def test_supported_package_managers(self):
        assert get_supported_package_managers() == ["npm", "pnpm", "yarn"]


# ---------------------------------------------------------------------------
# 2. Log excerpt
# ---------------------------------------------------------------------------
class TestLogExcerpt:

    def test_short_log_returned_as_is(self):
        log = "line1\nline2\nline3"
        assert create_log_excerpt(log) == log

    def test_long_log_truncated(self):
        full = "\n".join(f"line {i}" for i in range(200))
        excerpt = create_log_excerpt(full, head=5, tail=5)
        assert "line 0" in excerpt
        assert "line 199" in excerpt
        assert "omitted" in excerpt


# ---------------------------------------------------------------------------
# 3. Step sequence
# ---------------------------------------------------------------------------
class TestStepSequence:

    def test_successful_run_calls_every_step_in_order(self, tmp_path):
        runtime = _mock_runtime()
        publisher = MagicMock()
        publisher.publish.return_value = ["7/index.html", "7/app.js"]

        outcome = _executor(runtime, publisher, tmp_path=tmp_path).execute(
            _job(envVars={"NODE_ENV": "production"})
        )

        assert outcome.success is True
        assert outcome.failed_step is None
        assert outcome.uploaded_files == 2
        assert outcome.container_id.startswith("build-")

        provision = runtime.provision.call_args.kwargs
        assert provision["name"] == outcome.container_id
        assert provision["image"] == "builder:test"

        steps = [_step_of(c.args[1]) for c in runtime.exec.call_args_list]
        assert steps == ["clone", "install", "build"]

        build_call = runtime.exec.call_args_list[2]
        assert build_call.kwargs["environment"] == {"NODE_ENV": "production"}
        assert build_call.kwargs["workdir"] == "/workspace/demo"

        runtime.copy_out.assert_called_once_with(
            outcome.container_id, "/workspace/demo/dist",
            os.path.join(str(tmp_path), outcome.container_id),
        )
        publisher.publish.assert_called_once_with(
            os.path.join(str(tmp_path), outcome.container_id), "7"
        )
        runtime.remove.assert_called_once_with(outcome.container_id)

    def test_each_execution_gets_a_fresh_container(self, tmp_path):
        runtime = _mock_runtime()
        executor = _executor(runtime, tmp_path=tmp_path)
        first = executor.execute(_job())
        second = executor.execute(_job())
        assert first.container_id != second.container_id

    def test_logs_cover_all_commands(self, tmp_path):
        store = MagicMock()
        outcome = _executor(_mock_runtime(), log_store=store, tmp_path=tmp_path).execute(_job())
        store.save_logs.assert_called_once_with("7", ["clone output", "install output", "build output"])
        assert outcome.log_line_count == 3

    def test_local_artifact_directory_removed(self, tmp_path):
        runtime = _mock_runtime()

        def copy_out(container_id, source_path, dest_dir):
            os.makedirs(dest_dir)
            open(os.path.join(dest_dir, "index.html"), "w").close()

        runtime.copy_out.side_effect = copy_out
        _executor(runtime, tmp_path=tmp_path).execute(_job())
        assert os.listdir(tmp_path) == []


# ---------------------------------------------------------------------------
# 4. Failures and teardown
# ---------------------------------------------------------------------------
class TestFailures:

    @pytest.mark.parametrize("failing_step", ["provision", "clone", "install", "build", "extract", "publish"])
    def test_teardown_runs_exactly_once(self, failing_step, tmp_path):
        runtime = _mock_runtime(fail_step=failing_step)
        publisher = MagicMock()
        if failing_step == "provision":
            runtime.provision.side_effect = ProvisionError("image missing")
        if failing_step == "extract":
            runtime.copy_out.side_effect = ExtractionError("dist missing")
        if failing_step == "publish":
            publisher.publish.side_effect = PublishError("upload failed", key="7/app.js")

        outcome = _executor(runtime, publisher, tmp_path=tmp_path).execute(_job())

        assert outcome.success is False
        assert outcome.failed_step == failing_step
        assert outcome.error
        runtime.remove.assert_called_once_with(outcome.container_id)

    def test_failed_build_skips_extract_and_publish(self, tmp_path):
        runtime = _mock_runtime(fail_step="build")
        publisher = MagicMock()

        outcome = _executor(runtime, publisher, tmp_path=tmp_path).execute(_job())

        assert outcome.failed_step == "build"
        assert "exit code 1" in outcome.error
        runtime.copy_out.assert_not_called()
        publisher.publish.assert_not_called()

    def test_failed_install_skips_build(self, tmp_path):
        runtime = _mock_runtime(fail_step="install")
        _executor(runtime, tmp_path=tmp_path).execute(_job())
        steps = [_step_of(c.args[1]) for c in runtime.exec.call_args_list]
        assert steps == ["clone", "install"]

    def test_logs_persisted_when_build_fails(self, tmp_path):
        store = MagicMock()
        _executor(_mock_runtime(fail_step="build"), log_store=store, tmp_path=tmp_path).execute(_job())
        store.save_logs.assert_called_once()

    def test_logs_not_persisted_when_provision_fails(self, tmp_path):
        runtime = _mock_runtime()
        runtime.provision.side_effect = ProvisionError("no image")
        store = MagicMock()
        _executor(runtime, log_store=store, tmp_path=tmp_path).execute(_job())
        store.save_logs.assert_not_called()

    def test_log_persistence_failure_does_not_fail_job(self, tmp_path):
        store = MagicMock()
        store.save_logs.side_effect = LogPersistenceError("db down")
        outcome = _executor(_mock_runtime(), log_store=store, tmp_path=tmp_path).execute(_job())
        assert outcome.success is True

    def test_teardown_failure_does_not_change_outcome(self, tmp_path, caplog):
        runtime = _mock_runtime()
        runtime.remove.side_effect = TeardownWarning("daemon busy")
        with caplog.at_level(logging.WARNING):
            outcome = _executor(runtime, tmp_path=tmp_path).execute(_job())
        assert outcome.success is True
        assert "manual cleanup required" in caplog.text

    def test_unexpected_teardown_error_is_swallowed(self, tmp_path):
        runtime = _mock_runtime(fail_step="build")
        runtime.remove.side_effect = RuntimeError("socket closed")
        outcome = _executor(runtime, tmp_path=tmp_path).execute(_job())
        assert outcome.failed_step == "build"

    def test_unexpected_exception_collapsed(self, tmp_path):
        runtime = _mock_runtime()
        runtime.exec.side_effect = RuntimeError("connection reset")
        outcome = _executor(runtime, tmp_path=tmp_path).execute(_job())
        assert outcome.success is False
        assert outcome.failed_step == "clone"
        assert "RuntimeError" in outcome.error
        runtime.remove.assert_called_once()

    def test_overrunning_visibility_timeout_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            _executor(_mock_runtime(), tmp_path=tmp_path, visibility_timeout=-1).execute(_job())
        assert "visibility timeout" in caplog.text


# ---------------------------------------------------------------------------
# 5. Secrets
# ---------------------------------------------------------------------------
class TestSecrets:

    def test_clone_uses_authenticated_url(self, tmp_path):
        runtime = _mock_runtime()
        _executor(runtime, tmp_path=tmp_path).execute(
            _job(repoUrl="https://github.com/org/repo", gitToken="t1")
        )
        clone_argv = runtime.exec.call_args_list[0].args[1]
        assert "https://t1@github.com/org/repo" in clone_argv

    def test_token_never_logged_or_recorded(self, tmp_path, caplog):
        token = "ghs_supersecret"
        runtime = MagicMock()

        def leaky_exec(container_id, argv, on_line=None, environment=None, workdir=None):
            line = f"fatal: could not read from https://{token}@github.com/org/repo"
            on_line(line)
            return CommandResult(exit_code=128, output=[line])

        runtime.exec.side_effect = leaky_exec
        store = MagicMock()

        with caplog.at_level(logging.DEBUG):
            outcome = _executor(runtime, log_store=store, tmp_path=tmp_path).execute(
                _job(repoUrl="https://github.com/org/repo", gitToken=token)
            )

        assert outcome.failed_step == "clone"
        assert token not in caplog.text
        assert token not in outcome.error
        stored_lines = store.save_logs.call_args.args[1]
        assert all(token not in line for line in stored_lines)
        assert "https://***@github.com/org/repo" in caplog.text

    def test_percent_encoded_token_redacted(self, tmp_path, caplog):
        token = "ghp/abc+def="
        encoded = "ghp%2Fabc%2Bdef%3D"
        runtime = MagicMock()

        def leaky_exec(container_id, argv, on_line=None, environment=None, workdir=None):
            line = f"fatal: unable to access https://{encoded}@github.com/org/repo"
            on_line(line)
            return CommandResult(exit_code=128, output=[line])

        runtime.exec.side_effect = leaky_exec
        store = MagicMock()

        with caplog.at_level(logging.DEBUG):
            outcome = _executor(runtime, log_store=store, tmp_path=tmp_path).execute(
                _job(repoUrl="https://github.com/org/repo", gitToken=token)
            )

        assert encoded in runtime.exec.call_args_list[0].args[1][-2]
        assert encoded not in caplog.text
        assert encoded not in outcome.error
        stored_lines = store.save_logs.call_args.args[1]
        assert all(encoded not in line for line in stored_lines)

    def test_token_with_relative_url_fails_at_clone(self, tmp_path):
        runtime = _mock_runtime()
        outcome = _executor(runtime, tmp_path=tmp_path).execute(
            _job(repoUrl="git@github.com:org/repo.git", gitToken="t1")
        )
        assert outcome.success is False
        assert outcome.failed_step == "clone"
        assert "Unexpected" not in outcome.error
        runtime.exec.assert_not_called()
        runtime.remove.assert_called_once()


# ---------------------------------------------------------------------------
# 6. End-to-end scenario
# ---------------------------------------------------------------------------
class TestEndToEnd:

    def test_build_publishes_two_objects_and_stores_log(self, tmp_path, log_engine):
        runtime = FakeRuntime()
        s3 = MagicMock()
        executor = _executor(
            runtime,
            publisher=ArtifactPublisher(s3_client=s3, bucket="artifacts"),
            log_store=DeploymentLogStore(log_engine),
            tmp_path=tmp_path,
        )

        outcome = executor.execute(_job())

        assert outcome.success is True
        keys = sorted(c.kwargs["Key"] for c in s3.put_object.call_args_list)
        assert keys == ["7/app.js", "7/index.html"]
        assert "vite v5.0.0 building for production..." in _stored_logs(log_engine)
        assert runtime.removed == [outcome.container_id]

    def test_failing_build_writes_nothing(self, tmp_path, log_engine):
        runtime = FakeRuntime(build_exit=1)
        s3 = MagicMock()
        executor = _executor(
            runtime,
            publisher=ArtifactPublisher(s3_client=s3, bucket="artifacts"),
            log_store=DeploymentLogStore(log_engine),
            tmp_path=tmp_path,
        )

        outcome = executor.execute(_job())

        assert outcome.success is False
        assert outcome.failed_step == "build"
        s3.put_object.assert_not_called()
        assert "error: build failed" in _stored_logs(log_engine)
        assert runtime.removed == [outcome.container_id]
