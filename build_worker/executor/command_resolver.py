"""
Command Resolver
================
Maps the configured package manager to the argv sequences the executor
runs inside the build container.

Resolver never executes commands; it only returns argv lists.
Every argv runs with the repository workspace as working directory,
so install and build are scoped to the checkout.

Deterministic: same inputs → same commands, always.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ResolvedCommands:
    """
    Immutable container for the three in-container commands of a build.

    Fields
    ------
    clone_command : tuple[str, ...]
        Shallow single-branch clone into the workspace path.
    install_command : tuple[str, ...]
        Dependency installation (e.g. ``npm install``).
    build_command : tuple[str, ...]
        The job's named build script (e.g. ``npm run build``).
    package_manager : str
        Package manager these commands were resolved for.
    """
    clone_command: tuple[str, ...]
    install_command: tuple[str, ...]
    build_command: tuple[str, ...]
    package_manager: str


# ---------------------------------------------------------------------------
# Package manager → (install argv, run-script argv prefix)
# ---------------------------------------------------------------------------
_PACKAGE_MANAGERS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "npm": (("npm", "install"), ("npm", "run")),
    "pnpm": (("pnpm", "install"), ("pnpm", "run")),
    "yarn": (("yarn", "install"), ("yarn", "run")),
}

_DEFAULT_PACKAGE_MANAGER = "npm"


def build_clone_command(clone_url: str, workspace_path: str,
                        branch: Optional[str] = None) -> tuple[str, ...]:
    """``git clone --depth 1 --single-branch [--branch b] <url> <workspace>``."""
    argv = ["git", "clone", "--depth", "1", "--single-branch"]
    if branch:
        argv += ["--branch", branch]
    argv += [clone_url, workspace_path]
    return tuple(argv)


def resolve_commands(
    clone_url: str,
    workspace_path: str,
    build_script: str,
    package_manager: Optional[str] = None,
    branch: Optional[str] = None,
) -> ResolvedCommands:
    """
    Resolve clone/install/build argv for one job.

    Parameters
    ----------
    clone_url : str
        URL passed to ``git clone`` (may embed a token; never log it raw).
    workspace_path : str
        Checkout path inside the container.
    build_script : str
        Name of the package script the job asked for.
    package_manager : str | None
        npm, pnpm or yarn. None or unrecognised falls back to npm.
    branch : str | None
        Branch for the single-branch clone; None clones the default branch.
    """
    manager = package_manager if package_manager in _PACKAGE_MANAGERS else _DEFAULT_PACKAGE_MANAGER
    install, run_prefix = _PACKAGE_MANAGERS[manager]
    return ResolvedCommands(
        clone_command=build_clone_command(clone_url, workspace_path, branch),
        install_command=install,
        build_command=run_prefix + (build_script,),
        package_manager=manager,
    )


def get_supported_package_managers() -> list[str]:
    """Return all package managers that have command mappings."""
    return sorted(_PACKAGE_MANAGERS.keys())
