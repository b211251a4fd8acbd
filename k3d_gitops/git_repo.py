"""Publish the sample application manifests to the GitLab project.

The sample repository is cloned into a temporary directory, the manifest
files are copied into a fresh staging repository under the working
directory, and that repository is pushed to GitLab. GitLab creates the
project on first push; later runs commit on top of the existing ``main``.
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import typing as typ
from pathlib import Path

from k3d_gitops.logging import get_logger, log_debug, log_info
from k3d_gitops.validation import BootstrapError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from k3d_gitops.config import Config

logger = get_logger(__name__)

_GIT_TIMEOUT = 300
_COMMIT_MESSAGE = "Initial commit"
_UPDATE_MESSAGE = "Update manifests"


def _git(args: cabc.Sequence[str], cwd: Path | None = None) -> None:
    """Run a git command, raising ``CalledProcessError`` on failure."""
    # S603/S607: git via PATH is standard; args built internally
    subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        check=True,
        timeout=_GIT_TIMEOUT,
    )


def clone_sample(url: str, destination: Path) -> Path:
    """Shallow-clone ``url`` into ``destination``."""
    _git(["clone", "--depth", "1", url, str(destination)])
    return destination


def stage_manifests(
    source: Path, staging: Path, files: cabc.Iterable[str]
) -> list[Path]:
    """Copy ``files`` from ``source`` into a clean ``staging`` directory.

    Raises:
        BootstrapError: If a listed file is missing from ``source``.

    """
    if staging.exists():
        shutil.rmtree(staging)
    staging.mkdir(parents=True)

    copied = []
    for name in files:
        src = source / name
        if not src.is_file():
            msg = f"Sample repository has no file '{name}'"
            raise BootstrapError(msg)
        copied.append(Path(shutil.copy2(src, staging / name)))
    return copied


def _git_output(args: cabc.Sequence[str], cwd: Path) -> str:
    """Run a git command and return its standard output."""
    # S603/S607: git via PATH is standard; args built internally
    result = subprocess.run(  # noqa: S603
        ["git", *args],  # noqa: S607
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
        timeout=_GIT_TIMEOUT,
    )
    return result.stdout


def _adopt_remote_main(staging: Path, push_url: str) -> bool:
    """Point ``HEAD`` at the remote ``main`` branch if it exists.

    The index is reset too, so only changed manifests show up as changes.
    Returns False when there is nothing to fetch, as before the first push.
    """
    try:
        _git_output(["fetch", push_url, "main"], cwd=staging)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired):
        log_debug(logger, "No existing main branch; publishing a new history")
        return False
    _git(["reset", "--quiet", "FETCH_HEAD"], cwd=staging)
    return True


def commit_and_push(
    staging: Path, files: cabc.Sequence[str], push_url: str, email: str
) -> bool:
    """Commit ``files`` on top of the remote ``main`` and push the result.

    Running it again against an existing project adds a commit only when a
    manifest changed.

    Returns:
        True if a commit was pushed, False if ``main`` was already current.

    Raises:
        RuntimeError: If any git step fails. The message never contains
            ``push_url``, which may embed credentials.

    """
    try:
        _git(["init", "--initial-branch=main"], cwd=staging)
        has_history = _adopt_remote_main(staging, push_url)
        _git(["add", *files], cwd=staging)
        if has_history and not _git_output(
            ["status", "--porcelain", "--untracked-files=no"], cwd=staging
        ):
            log_info(logger, "GitLab already holds the current manifests")
            return False
        _git(
            [
                "-c",
                "user.name=root",
                "-c",
                f"user.email={email}",
                "commit",
                "-m",
                _UPDATE_MESSAGE if has_history else _COMMIT_MESSAGE,
            ],
            cwd=staging,
        )
    except subprocess.CalledProcessError as e:
        msg = f"Failed to create the staging repository in {staging}: {e}"
        raise RuntimeError(msg) from e

    try:
        _git(["push", push_url, "HEAD:main"], cwd=staging)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired):
        msg = (
            f"git push from {staging} failed; check the token and that "
            "GitLab accepts pushes"
        )
        # The command line carries the token, so it is not chained.
        raise RuntimeError(msg) from None
    return True


def publish_sample_repository(cfg: Config, token: str) -> Path:
    """Push the sample manifests to ``root/<project>`` on GitLab.

    Returns:
        Path of the staging repository.

    """
    staging = cfg.workdir / cfg.project_name
    with tempfile.TemporaryDirectory(prefix="k3d-gitops-") as tmp:
        log_info(logger, "Cloning %s", cfg.sample_repo_url)
        source = clone_sample(cfg.sample_repo_url, Path(tmp) / "sample")
        stage_manifests(source, staging, cfg.manifest_files)

    log_info(logger, "Pushing %s to %s", ", ".join(cfg.manifest_files), cfg.repo_url)
    commit_and_push(
        staging,
        list(cfg.manifest_files),
        cfg.authenticated_repo_url(token),
        cfg.email,
    )
    return staging
