"""Disposable git worktrees that isolate one external agent run each."""

from __future__ import annotations

import logging
import re
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable, Iterator, List
from uuid import uuid4

from ..config import WorkspaceSettings
from .vcs import GitError, GitRepository, run_git

LOGGER = logging.getLogger(__name__)

__all__ = [
    "Workspace",
    "WorkspaceCreationError",
    "branch_for_workspace",
    "create_workspace",
    "destroy_workspace",
    "generate_workspace_path",
    "isolated_workspace",
    "prune_stale_workspaces",
]


class WorkspaceCreationError(GitError):
    """Raised when an isolated workspace cannot be provisioned."""


@dataclass(slots=True, frozen=True)
class Workspace:
    """An isolated checkout owned by exactly one invocation."""

    repo_root: Path
    path: Path
    branch: str
    # Whether this invocation made the reserved directory; only then may teardown remove it.
    created_container: bool = False

    @property
    def name(self) -> str:
        return self.path.name


def _settings(settings: WorkspaceSettings | None) -> WorkspaceSettings:
    return settings or WorkspaceSettings()


def generate_workspace_path(repo_root: Path | str, settings: WorkspaceSettings | None = None) -> Path:
    """Return a fresh ``<root>/<dir>/<prefix>-<millis>-<suffix>`` path.

    The random suffix keeps names distinct even when two invocations start in
    the same millisecond against the same repository.
    """
    layout = _settings(settings)
    timestamp = time.time_ns() // 1_000_000
    suffix = uuid4().hex[:8]
    return Path(repo_root) / layout.directory / f"{layout.name_prefix}-{timestamp}-{suffix}"


def branch_for_workspace(workspace_path: Path | str, settings: WorkspaceSettings | None = None) -> str:
    """Derive the auxiliary branch name from the workspace directory name."""
    layout = _settings(settings)
    return f"{layout.branch_prefix}{Path(workspace_path).name}"


def create_workspace(repo_root: Path | str, settings: WorkspaceSettings | None = None) -> Workspace:
    """Check out ``HEAD`` of ``repo_root`` into a new worktree on a new branch."""
    layout = _settings(settings)
    root = Path(repo_root).resolve()
    path = generate_workspace_path(root, layout)
    branch = branch_for_workspace(path, layout)

    try:
        path.parent.mkdir(parents=True)
        created_container = True
    except FileExistsError:
        created_container = False
    except OSError as error:
        raise WorkspaceCreationError(f"Failed to create {path.parent}: {error}") from error

    try:
        add = run_git(
            ["worktree", "add", "-b", branch, str(path), "HEAD"],
            cwd=root,
            check=False,
        )
    except GitError as error:
        destroy_workspace(root, path, layout, remove_container=created_container)
        raise WorkspaceCreationError(f"Failed to create isolated workspace: {error}") from error
    if add.returncode != 0:
        message = add.stderr.strip() or add.stdout.strip() or "unable to create worktree"
        destroy_workspace(root, path, layout, remove_container=created_container)
        raise WorkspaceCreationError(f"Failed to create isolated workspace: {message}")

    LOGGER.debug("Created workspace %s on branch %s", path, branch)
    return Workspace(repo_root=root, path=path, branch=branch, created_container=created_container)


def _remove_tree(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.exists():
        shutil.rmtree(path)


def destroy_workspace(
    repo_root: Path | str,
    workspace_path: Path | str,
    settings: WorkspaceSettings | None = None,
    *,
    remove_container: bool = False,
) -> bool:
    """Remove the worktree and its branch; never raises.

    The agent is untrusted and may have deleted the worktree's ``.git`` file
    or nested further worktrees inside it, so a failed ``git worktree remove``
    falls back to deleting the directory and pruning git's worktree registry.
    Branch deletion is attempted regardless. With ``remove_container`` the
    reserved directory is removed too once it is empty. Returns ``True`` when
    both the directory and the branch are gone afterwards.
    """
    layout = _settings(settings)
    root = Path(repo_root)
    path = Path(workspace_path)
    branch = branch_for_workspace(path, layout)

    try:
        run_git(["worktree", "remove", "--force", str(path)], cwd=root)
    except GitError as error:
        LOGGER.debug("git worktree remove failed for %s: %s", path, error)
        try:
            _remove_tree(path)
        except OSError as rm_error:
            LOGGER.warning("Failed to delete workspace directory %s: %s", path, rm_error)
        try:
            run_git(["worktree", "prune"], cwd=root)
        except GitError as prune_error:
            LOGGER.warning("git worktree prune failed in %s: %s", root, prune_error)

    branch_removed = True
    try:
        run_git(["branch", "-D", branch], cwd=root)
    except GitError as error:
        # Missing branch is the normal case on a second call.
        LOGGER.debug("git branch -D %s failed: %s", branch, error)
        try:
            probe = run_git(
                ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
                cwd=root,
                check=False,
            )
            branch_removed = probe.returncode != 0
        except GitError:
            branch_removed = False

    container = path.parent
    if remove_container and container.name == Path(layout.directory).name:
        try:
            container.rmdir()
        except OSError:
            # Not empty (another invocation is live) or already gone.
            pass

    removed = branch_removed and not path.exists()
    if not removed:
        LOGGER.warning("Workspace teardown incomplete for %s (branch %s)", path, branch)
    return removed


@contextmanager
def isolated_workspace(
    repo_root: Path | str,
    settings: WorkspaceSettings | None = None,
    *,
    on_teardown: Callable[[Workspace], None] | None = None,
) -> Iterator[Workspace]:
    """Provision a workspace and tear it down on every exit path."""
    workspace = create_workspace(repo_root, settings)
    try:
        yield workspace
    finally:
        if on_teardown is not None:
            on_teardown(workspace)
        destroy_workspace(
            workspace.repo_root,
            workspace.path,
            settings,
            remove_container=workspace.created_container,
        )


def _timestamp_from_name(name: str, prefix: str) -> int | None:
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d+)-[0-9a-z]+", name)
    if not match:
        return None
    return int(match.group(1))


def prune_stale_workspaces(
    repo_root: Path | str,
    settings: WorkspaceSettings | None = None,
    *,
    older_than: timedelta = timedelta(hours=24),
) -> List[str]:
    """Remove leftover workspaces and branches older than ``older_than``.

    Only names in the reserved namespace are considered, and the age comes
    from the timestamp embedded in each name, so in-flight workspaces of
    concurrent invocations are left alone as long as ``older_than`` exceeds
    the longest expected run.
    """
    layout = _settings(settings)
    repo = GitRepository(repo_root)
    cutoff = time.time_ns() // 1_000_000 - int(older_than.total_seconds() * 1000)

    candidates: dict[str, Path] = {}
    container = repo.root / layout.directory
    if container.is_dir():
        for entry in container.iterdir():
            if entry.is_symlink() or not entry.is_dir():
                continue
            stamp = _timestamp_from_name(entry.name, layout.name_prefix)
            if stamp is not None and stamp < cutoff:
                candidates[entry.name] = entry

    for branch in repo.branches(layout.branch_prefix):
        name = branch[len(layout.branch_prefix):]
        stamp = _timestamp_from_name(name, layout.name_prefix)
        if stamp is not None and stamp < cutoff:
            candidates.setdefault(name, container / name)

    removed: List[str] = []
    for name in sorted(candidates):
        if destroy_workspace(repo.root, candidates[name], layout):
            removed.append(name)
    if removed:
        LOGGER.info("Pruned %d stale workspace(s) in %s", len(removed), repo.root)
    return removed
