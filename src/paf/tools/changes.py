"""Unified diff of everything an agent changed inside its workspace."""

from __future__ import annotations

import logging
from pathlib import Path

from .vcs import GitError, run_git

LOGGER = logging.getLogger(__name__)

__all__ = ["capture_changes"]

# The caller applies this output as a patch; user diff config must not reshape it.
_DIFF_ARGS = (
    "diff",
    "--staged",
    "--no-color",
    "--no-ext-diff",
    "--no-textconv",
    "--src-prefix=a/",
    "--dst-prefix=b/",
)


def _is_own_top_level(workspace_path: Path) -> bool:
    """Return ``True`` when git resolves ``workspace_path`` to its own worktree.

    If the agent deleted the worktree's ``.git`` file, git would walk up to the
    enclosing repository and ``git add -A`` would stage into the caller's index.
    """
    try:
        result = run_git(["rev-parse", "--show-toplevel"], cwd=workspace_path)
    except GitError as error:
        LOGGER.warning("Workspace %s is no longer a git worktree: %s", workspace_path, error)
        return False
    top_level = Path(result.stdout.strip()).resolve()
    if top_level != workspace_path.resolve():
        LOGGER.warning(
            "Workspace %s resolves to repository %s; refusing to stage changes there",
            workspace_path,
            top_level,
        )
        return False
    return True


def capture_changes(workspace_path: Path | str, starting_revision: str) -> str | None:
    """Return the diff between ``starting_revision`` and the workspace state.

    Everything is staged first so new untracked files are included, and the
    diff is taken against the revision recorded before the agent ran, so work
    the agent committed itself still shows up. Returns ``""`` when nothing
    changed and ``None`` when the diff could not be computed.
    """
    workspace = Path(workspace_path)
    if not _is_own_top_level(workspace):
        return None

    try:
        run_git(["add", "--all"], cwd=workspace)
    except GitError as error:
        # A partially staged tree still diffs; report what we can.
        LOGGER.warning("Failed to stage changes in %s: %s", workspace, error)

    try:
        result = run_git([*_DIFF_ARGS, starting_revision], cwd=workspace)
    except GitError as error:
        LOGGER.warning("Failed to diff %s against %s: %s", workspace, starting_revision, error)
        return None
    return result.stdout
