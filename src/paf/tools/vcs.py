"""Minimal git helpers
The helpers below provide just enough structure to inspect a repository,
resolve its root, and read the commits and branches the workspace manager
needs.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class NotARepositoryError(GitError):
    """Raised when a path is not inside a git repository."""


def run_git(
    args: Sequence[str],
    *,
    cwd: Path | str,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run ``git`` with ``args`` in ``cwd`` and optionally raise on failure."""
    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=False,
            check=False,
        )
    except OSError as error:
        # Missing cwd or missing git binary.
        raise GitError(f"git {' '.join(args)} failed: {error}") from error
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


def is_repository(path: Path | str) -> bool:
    """Return ``True`` when ``path`` (or an ancestor) is tracked by git."""
    try:
        result = run_git(["rev-parse", "--git-dir"], cwd=path, check=False)
    except GitError:
        return False
    return result.returncode == 0


def repository_root(path: Path | str) -> Path:
    """Return the top-level directory of the repository containing ``path``."""
    try:
        result = run_git(["rev-parse", "--show-toplevel"], cwd=path, check=False)
    except GitError as error:
        raise NotARepositoryError(f"{path} is not inside a git repository.") from error
    top_level = result.stdout.strip()
    if result.returncode != 0 or not top_level:
        raise NotARepositoryError(f"{path} is not inside a git repository.")
    return Path(top_level).resolve()


def head_revision(path: Path | str) -> str:
    """Return the full commit id ``HEAD`` points at in ``path``."""
    result = run_git(["rev-parse", "--verify", "HEAD"], cwd=path)
    revision = result.stdout.strip()
    if not revision:
        raise GitError(f"Unable to resolve HEAD in {path}")
    return revision


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise NotARepositoryError(f"Not a git repository: {self.root}")

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return run_git(list(args), cwd=self.root, check=check)

    # -------------------------------------------------------------- branches
    def branches(self, prefix: str = "") -> List[str]:
        """Return local branch names, optionally limited to ``prefix``."""

        ref = "refs/heads/"
        if prefix:
            ref = f"refs/heads/{prefix.rstrip('/')}"
        result = self.git("for-each-ref", "--format=%(refname:short)", ref, check=False)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unable to list branches"
            raise GitError(f"git for-each-ref failed: {message}")
        names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if prefix:
            names = [name for name in names if name.startswith(prefix)]
        return sorted(names)


__all__ = [
    "GitError",
    "GitRepository",
    "NotARepositoryError",
    "head_revision",
    "is_repository",
    "repository_root",
    "run_git",
]
