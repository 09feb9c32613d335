from __future__ import annotations

import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable

import pytest

from paf.config import WorkspaceSettings
from paf.tools import workspace as workspace_module
from paf.tools.vcs import GitRepository
from paf.tools.workspace import (
    WorkspaceCreationError,
    branch_for_workspace,
    create_workspace,
    destroy_workspace,
    generate_workspace_path,
    isolated_workspace,
    prune_stale_workspaces,
)


def test_generate_workspace_path_layout() -> None:
    before = time.time_ns() // 1_000_000
    path = generate_workspace_path(Path("/some/repo"))
    after = time.time_ns() // 1_000_000

    assert path.parent == Path("/some/repo/.worktrees")
    prefix, stamp, suffix = path.name.split("-")
    assert prefix == "paf"
    assert before <= int(stamp) <= after
    assert suffix


def test_generate_workspace_path_unique_within_same_millisecond(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(workspace_module.time, "time_ns", lambda: 1_700_000_000_000_000_000)

    paths = {generate_workspace_path(Path("/repo")) for _ in range(50)}
    branches = {branch_for_workspace(path) for path in paths}

    assert len(paths) == 50
    assert len(branches) == 50


def test_branch_name_is_derived_from_directory_name() -> None:
    path = Path("/repo/.worktrees/paf-123-abc")
    assert branch_for_workspace(path) == "paf/paf-123-abc"
    custom = WorkspaceSettings(branch_prefix="friends/")
    assert branch_for_workspace(path, custom) == "friends/paf-123-abc"


def test_create_workspace_checks_out_head_on_new_branch(git_repo: GitRepository) -> None:
    workspace = create_workspace(git_repo.root)
    try:
        assert workspace.path.is_dir()
        assert (workspace.path / "README.md").read_text(encoding="utf-8") == "# Test\n"
        assert git_repo.has_branch(workspace.branch)
        assert workspace.path in git_repo.worktree_paths()
        assert git_repo.git("rev-parse", workspace.branch).stdout.strip() == git_repo.head()
    finally:
        destroy_workspace(git_repo.root, workspace.path)


def test_create_workspace_makes_custom_reserved_directory(git_repo: GitRepository) -> None:
    layout = WorkspaceSettings(directory=".friends")
    assert not (git_repo.root / ".friends").exists()

    workspace = create_workspace(git_repo.root, layout)
    try:
        assert workspace.path.parent == git_repo.root / ".friends"
        assert workspace.created_container is True
    finally:
        destroy_workspace(git_repo.root, workspace.path, layout, remove_container=workspace.created_container)

    assert not (git_repo.root / ".friends").exists()


def test_create_and_destroy_round_trip_leaves_repository_unchanged(
    git_repo: GitRepository, digest_tree: Callable[[Path], str]
) -> None:
    branches_before = git_repo.branches()
    tree_before = digest_tree(git_repo.root)

    workspace = create_workspace(git_repo.root)
    assert destroy_workspace(git_repo.root, workspace.path, remove_container=workspace.created_container) is True

    assert git_repo.branches() == branches_before
    assert digest_tree(git_repo.root) == tree_before
    assert not (git_repo.root / ".worktrees").exists()
    assert git_repo.worktree_paths() == [git_repo.root]


def test_destroy_twice_is_harmless(git_repo: GitRepository) -> None:
    workspace = create_workspace(git_repo.root)
    destroy_workspace(git_repo.root, workspace.path)
    branches = git_repo.branches()

    assert destroy_workspace(git_repo.root, workspace.path) is True
    assert git_repo.branches() == branches


def test_destroy_recovers_when_agent_removed_git_metadata(git_repo: GitRepository) -> None:
    workspace = create_workspace(git_repo.root)
    (workspace.path / ".git").unlink()
    (workspace.path / "leftover.txt").write_text("junk\n", encoding="utf-8")

    assert destroy_workspace(git_repo.root, workspace.path) is True
    assert not workspace.path.exists()
    assert not git_repo.has_branch(workspace.branch)
    assert git_repo.worktree_paths() == [git_repo.root]


def test_destroy_recovers_when_directory_already_deleted(git_repo: GitRepository) -> None:
    workspace = create_workspace(git_repo.root)
    shutil.rmtree(workspace.path)

    assert destroy_workspace(git_repo.root, workspace.path) is True
    assert not git_repo.has_branch(workspace.branch)
    assert git_repo.worktree_paths() == [git_repo.root]


def test_destroy_keeps_reserved_directory_while_other_workspaces_live(git_repo: GitRepository) -> None:
    first = create_workspace(git_repo.root)
    second = create_workspace(git_repo.root)
    assert first.created_container is True
    assert second.created_container is False
    try:
        destroy_workspace(git_repo.root, first.path, remove_container=first.created_container)
        assert second.path.is_dir()
        assert (git_repo.root / ".worktrees").is_dir()
    finally:
        destroy_workspace(git_repo.root, second.path)


def test_teardown_keeps_reserved_directory_the_user_already_had(
    git_repo: GitRepository, digest_tree: Callable[[Path], str]
) -> None:
    (git_repo.root / ".worktrees").mkdir()
    tree_before = digest_tree(git_repo.root)

    with isolated_workspace(git_repo.root) as workspace:
        assert workspace.created_container is False

    assert (git_repo.root / ".worktrees").is_dir()
    assert list((git_repo.root / ".worktrees").iterdir()) == []
    assert digest_tree(git_repo.root) == tree_before


def test_concurrent_workspaces_do_not_collide(git_repo: GitRepository, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(workspace_module.time, "time_ns", lambda: 1_700_000_000_000_000_000)
    first = create_workspace(git_repo.root)
    second = create_workspace(git_repo.root)
    try:
        assert first.path != second.path
        assert first.branch != second.branch
    finally:
        destroy_workspace(git_repo.root, first.path)
        destroy_workspace(git_repo.root, second.path)


def test_create_workspace_fails_without_commits(make_repo: Callable[..., GitRepository]) -> None:
    repo = make_repo("empty", commit=False)

    with pytest.raises(WorkspaceCreationError):
        create_workspace(repo.root)

    assert not (repo.root / ".worktrees").exists()
    assert repo.branches() == []


def test_isolated_workspace_tears_down_on_error(git_repo: GitRepository) -> None:
    seen: list[Path] = []

    with pytest.raises(RuntimeError, match="boom"):
        with isolated_workspace(git_repo.root, on_teardown=lambda ws: seen.append(ws.path)) as workspace:
            (workspace.path / "scratch.txt").write_text("x", encoding="utf-8")
            raise RuntimeError("boom")

    assert seen == [workspace.path]
    assert not workspace.path.exists()
    assert not git_repo.has_branch(workspace.branch)


def test_prune_stale_workspaces_only_removes_old_entries(git_repo: GitRepository) -> None:
    fresh = create_workspace(git_repo.root)
    old_name = "paf-1000-deadbeef"
    git_repo.git("worktree", "add", "-b", f"paf/{old_name}", str(git_repo.root / ".worktrees" / old_name), "HEAD")
    git_repo.git("branch", "paf/paf-2000-cafe")
    try:
        removed = prune_stale_workspaces(git_repo.root, older_than=timedelta(hours=1))

        assert removed == [old_name, "paf-2000-cafe"]
        assert fresh.path.is_dir()
        assert git_repo.branches("paf/") == [fresh.branch]
    finally:
        destroy_workspace(git_repo.root, fresh.path)
