"""Git, workspace, and agent-process helpers used by the orchestrator."""

from .agent_runner import AgentRun, agent_environment, build_agent_command, run_agent
from .changes import capture_changes
from .response import read_and_consume
from .vcs import GitError, GitRepository, NotARepositoryError, head_revision, is_repository, repository_root
from .workspace import (
    Workspace,
    WorkspaceCreationError,
    branch_for_workspace,
    create_workspace,
    destroy_workspace,
    generate_workspace_path,
    isolated_workspace,
    prune_stale_workspaces,
)

__all__ = [
    "AgentRun",
    "GitError",
    "GitRepository",
    "NotARepositoryError",
    "Workspace",
    "WorkspaceCreationError",
    "agent_environment",
    "branch_for_workspace",
    "build_agent_command",
    "capture_changes",
    "create_workspace",
    "destroy_workspace",
    "generate_workspace_path",
    "head_revision",
    "is_repository",
    "isolated_workspace",
    "prune_stale_workspaces",
    "read_and_consume",
    "repository_root",
    "run_agent",
]
