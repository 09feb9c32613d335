"""Sequence one delegated agent run from validation to teardown."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List

from .config import Settings
from .prompts import prompt_size_warning, wrap_prompt
from .tools.agent_runner import AgentRun, run_agent
from .tools.changes import capture_changes
from .tools.response import read_and_consume
from .tools.vcs import GitError, NotARepositoryError, head_revision, is_repository, repository_root
from .tools.workspace import Workspace, WorkspaceCreationError, isolated_workspace

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ChangeStatus",
    "InvocationMode",
    "InvocationRequest",
    "InvocationResult",
    "InvocationState",
    "Orchestrator",
    "NO_CHANGES_TEXT",
    "NO_RESPONSE_TEXT",
]

NO_RESPONSE_TEXT = (
    "*No response file was created. The agent may have failed "
    "to follow the response file instructions.*"
)
NO_CHANGES_TEXT = "No file changes were made."


class InvocationMode(str, Enum):
    """Whether the agent's file changes are returned or discarded."""

    DEFAULT = "default"
    QUERY = "query"


class InvocationState(str, Enum):
    """Stages an invocation passes through, in order."""

    IDLE = "idle"
    VALIDATING_REPO = "validating_repo"
    PROVISIONING_WORKSPACE = "provisioning_workspace"
    RUNNING_AGENT = "running_agent"
    DRAINING_RESPONSE = "draining_response"
    CAPTURING_CHANGES = "capturing_changes"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


class ChangeStatus(str, Enum):
    """Outcome of change capture; keeps a failed diff apart from an empty one."""

    CAPTURED = "captured"
    EMPTY = "empty"
    FAILED = "failed"
    OVERSIZED = "oversized"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class InvocationRequest:
    """Input payload for one delegated run."""

    prompt: str
    model: str
    working_directory: Path | str
    mode: InvocationMode = InvocationMode.DEFAULT


@dataclass(slots=True)
class InvocationResult:
    """Everything recovered from one delegated run."""

    mode: InvocationMode = InvocationMode.DEFAULT
    response_text: str | None = None
    change_set: str | None = None
    change_status: ChangeStatus = ChangeStatus.SKIPPED
    change_size: int = 0
    change_limit: int = 0
    exit_code: int | None = None
    diagnostics: str = ""
    warnings: List[str] = field(default_factory=list)
    context_notice: str | None = None
    error: str | None = None
    states: List[InvocationState] = field(default_factory=lambda: [InvocationState.IDLE])

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def render(self) -> str:
        """Format the result as the labelled text payload returned to the caller."""
        if self.error is not None:
            return self.error

        parts: List[str] = []
        if self.response_text:
            parts.append("## Agent Response\n\n" + self.response_text)
        else:
            parts.append("## Agent Response\n\n" + NO_RESPONSE_TEXT)

        if self.mode is InvocationMode.DEFAULT:
            if self.change_status is ChangeStatus.CAPTURED and self.change_set:
                parts.append("## File Changes (unified diff)\n\n```diff\n" + self.change_set + "\n```")
            elif self.change_status is ChangeStatus.OVERSIZED:
                parts.append(
                    "## File Changes\n\n"
                    f"The diff was {self.change_size} bytes, over the {self.change_limit} byte limit, "
                    "which is too large to return. "
                    "Ask the other model for a smaller, more focused change."
                )
            else:
                parts.append("## File Changes\n\n" + NO_CHANGES_TEXT)

        if self.warnings:
            parts.append("## Warnings\n\n" + "\n\n".join(self.warnings))

        if self.context_notice:
            parts.append("## Context Size Notice\n\n" + self.context_notice)

        return "\n\n".join(parts)


class Orchestrator:
    """Drive the validate → provision → run → drain → capture → teardown sequence."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()

    @staticmethod
    def _enter(result: InvocationResult, state: InvocationState) -> None:
        LOGGER.debug("Invocation state: %s -> %s", result.states[-1].value, state.value)
        result.states.append(state)

    def invoke(self, request: InvocationRequest) -> InvocationResult:
        """Run ``request`` and return its result; only setup failures are errors."""
        settings = self.settings
        mode = InvocationMode(request.mode)
        result = InvocationResult(mode=mode)
        result.context_notice = prompt_size_warning(
            request.prompt,
            threshold=settings.limits.prompt_warning_chars,
        )

        self._enter(result, InvocationState.VALIDATING_REPO)
        work_dir = Path(request.working_directory).expanduser().resolve()
        try:
            if not is_repository(work_dir):
                raise NotARepositoryError(f"{work_dir} is not inside a git repository.")
            repo_root = repository_root(work_dir)
        except NotARepositoryError:
            result.error = f"Error: {work_dir} is not inside a git repository."
            self._enter(result, InvocationState.DONE)
            return result

        self._enter(result, InvocationState.PROVISIONING_WORKSPACE)
        try:
            with isolated_workspace(
                repo_root,
                settings.workspace,
                on_teardown=lambda _ws: self._enter(result, InvocationState.TEARING_DOWN),
            ) as workspace:
                try:
                    # Fixed before the agent runs: the agent may commit and move HEAD.
                    starting_revision = head_revision(workspace.path)
                except GitError as error:
                    raise WorkspaceCreationError(
                        f"Unable to read the starting revision of {workspace.path}: {error}"
                    ) from error
                self._run_in_workspace(request, mode, workspace, starting_revision, result)
        except WorkspaceCreationError as error:
            LOGGER.error("Workspace setup failed for %s: %s", repo_root, error)
            result.error = f"Error: failed to create an isolated workspace in {repo_root}: {error}"

        self._enter(result, InvocationState.DONE)
        return result

    def _run_in_workspace(
        self,
        request: InvocationRequest,
        mode: InvocationMode,
        workspace: Workspace,
        starting_revision: str,
        result: InvocationResult,
    ) -> None:
        settings = self.settings
        filename = settings.response.filename

        self._enter(result, InvocationState.RUNNING_AGENT)
        wrapped = wrap_prompt(request.prompt, mode.value, filename=filename)
        try:
            run = run_agent(workspace.path, wrapped, request.model, settings.agent)
        except Exception as error:  # noqa: BLE001 - degrade into a warning
            LOGGER.exception("Agent run failed unexpectedly in %s", workspace.path)
            run = AgentRun(exit_code=1, diagnostics=str(error), launch_failed=True)
        result.exit_code = run.exit_code
        result.diagnostics = run.diagnostics
        result.warnings.extend(self._agent_warnings(run))

        self._enter(result, InvocationState.DRAINING_RESPONSE)
        try:
            result.response_text = read_and_consume(workspace.path, filename)
        except Exception as error:  # noqa: BLE001 - degrade into a warning
            LOGGER.exception("Reading the response file failed in %s", workspace.path)
            result.warnings.append(f"The response file could not be read: {error}")

        if mode is InvocationMode.QUERY:
            result.change_status = ChangeStatus.SKIPPED
            return

        self._enter(result, InvocationState.CAPTURING_CHANGES)
        try:
            diff = capture_changes(workspace.path, starting_revision)
        except Exception:  # noqa: BLE001 - degrade into a warning
            LOGGER.exception("Change capture failed unexpectedly in %s", workspace.path)
            diff = None
        self._record_changes(diff, result)

    def _agent_warnings(self, run: AgentRun) -> List[str]:
        command = self.settings.agent.command
        if run.launch_failed:
            return [f"The agent CLI could not be started.\n\n{run.diagnostics}"]
        warnings: List[str] = []
        if run.timed_out:
            warnings.append(
                f"Agent CLI '{command}' did not finish within {self.settings.agent.timeout:g} seconds "
                "and was terminated. Its response and changes may be incomplete."
            )
        if run.exit_code != 0:
            message = f"Agent CLI exited with code {run.exit_code}."
            if run.diagnostics:
                message += f"\n\nStderr:\n{run.diagnostics}"
            warnings.append(message)
        return warnings

    def _record_changes(self, diff: str | None, result: InvocationResult) -> None:
        if diff is None:
            result.change_status = ChangeStatus.FAILED
            result.warnings.append("File changes could not be captured from the isolated workspace.")
            return
        if not diff.strip():
            result.change_status = ChangeStatus.EMPTY
            return
        size = len(diff.encode("utf-8"))
        result.change_size = size
        limit = self.settings.limits.max_diff_bytes
        result.change_limit = limit
        if size > limit:
            result.change_status = ChangeStatus.OVERSIZED
            result.warnings.append(f"The diff ({size} bytes) exceeds the {limit} byte limit and was omitted.")
            return
        result.change_set = diff
        result.change_status = ChangeStatus.CAPTURED
