"""Prompt templates and helpers shared by the orchestrator and tool server."""

from __future__ import annotations

from typing import Literal

from .config import DEFAULT_RESPONSE_FILENAME, PROMPT_SIZE_WARNING_THRESHOLD

PromptMode = Literal["default", "query"]

ISSUES_URL = "https://github.com/bexelbie/phone-a-friend/issues"

# Identifiers known to work with the Copilot CLI at the time of writing. Only
# advertised in the tool description; the agent CLI validates the value.
SUGGESTED_MODELS: tuple[str, ...] = (
    "claude-sonnet-4.5",
    "claude-haiku-4.5",
    "claude-opus-4.6",
    "claude-opus-4.6-fast",
    "claude-opus-4.5",
    "claude-sonnet-4",
    "gemini-3-pro-preview",
    "gpt-5.3-codex",
    "gpt-5.2-codex",
    "gpt-5.2",
    "gpt-5.1-codex-max",
    "gpt-5.1-codex",
    "gpt-5.1",
    "gpt-5",
    "gpt-5.1-codex-mini",
    "gpt-5-mini",
    "gpt-4.1",
)

_DEFAULT_TEMPLATE = """\
## CRITICAL INSTRUCTIONS: READ BEFORE DOING ANYTHING

You are operating as a subagent inside an isolated git worktree. Follow these rules:

1. **NEVER push to any remote.** Do not run `git push` under any circumstances.
2. **When you are finished**, write your complete final response to the file `{filename}` in the repository root. This file is your ONLY communication channel back to the calling agent. Include:
   - A summary of what you did
   - Any important findings or decisions
   - Any warnings or caveats
3. You MUST create the `{filename}` file even if you made no code changes. It is how you report back.

## YOUR TASK

"""

_QUERY_TEMPLATE = """\
## CRITICAL INSTRUCTIONS: READ BEFORE DOING ANYTHING

You are operating as a subagent inside an isolated git worktree for reference only. Any file changes you make will be discarded. Focus on analysis and your written response.

1. **Do NOT modify files.** Any changes will be thrown away. The repository is available for you to read, not to edit.
2. **When you are finished**, write your complete final response to the file `{filename}` in the repository root. This file is your ONLY communication channel back to the calling agent. Include:
   - Your analysis or answer
   - Any important findings or decisions
   - Any warnings or caveats
3. You MUST create the `{filename}` file. It is how you report back.

## YOUR TASK

"""


def wrap_prompt(
    user_prompt: str,
    mode: PromptMode = "default",
    *,
    filename: str = DEFAULT_RESPONSE_FILENAME,
) -> str:
    """Prepend the response-file and safety instructions to ``user_prompt``.

    The agent follows these as free text, so the literal filename and the
    untouched user prompt are both embedded.
    """
    template = _QUERY_TEMPLATE if mode == "query" else _DEFAULT_TEMPLATE
    # Concatenate rather than format so braces in the user prompt survive.
    return template.format(filename=filename) + user_prompt


def prompt_size_warning(prompt: str, *, threshold: int = PROMPT_SIZE_WARNING_THRESHOLD) -> str | None:
    """Return a notice when ``prompt`` is large enough to suggest pasted files."""
    if len(prompt) < threshold:
        return None
    size_kb = int(len(prompt) / 1024 + 0.5)
    return (
        f"**Large prompt warning:** The prompt sent to the subagent was ~{size_kb}KB. "
        "If this included pasted file contents to work around the uncommitted changes "
        "limitation, be aware this consumes significant context in both directions. "
        "If this is causing problems, consider requesting built-in uncommitted changes "
        f"support: {ISSUES_URL}"
    )


TOOL_DESCRIPTION = (
    "Invoke GitHub Copilot CLI with a different AI model to perform a task. "
    "The other model works in an isolated git worktree. Returns the model's "
    "response message and a unified diff of any file changes it made. "
    "You can then apply the diff using your own edit tools to give the user "
    "inline diff highlighting."
    "\n\nWhen to use this tool:\n"
    "- The user asks for a second opinion or review from a different model\n"
    "- The user wants a specific model for a subtask (e.g., a faster model for simple work, or a different vendor)\n"
    '- The user mentions "phone a friend", "subagent", or "different model"\n'
    "- The user wants to delegate a focused coding task to another model and get the changes back as a diff\n"
    "\n\nWhen NOT to use this tool:\n"
    "- The current model can handle the task directly; don't add round-trip overhead for no benefit\n"
    "- The task requires seeing uncommitted changes and the user hasn't provided the file contents\n"
    "- The task is conversational (no code changes expected and no specialized model needed)\n"
    "\n\nIMPORTANT: The subagent only sees committed files (HEAD). It cannot "
    "see uncommitted changes in the working tree. If the user's request "
    "involves uncommitted work, YOU must include the relevant file contents "
    "in the prompt. The diff returned will be in your context, so keep "
    "subtasks focused to avoid large diffs consuming your context window. "
    "Use mode 'query' for questions and reviews: the subagent is told not to "
    "edit files and no diff is returned."
)

PROMPT_FIELD_DESCRIPTION = (
    "The task or question for the other model. Be specific and include "
    "relevant context since the other model starts with only the "
    "committed repository files. If the user has uncommitted changes "
    "that are relevant, include those file contents in this prompt."
)

MODEL_FIELD_DESCRIPTION = f"The AI model to use. Available models: {', '.join(SUGGESTED_MODELS)}"

WORKING_DIRECTORY_FIELD_DESCRIPTION = (
    "The git repository directory to work in. Must be inside a git "
    "repository. Always pass this explicitly using the workspace "
    "path from your conversation context; the server's own working "
    "directory is not the user's workspace."
)

MODE_FIELD_DESCRIPTION = (
    "'default' lets the other model edit files and returns a diff; "
    "'query' is read-only analysis and returns only the response text."
)


__all__ = [
    "ISSUES_URL",
    "MODEL_FIELD_DESCRIPTION",
    "MODE_FIELD_DESCRIPTION",
    "PROMPT_FIELD_DESCRIPTION",
    "PromptMode",
    "SUGGESTED_MODELS",
    "TOOL_DESCRIPTION",
    "WORKING_DIRECTORY_FIELD_DESCRIPTION",
    "prompt_size_warning",
    "wrap_prompt",
]
