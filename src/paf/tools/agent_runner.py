"""Launch the external agent CLI non-interactively inside a workspace."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Dict, List, cast

from ..config import AgentSettings

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AGENT_SAFETY_ARGS",
    "AgentRun",
    "agent_environment",
    "build_agent_command",
    "run_agent",
]

# Never allow the agent to push, and keep its output free of terminal control.
AGENT_SAFETY_ARGS: tuple[str, ...] = (
    "--allow-all",
    "--deny-tool",
    "shell(git push*)",
    "--no-alt-screen",
    "--no-color",
)

INSTALL_URL = "https://docs.github.com/en/copilot/github-copilot-in-the-cli"

_CHUNK_SIZE = 64 * 1024
_DRAIN_JOIN_SECONDS = 5.0


@dataclass(slots=True)
class AgentRun:
    """Exit status and diagnostics of one agent process."""

    exit_code: int
    diagnostics: str = ""
    launch_failed: bool = False
    timed_out: bool = False
    duration: float = 0.0


def build_agent_command(prompt: str, model: str, settings: AgentSettings | None = None) -> List[str]:
    """Return the argv used to start the agent; ``model`` is passed through as-is."""
    agent = settings or AgentSettings()
    return [agent.command, "-p", prompt, "--model", model, *AGENT_SAFETY_ARGS, *agent.extra_args]


def agent_environment(settings: AgentSettings | None = None) -> Dict[str, str]:
    """Merge configured overrides into the current environment.

    ``NO_COLOR`` and ``TERM`` are applied last so configuration cannot turn
    interactive rendering back on.
    """
    agent = settings or AgentSettings()
    env: Dict[str, str] = os.environ.copy()
    env.update({str(key): str(value) for key, value in agent.env.items()})
    env["NO_COLOR"] = "1"
    env["TERM"] = "dumb"
    return env


def _drain(stream: IO[bytes], sink: Callable[[bytes], None] | None) -> None:
    try:
        while True:
            chunk = stream.read(_CHUNK_SIZE)
            if not chunk:
                break
            if sink is not None:
                sink(chunk)
    except (OSError, ValueError):
        # Stream closed underneath us after the process was killed.
        pass
    finally:
        stream.close()


def _signal_group(process: subprocess.Popen[bytes], sig: int) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, sig)
        elif sig == getattr(signal, "SIGKILL", None):
            process.kill()
        else:
            process.terminate()
    except (ProcessLookupError, PermissionError):
        pass


def _stop(process: subprocess.Popen[bytes], grace: float) -> int:
    """Terminate the agent's process group, escalating to kill after ``grace``."""
    _signal_group(process, signal.SIGTERM)
    try:
        return process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        _signal_group(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        return process.wait()


def _missing_binary_message(command: str) -> str:
    return (
        f"Agent CLI '{command}' not found. Install GitHub Copilot CLI ({INSTALL_URL}) "
        f"and ensure '{command}' is on your PATH, or set agent.command in the configuration."
    )


def run_agent(
    workspace_path: Path | str,
    prompt: str,
    model: str,
    settings: AgentSettings | None = None,
) -> AgentRun:
    """Run the agent in ``workspace_path`` and wait for it to exit.

    stdout mixes progress narration with the answer and is drained only so the
    process never stalls on a full pipe; the answer comes back through the
    response file instead. stderr is collected for failure reports. There is
    no timeout unless ``settings.timeout`` is set.
    """
    agent = settings or AgentSettings()
    workspace = Path(workspace_path)
    if not workspace.is_dir():
        return AgentRun(
            exit_code=1,
            diagnostics=f"Workspace {workspace} does not exist; the agent was not started.",
            launch_failed=True,
        )

    command = build_agent_command(prompt, model, agent)
    started = time.monotonic()
    try:
        process = subprocess.Popen(
            command,
            cwd=workspace,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=agent_environment(agent),
            start_new_session=True,
        )
    except FileNotFoundError:
        LOGGER.error("Agent CLI %r not found on PATH", agent.command)
        return AgentRun(exit_code=1, diagnostics=_missing_binary_message(agent.command), launch_failed=True)
    except OSError as error:
        LOGGER.error("Failed to launch agent CLI %r: %s", agent.command, error)
        return AgentRun(
            exit_code=1,
            diagnostics=f"Failed to launch agent CLI '{agent.command}': {error}",
            launch_failed=True,
        )

    stderr_chunks: List[bytes] = []
    stdout = cast(IO[bytes], process.stdout)
    stderr = cast(IO[bytes], process.stderr)
    drains = [
        threading.Thread(target=_drain, args=(stdout, None), daemon=True),
        threading.Thread(target=_drain, args=(stderr, stderr_chunks.append), daemon=True),
    ]
    for thread in drains:
        thread.start()

    timed_out = False
    try:
        exit_code = process.wait(timeout=agent.timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        LOGGER.warning("Agent CLI exceeded %.0fs timeout; terminating", agent.timeout)
        exit_code = _stop(process, agent.terminate_grace)

    # Background children can keep the pipes open after the agent exits.
    for thread in drains:
        thread.join(timeout=_DRAIN_JOIN_SECONDS)

    diagnostics = b"".join(stderr_chunks).decode("utf-8", errors="replace")
    duration = time.monotonic() - started
    LOGGER.info("Agent CLI exited with code %s after %.1fs", exit_code, duration)
    return AgentRun(exit_code=exit_code, diagnostics=diagnostics, timed_out=timed_out, duration=duration)
