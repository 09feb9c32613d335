"""CLI commands for serving and running phone-a-friend invocations."""

from __future__ import annotations

import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer

from .config import DEFAULT_CONFIG_NAME, ConfigError, Settings, load_settings, write_settings
from .orchestrator import InvocationMode, InvocationRequest, Orchestrator
from .tools.vcs import GitError, NotARepositoryError, repository_root
from .tools.workspace import prune_stale_workspaces

APP_HELP = "Delegate a task to a different model in an isolated git worktree."
CONFIG_ENVVAR = "PAF_CONFIG"

app = typer.Typer(help=APP_HELP)


def configure_logging(level: str) -> None:
    """Send log records to stderr; stdout carries the MCP transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _load(config: Optional[str], log_level: Optional[str]) -> Settings:
    try:
        settings = load_settings(Path(config) if config else None)
    except ConfigError as error:
        raise typer.BadParameter(str(error), param_hint="--config") from error
    configure_logging(log_level or settings.logging.level)
    return settings


_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    envvar=CONFIG_ENVVAR,
    help="Path to a YAML configuration file.",
)
_LOG_LEVEL_OPTION = typer.Option(
    None,
    "--log-level",
    help="Override the configured logging level (DEBUG, INFO, WARNING, ERROR).",
)


@app.command()
def serve(
    config: Optional[str] = _CONFIG_OPTION,
    log_level: Optional[str] = _LOG_LEVEL_OPTION,
) -> None:
    """Run the MCP server on stdio."""
    settings = _load(config, log_level)
    from .server import build_server

    build_server(settings).run()


@app.command()
def invoke(
    prompt: str = typer.Argument(..., help="Task or question for the other model."),
    model: str = typer.Option(..., "--model", "-m", help="Model identifier passed to the agent CLI."),
    working_directory: str = typer.Option(
        ".",
        "--working-directory",
        "-C",
        help="Directory inside the git repository to work on.",
    ),
    mode: InvocationMode = typer.Option(
        InvocationMode.DEFAULT,
        "--mode",
        case_sensitive=False,
        help="'default' returns a diff of file changes; 'query' is read-only.",
    ),
    config: Optional[str] = _CONFIG_OPTION,
    log_level: Optional[str] = _LOG_LEVEL_OPTION,
) -> None:
    """Run a single invocation and print the result payload."""
    settings = _load(config, log_level)
    result = Orchestrator(settings).invoke(
        InvocationRequest(
            prompt=prompt,
            model=model,
            working_directory=working_directory,
            mode=mode,
        )
    )
    if result.is_error:
        typer.echo(result.render(), err=True)
        raise typer.Exit(code=1)
    typer.echo(result.render())


@app.command()
def cleanup(
    working_directory: str = typer.Option(
        ".",
        "--working-directory",
        "-C",
        help="Directory inside the git repository to clean.",
    ),
    older_than_hours: float = typer.Option(
        24.0,
        "--older-than-hours",
        min=0.0,
        help="Only remove workspaces created more than this many hours ago.",
    ),
    config: Optional[str] = _CONFIG_OPTION,
    log_level: Optional[str] = _LOG_LEVEL_OPTION,
) -> None:
    """Remove leftover isolated workspaces and their branches."""
    settings = _load(config, log_level)
    try:
        root = repository_root(Path(working_directory).expanduser().resolve())
        removed = prune_stale_workspaces(
            root,
            settings.workspace,
            older_than=timedelta(hours=older_than_hours),
        )
    except NotARepositoryError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error
    except GitError as error:
        typer.echo(f"Cleanup failed: {error}", err=True)
        raise typer.Exit(code=1) from error

    if not removed:
        typer.echo("No stale workspaces found.")
        return
    typer.echo(f"Removed {len(removed)} stale workspace(s):")
    for name in removed:
        typer.echo(f"- {name}")


@app.command("init-config")
def init_config(
    path: str = typer.Argument(DEFAULT_CONFIG_NAME, help="Where to write the configuration file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write the default configuration to ``path``."""
    config_path = Path(path)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; pass --force to overwrite.", err=True)
        raise typer.Exit(code=1)
    write_settings(config_path)
    typer.echo(f"Wrote default configuration to {config_path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
