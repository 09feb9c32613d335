"""Read-once access to the response file an agent leaves in its workspace."""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import DEFAULT_RESPONSE_FILENAME

LOGGER = logging.getLogger(__name__)

__all__ = ["read_and_consume", "response_path"]


def response_path(workspace_path: Path | str, filename: str = DEFAULT_RESPONSE_FILENAME) -> Path:
    return Path(workspace_path) / filename


def read_and_consume(workspace_path: Path | str, filename: str = DEFAULT_RESPONSE_FILENAME) -> str | None:
    """Return the response file's text and delete it, or ``None`` if absent.

    Deleting the file keeps it out of the captured diff. Agents do not always
    follow the instruction to write it, so absence is a normal outcome.
    """
    path = response_path(workspace_path, filename)
    if not path.is_file():
        return None
    try:
        content = path.read_bytes().decode("utf-8", errors="replace")
    except OSError as error:
        LOGGER.warning("Failed to read response file %s: %s", path, error)
        return None
    try:
        path.unlink()
    except OSError as error:
        LOGGER.warning("Failed to delete response file %s: %s", path, error)
    return content
