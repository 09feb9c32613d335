"""MCP tool server exposing ``phone_a_friend`` over stdio."""

from __future__ import annotations

import functools
import logging
from typing import Annotated, Literal

import anyio.to_thread
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from .config import Settings
from .orchestrator import InvocationMode, InvocationRequest, Orchestrator
from .prompts import (
    MODEL_FIELD_DESCRIPTION,
    MODE_FIELD_DESCRIPTION,
    PROMPT_FIELD_DESCRIPTION,
    TOOL_DESCRIPTION,
    WORKING_DIRECTORY_FIELD_DESCRIPTION,
)

LOGGER = logging.getLogger(__name__)

SERVER_NAME = "phone-a-friend"
TOOL_NAME = "phone_a_friend"

__all__ = ["SERVER_NAME", "TOOL_NAME", "build_server", "handle_tool_call"]


def handle_tool_call(
    orchestrator: Orchestrator,
    *,
    prompt: str,
    model: str,
    working_directory: str,
    mode: str = InvocationMode.DEFAULT.value,
) -> str:
    """Run one invocation and return its payload; error results raise ``ToolError``."""
    request = InvocationRequest(
        prompt=prompt,
        model=model,
        working_directory=working_directory,
        mode=InvocationMode(mode),
    )
    result = orchestrator.invoke(request)
    if result.is_error:
        raise ToolError(result.render())
    return result.render()


def build_server(settings: Settings | None = None, *, orchestrator: Orchestrator | None = None) -> FastMCP:
    """Create the FastMCP server with the ``phone_a_friend`` tool registered."""
    runner = orchestrator or Orchestrator(settings)
    server = FastMCP(SERVER_NAME)

    @server.tool(name=TOOL_NAME, description=TOOL_DESCRIPTION)
    async def phone_a_friend(
        prompt: Annotated[str, Field(description=PROMPT_FIELD_DESCRIPTION)],
        model: Annotated[str, Field(description=MODEL_FIELD_DESCRIPTION)],
        working_directory: Annotated[str, Field(description=WORKING_DIRECTORY_FIELD_DESCRIPTION)],
        mode: Annotated[Literal["default", "query"], Field(description=MODE_FIELD_DESCRIPTION)] = "default",
    ) -> str:
        LOGGER.info("phone_a_friend call: model=%s mode=%s dir=%s", model, mode, working_directory)
        # Agent runs take minutes; keep the event loop free for other requests.
        call = functools.partial(
            handle_tool_call,
            runner,
            prompt=prompt,
            model=model,
            working_directory=working_directory,
            mode=mode,
        )
        return await anyio.to_thread.run_sync(call)

    return server
