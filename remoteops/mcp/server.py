# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Remote ops MCP server (FastMCP implementation).

Exposes a single ``execute_command`` tool that runs commands locally or on a
remote host over SSH, reusing sessions for 20 minutes of inactivity.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from remoteops import __version__
from remoteops.core.result import CommandResult
from remoteops.errors import (
    ChannelError,
    ConfigurationError,
    CredentialNotFound,
    RemoteConnectionError,
    RemoteOpsError,
)
from remoteops.executor import CommandExecutor

logger = logging.getLogger(__name__)

SERVER_NAME = "remote-ops-server"

INSTRUCTIONS = """Execute shell commands on remote hosts over SSH or on the current machine.

Before running commands, determine the system type (Mac, Linux, etc.).
Commands sharing a session name reuse the same shell environment for 20
minutes, which helps with environments like conda or virtualenvs."""


def format_result(result: CommandResult) -> str:
    return f"Command Output:\nstdout: {result.stdout}\nstderr: {result.stderr}"


async def run_execute_command(
    executor: CommandExecutor,
    command: str,
    host: Optional[str] = None,
    username: Optional[str] = None,
    session: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> str:
    """Validate tool arguments, run the command and format the result."""
    if not command or not str(command).strip():
        raise ToolError("Invalid params: command is required")
    if host and not username:
        raise ToolError("Invalid params: username is required when host is specified")

    try:
        result = await executor.execute_command(
            str(command),
            host=host or None,
            username=username or None,
            session=session or "default",
            env=env or {},
        )
    except ConfigurationError as e:
        raise ToolError(f"Invalid params: {e}") from e
    except (CredentialNotFound, RemoteConnectionError, ChannelError) as e:
        logger.error(f"SSH error running command on {host}: {e}")
        raise ToolError(
            f"SSH connection error: {e}. Please ensure SSH key-based authentication is set up."
        ) from e
    except RemoteOpsError as e:
        raise ToolError(str(e)) from e

    return format_result(result)


def create_server(executor: Optional[CommandExecutor] = None) -> FastMCP:
    """Build the FastMCP server around an executor.

    The executor's sessions are torn down when the server shuts down.
    """
    executor = executor or CommandExecutor()

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        logger.info(f"{SERVER_NAME} {__version__} starting")
        try:
            yield
        finally:
            logger.info("Shutting down, closing all sessions")
            await executor.disconnect()

    mcp = FastMCP(name=SERVER_NAME, instructions=INSTRUCTIONS, lifespan=lifespan)

    @mcp.tool()
    async def execute_command(
        command: str,
        host: Optional[str] = None,
        username: Optional[str] = None,
        session: str = "default",
        env: Optional[Dict[str, str]] = None,
    ) -> str:
        """Execute commands on remote hosts or locally.

        This tool can be used for both remote hosts and the current machine.

        Args:
            command: Command to execute. Before running commands, it's best to
                     determine the system type (Mac, Linux, etc.)
            host: Host to connect to (optional, if not provided the command
                  will be executed locally)
            username: Username for SSH connection (required when host is specified)
            session: Session name, defaults to 'default'. The same session name
                     will reuse the same terminal environment for 20 minutes,
                     which is useful for operations requiring specific
                     environments like conda.
            env: Environment variables

        Returns:
            Text with the command's stdout and stderr.
        """
        return await run_execute_command(executor, command, host, username, session, env)

    return mcp
