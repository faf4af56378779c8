# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for the execute_command MCP tool."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from remoteops.core.result import CommandResult
from remoteops.errors import (
    ChannelError,
    ConfigurationError,
    CredentialNotFound,
    RemoteConnectionError,
    SessionBusy,
)
from remoteops.executor import CommandExecutor
from remoteops.mcp.server import SERVER_NAME, create_server, format_result, run_execute_command


@pytest.fixture
def mock_executor():
    executor = Mock(spec=CommandExecutor)
    executor.execute_command = AsyncMock(return_value=CommandResult(stdout="ok", stderr=""))
    executor.disconnect = AsyncMock()
    return executor


def _call(executor, command="ls", **kwargs):
    return asyncio.run(run_execute_command(executor, command, **kwargs))


def test_format_result():
    text = format_result(CommandResult(stdout="line1\nline2", stderr="warn"))
    assert text == "Command Output:\nstdout: line1\nline2\nstderr: warn"


def test_local_call_defaults(mock_executor):
    assert _call(mock_executor) == "Command Output:\nstdout: ok\nstderr: "
    mock_executor.execute_command.assert_awaited_once_with(
        "ls", host=None, username=None, session="default", env={}
    )


def test_remote_call_passes_arguments(mock_executor):
    _call(mock_executor, "pwd", host="db1", username="deploy", session="conda", env={"A": "1"})

    mock_executor.execute_command.assert_awaited_once_with(
        "pwd", host="db1", username="deploy", session="conda", env={"A": "1"}
    )


def test_missing_command_is_invalid_params(mock_executor):
    with pytest.raises(ToolError, match="Invalid params"):
        _call(mock_executor, "")

    mock_executor.execute_command.assert_not_called()


def test_host_without_username_is_invalid_params(mock_executor):
    with pytest.raises(ToolError, match="username is required"):
        _call(mock_executor, host="db1")

    mock_executor.execute_command.assert_not_called()


def test_configuration_error_is_invalid_params(mock_executor):
    mock_executor.execute_command.side_effect = ConfigurationError("Invalid environment variable name")

    with pytest.raises(ToolError, match="Invalid params: Invalid environment variable name"):
        _call(mock_executor)


@pytest.mark.parametrize(
    "error",
    [
        CredentialNotFound("/home/u/.ssh/id_rsa", "No such file"),
        RemoteConnectionError("Connection refused"),
        ChannelError("Failed to open interactive shell"),
    ],
)
def test_ssh_failures_mention_key_setup(mock_executor, error):
    """Connection-type failures tell the user to set up key authentication."""
    mock_executor.execute_command.side_effect = error

    with pytest.raises(ToolError) as exc_info:
        _call(mock_executor, host="db1", username="deploy")

    message = str(exc_info.value)
    assert message.startswith("SSH connection error: ")
    assert "Please ensure SSH key-based authentication is set up." in message


def test_session_busy_passes_through(mock_executor):
    mock_executor.execute_command.side_effect = SessionBusy("Session db1-default already has 16 commands queued")

    with pytest.raises(ToolError, match="already has 16 commands queued"):
        _call(mock_executor, host="db1", username="deploy")


def test_create_server(mock_executor):
    server = create_server(mock_executor)

    assert isinstance(server, FastMCP)
    assert server.name == SERVER_NAME == "remote-ops-server"
