# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pytest fixtures for remoteops tests.

Remote tests never open a socket: ``asyncssh.connect`` is replaced by
``FakeConnector``, which hands out ``FakeConnection`` objects whose
interactive shell is a ``FakeShellProcess`` behaving like bash on a dumb
PTY (typed input is echoed, ``echo "A""B"`` prints ``AB``).
"""

import asyncio
import re
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from remoteops.models.config import RemoteOpsConfigModel

SPLIT_ECHO = re.compile(r'^echo "([^"]*)""([^"]*)"$')
PROMPT = "$ "


class Hang:
    """Response that prints ``output`` and then never finishes."""

    def __init__(self, output: str = ""):
        self.output = output


class Drop:
    """Response that prints ``output`` and then loses the channel."""

    def __init__(self, output: str = ""):
        self.output = output


def _crlf(text: str) -> str:
    if text and not text.endswith("\n"):
        text += "\n"
    return text.replace("\n", "\r\n")


class FakeStream:
    def __init__(self):
        self._chunks = asyncio.Queue()

    def feed(self, text: str) -> None:
        # "" is reserved for EOF
        if text:
            self._chunks.put_nowait(text)

    def feed_eof(self) -> None:
        self._chunks.put_nowait("")

    async def read(self, n: int = -1) -> str:
        return await self._chunks.get()


class FakeStdin:
    def __init__(self, process):
        self._process = process

    def write(self, data: str) -> None:
        self._process.handle_input(data)


class FakeShellProcess:
    """Interactive shell double.

    ``respond(line)`` returns the output for a typed command line, or a
    ``Hang``/``Drop`` instance.
    """

    def __init__(self, respond=None, banner: str = "Welcome to fakehost\r\n" + PROMPT):
        self.respond = respond or (lambda line: "")
        self.stdout = FakeStream()
        self.stdin = FakeStdin(self)
        self.lines = []
        self.hung = False
        self.closed = False
        if banner:
            self.stdout.feed(banner)

    def handle_input(self, data: str) -> None:
        for line in data.splitlines():
            self.lines.append(line)
            # the terminal echoes typed input even while a command runs
            self.stdout.feed(line + "\r\n")
            if self.hung or self.closed:
                continue
            match = SPLIT_ECHO.match(line)
            if match:
                self.stdout.feed(match.group(1) + match.group(2) + "\r\n" + PROMPT)
                continue
            output = self.respond(line)
            if isinstance(output, Hang):
                self.stdout.feed(_crlf(output.output))
                self.hung = True
            elif isinstance(output, Drop):
                self.stdout.feed(_crlf(output.output))
                self.drop()
            else:
                self.stdout.feed(_crlf(output or "") + PROMPT)

    def drop(self) -> None:
        self.closed = True
        self.stdout.feed_eof()

    def close(self) -> None:
        if not self.closed:
            self.drop()

    async def wait_closed(self) -> None:
        return None


class FakeConnection:
    """Stands in for ``asyncssh.SSHClientConnection``."""

    def __init__(self, respond=None, shell_error=None, run_result=None):
        self.respond = respond
        self.shell_error = shell_error
        self.run_result = run_result
        self.processes = []
        self.process_kwargs = []
        self.run_calls = []
        self.closed = False

    async def create_process(self, **kwargs):
        self.process_kwargs.append(kwargs)
        if self.shell_error is not None:
            raise self.shell_error
        process = FakeShellProcess(self.respond)
        self.processes.append(process)
        return process

    async def run(self, command, **kwargs):
        self.run_calls.append((command, kwargs))
        if isinstance(self.run_result, BaseException):
            raise self.run_result
        if self.run_result is not None:
            return self.run_result
        return SimpleNamespace(stdout="", stderr="", exit_status=0)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class FakeConnector:
    """Replacement for ``asyncssh.connect`` recording every call."""

    def __init__(self):
        self.calls = []
        self.connections = []
        self.watchers = []
        self.error = None
        self.respond = None
        self.shell_error = None

    async def __call__(self, host, **kwargs):
        self.calls.append((host, kwargs))
        if self.error is not None:
            raise self.error
        watcher = kwargs["client_factory"]()
        conn = FakeConnection(self.respond, shell_error=self.shell_error)
        self.watchers.append(watcher)
        self.connections.append(conn)
        return conn


@pytest.fixture
def fake_ssh():
    """Patch asyncssh so remote sessions talk to fakes."""
    connector = FakeConnector()
    with patch("remoteops.core.connection.asyncssh.connect", new=connector), patch(
        "remoteops.core.connection.asyncssh.read_private_key", return_value="private-key"
    ):
        yield connector


@pytest.fixture
def config():
    """Config with short timeouts so tests stay fast."""
    return RemoteOpsConfigModel.model_validate(
        {"sessions": {"idle_timeout": 60, "command_timeout": 2}}
    )
