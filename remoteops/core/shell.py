# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Request/response protocol over a persistent interactive shell channel.

An interactive shell delivers one undifferentiated byte stream for every
command ever run on it. To recover the output of a single command we write
three lines:

    echo "__REMOTEOPS_BEGIN""_<id>"     announce
    <env exports> && <command>          the command itself
    echo "__REMOTEOPS_END""_<id>"       completion marker

The marker echoes are split across two quoted words so the literal marker
only shows up in the shell's *output*, never in the echo of the typed input.
The command is complete once the marker appears in the buffer. Output is the
text after the shell's echo of the typed command up to the marker line.

The announce line echoes only the begin marker, not the command text.
Extraction is anchored on that begin marker line, which keeps leftover
output from an earlier timed-out command out of the next result.

Known limitation: extraction relies on the shell echoing the composed
command on one line. Commands with embedded newlines, lines wrapped by the
terminal, or output that contains the marker itself can confuse it.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import shlex
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import asyncssh

from remoteops.core.result import CommandResult
from remoteops.errors import ChannelError, ConfigurationError

logger = logging.getLogger(__name__)

# Constants
DEFAULT_COMMAND_TIMEOUT = 30.0  # seconds
CHUNK_QUEUE_SIZE = 256
READ_SIZE = 65536
TERM_TYPE = "dumb"
TERM_SIZE = (4096, 24)  # wide enough that readline does not wrap long commands

BEGIN_PREFIX = "__REMOTEOPS_BEGIN"
END_PREFIX = "__REMOTEOPS_END"

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def new_marker_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def build_env_prefix(env: Optional[Dict[str, str]]) -> str:
    """``export K=v && export K2=v2`` with values shell-quoted."""
    if not env:
        return ""
    parts = []
    for name, value in env.items():
        if not ENV_NAME.match(name):
            raise ConfigurationError(f"Invalid environment variable name: {name!r}")
        parts.append(f"export {name}={shlex.quote(str(value))}")
    return " && ".join(parts)


def compose_command(command: str, env: Optional[Dict[str, str]] = None) -> str:
    prefix = build_env_prefix(env)
    return f"{prefix} && {command}" if prefix else command


def clean_lines(text: str) -> List[str]:
    """Split stream text into lines without escapes or carriage returns."""
    text = ANSI_ESCAPE.sub("", text).replace("\r\n", "\n")
    lines = []
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if "\r" in line:
            # a bare CR rewinds the cursor; keep what was written last
            line = line.rsplit("\r", 1)[-1]
        lines.append(line)
    return lines


class ShellState(Enum):
    """State of one command on the interactive shell."""

    IDLE = "idle"
    COMMAND_WRITTEN = "command_written"
    ACCUMULATING = "accumulating"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


TERMINAL_STATES = (ShellState.COMPLETED, ShellState.TIMED_OUT, ShellState.CLOSED)


class MarkerScanner:
    """Marker detection and output extraction for one command.

    Knows nothing about transports: feed it text, ask it for the result.
    """

    def __init__(self, full_command: str, marker_id: Optional[str] = None):
        self.full_command = full_command
        self.marker_id = marker_id or new_marker_id()
        self.begin_marker = BEGIN_PREFIX + self.marker_id
        self.marker = END_PREFIX + self.marker_id
        self.begin_echo = f'echo "{BEGIN_PREFIX}""{self.marker_id}"'
        self.marker_echo = f'echo "{END_PREFIX}""{self.marker_id}"'
        self.state = ShellState.IDLE
        self._buffer = ""

    @property
    def buffer(self) -> str:
        return self._buffer

    def script(self) -> str:
        """The three lines written to the shell's stdin."""
        return f"{self.begin_echo}\n{self.full_command}\n{self.marker_echo}\n"

    def mark_written(self) -> None:
        self.state = ShellState.COMMAND_WRITTEN

    def feed(self, chunk: str) -> bool:
        """Append stream text; returns True once the marker has been seen."""
        if self.state in TERMINAL_STATES:
            return self.state == ShellState.COMPLETED
        self.state = ShellState.ACCUMULATING
        # Only the new chunk plus a marker-length tail can hold a new match
        window_start = max(0, len(self._buffer) - len(self.marker))
        self._buffer += chunk
        if self.marker in self._buffer[window_start:]:
            self.state = ShellState.COMPLETED
            return True
        return False

    def _is_end_line(self, line: str) -> bool:
        return self.marker in line or self.marker_echo in line

    def extract_output(self) -> str:
        """Lines after the echoed command, up to the marker line."""
        lines = clean_lines(self._buffer)

        start = 0
        for index, line in enumerate(lines):
            if self.begin_marker in line:
                start = index + 1
                break

        echo_index = None
        for index in range(start, len(lines)):
            if self._is_end_line(lines[index]):
                break
            if self.full_command in lines[index]:
                echo_index = index
                break

        if echo_index is not None:
            start = echo_index + 1

        output = []
        for line in lines[start:]:
            if self._is_end_line(line):
                break
            output.append(line)
        return "\n".join(output).rstrip()

    def completed(self) -> CommandResult:
        return CommandResult(stdout=self.extract_output(), stderr="")

    def timed_out(self, timeout: float) -> CommandResult:
        self.state = ShellState.TIMED_OUT
        return CommandResult(
            stdout=self.extract_output(),
            stderr=f"Command execution timed out after {timeout:g}s",
        )

    def closed(self) -> CommandResult:
        self.state = ShellState.CLOSED
        return CommandResult(
            stdout=self.extract_output(),
            stderr="Shell channel closed before the command completed",
        )


class InteractiveShell:
    """One long-lived interactive shell channel.

    A reader task moves chunks from the channel into a bounded queue; ``run``
    consumes that queue with a ``MarkerScanner``. Only one ``run`` may be in
    flight; the executor's per-session command queue guarantees that.
    """

    def __init__(
        self,
        process: Any,
        label: str = "",
        on_activity: Optional[Callable[[], None]] = None,
        queue_size: int = CHUNK_QUEUE_SIZE,
    ):
        self._process = process
        self.label = label
        self.on_activity = on_activity
        self._chunks: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self._closed_event = asyncio.Event()
        self._error: Optional[BaseException] = None
        self._reader_task: Optional[asyncio.Task] = None

    @classmethod
    async def open(cls, conn: Any, label: str = "") -> "InteractiveShell":
        """Open a PTY shell on an asyncssh connection and start reading it."""
        try:
            process = await conn.create_process(
                term_type=TERM_TYPE,
                term_size=TERM_SIZE,
                encoding="utf-8",
                errors="replace",
            )
        except (asyncssh.Error, OSError) as e:
            raise ChannelError(f"Failed to open interactive shell for {label}: {e}") from e

        shell = cls(process, label)
        shell.start()
        logger.info(f"Interactive shell opened for {label}")
        return shell

    @property
    def is_open(self) -> bool:
        return not self._closed

    def start(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.ensure_future(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self._process.stdout.read(READ_SIZE)
                if not chunk:
                    break
                if self.on_activity is not None:
                    self.on_activity()
                await self._chunks.put(chunk)
        except asyncio.CancelledError:
            logger.debug(f"Shell reader cancelled for {self.label}")
        except (asyncssh.Error, OSError) as e:
            logger.warning(f"Shell stream error for {self.label}: {e}")
            self._error = e
        finally:
            if not self._closed:
                logger.info(f"Interactive shell closed for {self.label}")
            self._closed = True
            self._closed_event.set()

    def _discard_pending(self) -> int:
        """Drop leftovers (banner, late output of a timed-out command)."""
        dropped = 0
        while not self._chunks.empty():
            self._chunks.get_nowait()
            dropped += 1
        return dropped

    async def _next_chunk(self, timeout: float) -> Optional[str]:
        """Next chunk; '' once the channel has closed; None on timeout."""
        if not self._chunks.empty():
            return self._chunks.get_nowait()
        if self._closed:
            return ""

        getter = asyncio.ensure_future(self._chunks.get())
        closer = asyncio.ensure_future(self._closed_event.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, closer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (getter, closer):
                if not task.done():
                    task.cancel()

        if getter in done:
            return getter.result()
        if closer in done:
            return self._chunks.get_nowait() if not self._chunks.empty() else ""
        return None

    async def run(self, full_command: str, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> CommandResult:
        """Run one composed command and return just its output.

        Never raises on a stalled command: after ``timeout`` seconds the
        buffered output is returned with a note in ``stderr``. The remote
        command itself keeps running.
        """
        if self._closed:
            raise ChannelError(f"Interactive shell for {self.label} is closed")

        dropped = self._discard_pending()
        if dropped:
            logger.debug(f"Discarded {dropped} stale chunks on {self.label}")

        scanner = MarkerScanner(full_command)
        try:
            self._process.stdin.write(scanner.script())
        except (asyncssh.Error, OSError) as e:
            raise ChannelError(f"Failed to write to shell for {self.label}: {e}") from e
        scanner.mark_written()
        if self.on_activity is not None:
            self.on_activity()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            chunk = await self._next_chunk(remaining)
            if chunk is None:
                break
            if chunk == "":
                if self._error is not None:
                    raise ChannelError(
                        f"Shell stream error on {self.label}: {self._error}"
                    ) from self._error
                logger.warning(f"Shell for {self.label} closed mid-command")
                return scanner.closed()
            if scanner.feed(chunk):
                return scanner.completed()

        logger.warning(f"Command on {self.label} timed out after {timeout:g}s")
        return scanner.timed_out(timeout)

    async def close(self) -> None:
        """Close the channel and stop the reader."""
        self._closed = True
        self._closed_event.set()
        try:
            self._process.close()
            await self._process.wait_closed()
        except (asyncssh.Error, OSError) as e:
            logger.debug(f"Error closing shell for {self.label}: {e}")
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
