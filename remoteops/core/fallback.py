# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""One-shot execution used when no interactive shell is available.

Remote: a single exec channel running ``<login shell> --login -c '<cmd>'``
with separate stdout/stderr.

Local: a sub-process per call. After the user command finishes, the wrapper
prints a marker and a JSON snapshot of the working directory and exported
environment (taken by this Python interpreter), so ``cd`` and ``export``
carry over to the next call on the same session. The user command's exit
status is preserved.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import shlex
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import asyncssh

from remoteops.core.result import CommandResult
from remoteops.errors import ChannelError

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_SHELL = "/bin/bash"
SNAPSHOT_PREFIX = "__REMOTEOPS_STATE_"

# Variables the wrapper shell changes on its own
IGNORED_SNAPSHOT_VARS = frozenset({"_", "SHLVL", "PWD", "OLDPWD"})

# argv[1] is "=<value>" when the shell has LC_CTYPE, "" otherwise
_SNAPSHOT_CODE = """\
import json, os, sys
env = dict(os.environ)
# interpreter start-up may coerce LC_CTYPE; report the shell's value
if sys.argv[1]:
    env["LC_CTYPE"] = sys.argv[1][1:]
else:
    env.pop("LC_CTYPE", None)
print(json.dumps({"cwd": os.getcwd(), "env": env}))
"""


@dataclass
class LocalOutcome:
    """Result of a local run plus the state the command left behind."""

    result: CommandResult
    cwd: Optional[str] = None
    exported: Dict[str, str] = field(default_factory=dict)


async def run_remote_once(
    conn: Any,
    full_command: str,
    login_shell: str = DEFAULT_LOGIN_SHELL,
) -> CommandResult:
    """Run a composed command on a fresh exec channel and wait for it to close.

    There is no deadline here: the result holds everything the channel
    produced once the remote side closes it.
    """
    wrapped = f"{login_shell} --login -c {shlex.quote(full_command)}"
    try:
        completed = await conn.run(
            wrapped,
            check=False,
            encoding="utf-8",
            errors="replace",
        )
    except (asyncssh.Error, OSError) as e:
        raise ChannelError(f"Failed to run command over exec channel: {e}") from e

    return CommandResult(
        stdout=(completed.stdout or "").rstrip(),
        stderr=completed.stderr or "",
        exit_status=completed.exit_status,
    )


def build_local_env(
    session_env: Optional[Dict[str, str]] = None,
    call_env: Optional[Dict[str, str]] = None,
    base: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Ambient environment < session overrides < call overrides."""
    env = dict(os.environ if base is None else base)
    if session_env:
        env.update(session_env)
    if call_env:
        env.update(call_env)
    return env


def _wrap_with_snapshot(command: str, marker: str) -> str:
    python = shlex.quote(sys.executable)
    return (
        f"{command}\n"
        "__remoteops_status=$?\n"
        f"printf '\\n%s\\n' {shlex.quote(marker)}\n"
        f"{python} -I -c {shlex.quote(_SNAPSHOT_CODE)} \"${{LC_CTYPE+=$LC_CTYPE}}\"\n"
        "exit $__remoteops_status\n"
    )


def _split_snapshot(stdout: str, marker: str) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Separate command output from the trailing state snapshot."""
    token = f"\n{marker}\n"
    index = stdout.rfind(token)
    if index < 0:
        return stdout, None
    output = stdout[:index]
    try:
        snapshot = json.loads(stdout[index + len(token):].strip())
    except ValueError as e:
        logger.debug(f"Unreadable state snapshot: {e}")
        return output, None
    return output, snapshot if isinstance(snapshot, dict) else None


def _exported_changes(before: Dict[str, str], after: Dict[str, Any]) -> Dict[str, str]:
    return {
        name: str(value)
        for name, value in after.items()
        if name not in IGNORED_SNAPSHOT_VARS and before.get(name) != value
    }


async def run_local(
    command: str,
    env: Dict[str, str],
    cwd: Optional[str] = None,
) -> LocalOutcome:
    """Run ``command`` in a local sub-process.

    A non-zero exit is not an error: the result still resolves, with the
    process's stderr (or a synthesized message) in ``stderr``.
    """
    if cwd and not os.path.isdir(cwd):
        logger.warning(f"Session directory {cwd} no longer exists, using current directory")
        cwd = None

    marker = SNAPSHOT_PREFIX + secrets.token_hex(8)
    process = await asyncio.create_subprocess_shell(
        _wrap_with_snapshot(command, marker),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
        cwd=cwd,
    )
    raw_stdout, raw_stderr = await process.communicate()

    stdout, snapshot = _split_snapshot(raw_stdout.decode("utf-8", errors="replace"), marker)
    stderr = raw_stderr.decode("utf-8", errors="replace")
    status = process.returncode

    if status:
        logger.debug(f"Local command exited with status {status}")
        if not stderr:
            stderr = f"Command failed with exit code {status}"

    outcome = LocalOutcome(result=CommandResult(stdout=stdout.rstrip(), stderr=stderr, exit_status=status))
    if snapshot:
        new_env = snapshot.get("env")
        if isinstance(new_env, dict):
            outcome.exported = _exported_changes(env, new_env)
        new_cwd = snapshot.get("cwd")
        if isinstance(new_cwd, str):
            outcome.cwd = new_cwd
    return outcome
