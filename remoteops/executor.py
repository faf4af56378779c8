# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Command execution against local or remote sessions.

Every request resolves a session key, takes that key's command slot (one
command in flight per session, others queue in arrival order), finds or
creates the session and then runs the command through the interactive shell
when one is ready, or through the one-shot fallback otherwise. The idle
timer is reset around every round trip, whether it succeeded or failed.

Usage:
    executor = CommandExecutor()
    result = await executor.execute_command("pwd", host="example.com", username="deploy")
    await executor.disconnect()
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from remoteops.config import load_config
from remoteops.core.connection import ConnectionManager
from remoteops.core.fallback import build_local_env, run_local, run_remote_once
from remoteops.core.idle import IdleTimer
from remoteops.core.registry import DEFAULT_SESSION, Session, SessionKey, SessionRegistry, make_key
from remoteops.core.result import CommandResult
from remoteops.core.shell import ENV_NAME, compose_command
from remoteops.errors import ConfigurationError
from remoteops.models.config import RemoteOpsConfigModel

logger = logging.getLogger(__name__)


def validate_env(env: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Stringify values and reject names that are not valid shell identifiers."""
    if not env:
        return {}
    if not isinstance(env, dict):
        raise ConfigurationError("env must be a mapping of variable names to values")
    result = {}
    for name, value in env.items():
        name = str(name)
        if not ENV_NAME.match(name):
            raise ConfigurationError(f"Invalid environment variable name: {name!r}")
        result[name] = "" if value is None else str(value)
    return result


class CommandExecutor:
    """Public entry point: execute commands, pre-warm and tear down sessions."""

    def __init__(
        self,
        config: Optional[RemoteOpsConfigModel] = None,
        registry: Optional[SessionRegistry] = None,
        connections: Optional[ConnectionManager] = None,
    ):
        self.config = config or load_config()
        self.registry = registry or SessionRegistry(self.config.sessions.max_queued_commands)
        self.connections = connections or ConnectionManager(
            self.registry, self.config, self._new_idle_timer
        )

    def _new_idle_timer(self, session: Session) -> IdleTimer:
        async def expire() -> None:
            await self._expire(session)

        return IdleTimer(self.config.sessions.idle_timeout, expire, name=str(session.key))

    async def _expire(self, session: Session) -> None:
        if self.registry.lookup(session.key) is not session:
            return
        if self.registry.is_busy(session.key):
            # a command in flight or waiting is activity; re-arm
            logger.debug(f"Session {session.key} busy at idle deadline, re-arming")
            session.idle_timer = self._new_idle_timer(session)
            session.touch()
            return
        self.registry.remove(session.key, session)
        logger.info(f"Session {session.key} timed out, disconnecting")
        await session.close()

    @staticmethod
    def _require_username(host: Optional[str], username: Optional[str]) -> None:
        if host and not username:
            raise ConfigurationError("username is required when host is specified")

    async def connect(
        self,
        host: str,
        username: str,
        session: str = DEFAULT_SESSION,
    ) -> Session:
        """Pre-warm a remote session (connection plus interactive shell)."""
        if not host:
            raise ConfigurationError("host is required to connect")
        self._require_username(host, username)
        key = make_key(host, session)
        async with self.registry.queue_for(key).slot():
            return await self.connections.connect(host, username, key.name)

    async def execute_command(
        self,
        command: str,
        host: Optional[str] = None,
        username: Optional[str] = None,
        session: str = DEFAULT_SESSION,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run ``command`` locally (no host) or on ``host`` as ``username``.

        Args:
            command: Shell command, passed through verbatim
            host: Remote host (optionally ``host:port``); None runs locally
            username: SSH user, required when host is given
            session: Session name; same name reuses state within the idle window
            env: Extra environment variables, merged into the session's overrides

        Returns:
            CommandResult with stdout and stderr. Timeouts and non-zero exits
            are reported in stderr, not raised.
        """
        if not command or not command.strip():
            raise ConfigurationError("command is required")
        self._require_username(host, username)
        overrides = validate_env(env)

        key = make_key(host, session)
        async with self.registry.queue_for(key).slot():
            if key.is_local:
                return await self._execute_local(key, command, overrides)
            return await self._execute_remote(key, username, command, overrides)

    async def _execute_remote(
        self,
        key: SessionKey,
        username: str,
        command: str,
        overrides: Dict[str, str],
    ) -> CommandResult:
        session = await self.connections.connect(key.host, username, key.name)
        session.merge_env(overrides)
        full_command = compose_command(command, session.env)

        session.touch()
        try:
            if session.shell_ready:
                logger.debug(f"Running on interactive shell {key}: {command}")
                return await session.shell.run(
                    full_command, self.config.sessions.command_timeout
                )
            logger.debug(f"Running on exec channel {key}: {command}")
            return await run_remote_once(
                session.connection.conn,
                full_command,
                login_shell=self.config.ssh.login_shell,
            )
        finally:
            session.touch()

    async def _execute_local(
        self,
        key: SessionKey,
        command: str,
        overrides: Dict[str, str],
    ) -> CommandResult:
        session = await self.connections.ensure_local(key)
        session.merge_env(overrides)
        env = build_local_env(session.env)

        logger.debug(f"Running locally in {key}: {command}")
        session.touch()
        try:
            outcome = await run_local(command, env, cwd=session.cwd)
        finally:
            session.touch()

        if outcome.exported:
            session.merge_env(outcome.exported)
        if outcome.cwd:
            session.cwd = outcome.cwd
        return outcome.result

    async def disconnect(self) -> None:
        """Tear down every session immediately."""
        count = len(self.registry)
        await self.registry.close_all()
        if count:
            logger.info(f"Disconnected {count} session(s)")
