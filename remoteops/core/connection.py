# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""SSH connections for remote sessions using AsyncSSH.

``ConnectionManager.connect`` is idempotent per session key: a live session
is returned unchanged, a stale one (transport no longer connected) is
retired and replaced. A fresh connection always negotiates its interactive
shell before it is handed out.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import asyncssh

from remoteops.config import resolve_key_path
from remoteops.core.idle import IdleTimer
from remoteops.core.registry import Session, SessionKey, SessionRegistry, make_key
from remoteops.core.shell import InteractiveShell
from remoteops.errors import ChannelError, CredentialNotFound, RemoteConnectionError
from remoteops.models.config import RemoteOpsConfigModel

logger = logging.getLogger(__name__)

IdleTimerFactory = Callable[[Session], IdleTimer]


class ConnectionState(Enum):
    """Lifecycle of an SSH transport."""

    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionHandle:
    """Owns one asyncssh connection and tracks its state explicitly."""

    def __init__(self, conn: Any, host: str, port: int, username: str):
        self.conn = conn
        self.host = host
        self.port = port
        self.username = username
        self.state = ConnectionState.CONNECTED

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def mark_closed(self, exc: Optional[Exception] = None) -> None:
        if self.state != ConnectionState.CLOSED:
            if exc:
                logger.warning(f"Connection to {self} lost: {exc}")
            else:
                logger.info(f"Connection to {self} closed")
        self.state = ConnectionState.CLOSED

    async def close(self) -> None:
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING
        try:
            self.conn.close()
            await self.conn.wait_closed()
        except (asyncssh.Error, OSError) as e:
            logger.debug(f"Error closing connection to {self}: {e}")
        self.state = ConnectionState.CLOSED

    def __str__(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


class _ConnectionWatcher(asyncssh.SSHClient):
    """Feeds transport lifecycle callbacks into a ``ConnectionHandle``."""

    def __init__(self) -> None:
        self.handle: Optional[ConnectionHandle] = None

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if self.handle is not None:
            self.handle.mark_closed(exc)


def split_host_port(host: str, default_port: int = 22) -> Tuple[str, int]:
    """``example.com:2222`` -> (``example.com``, 2222). IPv6 literals are left alone."""
    if host.count(":") == 1:
        name, _, port = host.partition(":")
        if port.isdigit():
            return name, int(port)
    return host, default_port


class ConnectionManager:
    """Creates and reuses remote sessions, and allocates local ones."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: RemoteOpsConfigModel,
        idle_timer_factory: IdleTimerFactory,
    ):
        self.registry = registry
        self.config = config
        self.idle_timer_factory = idle_timer_factory

    def load_private_key(self) -> Any:
        key_path = resolve_key_path(self.config)
        try:
            return asyncssh.read_private_key(str(key_path), self.config.ssh.passphrase)
        except (OSError, asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as e:
            raise CredentialNotFound(str(key_path), str(e)) from e

    def _known_hosts(self) -> Any:
        if not self.config.ssh.verify_host_key:
            return None
        # () lets asyncssh read ~/.ssh/known_hosts
        return ()

    async def open_connection(self, host: str, username: str) -> ConnectionHandle:
        """Authenticate with the configured private key and open a transport."""
        client_key = self.load_private_key()
        hostname, port = split_host_port(host, self.config.ssh.port)
        watcher = _ConnectionWatcher()

        try:
            conn = await asyncssh.connect(
                hostname,
                port=port,
                username=username,
                client_keys=[client_key],
                known_hosts=self._known_hosts(),
                keepalive_interval=self.config.ssh.keepalive_interval,
                connect_timeout=self.config.ssh.connect_timeout,
                client_factory=lambda: watcher,
            )
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            raise RemoteConnectionError(
                f"Failed to connect to {username}@{hostname}:{port}: {e}"
            ) from e

        handle = ConnectionHandle(conn, hostname, port, username)
        watcher.handle = handle
        logger.info(f"Connected to {handle}")
        return handle

    async def _retire(self, session: Session, reason: str) -> None:
        logger.info(f"Retiring session {session.key}: {reason}")
        self.registry.remove(session.key, session)
        await session.close()

    async def connect(self, host: str, username: str, session_name: Optional[str] = None) -> Session:
        """Return a live remote session for ``(host, session_name)``."""
        key = make_key(host, session_name)
        existing = self.registry.lookup(key)
        if existing is not None:
            if existing.is_alive:
                logger.debug(f"Reusing session {key}")
                return existing
            await self._retire(existing, "connection no longer active")

        handle = await self.open_connection(host, username)
        try:
            shell = await InteractiveShell.open(handle.conn, str(key))
        except ChannelError:
            await handle.close()
            raise

        session = Session(key=key, connection=handle, shell=shell)
        shell.on_activity = session.touch
        await self._install(session)
        logger.info(f"Created session {key}")
        return session

    async def ensure_local(self, key: SessionKey) -> Session:
        """Registry entry for a local session (no connection object)."""
        session = self.registry.lookup(key)
        if session is not None:
            return session
        session = Session(key=key)
        await self._install(session)
        logger.info(f"Created local session {key}")
        return session

    async def _install(self, session: Session) -> None:
        session.idle_timer = self.idle_timer_factory(session)
        previous = self.registry.upsert(session.key, session)
        if previous is not None:
            logger.warning(f"Replacing live session {previous.key}")
            await previous.close()
        session.touch()
