# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""In-memory session registry.

The registry maps a ``SessionKey`` to the ``Session`` holding its connection,
interactive shell, accumulated environment and idle timer. It performs no I/O
of its own and is only touched from the event loop, so it needs no locking.
If worker threads are ever introduced, mutation must be guarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, NamedTuple, Optional

from remoteops.errors import SessionBusy

if TYPE_CHECKING:
    from remoteops.core.connection import ConnectionHandle
    from remoteops.core.idle import IdleTimer
    from remoteops.core.shell import InteractiveShell

logger = logging.getLogger(__name__)

LOCAL_TARGET = "local"
DEFAULT_SESSION = "default"


class SessionKey(NamedTuple):
    """Identity of a session: target host (None for local) and session name."""

    host: Optional[str]
    name: str = DEFAULT_SESSION

    @property
    def is_local(self) -> bool:
        return self.host is None

    def __str__(self) -> str:
        return f"{self.host or LOCAL_TARGET}-{self.name}"


def make_key(host: Optional[str], session: Optional[str] = None) -> SessionKey:
    return SessionKey(host or None, session or DEFAULT_SESSION)


class CommandQueue:
    """Single-slot FIFO command pipeline for one session key.

    One holder at a time; further callers wait in arrival order
    (``asyncio.Lock`` wakes waiters FIFO). More than ``max_pending``
    holders-plus-waiters is rejected with ``SessionBusy``.
    """

    def __init__(self, key: SessionKey, max_pending: int = 16):
        self.key = key
        self.max_pending = max_pending
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        if self._pending >= self.max_pending:
            raise SessionBusy(
                f"Session {self.key} already has {self._pending} commands queued"
            )
        self._pending += 1
        try:
            async with self._lock:
                yield
        finally:
            self._pending -= 1


@dataclass(eq=False)
class Session:
    """Execution context persisted between calls for one key."""

    key: SessionKey
    connection: Optional["ConnectionHandle"] = None
    shell: Optional["InteractiveShell"] = None
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    idle_timer: Optional["IdleTimer"] = None
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)

    @property
    def is_local(self) -> bool:
        return self.key.is_local

    @property
    def shell_ready(self) -> bool:
        return self.shell is not None and self.shell.is_open

    @property
    def is_alive(self) -> bool:
        """Local sessions are always alive; remote ones while connected."""
        if self.is_local:
            return True
        return self.connection is not None and self.connection.is_connected

    def merge_env(self, overrides: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Add or update overrides; existing keys not mentioned are kept."""
        if overrides:
            self.env.update({str(k): str(v) for k, v in overrides.items()})
        return dict(self.env)

    def touch(self) -> None:
        """Record activity and push the idle deadline out."""
        self.last_used = time.time()
        if self.idle_timer is not None:
            self.idle_timer.reset()

    async def close(self) -> None:
        """Release the idle timer, shell channel and transport, in that order."""
        if self.idle_timer is not None:
            self.idle_timer.cancel()
        if self.shell is not None:
            try:
                await self.shell.close()
            except Exception as e:
                logger.debug(f"Error closing shell for {self.key}: {e}")
        if self.connection is not None:
            await self.connection.close()


class SessionRegistry:
    """Owns every live ``Session`` and the per-key command queues."""

    def __init__(self, max_queued_commands: int = 16):
        self._sessions: Dict[SessionKey, Session] = {}
        self._queues: Dict[SessionKey, CommandQueue] = {}
        self.max_queued_commands = max_queued_commands

    def lookup(self, key: SessionKey) -> Optional[Session]:
        return self._sessions.get(key)

    def upsert(self, key: SessionKey, session: Session) -> Optional[Session]:
        """Store ``session`` under ``key``; returns the entry it displaced.

        The caller is responsible for closing the displaced session.
        """
        previous = self._sessions.get(key)
        self._sessions[key] = session
        return previous if previous is not session else None

    def remove(self, key: SessionKey, session: Optional[Session] = None) -> Optional[Session]:
        """Remove the entry for ``key``.

        With ``session`` given, only removes the entry if it is still that
        exact object, so a stale timer cannot evict its replacement.
        """
        current = self._sessions.get(key)
        if current is None:
            return None
        if session is not None and current is not session:
            return None
        self._drop_idle_queue(key)
        return self._sessions.pop(key)

    def queue_for(self, key: SessionKey) -> CommandQueue:
        queue = self._queues.get(key)
        if queue is None:
            queue = CommandQueue(key, self.max_queued_commands)
            self._queues[key] = queue
        return queue

    def is_busy(self, key: SessionKey) -> bool:
        """True while a command holds or waits for the key's slot."""
        queue = self._queues.get(key)
        return queue is not None and (queue.busy or queue.pending > 0)

    def _drop_idle_queue(self, key: SessionKey) -> None:
        queue = self._queues.get(key)
        if queue is not None and not queue.busy and queue.pending == 0:
            del self._queues[key]

    def keys(self) -> List[SessionKey]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    async def close_all(self) -> None:
        """Close and forget every session."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        if sessions:
            await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
        for key in list(self._queues):
            self._drop_idle_queue(key)
