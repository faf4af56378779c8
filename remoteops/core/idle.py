# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Reset-on-activity idle timer."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class IdleTimer:
    """A single outstanding deadline that calls ``on_expire`` when it passes.

    ``reset()`` replaces the pending deadline instead of stacking a new one.
    The callback is a coroutine function and runs as its own task on the
    loop the timer was armed on.
    """

    def __init__(
        self,
        timeout: float,
        on_expire: Callable[[], Awaitable[None]],
        name: str = "",
    ):
        self.timeout = timeout
        self.name = name
        self._on_expire = on_expire
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self.expired = False

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def reset(self) -> None:
        """Cancel the pending deadline (if any) and arm a fresh one."""
        if self.expired:
            return
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.expired = True
        logger.debug(f"Session {self.name} reached idle deadline after {self.timeout:g}s")
        self._task = asyncio.ensure_future(self._run_callback())

    async def _run_callback(self) -> None:
        try:
            await self._on_expire()
        except Exception as e:
            logger.error(f"Idle teardown failed for {self.name}: {e}")
