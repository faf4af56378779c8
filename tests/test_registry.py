# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for session keys, the registry and per-session command queues."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from remoteops.core.registry import (
    CommandQueue,
    Session,
    SessionKey,
    SessionRegistry,
    make_key,
)
from remoteops.errors import SessionBusy


class TestSessionKey:
    def test_local_key(self):
        key = make_key(None, None)
        assert key.is_local
        assert key.name == "default"
        assert str(key) == "local-default"

    def test_remote_key(self):
        key = make_key("db1.example.com", "conda")
        assert not key.is_local
        assert str(key) == "db1.example.com-conda"

    def test_empty_host_is_local(self):
        assert make_key("", "x") == SessionKey(None, "x")

    def test_keys_differ_by_session_name(self):
        assert make_key("h", "a") != make_key("h", "b")


class TestSession:
    def test_merge_env_keeps_unmentioned_keys(self):
        session = Session(key=make_key("h"))
        session.merge_env({"A": "1", "B": "2"})
        merged = session.merge_env({"B": "3", "C": "4"})

        assert merged == {"A": "1", "B": "3", "C": "4"}
        assert session.env == merged

    def test_local_session_is_always_alive(self):
        assert Session(key=make_key(None)).is_alive

    def test_remote_session_alive_follows_connection(self):
        connection = Mock(is_connected=True)
        session = Session(key=make_key("h"), connection=connection)
        assert session.is_alive

        connection.is_connected = False
        assert not session.is_alive

    def test_touch_resets_idle_timer(self):
        timer = Mock()
        session = Session(key=make_key("h"), idle_timer=timer)
        before = session.last_used

        session.touch()

        timer.reset.assert_called_once_with()
        assert session.last_used >= before

    def test_close_releases_everything(self):
        timer = Mock()
        shell = Mock(close=AsyncMock())
        connection = Mock(close=AsyncMock())
        session = Session(key=make_key("h"), connection=connection, shell=shell, idle_timer=timer)

        asyncio.run(session.close())

        timer.cancel.assert_called_once_with()
        shell.close.assert_awaited_once()
        connection.close.assert_awaited_once()


class TestSessionRegistry:
    def test_upsert_and_lookup(self):
        registry = SessionRegistry()
        key = make_key("h")
        session = Session(key=key)

        assert registry.upsert(key, session) is None
        assert registry.lookup(key) is session
        assert key in registry
        assert len(registry) == 1

    def test_upsert_returns_displaced_entry(self):
        registry = SessionRegistry()
        key = make_key("h")
        old, new = Session(key=key), Session(key=key)
        registry.upsert(key, old)

        assert registry.upsert(key, new) is old
        assert registry.lookup(key) is new

    def test_remove_checks_identity(self):
        """A stale owner cannot remove the session that replaced it."""
        registry = SessionRegistry()
        key = make_key("h")
        old, new = Session(key=key), Session(key=key)
        registry.upsert(key, new)

        assert registry.remove(key, old) is None
        assert registry.lookup(key) is new
        assert registry.remove(key, new) is new
        assert registry.lookup(key) is None

    def test_remove_missing_key(self):
        assert SessionRegistry().remove(make_key("nope")) is None

    def test_close_all_empties_registry(self):
        registry = SessionRegistry()
        sessions = []
        for name in ("a", "b"):
            session = Session(key=make_key("h", name))
            session.close = AsyncMock()
            registry.upsert(session.key, session)
            sessions.append(session)

        asyncio.run(registry.close_all())

        assert len(registry) == 0
        for session in sessions:
            session.close.assert_awaited_once()

    def test_queue_per_key(self):
        registry = SessionRegistry(max_queued_commands=3)
        queue = registry.queue_for(make_key("h"))

        assert registry.queue_for(make_key("h")) is queue
        assert registry.queue_for(make_key("h", "other")) is not queue
        assert queue.max_pending == 3

    def test_remove_drops_idle_queue(self):
        registry = SessionRegistry()
        key = make_key("h")
        registry.upsert(key, Session(key=key))
        queue = registry.queue_for(key)

        registry.remove(key)

        assert registry.queue_for(key) is not queue

    def test_remove_keeps_queue_in_use(self):
        """A waiter still holding the old queue keeps it alive across remove."""
        registry = SessionRegistry()
        key = make_key("h")
        registry.upsert(key, Session(key=key))

        async def scenario():
            queue = registry.queue_for(key)
            async with queue.slot():
                registry.remove(key)
                assert registry.is_busy(key)
                return queue, registry.queue_for(key)

        queue, after = asyncio.run(scenario())
        assert after is queue

    def test_close_all_drops_idle_queues(self):
        registry = SessionRegistry()
        key = make_key("h")
        registry.upsert(key, Session(key=key, connection=Mock(close=AsyncMock())))
        queue = registry.queue_for(key)

        asyncio.run(registry.close_all())

        assert registry.queue_for(key) is not queue

    def test_is_busy_does_not_create_queue(self):
        registry = SessionRegistry()
        key = make_key("h")

        assert not registry.is_busy(key)
        assert key not in registry._queues
        registry.queue_for(key)
        assert not registry.is_busy(key)


class TestCommandQueue:
    def test_commands_run_one_at_a_time_in_order(self):
        """Holders run strictly one after another in arrival order."""
        order = []

        async def worker(queue, label):
            async with queue.slot():
                order.append(f"start-{label}")
                await asyncio.sleep(0.01)
                order.append(f"end-{label}")

        async def scenario():
            queue = CommandQueue(make_key("h"))
            await asyncio.gather(*(worker(queue, i) for i in range(3)))

        asyncio.run(scenario())
        assert order == ["start-0", "end-0", "start-1", "end-1", "start-2", "end-2"]

    def test_overflow_raises_session_busy(self):
        async def scenario():
            queue = CommandQueue(make_key("h"), max_pending=2)
            release = asyncio.Event()

            async def hold():
                async with queue.slot():
                    await release.wait()

            tasks = [asyncio.ensure_future(hold()) for _ in range(2)]
            await asyncio.sleep(0)
            assert queue.pending == 2
            try:
                async with queue.slot():
                    pass
            finally:
                release.set()
                await asyncio.gather(*tasks)

        with pytest.raises(SessionBusy):
            asyncio.run(scenario())

    def test_pending_released_after_error(self):
        async def scenario():
            queue = CommandQueue(make_key("h"))
            with pytest.raises(RuntimeError):
                async with queue.slot():
                    raise RuntimeError("boom")
            return queue

        queue = asyncio.run(scenario())
        assert queue.pending == 0
        assert not queue.busy
