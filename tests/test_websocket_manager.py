"""Tests for the live connection hub."""

import asyncio
import sys

import pytest

sys.path.insert(0, "src")

from chatline.websocket import (
    DROPPED_CLOSE_CODE,
    RECEIVE_MESSAGE,
    BroadcastEvent,
    BroadcastHub,
    ConnectionManager,
)


class FakeConnection:
    """Records what it is sent; can be slow or broken."""

    def __init__(self, delay: float = 0.0, fail: bool = False, slow_sends: int = 0):
        self.delay = delay
        self.fail = fail
        self.slow_sends = slow_sends
        self.sent = []
        self.closed_with = None

    async def send_json(self, data):
        if self.slow_sends:
            self.slow_sends -= 1
            await asyncio.sleep(1.0)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed_with = code


def _event(n, user_id=None):
    return BroadcastEvent(type=RECEIVE_MESSAGE, payload={"n": n}, user_id=user_id)


class TestRegistration:
    """Tests for register/unregister."""

    def test_alias(self):
        assert BroadcastHub is ConnectionManager

    def test_register_outside_loop_fails(self):
        hub = ConnectionManager()
        with pytest.raises(RuntimeError):
            hub.register(FakeConnection())

    def test_register_and_unregister(self):
        async def scenario():
            hub = ConnectionManager()
            conn = FakeConnection()
            sub = hub.register(conn, user_id="u1")
            assert hub.is_registered(conn)
            assert hub.connection_count == 1
            assert sub.user_id == "u1"
            hub.unregister(conn)
            assert not hub.is_registered(conn)
            assert hub.connection_count == 0

        asyncio.run(scenario())

    def test_register_twice_returns_same_subscription(self):
        async def scenario():
            hub = ConnectionManager()
            conn = FakeConnection()
            assert hub.register(conn) is hub.register(conn)
            assert hub.connection_count == 1
            await hub.close()

        asyncio.run(scenario())

    def test_unregister_is_idempotent(self):
        async def scenario():
            hub = ConnectionManager()
            conn = FakeConnection()
            hub.register(conn)
            hub.unregister(conn)
            hub.unregister(conn)
            hub.unregister(FakeConnection())
            assert hub.connection_count == 0

        asyncio.run(scenario())

    def test_close_drops_everyone(self):
        async def scenario():
            hub = ConnectionManager()
            subs = [hub.register(FakeConnection()) for _ in range(3)]
            await hub.close()
            assert hub.connection_count == 0
            assert all(not s.active for s in subs)
            assert all(s.task.done() for s in subs)

        asyncio.run(scenario())


class TestPublish:
    """Tests for fan-out."""

    def test_no_connections(self):
        hub = ConnectionManager()
        assert hub.publish(_event(1)) == 0

    def test_one_failing_peer_does_not_affect_others(self):
        async def scenario():
            hub = ConnectionManager()
            c1, c2, c3 = FakeConnection(), FakeConnection(fail=True), FakeConnection()
            for conn in (c1, c2, c3):
                hub.register(conn)

            event = _event(1)
            assert hub.publish(event) == 3
            assert await hub.flush(timeout=2.0)

            assert c1.sent == [event.to_wire()]
            assert c3.sent == [event.to_wire()]
            assert c2.sent == []
            assert not hub.is_registered(c2)
            assert hub.is_registered(c1) and hub.is_registered(c3)
            await hub.close()

        asyncio.run(scenario())

    def test_peer_leaving_after_delivery(self):
        async def scenario():
            hub = ConnectionManager()
            stays, leaves = FakeConnection(), FakeConnection()
            hub.register(stays)
            hub.register(leaves)

            event = _event(1)
            hub.publish(event)
            assert await hub.flush(timeout=2.0)
            hub.unregister(leaves)
            hub.publish(_event(2))
            assert await hub.flush(timeout=2.0)

            assert leaves.sent == [event.to_wire()]
            assert [m["payload"]["n"] for m in stays.sent] == [1, 2]
            await hub.close()

        asyncio.run(scenario())

    def test_slow_peer_is_dropped(self):
        async def scenario():
            hub = ConnectionManager(send_timeout=0.05)
            fast, slow = FakeConnection(), FakeConnection(delay=1.0)
            hub.register(fast)
            hub.register(slow)

            hub.publish(_event(1))
            hub.publish(_event(2))
            assert await hub.flush(timeout=2.0)

            assert [m["payload"]["n"] for m in fast.sent] == [1, 2]
            assert slow.sent == []
            assert not hub.is_registered(slow)
            await hub.close()

        asyncio.run(scenario())

    def test_dropped_peer_is_closed(self):
        async def scenario():
            hub = ConnectionManager(send_timeout=0.05)
            healthy, broken = FakeConnection(), FakeConnection(fail=True)
            hub.register(healthy)
            hub.register(broken)

            hub.publish(_event(1))
            assert await hub.flush(timeout=2.0)

            assert broken.closed_with == DROPPED_CLOSE_CODE
            assert healthy.closed_with is None
            await hub.close()

        asyncio.run(scenario())

    def test_peer_slow_once_can_reconnect(self):
        async def scenario():
            hub = ConnectionManager(send_timeout=0.05)
            conn = FakeConnection(slow_sends=1)
            hub.register(conn, user_id="u1")

            hub.publish(_event(1))
            assert await hub.flush(timeout=2.0)
            # The client is told to go away rather than left silently deaf.
            assert conn.closed_with == DROPPED_CLOSE_CODE
            assert not hub.is_registered(conn)

            # Once reconnected it receives events again.
            hub.register(conn, user_id="u1")
            hub.publish(_event(2, user_id="u1"))
            assert await hub.flush(timeout=2.0)
            assert [m["payload"]["n"] for m in conn.sent] == [2]
            await hub.close()

        asyncio.run(scenario())

    def test_close_failure_on_drop_is_contained(self):
        class UnclosableConnection(FakeConnection):
            async def close(self, code=1000, reason=None):
                raise RuntimeError("already gone")

        async def scenario():
            hub = ConnectionManager()
            other = FakeConnection()
            hub.register(UnclosableConnection(fail=True))
            hub.register(other)

            hub.publish(_event(1))
            assert await hub.flush(timeout=2.0)
            assert hub.connection_count == 1
            assert len(other.sent) == 1
            await hub.close()

        asyncio.run(scenario())

    def test_publish_does_not_wait_for_slow_peer(self):
        async def scenario():
            hub = ConnectionManager(send_timeout=5.0)
            hub.register(FakeConnection(delay=0.5))
            loop = asyncio.get_running_loop()
            start = loop.time()
            for n in range(5):
                hub.publish(_event(n))
            assert loop.time() - start < 0.1
            await hub.close()

        asyncio.run(scenario())

    def test_per_peer_order(self):
        async def scenario():
            hub = ConnectionManager()
            conn = FakeConnection()
            hub.register(conn)
            for n in range(20):
                hub.publish(_event(n))
            assert await hub.flush(timeout=2.0)
            assert [m["payload"]["n"] for m in conn.sent] == list(range(20))
            await hub.close()

        asyncio.run(scenario())

    def test_user_scoped_delivery(self):
        async def scenario():
            hub = ConnectionManager()
            alice, bob, anon = FakeConnection(), FakeConnection(), FakeConnection()
            hub.register(alice, user_id="alice")
            hub.register(bob, user_id="bob")
            hub.register(anon)

            assert hub.publish(_event(1, user_id="alice")) == 1
            assert hub.publish(_event(2)) == 3
            assert await hub.flush(timeout=2.0)

            assert [m["payload"]["n"] for m in alice.sent] == [1, 2]
            assert [m["payload"]["n"] for m in bob.sent] == [2]
            assert [m["payload"]["n"] for m in anon.sent] == [2]
            await hub.close()

        asyncio.run(scenario())

    def test_full_queue_discards_event(self):
        async def scenario():
            hub = ConnectionManager(queue_size=1)
            conn = FakeConnection()
            sub = hub.register(conn)

            # The pump has not run yet, so the queue holds one event.
            assert hub.publish(_event(1)) == 1
            assert hub.publish(_event(2)) == 0
            assert sub.dropped == 1

            assert await hub.flush(timeout=2.0)
            assert [m["payload"]["n"] for m in conn.sent] == [1]
            assert hub.is_registered(conn)
            await hub.close()

        asyncio.run(scenario())

    def test_publish_from_worker_thread(self):
        async def scenario():
            hub = ConnectionManager()
            conn = FakeConnection()
            hub.register(conn)

            queued = await asyncio.to_thread(hub.publish, _event(7))
            assert queued == 1
            await asyncio.sleep(0)
            assert await hub.flush(timeout=2.0)
            assert [m["payload"]["n"] for m in conn.sent] == [7]
            await hub.close()

        asyncio.run(scenario())

    def test_send_targets_one_subscription(self):
        async def scenario():
            hub = ConnectionManager()
            a, b = FakeConnection(), FakeConnection()
            sub_a = hub.register(a)
            hub.register(b)
            assert hub.send(sub_a, _event(1))
            assert await hub.flush(timeout=2.0)
            assert len(a.sent) == 1
            assert b.sent == []
            await hub.close()

        asyncio.run(scenario())

    def test_unregistered_peer_gets_nothing(self):
        async def scenario():
            hub = ConnectionManager()
            conn = FakeConnection()
            hub.register(conn)
            hub.unregister(conn)
            assert hub.publish(_event(1)) == 0
            await asyncio.sleep(0.01)
            assert conn.sent == []

        asyncio.run(scenario())


class TestBroadcastEvent:
    def test_wire_shape(self):
        event = BroadcastEvent(type=RECEIVE_MESSAGE, payload={"text": "hi"}, user_id="u1")
        assert event.to_wire() == {"type": "receiveMessage", "payload": {"text": "hi"}}
