import pytest

from broker.middleware import MiddlewareRegistry
from broker.errors import NotBoundError
from broker.events import EventHub
from broker.listener import ListenerState
from broker.registry import ConnectionRegistry


class FakeChannel:
    """Stands in for ClientChannel: an id and an event hub."""
    def __init__(self, channel_id):
        self.id = channel_id
        self.events = EventHub()

    def on(self, event, handler):
        self.events.on(event, handler)


class FakeListener:
    def __init__(self, state=ListenerState.UNBOUND):
        self.state = state
        self.events = EventHub()

    def on(self, event, handler):
        self.events.on(event, handler)


def test_add_is_idempotent():
    registry = ConnectionRegistry()
    ch = FakeChannel("a")
    assert registry.add(ch) is True
    assert registry.add(FakeChannel("a")) is False
    assert registry.count() == 1


def test_remove_is_idempotent():
    registry = ConnectionRegistry()
    a, b = FakeChannel("a"), FakeChannel("b")
    registry.add(a)
    registry.add(b)

    assert registry.remove(a) is True
    assert registry.count() == 1
    assert registry.remove(a) is False
    assert registry.count() == 1
    assert registry.remove(FakeChannel("never-added")) is False


def test_snapshot_keeps_insertion_order_and_is_a_copy():
    registry = ConnectionRegistry()
    channels = [FakeChannel(x) for x in "cab"]
    for ch in channels:
        registry.add(ch)

    snap = registry.snapshot()
    assert [ch.id for ch in snap] == ["c", "a", "b"]

    registry.remove(channels[0])
    assert len(snap) == 3
    assert [ch.id for ch in registry.snapshot()] == ["a", "b"]


def test_three_admitted_one_removed_by_identity():
    registry = ConnectionRegistry()
    for x in "xyz":
        registry.add(FakeChannel(x))
    registry.remove(registry.get("y"))
    assert registry.count() == 2
    assert registry.get("y") is None


# ─── Middleware ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_client_middleware_applies_to_future_channels_once():
    registry = ConnectionRegistry()
    mw = MiddlewareRegistry(registry, FakeListener())
    calls = []
    mw.add_client_middleware("ping", calls.append)

    ch = FakeChannel("new")
    registry.add(ch)
    mw.apply_client_middleware(ch)
    await ch.events.emit("ping", 1)

    assert calls == [1]


@pytest.mark.asyncio
async def test_client_middleware_applies_to_existing_channels():
    registry = ConnectionRegistry()
    mw = MiddlewareRegistry(registry, FakeListener())
    ch = FakeChannel("old")
    registry.add(ch)
    mw.apply_client_middleware(ch)

    calls = []
    mw.add_client_middleware("ping", calls.append)
    await ch.events.emit("ping", "hi")

    assert calls == ["hi"]


@pytest.mark.asyncio
async def test_client_middleware_runs_in_insertion_order():
    registry = ConnectionRegistry()
    mw = MiddlewareRegistry(registry, FakeListener())
    order = []
    mw.add_client_middleware("ping", lambda _: order.append("first"))
    mw.add_client_middleware("ping", lambda _: order.append("second"))

    ch = FakeChannel("c")
    mw.apply_client_middleware(ch)
    await ch.events.emit("ping", None)

    assert order == ["first", "second"]
    assert [e.event for e in mw.client_middleware] == ["ping", "ping"]


def test_server_middleware_needs_bound_listener():
    mw = MiddlewareRegistry(ConnectionRegistry(), FakeListener(ListenerState.UNBOUND))
    with pytest.raises(NotBoundError):
        mw.add_server_middleware("connection", print)
    assert mw.server_middleware == []


@pytest.mark.asyncio
async def test_server_middleware_attaches_to_listener():
    listener = FakeListener(ListenerState.BOUND)
    mw = MiddlewareRegistry(ConnectionRegistry(), listener)
    seen = []
    mw.add_server_middleware("connection", seen.append)

    await listener.events.emit("connection", "channel")
    assert seen == ["channel"]
