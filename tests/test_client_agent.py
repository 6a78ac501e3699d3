"""ReconnectionAgent tests with in-memory channels and a recording sleep.

Learn: The agent takes its connector and its sleep function as arguments,
so these tests never open a socket or wait in real time. A scripted
connector hands out channels (or raises) in order; the recording sleep
captures every backoff delay the agent schedules.
"""

import asyncio
import json

import pytest

from snapserve.client.agent import AgentState, ClientIdentity, ReconnectionAgent
from snapserve.client.cache import ResourceCache
from snapserve.events.types import NEGATIVE_FEEDBACK, NEW_ORDER, ORDER_UPDATED
from snapserve.realtime.hub import RealtimeHub

CLOSE = object()


class FakeChannel:
    """Queue-backed channel. Put CLOSE in the inbox to simulate a drop."""

    def __init__(self, *frames):
        self.sent: list[str] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False
        for frame in frames:
            self.inbox.put_nowait(frame)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("channel closed")
        self.sent.append(message)

    async def recv(self):
        frame = await self.inbox.get()
        if frame is CLOSE:
            raise ConnectionError("channel closed")
        return frame

    async def close(self) -> None:
        self.closed = True
        self.inbox.put_nowait(CLOSE)


class ScriptedConnector:
    """Returns the scripted outcomes in order, then refuses forever."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if not self.outcomes:
            raise ConnectionRefusedError("server down")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self, block: bool = False):
        self.delays: list[float] = []
        self.block = block

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.block:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


async def _until(predicate, steps: int = 500):
    for _ in range(steps):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not met")


def _event(kind: str, **fields) -> str:
    return json.dumps({"type": kind, **fields})


def _fresh_cache() -> ResourceCache:
    cache = ResourceCache()
    cache.set("orders", [])
    cache.set("feedback", [])
    return cache


# ─── Backoff ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_gives_up_after_five_linear_retries():
    connector = ScriptedConnector()
    sleep = RecordingSleep()
    agent = ReconnectionAgent(connector, _fresh_cache(), sleep=sleep)

    await agent.run()

    assert connector.calls == 6  # first try + 5 retries
    assert sleep.delays == [2.0, 4.0, 6.0, 8.0, 10.0]
    assert all(a <= b for a, b in zip(sleep.delays, sleep.delays[1:]))
    assert agent.state is AgentState.DISCONNECTED
    assert agent.attempts == 5


@pytest.mark.asyncio
async def test_custom_limits():
    connector = ScriptedConnector()
    sleep = RecordingSleep()
    agent = ReconnectionAgent(connector, _fresh_cache(), max_attempts=2, base_delay=0.5, sleep=sleep)

    await agent.run()

    assert connector.calls == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_message_received_resets_attempts():
    lively = FakeChannel(_event(NEW_ORDER, order={"id": 1}), CLOSE)
    connector = ScriptedConnector(
        ConnectionRefusedError("boot"),
        ConnectionRefusedError("boot"),
        lively,
    )
    sleep = RecordingSleep()
    agent = ReconnectionAgent(connector, _fresh_cache(), sleep=sleep)

    await agent.run()

    assert sleep.delays == [2.0, 4.0, 2.0, 4.0, 6.0, 8.0, 10.0]
    assert connector.calls == 8


@pytest.mark.asyncio
async def test_open_without_messages_does_not_reset_attempts():
    silent = FakeChannel(CLOSE)
    connector = ScriptedConnector(ConnectionRefusedError("boot"), silent)
    sleep = RecordingSleep()
    agent = ReconnectionAgent(connector, _fresh_cache(), sleep=sleep)

    await agent.run()

    assert sleep.delays == [2.0, 4.0, 6.0, 8.0, 10.0]
    assert connector.calls == 6


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_retry():
    connector = ScriptedConnector()
    sleep = RecordingSleep(block=True)
    agent = ReconnectionAgent(connector, _fresh_cache(), sleep=sleep)

    task = agent.start()
    await _until(lambda: sleep.delays == [2.0])
    await agent.disconnect()

    assert task.done()
    assert agent.state is AgentState.CLOSED
    assert connector.calls == 1


# ─── Open channel ────────────────────────────────────────


@pytest.mark.asyncio
async def test_auth_is_first_frame_when_identity_known():
    channel = FakeChannel()
    agent = ReconnectionAgent(
        ScriptedConnector(channel), _fresh_cache(), ClientIdentity(user_id=7, role="staff"),
    )

    agent.start()
    await _until(lambda: channel.sent)

    assert json.loads(channel.sent[0]) == {"type": "AUTH", "userId": 7, "role": "staff"}
    assert agent.state is AgentState.OPEN_AUTHENTICATED
    assert agent.is_connected

    await agent.disconnect()
    assert channel.closed
    assert agent.state is AgentState.CLOSED
    assert not agent.is_connected


@pytest.mark.asyncio
async def test_no_identity_opens_unauthenticated():
    channel = FakeChannel()
    agent = ReconnectionAgent(ScriptedConnector(channel), _fresh_cache())

    agent.start()
    await _until(lambda: agent.is_connected)

    assert agent.state is AgentState.OPEN_UNAUTHENTICATED
    assert channel.sent == []
    await agent.disconnect()


@pytest.mark.asyncio
@pytest.mark.parametrize("kind, stale, untouched", [
    (NEW_ORDER, "orders", "feedback"),
    (ORDER_UPDATED, "orders", "feedback"),
    (NEGATIVE_FEEDBACK, "feedback", "orders"),
])
async def test_event_invalidates_matching_collection(kind, stale, untouched):
    cache = _fresh_cache()
    channel = FakeChannel(_event(kind, payload={"id": 1}))
    agent = ReconnectionAgent(ScriptedConnector(channel), cache)

    agent.start()
    await _until(lambda: cache.is_stale(stale))

    assert not cache.is_stale(untouched)
    assert agent.is_connected
    await agent.disconnect()


@pytest.mark.asyncio
async def test_unknown_and_malformed_frames_are_dropped():
    cache = _fresh_cache()
    channel = FakeChannel(
        _event("MENU_CHANGED", menu=[]),
        "{not json",
        "[1, 2]",
        json.dumps({"no_type": True}),
        b'{"type": 5}',
    )
    connector = ScriptedConnector(channel)
    agent = ReconnectionAgent(connector, cache)

    agent.start()
    await _until(lambda: channel.inbox.empty())
    for _ in range(5):
        await asyncio.sleep(0)

    assert not cache.is_stale("orders")
    assert not cache.is_stale("feedback")
    assert agent.is_connected
    assert not channel.closed
    assert connector.calls == 1
    await agent.disconnect()


@pytest.mark.asyncio
async def test_send_only_while_connected():
    channel = FakeChannel()
    agent = ReconnectionAgent(ScriptedConnector(channel), _fresh_cache())

    assert await agent.send({"type": "PING"}) is False

    agent.start()
    await _until(lambda: agent.is_connected)
    assert await agent.send({"type": "PING"}) is True
    assert json.loads(channel.sent[-1]) == {"type": "PING"}

    await agent.disconnect()
    assert await agent.send({"type": "PING"}) is False


@pytest.mark.asyncio
async def test_start_is_idempotent():
    channel = FakeChannel()
    connector = ScriptedConnector(channel)
    agent = ReconnectionAgent(connector, _fresh_cache())

    first = agent.start()
    second = agent.start()
    await _until(lambda: agent.is_connected)

    assert first is second
    assert connector.calls == 1
    await agent.disconnect()


# ─── Agent against a real hub ────────────────────────────


class LoopbackChannel:
    """Wires an agent to a RealtimeHub without a network.

    Frames the agent sends go through the hub's AuthBinder; frames the
    publisher sends land in this channel's inbox.
    """

    def __init__(self, hub: RealtimeHub):
        self.hub = hub
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.connection_id = hub.registry.register(self)

    async def send_text(self, data: str) -> None:  # server → client
        self.inbox.put_nowait(data)

    async def send(self, message: str) -> None:  # client → server
        self.hub.binder.handle(self.connection_id, message)

    async def recv(self) -> str:
        frame = await self.inbox.get()
        if frame is CLOSE:
            raise ConnectionError("closed")
        return frame

    async def close(self) -> None:
        self.hub.registry.unregister(self.connection_id)
        self.inbox.put_nowait(CLOSE)


@pytest.mark.asyncio
async def test_new_order_reaches_staff_and_admin_clients_only():
    hub = RealtimeHub()
    channels = {}

    def connector_for(name):
        async def connect():
            channels[name] = LoopbackChannel(hub)
            return channels[name]
        return connect

    caches = {name: _fresh_cache() for name in ("a", "b", "c")}
    agents = {
        "a": ReconnectionAgent(connector_for("a"), caches["a"], ClientIdentity(1, "staff")),
        "b": ReconnectionAgent(connector_for("b"), caches["b"], ClientIdentity(2, "admin")),
        "c": ReconnectionAgent(connector_for("c"), caches["c"]),
    }
    for agent in agents.values():
        agent.start()
    await _until(lambda: hub.registry.count_by_role() == {"staff": 1, "admin": 1, "anonymous": 1})

    from snapserve.events.types import new_order

    delivered = await hub.publisher.publish_to_staff(new_order({"id": 1, "items": []}))
    await _until(lambda: caches["a"].is_stale("orders") and caches["b"].is_stale("orders"))

    assert delivered == 2
    assert not caches["a"].is_stale("feedback")
    assert not caches["c"].is_stale("orders")
    assert channels["c"].inbox.empty()

    for agent in agents.values():
        await agent.disconnect()
    assert len(hub.registry) == 0
