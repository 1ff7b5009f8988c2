import asyncio
import json
from contextlib import asynccontextmanager

from models.events import EventKind
from models.order import PaymentType
from services import state_machine as sm
from services.hub_connection import HubConnectionRunner, run_agent
from services.sync_agent import (
    ClientSyncAgent,
    Connected,
    Disconnected,
    EventReceived,
    MemoryCacheStore,
    Scope,
    Stop,
)
from utils.broadcast import encode_event, hub

BASE = "/api/v1"
WS_URL = "ws://testserver/api/v1/ws"


def run(coro):
    return asyncio.run(coro)


class FakeSocket:
    """Socket double: yields queued frames, then closes or stays open."""

    def __init__(self, frames, hold_open=False):
        self.frames = list(frames)
        self.hold_open = hold_open
        self.sent = []

    async def send(self, text):
        self.sent.append(json.loads(text))

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.frames:
            return self.frames.pop(0)
        if self.hold_open:
            await asyncio.Event().wait()
        raise StopAsyncIteration


class SessionSocket:
    """Drives a TestClient websocket session from async code for a fixed number of frames."""

    def __init__(self, session, frames):
        self.session = session
        self.remaining = frames

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, text):
        await asyncio.to_thread(self.session.send_text, text)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.remaining == 0:
            raise StopAsyncIteration
        self.remaining -= 1
        return await asyncio.to_thread(self.session.receive_text)


@asynccontextmanager
async def opened(socket):
    yield socket


class CountingFetch:
    def __init__(self, orders=None):
        self.orders = list(orders or [])
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return list(self.orders)


def inbox_messages(agent):
    messages = []
    while not agent.inbox.empty():
        messages.append(agent.inbox.get_nowait())
    return messages


def paid_frame(make_draft):
    order = sm.create_order(make_draft(payment_type=PaymentType.PAY_NOW)).order
    return order, encode_event(EventKind.PAYMENT_UPDATED, "outlet:outlet-1", order.model_dump(mode="json"))


def test_joins_topic_and_reconnects_after_drop(make_draft):
    order, frame = paid_frame(make_draft)
    ack = json.dumps({"op": "joined", "topic": "outlet:outlet-1"})
    socket = FakeSocket([ack, frame])

    async def scenario():
        agent = ClientSyncAgent(Scope.outlet("outlet-1"), CountingFetch(), MemoryCacheStore())
        runner = HubConnectionRunner(agent, url=WS_URL, reconnect_delay=0.01, reconnect_delay_max=0.05)
        attempts = []

        def connect(url):
            attempts.append(url)
            if len(attempts) == 2:
                return opened(socket)
            if len(attempts) >= 3:
                runner.stop()
            raise OSError("connection refused")

        runner._connect = connect
        await asyncio.wait_for(runner.run(), timeout=2)
        return attempts, inbox_messages(agent)

    attempts, messages = run(scenario())
    assert attempts == [WS_URL] * 3
    assert socket.sent == [{"op": "join", "topic": "outlet:outlet-1"}]
    assert [type(m) for m in messages] == [
        Disconnected, Connected, EventReceived, Disconnected, Disconnected,
    ]
    assert messages[2].order.id == order.id


def test_backoff_doubles_up_to_the_cap():
    async def scenario():
        agent = ClientSyncAgent(Scope.user("user-1"), CountingFetch(), MemoryCacheStore())
        runner = HubConnectionRunner(agent, url=WS_URL, reconnect_delay=0.01, reconnect_delay_max=0.03)
        calls = []

        def connect(url):
            calls.append(url)
            if len(calls) == 4:
                runner.stop()
            raise OSError("connection refused")

        runner._connect = connect
        await asyncio.wait_for(runner.run(), timeout=2)
        return runner

    runner = run(scenario())
    assert runner.attempts == 3
    assert runner.delay == 0.03


def test_error_frames_are_not_fed_to_the_agent():
    async def scenario():
        agent = ClientSyncAgent(Scope.user("user-1"), CountingFetch(), MemoryCacheStore())
        runner = HubConnectionRunner(agent, url=WS_URL)
        await runner.route(json.dumps({"op": "error", "message": "bad topic"}))
        await runner.route(json.dumps({"op": "left", "topic": "user:user-1"}))
        return agent

    assert run(scenario()).inbox.empty()


def test_run_agent_refetches_on_connect_and_applies_pushed_events(make_draft):
    order, frame = paid_frame(make_draft)
    fetch = CountingFetch()

    async def scenario():
        agent = ClientSyncAgent(Scope.outlet("outlet-1"), fetch, MemoryCacheStore(), refetch_interval=60)
        socket = FakeSocket([frame], hold_open=True)
        runner = HubConnectionRunner(agent, url=WS_URL, connect=lambda url: opened(socket))
        task = asyncio.create_task(run_agent(agent, runner))
        for _ in range(100):
            if agent.cache.ids():
                break
            await asyncio.sleep(0.01)
        await agent.post(Stop())
        await asyncio.wait_for(task, timeout=2)
        return agent

    agent = run(scenario())
    assert agent.connected
    assert fetch.calls == 1
    assert agent.cache.ids() == [order.id]


def test_agent_receives_payment_pushed_by_the_server(client):
    created = client.post(f"{BASE}/orders", json={
        "items": [{"item_id": "idly", "name": "Idly", "unit_price": 30.0, "quantity": 2}],
        "outlet_id": "outlet-1",
        "restaurant_id": "rest-1",
        "order_type": "takeaway",
        "payment_type": "pay_later",
        "user_id": "user-1",
    }).json()["order"]
    fetch = CountingFetch()

    with client.websocket_connect(f"{BASE}/ws") as session:
        async def scenario():
            agent = ClientSyncAgent(Scope.outlet("outlet-1"), fetch, MemoryCacheStore(), refetch_interval=60)
            # Ack for the join, then the payment event
            runner = HubConnectionRunner(agent, url=WS_URL, connect=lambda url: SessionSocket(session, frames=2))
            task = asyncio.create_task(runner.session())
            for _ in range(200):
                if hub.subscribers("outlet:outlet-1"):
                    break
                await asyncio.sleep(0.01)
            await asyncio.to_thread(client.post, f"{BASE}/orders/{created['id']}/payment/confirm")
            await asyncio.wait_for(task, timeout=5)
            await agent.drain()
            return agent

        agent = run(scenario())

    assert agent.connected
    assert fetch.calls == 1
    assert agent.cache.ids() == [created["id"]]
    assert agent.cache.get(created["id"]).is_paid
