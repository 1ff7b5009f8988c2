"""
Hub Connection
==============
Client side of the ``/ws`` transport for one ClientSyncAgent.

Each connection joins the agent's topic, then posts ``Connected`` so the
agent refetches before trusting pushed events (missed events are never
replayed). Pushed frames go to the agent inbox via ``feed_raw``. When the
socket drops, ``Disconnected`` is posted and the runner reconnects with
exponential backoff, forever, until stopped.
"""

import asyncio
import json
import logging
from typing import Callable, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from config import settings
from services.sync_agent import ClientSyncAgent, Connected, Disconnected

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class HubConnectionRunner:
    def __init__(
        self,
        agent: ClientSyncAgent,
        url: Optional[str] = None,
        connect: Optional[Callable] = None,
        reconnect_delay: Optional[float] = None,
        reconnect_delay_max: Optional[float] = None,
    ):
        self.agent = agent
        self.url = url or settings.ws_url
        # ``connect(url)`` returns an async context manager yielding a socket
        # with ``send`` and async iteration over incoming text frames
        self._connect = connect or ws_connect
        self.reconnect_delay = reconnect_delay if reconnect_delay is not None else settings.ws_reconnect_delay
        self.reconnect_delay_max = (
            reconnect_delay_max if reconnect_delay_max is not None else settings.ws_reconnect_delay_max
        )
        self.delay = self.reconnect_delay
        self.attempts = 0
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    async def session(self) -> None:
        """One connection: join, announce, route frames until the socket closes."""
        async with self._connect(self.url) as ws:
            topic = self.agent.scope.topic
            await ws.send(json.dumps({"op": "join", "topic": topic}))
            # Joined before the refetch, so nothing published in between is lost
            await self.agent.post(Connected())
            self.delay = self.reconnect_delay
            self.attempts = 0
            logger.info(f"Agent {self.agent.scope.key} connected to {self.url}")
            async for raw in ws:
                await self.route(raw)

    async def route(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = None
        if isinstance(frame, dict) and "op" in frame:
            if frame["op"] == "error":
                logger.warning(f"Hub rejected request from {self.agent.scope.key}: {frame.get('message')}")
            else:
                logger.debug(f"Hub ack for {self.agent.scope.key}: {frame['op']} {frame.get('topic')}")
            return
        await self.agent.feed_raw(raw)

    async def run(self) -> None:
        while not self._stopped:
            try:
                await self.session()
                reason = "closed by server"
            except CONNECTION_ERRORS as e:
                reason = repr(e)
            await self.agent.post(Disconnected(reason))
            if self._stopped:
                break
            self.attempts += 1
            logger.info(f"Agent {self.agent.scope.key} reconnecting in {self.delay:.1f}s (attempt {self.attempts}): {reason}")
            await asyncio.sleep(self.delay)
            self.delay = min(self.delay * 2, self.reconnect_delay_max)


async def run_agent(agent: ClientSyncAgent, runner: Optional[HubConnectionRunner] = None) -> None:
    """Run an agent with its live connection until the agent receives Stop."""
    runner = runner or HubConnectionRunner(agent)
    connection = asyncio.create_task(runner.run())
    try:
        await agent.run()
    finally:
        runner.stop()
        connection.cancel()
        try:
            await connection
        except asyncio.CancelledError:
            pass
