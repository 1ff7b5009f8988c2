from typing import Dict, Any, Set, Optional
from collections import defaultdict
import asyncio
import json
import logging

from core.exceptions import TransportUnavailable
from models.events import EventKind, PublishRequest

logger = logging.getLogger(__name__)

def encode_event(event_kind: EventKind, topic: str, order: Dict[str, Any]) -> str:
    """Server-to-client push frame"""
    return json.dumps({"eventKind": EventKind(event_kind).value, "topic": topic, "order": order})

class EventHub:
    """Topic registry for connected clients (one topic per outlet, one per user).

    A handle is anything with an async ``send_text``. Each topic has its own
    lock, so frames for one topic go out in emission order while topics never
    block each other. Delivery is best-effort: a handle whose send fails is
    dropped and must refetch after reconnecting.
    """

    def __init__(self):
        self._topics: Dict[str, Set[Any]] = defaultdict(set)
        self._handle_topics: Dict[Any, Set[str]] = defaultdict(set)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, topic: str) -> asyncio.Lock:
        lock = self._locks.get(topic)
        if lock is None:
            lock = self._locks[topic] = asyncio.Lock()
        return lock

    def subscribers(self, topic: str) -> Set[Any]:
        return set(self._topics.get(topic, ()))

    def topics_of(self, handle) -> Set[str]:
        return set(self._handle_topics.get(handle, ()))

    async def subscribe(self, topic: str, handle) -> bool:
        """Join ``topic``; returns False when the handle was already subscribed."""
        async with self._lock(topic):
            if handle in self._topics[topic]:
                return False
            self._topics[topic].add(handle)
            self._handle_topics[handle].add(topic)
        logger.info(f"Subscribed to {topic} ({len(self._topics[topic])} handles)")
        return True

    async def _leave(self, topic: str, handle) -> None:
        lock = self._lock(topic)
        async with lock:
            members = self._topics.get(topic)
            if members is not None:
                members.discard(handle)
                if not members:
                    del self._topics[topic]
        # Empty topics keep no lock behind
        if topic not in self._topics and not lock.locked() and self._locks.get(topic) is lock:
            del self._locks[topic]
        topics = self._handle_topics.get(handle)
        if topics is not None:
            topics.discard(topic)
            if not topics:
                del self._handle_topics[handle]

    async def unsubscribe(self, handle, topic: Optional[str] = None) -> None:
        """Leave one topic, or every topic the handle joined."""
        topics = [topic] if topic is not None else list(self._handle_topics.get(handle, ()))
        for name in topics:
            await self._leave(name, handle)
        if topics:
            logger.info(f"Unsubscribed handle from {', '.join(topics)}")

    async def publish(self, topic: str, event_kind: EventKind, payload: Dict[str, Any]) -> int:
        """Send one event to every handle on ``topic``.

        Returns the number of handles reached. Raises TransportUnavailable
        after the round if any handle failed; those handles are dropped.
        """
        if topic not in self._topics:
            return 0
        message = encode_event(event_kind, topic, payload)
        failed = []
        delivered = 0
        async with self._lock(topic):
            for handle in list(self._topics.get(topic, ())):
                try:
                    await handle.send_text(message)
                    delivered += 1
                except Exception as e:
                    logger.warning(f"Dropping subscriber on {topic}: {e!r}")
                    failed.append(handle)
        for handle in failed:
            await self.unsubscribe(handle)
        if failed:
            raise TransportUnavailable(f"{len(failed)} subscribers on {topic} unreachable", delivered=delivered)
        return delivered

    async def publish_request(self, request: PublishRequest) -> int:
        """Fan a lifecycle publish request out to all of its topics.

        Failures are logged, never raised: the store write already happened
        and subscribers converge on their next refetch.
        """
        payload = request.order.model_dump(mode="json")
        delivered = 0
        for topic in request.topics:
            try:
                delivered += await self.publish(topic, request.event_kind, payload)
            except TransportUnavailable as e:
                delivered += e.delivered
                logger.warning(f"Publish {request.event_kind.value} for order {request.order.id}: {e}")
        return delivered

hub = EventHub()
