"""
Client Sync Agent
=================
Keeps one scope's order list (an outlet, or a user) consistent with the
server through three inputs:

- full refetches (on connect, on request, and at least once every
  ``refetch_interval``), which are authoritative
- pushed hub events, merged idempotently as a latency optimization
- results of transitions this agent submitted itself

All inputs arrive as explicit messages on a single inbox and are processed one
at a time, so the cache is never mutated concurrently. Persistence is injected
through a ``CacheStore``: read once on init, written after every mutation.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from config import settings
from core import redis_client as redis_store
from core.exceptions import OrderError, TransportUnavailable
from models.events import EventKind, outlet_topic, user_topic
from models.order import OrderStatus
from models.schemas import Actor, OrderSnapshot
from services.order_store import normalize_order_payload

logger = logging.getLogger(__name__)


# ============================================================================
# SCOPE + CACHE
# ============================================================================

class ScopeKind(str, Enum):
    OUTLET = "outlet"
    USER = "user"


@dataclass(frozen=True)
class Scope:
    kind: ScopeKind
    id: str

    @classmethod
    def outlet(cls, outlet_id: str) -> "Scope":
        return cls(ScopeKind.OUTLET, outlet_id)

    @classmethod
    def user(cls, user_id: str) -> "Scope":
        return cls(ScopeKind.USER, user_id)

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @property
    def topic(self) -> str:
        if self.kind == ScopeKind.OUTLET:
            return outlet_topic(self.id)
        return user_topic(self.id)


class OrderCache:
    """Most-recent-first order list for one scope."""

    def __init__(self, scope_key: str, orders: Optional[List[OrderSnapshot]] = None):
        self.scope_key = scope_key
        self.orders: List[OrderSnapshot] = list(orders or [])
        self.stale = False

    def __len__(self) -> int:
        return len(self.orders)

    def index_of(self, order_id: str) -> Optional[int]:
        for i, order in enumerate(self.orders):
            if order.id == order_id:
                return i
        return None

    def get(self, order_id: str) -> Optional[OrderSnapshot]:
        i = self.index_of(order_id)
        return self.orders[i] if i is not None else None

    def ids(self) -> List[str]:
        return [order.id for order in self.orders]

    def replace(self, orders: List[OrderSnapshot]) -> None:
        self.orders = list(orders)

    def to_payload(self) -> List[dict]:
        return [order.model_dump(mode="json") for order in self.orders]

    @classmethod
    def from_payload(cls, scope_key: str, payload: List[dict]) -> "OrderCache":
        return cls(scope_key, [OrderSnapshot.model_validate(o) for o in payload])


def apply_event(cache: OrderCache, order: OrderSnapshot) -> bool:
    """
    Idempotent upsert by order id. Returns True when the cache changed.

    Known orders get a shallow overwrite with the snapshot's fields, unless the
    snapshot is older (lower revision) than what is cached. Unknown orders go
    to the front.
    """
    i = cache.index_of(order.id)
    if i is None:
        cache.orders.insert(0, order)
        return True

    existing = cache.orders[i]
    if order.revision < existing.revision:
        logger.debug(f"Ignoring stale snapshot of {order.id} (rev {order.revision} < {existing.revision})")
        return False

    merged = OrderSnapshot.model_validate({
        **existing.model_dump(),
        **order.model_dump(exclude_unset=True),
    })
    if merged == existing:
        return False
    cache.orders[i] = merged
    return True


def accept_payment_event(cache: OrderCache, order: OrderSnapshot) -> bool:
    """Upsert only paid orders; an unpaid order never enters an outlet cache."""
    if not order.is_paid:
        return False
    return apply_event(cache, order)


# ============================================================================
# PERSISTENCE
# ============================================================================

class CacheStore:
    """Durable local store for agent caches, keyed by scope."""

    def load(self, scope_key: str) -> Optional[List[dict]]:
        raise NotImplementedError

    def save(self, scope_key: str, orders: List[dict]) -> None:
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    def __init__(self):
        self.data: Dict[str, str] = {}

    def load(self, scope_key):
        raw = self.data.get(scope_key)
        return json.loads(raw) if raw else None

    def save(self, scope_key, orders):
        self.data[scope_key] = json.dumps(orders)


class RedisCacheStore(CacheStore):
    def __init__(self, client=None, ttl: Optional[int] = None):
        self.client = client
        self.ttl = ttl

    def load(self, scope_key):
        return redis_store.load_cached_orders(scope_key, client=self.client)

    def save(self, scope_key, orders):
        redis_store.save_cached_orders(scope_key, orders, client=self.client, ttl=self.ttl)


# ============================================================================
# INBOX MESSAGES
# ============================================================================

@dataclass(frozen=True)
class EventReceived:
    event_kind: EventKind
    order: OrderSnapshot


@dataclass(frozen=True)
class LocalUpdate:
    order: OrderSnapshot


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class RefetchRequested:
    pass


@dataclass(frozen=True)
class Stop:
    pass


Message = Union[EventReceived, LocalUpdate, Connected, Disconnected, RefetchRequested, Stop]


def decode_event(raw: str) -> EventReceived:
    """Parse a hub push frame ``{"eventKind", "order"}``."""
    frame = json.loads(raw)
    return EventReceived(EventKind(frame["eventKind"]), normalize_order_payload(frame["order"]))


# ============================================================================
# AGENT
# ============================================================================

Fetcher = Callable[[], Awaitable[List[OrderSnapshot]]]
Submitter = Callable[[str, OrderStatus, Optional[Actor]], Awaitable[OrderSnapshot]]


class ClientSyncAgent:
    def __init__(
        self,
        scope: Scope,
        fetch: Fetcher,
        store: CacheStore,
        submit: Optional[Submitter] = None,
        refetch_interval: Optional[float] = None,
        request_timeout: Optional[float] = None,
    ):
        self.scope = scope
        self._fetch = fetch
        self._submit = submit
        self.store = store
        self.refetch_interval = refetch_interval if refetch_interval is not None else settings.sync_refetch_interval
        self.request_timeout = request_timeout if request_timeout is not None else settings.request_timeout
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.connected = False
        self._next_refetch = 0.0
        self.cache = self._restore()

    @classmethod
    def for_client(cls, scope: Scope, client, store: CacheStore, **kwargs) -> "ClientSyncAgent":
        """Agent wired to an OrdersClient for refetches and transitions."""
        if scope.kind == ScopeKind.OUTLET:
            fetch = lambda: client.fetch_outlet_orders(scope.id)
        else:
            fetch = lambda: client.fetch_user_orders(scope.id)
        return cls(scope, fetch, store, submit=client.update_status, **kwargs)

    def _restore(self) -> OrderCache:
        try:
            payload = self.store.load(self.scope.key)
        except Exception as e:
            logger.warning(f"Could not read cached orders for {self.scope.key}: {e!r}")
            payload = None
        if not payload:
            return OrderCache(self.scope.key)
        try:
            cache = OrderCache.from_payload(self.scope.key, payload)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache for {self.scope.key}: {e}")
            return OrderCache(self.scope.key)
        # Shown until the first refetch lands
        cache.stale = True
        return cache

    def _persist(self) -> None:
        try:
            self.store.save(self.scope.key, self.cache.to_payload())
        except Exception as e:
            logger.warning(f"Could not persist cached orders for {self.scope.key}: {e!r}")

    def _merge(self, order: OrderSnapshot) -> bool:
        if self.scope.kind == ScopeKind.OUTLET:
            return accept_payment_event(self.cache, order)
        return apply_event(self.cache, order)

    # -- inbox ---------------------------------------------------------------

    async def post(self, message: Message) -> None:
        await self.inbox.put(message)

    async def feed_raw(self, raw: str) -> None:
        """Queue a raw hub frame; malformed frames are logged and dropped."""
        try:
            event = decode_event(raw)
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Dropping malformed event for {self.scope.key}: {e}")
            return
        await self.post(event)

    async def handle(self, message: Message) -> None:
        if isinstance(message, (EventReceived, LocalUpdate)):
            if self._merge(message.order):
                self._persist()
        elif isinstance(message, Connected):
            self.connected = True
            # Missed events are never replayed
            await self.refetch()
        elif isinstance(message, Disconnected):
            self.connected = False
            logger.info(f"Agent {self.scope.key} disconnected: {message.reason or 'unknown'}")
        elif isinstance(message, RefetchRequested):
            await self.refetch()

    async def drain(self) -> int:
        """Process everything queued right now; returns the number of messages."""
        count = 0
        while not self.inbox.empty():
            message = self.inbox.get_nowait()
            if isinstance(message, Stop):
                break
            await self.handle(message)
            count += 1
        return count

    async def run(self) -> None:
        """Process messages until Stop.

        A full refetch runs every ``refetch_interval`` seconds no matter how
        busy the inbox is; any refetch pushes the next one back.
        """
        loop = asyncio.get_running_loop()
        self._next_refetch = loop.time() + self.refetch_interval
        while True:
            remaining = self._next_refetch - loop.time()
            if remaining <= 0:
                await self.refetch()
                continue
            try:
                message = await asyncio.wait_for(self.inbox.get(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            if isinstance(message, Stop):
                break
            await self.handle(message)

    # -- network -------------------------------------------------------------

    async def refetch(self) -> bool:
        """Replace the cache with the server's list. On failure keep the cache."""
        self._next_refetch = asyncio.get_running_loop().time() + self.refetch_interval
        try:
            orders = await self._fetch()
        except (OrderError, ValidationError, asyncio.TimeoutError) as e:
            logger.warning(f"Refetch for {self.scope.key} failed, keeping cached orders: {e!r}")
            self.cache.stale = True
            return False

        if self.scope.kind == ScopeKind.OUTLET:
            orders = [o for o in orders if o.is_paid]
        self.cache.replace(orders)
        self.cache.stale = False
        self._persist()
        logger.info(f"Refetched {len(orders)} orders for {self.scope.key}")
        return True

    async def request_transition(
        self, order_id: str, status: OrderStatus, actor: Optional[Actor] = None
    ) -> Optional[OrderSnapshot]:
        """
        Submit a status change. Only a confirmed response reaches the cache.

        Returns None when the request timed out or the server was unreachable;
        the next refetch decides what really happened. Rejections such as
        InvalidTransition or StoreConflict propagate to the caller.
        """
        if self._submit is None:
            raise RuntimeError(f"Agent {self.scope.key} has no transition submitter")
        try:
            order = await asyncio.wait_for(self._submit(order_id, status, actor), timeout=self.request_timeout)
        except (asyncio.TimeoutError, TransportUnavailable) as e:
            logger.warning(f"Transition {order_id} -> {OrderStatus(status).value} unconfirmed: {e!r}")
            await self.post(RefetchRequested())
            return None
        await self.post(LocalUpdate(order))
        return order
