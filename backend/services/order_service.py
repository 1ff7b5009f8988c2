"""
Order Service
=============
Glue between the pure lifecycle logic, the Order Store and the fan-out hub.

Every write follows the same path: load the current snapshot, apply the pure
operation, save it conditionally against the snapshot that was loaded, then
hand the publish request to the hub. A lost race surfaces as StoreConflict;
publish failures are logged by the hub and never undo the write.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from models.order import OrderStatus
from models.events import PublishRequest
from models.schemas import Actor, LineItem, OrderCreate, OrderSnapshot, Ticket
from services import kot, state_machine
from services.order_store import OrderStore
from utils.broadcast import EventHub

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(self, store: OrderStore, hub: EventHub):
        self.store = store
        self.hub = hub

    async def _publish(self, request: Optional[PublishRequest], order: OrderSnapshot) -> None:
        if request is None:
            return
        # Publish the stored version so subscribers see the bumped revision
        await self.hub.publish_request(PublishRequest.for_order(request.event_kind, order))

    def _commit(self, result: state_machine.Transition, loaded: OrderSnapshot) -> OrderSnapshot:
        if not result.changed:
            return loaded
        return self.store.save_order(result.order, expected=loaded)

    async def create_order(self, draft: OrderCreate) -> OrderSnapshot:
        result = state_machine.create_order(draft)
        saved = self.store.insert_order(result.order)
        await self._publish(result.publish, saved)
        return saved

    def get_order(self, order_id: str) -> OrderSnapshot:
        return self.store.load_order(order_id)

    async def advance_status(
        self, order_id: str, requested: OrderStatus, actor: Optional[Actor] = None
    ) -> OrderSnapshot:
        loaded = self.store.load_order(order_id)
        result = state_machine.transition(loaded, requested, actor)
        saved = self._commit(result, loaded)
        await self._publish(result.publish, saved)
        return saved

    async def mark_paid(self, order_id: str) -> OrderSnapshot:
        loaded = self.store.load_order(order_id)
        result = state_machine.mark_paid(loaded)
        saved = self._commit(result, loaded)
        await self._publish(result.publish, saved)
        return saved

    async def confirm_payment(self, order_id: str) -> OrderSnapshot:
        """Payment collaborator callback: the gateway settled ``order_id``."""
        logger.info(f"Payment confirmed by gateway for order {order_id}")
        return await self.mark_paid(order_id)

    async def add_items(self, order_id: str, items: List[LineItem]) -> OrderSnapshot:
        loaded = self.store.load_order(order_id)
        result = state_machine.add_items(loaded, items)
        saved = self._commit(result, loaded)
        await self._publish(result.publish, saved)
        return saved

    async def generate_ticket(
        self, order_id: str, item_ids: Optional[Iterable[str]] = None
    ) -> Tuple[OrderSnapshot, Ticket]:
        loaded = self.store.load_order(order_id)
        result, ticket = kot.generate_ticket(loaded, item_ids)
        saved = self._commit(result, loaded)
        await self._publish(result.publish, saved)
        return saved, ticket

    def list_outlet_orders(self, outlet_id: str) -> List[OrderSnapshot]:
        return self.store.list_orders_by_outlet(outlet_id)

    def list_user_orders(self, user_id: str) -> List[OrderSnapshot]:
        return self.store.list_orders_by_user(user_id)
