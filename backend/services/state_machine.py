"""
Order State Machine
===================
Pure lifecycle logic. Nothing here touches storage or the network: every
operation takes an order snapshot and returns a ``Transition`` holding the
updated snapshot and the publish request the caller should hand to the hub.

State flow:
    pending -> confirmed -> preparing -> ready -> delivered
    ready -> out_for_delivery -> delivered   (delivery orders, instead of ready -> delivered)
    any non-terminal -> cancelled

Terminal states: delivered, cancelled
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from core.exceptions import InvalidOrder, InvalidTransition, PaymentRequired
from models.events import EventKind, PublishRequest
from models.order import OrderStatus, OrderType, PaymentStatus, PaymentType
from models.schemas import Actor, KOTLineRef, LineItem, OrderCreate, OrderSnapshot

logger = logging.getLogger(__name__)


FORWARD_EDGES: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Transition:
    """Result of a lifecycle operation. ``publish`` is None for no-ops."""
    order: OrderSnapshot
    publish: Optional[PublishRequest] = None

    @property
    def changed(self) -> bool:
        return self.publish is not None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def allowed_next(order: OrderSnapshot) -> FrozenSet[OrderStatus]:
    """Statuses directly reachable from the order's current status."""
    if order.is_terminal:
        return frozenset()

    edges = FORWARD_EDGES[order.status]
    if order.status == OrderStatus.READY:
        # Only delivery orders leave the outlet
        if order.order_type == OrderType.DELIVERY:
            edges = frozenset({OrderStatus.OUT_FOR_DELIVERY})
        else:
            edges = frozenset({OrderStatus.DELIVERED})
    return edges | {OrderStatus.CANCELLED}


def transition(
    order: OrderSnapshot,
    requested: OrderStatus,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Move an order to ``requested``.

    Raises:
        InvalidTransition: order is terminal or ``requested`` is not a direct successor
        PaymentRequired: order has not been paid
    """
    actor = actor or Actor(role="system")

    if order.is_terminal:
        raise InvalidTransition(
            f"Order {order.id} is already {order.status.value}", order_id=order.id
        )
    if requested not in allowed_next(order):
        raise InvalidTransition(
            f"Cannot move order {order.id} from {order.status.value} to {requested.value}",
            order_id=order.id,
        )
    if not order.is_paid:
        raise PaymentRequired(
            f"Order {order.id} must be paid before it can move to {requested.value}",
            order_id=order.id,
        )

    updated = order.model_copy(update={"status": requested, "updated_at": now or utcnow()})

    logger.info(
        f"Order transition: {order.status.value} -> {requested.value}",
        extra={
            "order_id": order.id,
            "from_state": order.status.value,
            "to_state": requested.value,
            "actor_role": actor.role,
            "actor_id": actor.id,
        },
    )
    return Transition(updated, PublishRequest.for_order(EventKind.ORDER_UPDATED, updated))


def mark_paid(order: OrderSnapshot, now: Optional[datetime] = None) -> Transition:
    """
    Record payment. Settable once; a second call returns the order unchanged.

    Allowed on every status, cancelled included, so a payment that lands after
    a cancellation is still recorded for refund bookkeeping. Status never moves.
    """
    if order.is_paid:
        return Transition(order)

    updated = order.model_copy(
        update={"payment_status": PaymentStatus.PAID, "updated_at": now or utcnow()}
    )
    if order.is_terminal:
        logger.warning(f"Payment recorded on {order.status.value} order {order.id}")
    else:
        logger.info(f"Order {order.id} marked paid")
    return Transition(updated, PublishRequest.for_order(EventKind.PAYMENT_UPDATED, updated))


def _check_lines(lines: List[LineItem], existing_ids=()) -> None:
    seen = set(existing_ids)
    for line in lines:
        if line.item_id in seen:
            raise InvalidOrder(f"Duplicate line item {line.item_id}")
        seen.add(line.item_id)


def _lines_total(lines: List[LineItem]) -> float:
    return sum(line.unit_price * line.quantity for line in lines)


def create_order(
    draft: OrderCreate,
    now: Optional[datetime] = None,
    order_id: Optional[str] = None,
) -> Transition:
    """
    Build a new order from a validated draft.

    pay_now orders arrive after the gateway confirmed payment and are created
    paid; pay_later orders start unpaid and stay hidden from the outlet.
    """
    if (draft.user_id is None) == (draft.guest is None):
        raise InvalidOrder("Order needs exactly one of user_id or guest contact")
    if draft.order_type == OrderType.DINE_IN and not draft.table_number:
        raise InvalidOrder("Dine-in orders need a table number")
    if draft.order_type != OrderType.DINE_IN and draft.table_number:
        raise InvalidOrder("Only dine-in orders carry a table number")
    if draft.order_type == OrderType.DELIVERY and not draft.delivery_address:
        raise InvalidOrder("Delivery orders need a delivery address")
    _check_lines(draft.items)

    now = now or utcnow()
    paid = draft.payment_type == PaymentType.PAY_NOW
    order = OrderSnapshot(
        id=order_id or uuid.uuid4().hex,
        items=list(draft.items),
        outlet_id=draft.outlet_id,
        restaurant_id=draft.restaurant_id,
        restaurant_name=draft.restaurant_name,
        outlet_name=draft.outlet_name,
        order_type=draft.order_type,
        table_number=draft.table_number,
        delivery_address=draft.delivery_address if draft.order_type == OrderType.DELIVERY else None,
        payment_type=draft.payment_type,
        payment_status=PaymentStatus.PAID if paid else PaymentStatus.PENDING,
        status=OrderStatus.PENDING,
        kot_items=[KOTLineRef(item_id=line.item_id, item_name=line.name) for line in draft.items],
        total_price=round(_lines_total(draft.items), 2),
        created_at=now,
        updated_at=now,
        user_id=draft.user_id,
        guest=draft.guest,
        customer_name=draft.customer_name,
    )

    logger.info(
        f"Order created: {order.id}",
        extra={"order_id": order.id, "outlet_id": order.outlet_id, "payment_type": order.payment_type.value},
    )
    return Transition(order, PublishRequest.for_order(EventKind.ORDER_CREATED, order))


def add_items(order: OrderSnapshot, lines: List[LineItem], now: Optional[datetime] = None) -> Transition:
    """
    Append new distinct line items, each with a fresh KOT entry.

    The total grows by the added lines only; it is never recomputed from the
    full item list.
    """
    if order.is_terminal:
        raise InvalidTransition(
            f"Cannot add items to {order.status.value} order {order.id}", order_id=order.id
        )
    if not lines:
        raise InvalidOrder("No items to add", order_id=order.id)
    _check_lines(lines, existing_ids=[line.item_id for line in order.items])

    updated = order.model_copy(update={
        "items": order.items + list(lines),
        "kot_items": order.kot_items + [
            KOTLineRef(item_id=line.item_id, item_name=line.name) for line in lines
        ],
        "total_price": round(order.total_price + _lines_total(lines), 2),
        "updated_at": now or utcnow(),
    })
    logger.info(f"Added {len(lines)} items to order {order.id}")
    return Transition(updated, PublishRequest.for_order(EventKind.ORDER_UPDATED, updated))


# ============================================================================
# LABELS
# ============================================================================

_READY_LABELS = {
    OrderType.DELIVERY: "Out for Delivery",
    OrderType.DINE_IN: "Started Preparing",
    OrderType.TAKEAWAY: "Package Packed",
}


def status_label(status: OrderStatus, order_type: OrderType) -> str:
    """Human label for a status. Only ``ready`` depends on the order type."""
    if status == OrderStatus.READY:
        return _READY_LABELS.get(order_type, "Ready")
    return status.value.replace("_", " ").title().replace(" For ", " for ")


def next_status_action(status: OrderStatus, order_type: OrderType) -> Optional[Tuple[OrderStatus, str]]:
    """Next forward status and its button label, or None for terminal orders."""
    if status == OrderStatus.PENDING:
        return OrderStatus.CONFIRMED, "Confirm Order"
    if status == OrderStatus.CONFIRMED:
        return OrderStatus.PREPARING, "Start Preparing"
    if status == OrderStatus.PREPARING:
        return OrderStatus.READY, f"Mark as {_READY_LABELS.get(order_type, 'Ready')}"
    if status == OrderStatus.READY:
        if order_type == OrderType.DELIVERY:
            return OrderStatus.OUT_FOR_DELIVERY, "Out for Delivery"
        return OrderStatus.DELIVERED, "Mark Delivered"
    if status == OrderStatus.OUT_FOR_DELIVERY:
        return OrderStatus.DELIVERED, "Mark Delivered"
    return None
