"""Kitchen order tickets: partial ticket selection, marking and text rendering."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from core.exceptions import InvalidTransition, NothingToPrint, PaymentRequired
from models.events import EventKind, PublishRequest
from models.order import OrderStatus
from models.schemas import OrderSnapshot, Ticket
from services.state_machine import Transition, utcnow

logger = logging.getLogger(__name__)

TICKET_WIDTH = 32


def pending_kot_ids(order: OrderSnapshot) -> List[str]:
    return [ref.item_id for ref in order.kot_items if not ref.kot_generated]


def generate_ticket(
    order: OrderSnapshot,
    item_ids: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> Tuple[Transition, Ticket]:
    """
    Select unticketed line items, mark them generated and build the ticket.

    With ``item_ids`` only the matching unticketed entries are selected; ids
    that are unknown or already ticketed are ignored.

    Raises:
        PaymentRequired: unpaid orders never reach the kitchen
        InvalidTransition: the order was cancelled
        NothingToPrint: the selection is empty
    """
    if not order.is_paid:
        raise PaymentRequired(f"Order {order.id} is not paid yet", order_id=order.id)
    if order.status == OrderStatus.CANCELLED:
        raise InvalidTransition(f"Order {order.id} was cancelled", order_id=order.id)

    selected = set(pending_kot_ids(order))
    if item_ids is not None:
        selected &= set(item_ids)
    if not selected:
        raise NothingToPrint(f"No new items to send to the kitchen for order {order.id}", order_id=order.id)

    now = now or utcnow()
    kot_items = [
        ref.model_copy(update={"kot_generated": True}) if ref.item_id in selected else ref
        for ref in order.kot_items
    ]
    updated = order.model_copy(update={"kot_items": kot_items, "updated_at": now})

    ticket = Ticket(
        order_id=order.id,
        order_number=order.order_number,
        restaurant_name=order.restaurant_name or "",
        outlet_name=order.outlet_name or "",
        table_number=order.table_number,
        customer_name=order.display_customer_name,
        items=[line for line in order.items if line.item_id in selected],
        generated_at=now,
    )

    logger.info(f"KOT generated for order {order.id} with {len(ticket.items)} items")
    return Transition(updated, PublishRequest.for_order(EventKind.ORDER_UPDATED, updated)), ticket


def _row(left: str, right: str, width: int = TICKET_WIDTH) -> str:
    space = max(width - len(left) - len(right), 1)
    return f"{left}{' ' * space}{right}"


def render_ticket(ticket: Ticket, width: int = TICKET_WIDTH) -> str:
    """Plain-text ticket for the printing surface."""
    rule = "=" * width
    lines = [
        rule,
        "KITCHEN ORDER TICKET".center(width).rstrip(),
    ]
    if ticket.restaurant_name:
        lines.append(ticket.restaurant_name.center(width).rstrip())
    if ticket.outlet_name:
        lines.append(ticket.outlet_name.center(width).rstrip())
    lines.append(rule)

    lines.append(_row("Order #:", ticket.order_number, width))
    if ticket.table_number:
        lines.append(_row("Table #:", ticket.table_number, width))
    lines.append(_row("Customer:", ticket.customer_name, width))
    lines.append(_row("Time:", ticket.generated_at.strftime("%H:%M:%S"), width))
    lines.append(_row("Date:", ticket.generated_at.strftime("%Y-%m-%d"), width))

    lines.append("-" * width)
    lines.append(_row("Item", "Qty     Price", width))
    lines.append("-" * width)
    for item in ticket.items:
        price = f"{item.unit_price * item.quantity:.2f}"
        lines.append(_row(item.name[: width - 14], f"{item.quantity:>3}  {price:>8}", width))
    lines.append(rule)
    return "\n".join(lines) + "\n"
