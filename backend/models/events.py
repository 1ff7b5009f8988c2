from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple
from models.schemas import OrderSnapshot

class EventKind(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_UPDATED = "order_updated"
    PAYMENT_UPDATED = "payment_updated"

def outlet_topic(outlet_id: str) -> str:
    return f"outlet:{outlet_id}"

def user_topic(user_id: str) -> str:
    return f"user:{user_id}"

def topics_for_order(order: OrderSnapshot) -> Tuple[str, ...]:
    """User topic when authenticated; outlet topic only once the order is paid."""
    topics = []
    if order.is_paid:
        topics.append(outlet_topic(order.outlet_id))
    if order.user_id:
        topics.append(user_topic(order.user_id))
    return tuple(topics)

@dataclass(frozen=True)
class PublishRequest:
    event_kind: EventKind
    order: OrderSnapshot
    topics: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def for_order(cls, event_kind: EventKind, order: OrderSnapshot) -> "PublishRequest":
        return cls(event_kind=event_kind, order=order, topics=topics_for_order(order))
