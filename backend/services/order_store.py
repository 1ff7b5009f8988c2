"""
Order Store
===========
SQLAlchemy-backed source of truth for orders. It is the single point of
serialization per order: every write is a conditional UPDATE that only lands
if the stored status and revision still match what the caller loaded.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.exceptions import OrderNotFound, StoreConflict
from models.order import Order, PaymentStatus
from models.schemas import OrderSnapshot

logger = logging.getLogger(__name__)

_REF_FIELDS = ("outlet_id", "restaurant_id", "user_id")


def normalize_ref(value: Any) -> Any:
    """Collapse an embedded record ({"_id": ...} / {"id": ...}) to its bare id."""
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    return str(value) if value is not None else None


def normalize_order_payload(raw: Dict[str, Any]) -> OrderSnapshot:
    """Turn an order that arrived from outside into a snapshot with bare ids."""
    data = dict(raw)
    if "id" not in data and "_id" in data:
        data["id"] = data.pop("_id")
    for name in _REF_FIELDS:
        if name in data:
            data[name] = normalize_ref(data[name])
    return OrderSnapshot.model_validate(data)


def _row_values(order: OrderSnapshot) -> Dict[str, Any]:
    return {
        "outlet_id": order.outlet_id,
        "restaurant_id": order.restaurant_id,
        "restaurant_name": order.restaurant_name,
        "outlet_name": order.outlet_name,
        "order_type": order.order_type,
        "table_number": order.table_number,
        "delivery_address": order.delivery_address,
        "payment_type": order.payment_type,
        "payment_status": order.payment_status,
        "status": order.status,
        "items": [line.model_dump() for line in order.items],
        "kot_items": [ref.model_dump() for ref in order.kot_items],
        "total_price": order.total_price,
        "user_id": order.user_id,
        "guest": order.guest.model_dump() if order.guest else None,
        "customer_name": order.customer_name,
        "updated_at": order.updated_at,
    }


class OrderStore:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, order_id: str) -> Order:
        row = self.db.query(Order).filter(Order.id == order_id).first()
        if row is None:
            raise OrderNotFound(f"Order {order_id} not found", order_id=order_id)
        return row

    def load_order(self, order_id: str) -> OrderSnapshot:
        return OrderSnapshot.model_validate(self._get(order_id))

    def insert_order(self, order: OrderSnapshot) -> OrderSnapshot:
        row = Order(id=order.id, created_at=order.created_at, revision=0, **_row_values(order))
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return OrderSnapshot.model_validate(row)

    def save_order(self, order: OrderSnapshot, expected: OrderSnapshot) -> OrderSnapshot:
        """
        Replace the stored order if it is still the version ``expected``.

        Raises:
            StoreConflict: another writer got there first
            OrderNotFound: the order vanished
        """
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.revision == expected.revision,
                Order.status == expected.status,
                Order.payment_status == expected.payment_status,
            )
            .values(revision=expected.revision + 1, **_row_values(order))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            current = self.load_order(order.id)
            logger.warning(
                f"Write conflict on order {order.id}: expected revision {expected.revision} "
                f"({expected.status.value}), found {current.revision} ({current.status.value})"
            )
            raise StoreConflict(
                f"Order {order.id} changed to {current.status.value} since it was loaded",
                order_id=order.id,
            )
        self.db.commit()
        self.db.expire_all()
        return self.load_order(order.id)

    def list_orders_by_outlet(self, outlet_id: str) -> List[OrderSnapshot]:
        """Paid orders only: unpaid orders are invisible to outlet staff."""
        rows = self.db.query(Order).filter(
            Order.outlet_id == outlet_id,
            Order.payment_status == PaymentStatus.PAID,
        ).order_by(Order.created_at.desc()).all()
        return [OrderSnapshot.model_validate(row) for row in rows]

    def list_orders_by_user(self, user_id: str) -> List[OrderSnapshot]:
        rows = self.db.query(Order).filter(
            Order.user_id == user_id
        ).order_by(Order.created_at.desc()).all()
        return [OrderSnapshot.model_validate(row) for row in rows]
