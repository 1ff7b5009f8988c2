from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, JSON
from sqlalchemy.sql import func
from core.database import Base
from enum import Enum as PyEnum

class OrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"

class PaymentType(str, PyEnum):
    PAY_NOW = "pay_now"
    PAY_LATER = "pay_later"

class OrderType(str, PyEnum):
    DINE_IN = "dine_in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

class Order(Base):
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, index=True)
    outlet_id = Column(String, nullable=False, index=True)
    restaurant_id = Column(String, nullable=False, index=True)
    restaurant_name = Column(String)
    outlet_name = Column(String)
    order_type = Column(Enum(OrderType), nullable=False)
    table_number = Column(String)
    delivery_address = Column(String)
    payment_type = Column(Enum(PaymentType), nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, index=True)
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, index=True)
    items = Column(JSON, nullable=False)      # [{"item_id": "a1", "name": "Idly", "unit_price": 30, "quantity": 2, ...}]
    kot_items = Column(JSON, nullable=False)  # [{"item_id": "a1", "item_name": "Idly", "kot_generated": false}]
    total_price = Column(Float, nullable=False)
    user_id = Column(String, index=True)
    guest = Column(JSON)                      # {"name", "email", "phone"}
    customer_name = Column(String)
    revision = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

class Cart(Base):
    __tablename__ = "carts"

    user_id = Column(String, primary_key=True, index=True)
    items = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
