from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from models.order import OrderStatus, PaymentStatus, PaymentType, OrderType, TERMINAL_STATUSES

class LineItem(BaseModel):
    item_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    unit_price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    photo_ref: Optional[str] = None

class KOTLineRef(BaseModel):
    item_id: str
    item_name: str
    kot_generated: bool = False

class GuestContact(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None

class Actor(BaseModel):
    role: str = "staff"  # customer | staff | owner | system
    id: Optional[str] = None

class OrderSnapshot(BaseModel):
    """Full order as the core sees it. Back-references are always bare ids."""
    id: str
    items: List[LineItem]
    outlet_id: str
    restaurant_id: str
    restaurant_name: Optional[str] = None
    outlet_name: Optional[str] = None
    order_type: OrderType
    table_number: Optional[str] = None
    delivery_address: Optional[str] = None
    payment_type: PaymentType
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    kot_items: List[KOTLineRef]
    total_price: float
    created_at: datetime
    updated_at: Optional[datetime] = None
    user_id: Optional[str] = None
    guest: Optional[GuestContact] = None
    customer_name: Optional[str] = None
    revision: int = 0

    class Config:
        from_attributes = True

    @property
    def order_number(self) -> str:
        return f"#{self.id[-6:].upper()}"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def display_customer_name(self) -> str:
        if self.guest is not None:
            return self.guest.name
        return self.customer_name or "Customer"

class OrderCreate(BaseModel):
    items: List[LineItem] = Field(..., min_length=1)
    outlet_id: str = Field(..., min_length=1)
    restaurant_id: str = Field(..., min_length=1)
    restaurant_name: Optional[str] = None
    outlet_name: Optional[str] = None
    order_type: OrderType
    table_number: Optional[str] = None
    delivery_address: Optional[str] = None
    payment_type: PaymentType
    user_id: Optional[str] = None
    guest: Optional[GuestContact] = None
    customer_name: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    actor: Actor = Field(default_factory=Actor)

class AddItemsRequest(BaseModel):
    items: List[LineItem] = Field(..., min_length=1)

class TicketRequest(BaseModel):
    item_ids: Optional[List[str]] = None

class Ticket(BaseModel):
    order_id: str
    order_number: str
    restaurant_name: str
    outlet_name: str
    table_number: Optional[str] = None
    customer_name: str
    items: List[LineItem]
    generated_at: datetime

class CartLine(BaseModel):
    item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    name: Optional[str] = None
    price: Optional[float] = None
    photo_ref: Optional[str] = None
    outlet_id: Optional[str] = None

class CartItemsRequest(BaseModel):
    items: List[CartLine]

class CartMergeResult(BaseModel):
    merged: List[CartLine]
    to_push: List[CartLine]
