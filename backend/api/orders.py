from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from core.database import get_db
from core.exceptions import OrderError, NothingToPrint
from models.schemas import OrderCreate, OrderStatusUpdate, AddItemsRequest, TicketRequest, OrderSnapshot
from services.kot import render_ticket
from services.order_service import OrderService
from services.order_store import OrderStore
from services.state_machine import status_label, next_status_action
from utils.broadcast import hub
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

def get_order_service(db: Session = Depends(get_db)) -> OrderService:
    return OrderService(OrderStore(db), hub)

def http_error(e: OrderError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())

def order_out(order: OrderSnapshot) -> dict:
    data = order.model_dump(mode="json")
    data["order_number"] = order.order_number
    data["status_label"] = status_label(order.status, order.order_type)
    action = next_status_action(order.status, order.order_type)
    data["next_action"] = {"status": action[0].value, "label": action[1]} if action else None
    return data

@router.post("/orders", status_code=201)
async def create_order(draft: OrderCreate, service: OrderService = Depends(get_order_service)):
    """Customer checkout"""
    try:
        order = await service.create_order(draft)
    except OrderError as e:
        raise http_error(e)
    return {"success": True, "order": order_out(order)}

@router.get("/orders/outlet/{outlet_id}")
def get_outlet_orders(outlet_id: str, service: OrderService = Depends(get_order_service)):
    """Outlet dashboard refetch (paid orders only)"""
    orders = service.list_outlet_orders(outlet_id)
    return {"success": True, "orders": [order_out(o) for o in orders]}

@router.get("/orders/user/{user_id}")
def get_user_orders(user_id: str, service: OrderService = Depends(get_order_service)):
    """Customer order history refetch"""
    orders = service.list_user_orders(user_id)
    return {"success": True, "orders": [order_out(o) for o in orders]}

@router.get("/orders/{order_id}")
def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    try:
        order = service.get_order(order_id)
    except OrderError as e:
        raise http_error(e)
    return {"success": True, "order": order_out(order)}

@router.patch("/orders/{order_id}/status")
async def update_order_status(order_id: str, status_update: OrderStatusUpdate, service: OrderService = Depends(get_order_service)):
    """Kitchen status updates"""
    try:
        order = await service.advance_status(order_id, status_update.status, status_update.actor)
    except OrderError as e:
        raise http_error(e)
    return {"success": True, "order": order_out(order)}

@router.post("/orders/{order_id}/items")
async def add_order_items(order_id: str, body: AddItemsRequest, service: OrderService = Depends(get_order_service)):
    try:
        order = await service.add_items(order_id, body.items)
    except OrderError as e:
        raise http_error(e)
    return {"success": True, "order": order_out(order)}

@router.post("/orders/{order_id}/payment/confirm")
async def confirm_payment(order_id: str, service: OrderService = Depends(get_order_service)):
    """Payment gateway callback"""
    try:
        order = await service.confirm_payment(order_id)
    except OrderError as e:
        raise http_error(e)
    return {"success": True, "order": order_out(order)}

@router.post("/orders/{order_id}/kot")
async def generate_kot(order_id: str, body: Optional[TicketRequest] = None, service: OrderService = Depends(get_order_service)):
    """Kitchen order ticket for items not yet sent to the kitchen"""
    try:
        order, ticket = await service.generate_ticket(order_id, body.item_ids if body else None)
    except NothingToPrint as e:
        logger.info(e.message)
        return JSONResponse(status_code=e.status_code, content={"success": False, "code": e.code, "notice": e.message})
    except OrderError as e:
        raise http_error(e)
    return {
        "success": True,
        "kot": ticket.model_dump(mode="json"),
        "document": render_ticket(ticket),
        "order": order_out(order),
    }
