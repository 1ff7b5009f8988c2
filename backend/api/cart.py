from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from core.database import get_db
from models.order import Cart
from models.schemas import CartLine, CartItemsRequest
from typing import List
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

def _load_cart(db: Session, user_id: str) -> Cart:
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if cart is None:
        cart = Cart(user_id=user_id, items=[])
        db.add(cart)
    return cart

def _lines(cart: Cart) -> List[CartLine]:
    return [CartLine.model_validate(item) for item in cart.items or []]

@router.get("/cart/{user_id}")
def get_cart(user_id: str, db: Session = Depends(get_db)):
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    items = _lines(cart) if cart else []
    return {"success": True, "items": [line.model_dump() for line in items]}

@router.post("/cart/{user_id}/items")
def add_cart_items(user_id: str, body: CartItemsRequest, db: Session = Depends(get_db)):
    """Append lines whose item is not in the cart yet (login merge push)"""
    cart = _load_cart(db, user_id)
    lines = _lines(cart)
    known = {line.item_id for line in lines}
    added = 0
    for line in body.items:
        if line.item_id not in known:
            lines.append(line)
            known.add(line.item_id)
            added += 1
    cart.items = [line.model_dump() for line in lines]
    db.commit()
    logger.info(f"Cart {user_id}: {added} lines added")
    return {"success": True, "items": cart.items}

@router.put("/cart/{user_id}")
def replace_cart(user_id: str, body: CartItemsRequest, db: Session = Depends(get_db)):
    """Full cart sync from the owning device"""
    cart = _load_cart(db, user_id)
    cart.items = [line.model_dump() for line in body.items]
    db.commit()
    return {"success": True, "items": cart.items}
