"""
Buyer carts. One cart document per buyer holding (item, quantity) lines,
unique per item. Quantities are checked against live stock when a line is
added or changed; nothing is reserved until the seller records a sale.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth import get_current_account
from database import Database, serialize_doc, to_object_id, utcnow
from deps import get_db
from errors import BadRequestError, NotFoundError
from presenters import PUBLIC_ACCOUNT_FIELDS, formatted_amount
from schemas import CartLine

log = logging.getLogger("coast2cart.cart")

router = APIRouter(prefix="/cart", tags=["cart"])


class CartAddRequest(BaseModel):
    itemId: str
    quantity: float = Field(..., allow_inf_nan=False)


class CartUpdateRequest(BaseModel):
    itemId: str
    quantity: float = Field(..., allow_inf_nan=False)


def _live_item(db: Database, item_id) -> dict:
    oid = to_object_id(item_id)
    item = db["item"].find_one({"_id": oid, "deletedAt": None}) if oid else None
    if not item:
        raise NotFoundError("Item not found")
    if not item.get("isActive"):
        raise BadRequestError("Item is no longer available")
    return item


def _find_line(cart: Optional[dict], item_id) -> Optional[dict]:
    if not cart:
        return None
    for line in cart.get("items", []):
        if line["item"] == item_id:
            return line
    return None


def _cart_with_line(db: Database, buyer: dict, item_id: str):
    cart = db["cart"].find_one({"user": buyer["_id"]})
    if not cart:
        raise NotFoundError("Cart not found")
    oid = to_object_id(item_id)
    line = _find_line(cart, oid) if oid else None
    if not line:
        raise NotFoundError("Item not found in cart")
    return cart, line


def add_item(db: Database, buyer: dict, item_id: str, quantity: float, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if not math.isfinite(quantity) or quantity <= 0:
        raise BadRequestError("Quantity must be a positive number")
    item = _live_item(db, item_id)
    if item["seller"] == buyer["_id"]:
        raise BadRequestError("You cannot add your own items to cart")

    cart = db["cart"].find_one({"user": buyer["_id"]})
    existing = _find_line(cart, item["_id"])
    total = quantity + (existing["quantity"] if existing else 0)
    if total > item["quantity"]:
        if existing:
            raise BadRequestError("Total quantity exceeds available stock")
        raise BadRequestError("Insufficient quantity available")

    if existing:
        db["cart"].update_one(
            {"user": buyer["_id"], "items.item": item["_id"]},
            {"$set": {"items.$.quantity": total, "updatedAt": now}},
        )
    else:
        line = CartLine(item=item["_id"], quantity=quantity, addedAt=now)
        db["cart"].update_one(
            {"user": buyer["_id"]},
            {
                "$push": {"items": line.model_dump()},
                "$set": {"updatedAt": now},
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
        )
    return {"itemId": str(item["_id"]), "quantity": total, "merged": existing is not None}


def update_item(db: Database, buyer: dict, item_id: str, quantity: float, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    if not math.isfinite(quantity) or quantity < 0:
        raise BadRequestError("Quantity must be a non-negative number")
    cart, line = _cart_with_line(db, buyer, item_id)
    if quantity == 0:
        remove_item(db, buyer, item_id)
        return {"itemId": item_id, "quantity": 0, "removed": True}
    item = _live_item(db, line["item"])
    if quantity > item["quantity"]:
        raise BadRequestError("Insufficient quantity available")
    db["cart"].update_one(
        {"_id": cart["_id"], "items.item": line["item"]},
        {"$set": {"items.$.quantity": quantity, "updatedAt": now}},
    )
    return {
        "itemId": item_id,
        "quantity": quantity,
        "totalPrice": item["itemPrice"] * quantity,
        "removed": False,
    }


def remove_item(db: Database, buyer: dict, item_id: str) -> None:
    cart, line = _cart_with_line(db, buyer, item_id)
    db["cart"].update_one(
        {"_id": cart["_id"]},
        {"$pull": {"items": {"item": line["item"]}}, "$set": {"updatedAt": utcnow()}},
    )


def clear(db: Database, buyer: dict) -> None:
    result = db["cart"].update_one(
        {"user": buyer["_id"]}, {"$set": {"items": [], "updatedAt": utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Cart not found")


def get_cart(db: Database, buyer: dict) -> dict:
    """Cart lines with their live items. Lines whose item is gone are left out of every total."""
    cart = db["cart"].find_one({"user": buyer["_id"]})
    lines = [dict(line) for line in (cart or {}).get("items", [])]
    db.populate(lines, "item", "item")
    lines = [line for line in lines if line["item"] and not line["item"].get("deletedAt")]
    items = [line["item"] for line in lines]
    db.populate(items, "seller", "account", PUBLIC_ACCOUNT_FIELDS)

    cart_total = 0.0
    sellers = set()
    data = []
    for line in lines:
        item = line["item"]
        total_price = item["itemPrice"] * line["quantity"]
        cart_total += total_price
        seller = item.get("seller")
        if seller:
            sellers.add(seller["_id"])
        data.append(
            {
                "itemId": str(item["_id"]),
                "item": serialize_doc(
                    {
                        "_id": item["_id"],
                        "itemName": item["itemName"],
                        "itemPrice": item["itemPrice"],
                        "unit": item["unit"],
                        "image": item["image"],
                        "isActive": item.get("isActive"),
                        "seller": seller,
                    }
                ),
                "quantity": line["quantity"],
                "totalPrice": total_price,
                "addedAt": serialize_doc(line.get("addedAt")),
            }
        )
    return {
        "items": data,
        "cartTotal": cart_total,
        "itemCount": len(data),
        "sellerCount": len(sellers),
    }


def get_summary(db: Database, buyer: dict) -> dict:
    cart = get_cart(db, buyer)
    return {
        "itemCount": cart["itemCount"],
        "sellerCount": cart["sellerCount"],
        "cartTotal": cart["cartTotal"],
        "formattedTotal": formatted_amount(cart["cartTotal"]),
    }


# ============ Routes ============
@router.post("/add")
def add_route(
    payload: CartAddRequest,
    buyer: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    data = add_item(db, buyer, payload.itemId, payload.quantity)
    merged = data.pop("merged")
    message = "Cart item updated successfully" if merged else "Item added to cart successfully"
    return {"success": True, "message": message, "data": data}


@router.get("")
def get_cart_route(buyer: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    cart = get_cart(db, buyer)
    return {
        "success": True,
        "data": cart["items"],
        "cartTotal": cart["cartTotal"],
        "itemCount": cart["itemCount"],
        "sellerCount": cart["sellerCount"],
    }


@router.put("/update")
def update_route(
    payload: CartUpdateRequest,
    buyer: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    data = update_item(db, buyer, payload.itemId, payload.quantity)
    if data.pop("removed"):
        return {"success": True, "message": "Item removed from cart successfully"}
    return {"success": True, "message": "Cart item updated successfully", "data": data}


@router.delete("/remove/{item_id}")
def remove_route(item_id: str, buyer: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    remove_item(db, buyer, item_id)
    return {"success": True, "message": "Item removed from cart successfully"}


@router.delete("/clear")
def clear_route(buyer: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    clear(db, buyer)
    return {"success": True, "message": "Cart cleared successfully"}


@router.get("/summary")
def summary_route(buyer: dict = Depends(get_current_account), db: Database = Depends(get_db)):
    return {"success": True, "data": get_summary(db, buyer)}
