"""
Item catalog, the sell transaction and sold-item receipts.

Selling is the one multi-document write. Stock is reserved with a single
conditional decrement ("take q if at least q remain"), then the receipt is
written; if the receipt cannot be written the decrement is given back.
"""

import logging
import math
import re
from datetime import datetime
from typing import Optional, Literal

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field, ValidationError, field_validator
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from auth import get_current_account, require_roles
from config import Settings
from database import Database, to_object_id, utcnow
from deps import get_db, get_image_host, get_settings
from errors import BadRequestError, NotFoundError, UnauthorizedError
from images import ImageUpload, discard_image, validate_image
from presenters import PUBLIC_ACCOUNT_FIELDS, item_view, paginate, receipt_view
from schemas import ADMIN_ROLES, Item, ItemType, Solditem, Unit

log = logging.getLogger("coast2cart.items")

router = APIRouter(prefix="/items", tags=["items"])

SORT_FIELDS = {
    "catchDate": "catchDate",
    "price": "itemPrice",
    "itemPrice": "itemPrice",
    "name": "itemName",
    "itemName": "itemName",
}

# Listings the owner deleted stay in the collection for their receipts
NOT_DELETED = {"deletedAt": None}


# ============ Request models ============
class ItemCreateRequest(BaseModel):
    itemType: ItemType
    itemName: str = Field(..., min_length=1, max_length=100)
    itemPrice: float = Field(..., gt=0, allow_inf_nan=False)
    quantity: float = Field(..., ge=0, allow_inf_nan=False)
    unit: Unit
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    catchDate: Optional[datetime] = None

    @field_validator("itemName", "description", "location", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class ItemUpdateRequest(BaseModel):
    itemType: Optional[ItemType] = None
    itemName: Optional[str] = Field(None, min_length=1, max_length=100)
    itemPrice: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    quantity: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    unit: Optional[Unit] = None
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    catchDate: Optional[datetime] = None

    @field_validator("itemName", "description", "location", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class StatusRequest(BaseModel):
    isActive: bool


class SellRequest(BaseModel):
    quantitySold: float = Field(..., gt=0, allow_inf_nan=False)
    buyerId: str
    notes: Optional[str] = Field(None, max_length=200)


def _validated(model, data: dict):
    try:
        return model(**{k: v for k, v in data.items() if v is not None and v != ""})
    except ValidationError as e:
        messages = []
        for error in e.errors():
            field = ".".join(str(p) for p in error["loc"])
            messages.append(f"{field}: {error['msg']}" if field else error["msg"])
        raise BadRequestError(", ".join(messages))


def _read_upload(image: Optional[UploadFile]) -> Optional[ImageUpload]:
    if image is None or not image.filename:
        return None
    return ImageUpload(filename=image.filename, content_type=image.content_type, data=image.file.read())


# ============ Catalog service ============
def _with_seller(db: Database, items: list) -> list:
    return db.populate(items, "seller", "account", PUBLIC_ACCOUNT_FIELDS)


def find_item(db: Database, item_id: str) -> dict:
    oid = to_object_id(item_id)
    item = db["item"].find_one({"_id": oid, **NOT_DELETED}) if oid else None
    if not item:
        raise NotFoundError("Item not found")
    return item


def _owned_item(db: Database, item_id: str, caller: dict, action: str) -> dict:
    item = find_item(db, item_id)
    if item["seller"] != caller["_id"]:
        raise UnauthorizedError(f"You can only {action} your own items")
    return item


def create_item(
    db: Database, images, settings: Settings, seller: dict, fields: ItemCreateRequest, upload: Optional[ImageUpload]
) -> dict:
    validate_image(upload, settings.max_image_bytes)
    hosted = images.upload(upload)
    values = fields.model_dump(exclude_none=True)
    item = Item(seller=seller["_id"], image=hosted.url, imagePublicId=hosted.public_id, **values)
    try:
        item_id = db.create_document("item", item)
    except Exception:
        discard_image(images, hosted.public_id)
        raise
    log.info("Seller %s listed %s", seller["username"], fields.itemName)
    return _with_seller(db, [db.get_document_by_id("item", item_id)])[0]


def update_item(
    db: Database,
    images,
    settings: Settings,
    item_id: str,
    caller: dict,
    fields: ItemUpdateRequest,
    upload: Optional[ImageUpload] = None,
) -> dict:
    item = _owned_item(db, item_id, caller, "update")
    changes = fields.model_dump(exclude_none=True)
    if upload is not None:
        validate_image(upload, settings.max_image_bytes)
        hosted = images.upload(upload)
        changes["image"] = hosted.url
        changes["imagePublicId"] = hosted.public_id
    try:
        if changes:
            db.update_document("item", item["_id"], changes)
    except Exception:
        if upload is not None:
            discard_image(images, changes["imagePublicId"])
        raise
    if upload is not None:
        discard_image(images, item.get("imagePublicId"))
    return _with_seller(db, [db.get_document_by_id("item", item["_id"])])[0]


def set_active_status(db: Database, item_id: str, caller: dict, is_active: bool) -> dict:
    item = _owned_item(db, item_id, caller, "update")
    if is_active and item["quantity"] <= 0:
        raise BadRequestError("Cannot activate an item with no remaining quantity")
    db.update_document("item", item["_id"], {"isActive": is_active})
    return _with_seller(db, [db.get_document_by_id("item", item["_id"])])[0]


def delete_item(db: Database, images, item_id: str, caller: dict) -> None:
    item = _owned_item(db, item_id, caller, "delete")
    discard_image(images, item.get("imagePublicId"))
    db.update_document("item", item["_id"], {"isActive": False, "deletedAt": utcnow()})
    log.info("Seller %s deleted item %s", caller["username"], item["_id"])


def list_items(
    db: Database,
    item_type: Optional[str] = None,
    seller: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "catchDate",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
):
    query = {"isActive": True, **NOT_DELETED}
    if item_type:
        query["itemType"] = item_type
    if seller:
        seller_id = to_object_id(seller)
        if seller_id is None:
            return [], 0
        query["seller"] = seller_id
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"itemName": pattern}, {"description": pattern}]
    if sort_by not in SORT_FIELDS:
        raise BadRequestError(f"sortBy must be one of: {', '.join(SORT_FIELDS)}")
    direction = ASCENDING if sort_order == "asc" else DESCENDING
    items = db.get_documents(
        "item",
        query,
        sort=[(SORT_FIELDS[sort_by], direction), ("_id", direction)],
        skip=(page - 1) * limit,
        limit=limit,
    )
    return _with_seller(db, items), db.count_documents("item", query)


def list_by_seller(
    db: Database,
    seller_id: str,
    is_active: Optional[bool] = None,
    item_type: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
):
    oid = to_object_id(seller_id)
    if oid is None:
        raise NotFoundError("Seller not found")
    query = {"seller": oid, **NOT_DELETED}
    if is_active is not None:
        query["isActive"] = is_active
    if item_type:
        query["itemType"] = item_type
    items = db.get_documents(
        "item", query, sort=[("catchDate", DESCENDING)], skip=(page - 1) * limit, limit=limit
    )
    return _with_seller(db, items), db.count_documents("item", query)


# ============ Sale transaction ============
def sell(
    db: Database,
    item_id: str,
    caller: dict,
    quantity_sold: float,
    buyer_id: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()
    if not math.isfinite(quantity_sold) or quantity_sold <= 0:
        raise BadRequestError("Quantity sold must be greater than 0")
    item = _owned_item(db, item_id, caller, "sell")
    if not item.get("isActive"):
        raise BadRequestError("Cannot sell inactive item")
    if quantity_sold > item["quantity"]:
        raise BadRequestError("Insufficient quantity available")
    buyer = db.get_document_by_id("account", buyer_id, {"_id": 1})
    if not buyer:
        raise NotFoundError("Buyer not found")

    # Check and decrement in one statement; a concurrent sale sees the new stock
    reserved = db["item"].find_one_and_update(
        {"_id": item["_id"], "isActive": True, "quantity": {"$gte": quantity_sold}, **NOT_DELETED},
        {"$inc": {"quantity": -quantity_sold}, "$set": {"updatedAt": now}},
        return_document=ReturnDocument.AFTER,
    )
    if reserved is None:
        raise BadRequestError("Insufficient quantity available")

    # Everything after the decrement is undone by giving the stock back
    deactivated = False
    try:
        receipt = Solditem(
            item=reserved["_id"],
            seller=reserved["seller"],
            buyer=buyer["_id"],
            itemType=reserved["itemType"],
            itemName=reserved["itemName"],
            itemPrice=reserved["itemPrice"],
            quantitySold=quantity_sold,
            unit=reserved["unit"],
            totalAmount=round(reserved["itemPrice"] * quantity_sold, 2),
            image=reserved["image"],
            imagePublicId=reserved["imagePublicId"],
            saleDate=now,
            notes=notes,
        )
        if reserved["quantity"] <= 0:
            result = db["item"].update_one(
                {"_id": item["_id"], "quantity": {"$lte": 0}, "isActive": True},
                {"$set": {"isActive": False}},
            )
            deactivated = result.modified_count > 0
        receipt_id = db.create_document("solditem", receipt)
    except Exception:
        log.exception("Recording sale of item %s failed, restoring stock", item["_id"])
        restore = {"$inc": {"quantity": quantity_sold}}
        if deactivated:
            restore["$set"] = {"isActive": True}
        db["item"].update_one({"_id": item["_id"]}, restore)
        raise

    log.info(
        "Seller %s sold %s %s of item %s", caller["username"], quantity_sold, reserved["unit"], item["_id"]
    )
    saved = [db.get_document_by_id("solditem", receipt_id)]
    db.populate(saved, "seller", "account", PUBLIC_ACCOUNT_FIELDS)
    db.populate(saved, "buyer", "account", PUBLIC_ACCOUNT_FIELDS)
    return saved[0]


def list_sold(
    db: Database, party: str, account_id: str, item_type: Optional[str] = None, page: int = 1, limit: int = 20
):
    """Receipts where ``party`` ("seller" or "buyer") is account_id, newest first."""
    oid = to_object_id(account_id)
    if oid is None:
        return [], 0
    query = {party: oid}
    if item_type:
        query["itemType"] = item_type
    receipts = db.get_documents(
        "solditem", query, sort=[("saleDate", DESCENDING)], skip=(page - 1) * limit, limit=limit
    )
    other = "buyer" if party == "seller" else "seller"
    db.populate(receipts, other, "account", PUBLIC_ACCOUNT_FIELDS)
    return receipts, db.count_documents("solditem", query)


def _check_history_access(caller: dict, account_id: str) -> None:
    if str(caller["_id"]) != account_id and caller.get("role") not in ADMIN_ROLES:
        raise UnauthorizedError("You can only view your own sales history")


# ============ Routes ============
@router.get("")
def list_items_route(
    itemType: Optional[ItemType] = None,
    seller: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: str = "catchDate",
    sortOrder: Literal["asc", "desc"] = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Database = Depends(get_db),
    images=Depends(get_image_host),
):
    items, total = list_items(db, itemType, seller, search, sortBy, sortOrder, page, limit)
    now = utcnow()
    return {
        "success": True,
        "data": [item_view(i, now, images) for i in items],
        "pagination": paginate(page, limit, total, len(items)),
    }


@router.post("", status_code=201)
def create_item_route(
    itemType: str = Form(None),
    itemName: str = Form(None),
    itemPrice: str = Form(None),
    quantity: str = Form(None),
    unit: str = Form(None),
    description: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    catchDate: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    seller: dict = Depends(require_roles("seller")),
    db: Database = Depends(get_db),
    images=Depends(get_image_host),
    settings: Settings = Depends(get_settings),
):
    fields = _validated(
        ItemCreateRequest,
        {
            "itemType": itemType,
            "itemName": itemName,
            "itemPrice": itemPrice,
            "quantity": quantity,
            "unit": unit,
            "description": description,
            "location": location,
            "catchDate": catchDate,
        },
    )
    item = create_item(db, images, settings, seller, fields, _read_upload(image))
    return {"success": True, "message": "Item created successfully", "data": item_view(item, image_host=images)}


@router.get("/seller/{seller_id}")
def list_by_seller_route(
    seller_id: str,
    isActive: Optional[bool] = None,
    itemType: Optional[ItemType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Database = Depends(get_db),
    images=Depends(get_image_host),
):
    items, total = list_by_seller(db, seller_id, isActive, itemType, page, limit)
    now = utcnow()
    return {
        "success": True,
        "data": [item_view(i, now, images) for i in items],
        "pagination": paginate(page, limit, total, len(items)),
    }


@router.get("/sold/seller/{seller_id}")
def sold_by_seller_route(
    seller_id: str,
    itemType: Optional[ItemType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    _check_history_access(caller, seller_id)
    receipts, total = list_sold(db, "seller", seller_id, itemType, page, limit)
    now = utcnow()
    return {
        "success": True,
        "data": [receipt_view(r, now) for r in receipts],
        "pagination": paginate(page, limit, total, len(receipts)),
    }


@router.get("/sold/buyer/{buyer_id}")
def sold_to_buyer_route(
    buyer_id: str,
    itemType: Optional[ItemType] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    _check_history_access(caller, buyer_id)
    receipts, total = list_sold(db, "buyer", buyer_id, itemType, page, limit)
    now = utcnow()
    return {
        "success": True,
        "data": [receipt_view(r, now) for r in receipts],
        "pagination": paginate(page, limit, total, len(receipts)),
    }


@router.get("/{item_id}")
def get_item_route(item_id: str, db: Database = Depends(get_db), images=Depends(get_image_host)):
    item = _with_seller(db, [find_item(db, item_id)])[0]
    return {"success": True, "data": item_view(item, image_host=images)}


@router.put("/{item_id}")
def update_item_route(
    item_id: str,
    itemType: Optional[str] = Form(None),
    itemName: Optional[str] = Form(None),
    itemPrice: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    unit: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    catchDate: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    caller: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
    images=Depends(get_image_host),
    settings: Settings = Depends(get_settings),
):
    fields = _validated(
        ItemUpdateRequest,
        {
            "itemType": itemType,
            "itemName": itemName,
            "itemPrice": itemPrice,
            "quantity": quantity,
            "unit": unit,
            "description": description,
            "location": location,
            "catchDate": catchDate,
        },
    )
    item = update_item(db, images, settings, item_id, caller, fields, _read_upload(image))
    return {"success": True, "message": "Item updated successfully", "data": item_view(item, image_host=images)}


@router.delete("/{item_id}")
def delete_item_route(
    item_id: str,
    caller: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
    images=Depends(get_image_host),
):
    delete_item(db, images, item_id, caller)
    return {"success": True, "message": "Item deleted successfully"}


@router.patch("/{item_id}/status")
def set_status_route(
    item_id: str,
    payload: StatusRequest,
    caller: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
    images=Depends(get_image_host),
):
    item = set_active_status(db, item_id, caller, payload.isActive)
    state = "activated" if payload.isActive else "deactivated"
    return {"success": True, "message": f"Item {state} successfully", "data": item_view(item, image_host=images)}


@router.post("/{item_id}/sell", status_code=201)
def sell_route(
    item_id: str,
    payload: SellRequest,
    caller: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    receipt = sell(db, item_id, caller, payload.quantitySold, payload.buyerId, payload.notes)
    return {"success": True, "message": "Item sold successfully", "data": receipt_view(receipt)}
