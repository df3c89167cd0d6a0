"""
Read-side projections. Derived values (formatted prices, fish freshness, time
since a sale) are computed here from the stored document and the current time,
so nothing presentational is ever persisted.
"""

from datetime import datetime
from typing import Optional

from database import as_utc, serialize_doc, utcnow

# Account fields exposed when an account is embedded in another document
PUBLIC_ACCOUNT_FIELDS = {
    "firstName": 1,
    "lastName": 1,
    "username": 1,
    "email": 1,
    "contactNo": 1,
    "address": 1,
}

PESO = "₱"


def formatted_amount(amount: float) -> str:
    return f"{PESO}{amount:.2f}"


def formatted_quantity(quantity: float, unit: Optional[str]) -> str:
    if float(quantity).is_integer():
        quantity = int(quantity)
    return f"{quantity} {unit or ''}".strip()


def freshness(item: dict, now: Optional[datetime] = None) -> Optional[str]:
    """Freshness bucket for fish, by hours since catch. None for other item types."""
    if item.get("itemType") != "fish" or not item.get("catchDate"):
        return None
    now = now or utcnow()
    hours = (now - as_utc(item["catchDate"])).total_seconds() / 3600
    if hours <= 24:
        return "Very Fresh"
    if hours <= 48:
        return "Fresh"
    if hours <= 72:
        return "Good"
    return "Check Freshness"


def time_since_sale(sale_date: datetime, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    hours = int((now - as_utc(sale_date)).total_seconds() // 3600)
    days = hours // 24
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours} hrs ago"
    if days == 1:
        return "1 day ago"
    return f"{days} days ago"


def item_view(item: dict, now: Optional[datetime] = None, image_host=None) -> dict:
    view = serialize_doc(item)
    view.pop("deletedAt", None)
    view["formattedPrice"] = formatted_amount(item["itemPrice"])
    view["formattedQuantity"] = formatted_quantity(item["quantity"], item.get("unit"))
    view["freshness"] = freshness(item, now)
    if image_host is not None and item.get("imagePublicId") and getattr(image_host, "is_configured", True):
        view["optimizedImageUrl"] = image_host.optimized_url(item["imagePublicId"])
    return view


def receipt_view(receipt: dict, now: Optional[datetime] = None) -> dict:
    view = serialize_doc(receipt)
    view["formattedPrice"] = formatted_amount(receipt["itemPrice"])
    view["formattedTotalAmount"] = formatted_amount(receipt["totalAmount"])
    view["formattedQuantity"] = formatted_quantity(receipt["quantitySold"], receipt.get("unit"))
    view["timeSinceSale"] = time_since_sale(receipt["saleDate"], now)
    return view


def profile_view(account: dict) -> dict:
    """Role-appropriate profile. Never includes the password hash."""
    view = {
        "id": str(account["_id"]),
        "firstName": account.get("firstName"),
        "lastName": account.get("lastName"),
        "username": account.get("username"),
        "email": account.get("email"),
        "contactNo": account.get("contactNo"),
        "role": account.get("role"),
        "isVerified": account.get("isVerified", False),
        "createdAt": account.get("createdAt"),
        "updatedAt": account.get("updatedAt"),
    }
    role = account.get("role")
    if role in ("buyer", "seller"):
        view["address"] = account.get("address")
        view["dateOfBirth"] = account.get("dateOfBirth")
    if role == "seller":
        view["sellerApprovalStatus"] = account.get("sellerApprovalStatus")
        view["approvedBy"] = account.get("approvedBy")
        view["approvedAt"] = account.get("approvedAt")
    return serialize_doc(view)


def account_view(account: dict) -> dict:
    """Full account record for admin listings, minus secrets."""
    view = {k: v for k, v in account.items() if k != "password"}
    return serialize_doc(view)


def paginate(page: int, limit: int, total: int, returned: int, total_key: str = "totalItems") -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    skip = (page - 1) * limit
    return {
        "currentPage": page,
        "totalPages": pages,
        total_key: total,
        "itemsPerPage": limit,
        "hasNext": skip + returned < total,
        "hasPrev": page > 1,
    }
