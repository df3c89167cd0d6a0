"""
Database Schemas for the Coast2Cart marketplace

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., Account -> "account").
References to other documents are stored as bson ObjectIds.
"""
import re
from datetime import date, datetime, time, timezone
from typing import List, Optional, Literal

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, EmailStr

Role = Literal["buyer", "seller", "admin", "superadmin"]
ApprovalStatus = Literal["pending", "approved", "rejected"]
ItemType = Literal["fish", "souvenirs", "food"]
Unit = Literal["kg", "pieces", "lbs", "grams"]
SaleStatus = Literal["completed", "pending", "cancelled"]

ROLES = ("buyer", "seller", "admin", "superadmin")
SIGNUP_ROLES = ("buyer", "seller")
ADMIN_ROLES = ("admin", "superadmin")

CONTACT_NO_RE = re.compile(r"^9[0-9]{9}$")
OTP_RE = re.compile(r"^[0-9]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")

# Fields never returned to a client
SECRET_FIELDS = ("password",)


def age_on(born: date, today: date) -> int:
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def is_adult(born: date, today: Optional[date] = None) -> bool:
    today = today or datetime.now(timezone.utc).date()
    return age_on(born, today) >= 18


def birth_datetime(born: date) -> datetime:
    # MongoDB has no date type; birthdays are stored as UTC midnight
    return datetime.combine(born, time.min, tzinfo=timezone.utc)


# Field validators shared by the request models

def check_username(value: str) -> str:
    value = value.strip()
    if not 3 <= len(value) <= 30:
        raise ValueError("Username must be between 3 and 30 characters")
    if not USERNAME_RE.match(value):
        raise ValueError("Username can only contain letters, numbers, and underscores")
    return value.lower()


def check_name(value: str, label: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{label} is required")
    if not 2 <= len(value) <= 50:
        raise ValueError(f"{label} must be between 2 and 50 characters")
    return value


def check_contact_no(value: str) -> str:
    value = value.strip()
    if not CONTACT_NO_RE.match(value):
        raise ValueError(
            "Please provide a valid Philippine phone number starting with 9 (e.g., 9123456789)"
        )
    return value


def check_otp(value: str) -> str:
    value = value.strip()
    if not OTP_RE.fullmatch(value):
        raise ValueError("OTP must contain only numbers")
    return value


def check_address(value: str) -> str:
    value = value.strip()
    if not 10 <= len(value) <= 200:
        raise ValueError("Address must be between 10 and 200 characters")
    return value


def check_birthdate(value: date) -> date:
    if not is_adult(value):
        raise ValueError("You must be at least 18 years old to register")
    return value


def check_password(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not PASSWORD_RE.match(value):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    return value


class Account(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    firstName: str = Field(..., description="First name")
    lastName: str = Field(..., description="Last name")
    username: str = Field(..., description="Unique, stored lowercase")
    email: EmailStr = Field(..., description="Unique, stored lowercase")
    contactNo: str = Field(..., description="Unique Philippine mobile number, 9XXXXXXXXX")
    address: str
    dateOfBirth: datetime
    password: str = Field(..., description="BCrypt password hash")
    role: Role = "buyer"
    isVerified: bool = False
    sellerApprovalStatus: Optional[ApprovalStatus] = None
    approvedBy: Optional[ObjectId] = Field(None, description="Admin account that reviewed the seller")
    approvedAt: Optional[datetime] = None


class Otp(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    userId: ObjectId = Field(..., description="Owning account")
    otp: str = Field(..., pattern=r"^[0-9]+$", description="Numeric code")
    expiresAt: datetime


class Item(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    seller: ObjectId
    itemType: ItemType
    itemName: str = Field(..., max_length=100)
    itemPrice: float = Field(..., gt=0)
    quantity: float = Field(..., ge=0)
    unit: Unit
    image: str = Field(..., description="Image host URL")
    imagePublicId: str = Field(..., description="Image host public id")
    description: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    isActive: bool = True
    catchDate: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    deletedAt: Optional[datetime] = Field(None, description="Set when the owner deletes the listing")


class Solditem(BaseModel):
    """Receipt of one sale. A snapshot of the item as it was when sold."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    item: ObjectId
    seller: ObjectId
    buyer: ObjectId
    itemType: ItemType
    itemName: str
    itemPrice: float
    quantitySold: float = Field(..., gt=0)
    unit: Unit
    totalAmount: float
    image: str
    imagePublicId: str
    saleDate: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: SaleStatus = "completed"
    notes: Optional[str] = Field(None, max_length=200)


class CartLine(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    item: ObjectId
    quantity: float = Field(..., gt=0)
    addedAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Cart(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    items: List[CartLine] = []
