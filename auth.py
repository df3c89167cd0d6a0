"""
Signup, phone verification by OTP, login and the request authentication
dependencies used by every protected route.
"""

import hmac
import logging
import math
from datetime import date, datetime, timedelta
from typing import Optional, Literal

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, EmailStr, field_validator, model_validator
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import Database, utcnow, as_utc, to_object_id
from deps import get_db, get_settings, get_sms_gateway, get_token_signer
from errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    TooManyRequestsError,
    UnauthenticatedError,
    UnauthorizedError,
)
from presenters import profile_view
from schemas import (
    Account,
    Otp,
    birth_datetime,
    check_address,
    check_birthdate,
    check_contact_no,
    check_name,
    check_otp,
    check_password,
    check_username,
)
from security import TokenSigner, hash_password, verify_password
from sms import generate_otp

log = logging.getLogger("coast2cart.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


# ============ Request models ============
class SignupRequest(BaseModel):
    firstName: str
    lastName: str
    username: str
    dateOfBirth: date
    contactNo: str
    address: str
    email: EmailStr
    password: str
    confirmPassword: str
    role: Literal["buyer", "seller"] = "buyer"

    @field_validator("firstName")
    @classmethod
    def _first_name(cls, v):
        return check_name(v, "First name")

    @field_validator("lastName")
    @classmethod
    def _last_name(cls, v):
        return check_name(v, "Last name")

    @field_validator("username")
    @classmethod
    def _username(cls, v):
        return check_username(v)

    @field_validator("dateOfBirth")
    @classmethod
    def _birthdate(cls, v):
        return check_birthdate(v)

    @field_validator("contactNo")
    @classmethod
    def _contact_no(cls, v):
        return check_contact_no(v)

    @field_validator("address")
    @classmethod
    def _address(cls, v):
        return check_address(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return v.lower()

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        return check_password(v)

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirmPassword:
            raise ValueError("Password confirmation does not match password")
        return self


class VerifyOTPRequest(BaseModel):
    contactNo: str
    otp: str

    @field_validator("contactNo")
    @classmethod
    def _contact_no(cls, v):
        return check_contact_no(v)

    @field_validator("otp")
    @classmethod
    def _otp(cls, v):
        return check_otp(v)


class ResendOTPRequest(BaseModel):
    contactNo: str

    @field_validator("contactNo")
    @classmethod
    def _contact_no(cls, v):
        return check_contact_no(v)


class LoginRequest(BaseModel):
    identifier: str
    password: str

    @field_validator("identifier")
    @classmethod
    def _identifier(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Username, email, or contact number is required")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        if not v:
            raise ValueError("Password is required")
        return v


# ============ Helpers ============
UNIQUE_FIELDS = (
    ("username", "Username"),
    ("email", "Email"),
    ("contactNo", "Contact number"),
)


APPROVAL_FIELDS = ("sellerApprovalStatus", "approvedBy", "approvedAt")


def approval_fields(role: str) -> dict:
    """Seller approval state a new account of this role starts with."""
    if role == "seller":
        return {"sellerApprovalStatus": "pending"}
    return {}


def role_change(role: str, now: datetime) -> dict:
    """Update document moving an account to role. Only sellers carry approval fields."""
    update = {"$set": {"role": role, "updatedAt": now}}
    if role == "seller":
        update["$set"]["sellerApprovalStatus"] = "pending"
        update["$unset"] = {"approvedBy": "", "approvedAt": ""}
    else:
        update["$unset"] = {field: "" for field in APPROVAL_FIELDS}
    return update


def find_conflict(db: Database, values: dict, exclude_id=None) -> Optional[tuple]:
    """Return (label, account) for the first account already holding one of values."""
    for field, label in UNIQUE_FIELDS:
        if values.get(field) is None:
            continue
        query = {field: values[field]}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        existing = db["account"].find_one(query)
        if existing:
            return label, existing
    return None


def issue_otp(db: Database, sms, settings: Settings, account: dict, now: Optional[datetime] = None) -> bool:
    """Replace any OTP held by account with a fresh one and text it. Returns whether the SMS went out."""
    now = now or utcnow()
    code = generate_otp(settings.otp_length)
    db["otp"].delete_many({"userId": account["_id"]})
    otp = Otp(
        userId=account["_id"],
        otp=code,
        expiresAt=now + timedelta(seconds=settings.otp_ttl_seconds),
    )
    db.create_document("otp", otp)
    result = sms.send_otp(account["contactNo"], code, settings.otp_ttl_seconds)
    if not result.success:
        log.warning("Failed to send OTP to %s: %s", account["contactNo"], result.error)
    return result.success


# ============ Auth service ============
def signup(db: Database, sms, settings: Settings, payload: SignupRequest, now: Optional[datetime] = None) -> dict:
    values = {
        "username": payload.username,
        "email": payload.email,
        "contactNo": payload.contactNo,
    }
    verified = {"isVerified": True}
    for field, label in UNIQUE_FIELDS:
        if db["account"].find_one({field: values[field], **verified}):
            raise ConflictError(f"{label} already exists")

    conflict = find_conflict(db, values)
    if conflict:
        _, pending = conflict
        raise ConflictError(
            "An unverified account already exists with these details. "
            "Please verify it with the OTP sent to your phone.",
            accountNotVerified=True,
            contactNo=pending["contactNo"],
        )

    account = Account(
        firstName=payload.firstName,
        lastName=payload.lastName,
        username=payload.username,
        email=payload.email,
        contactNo=payload.contactNo,
        address=payload.address,
        dateOfBirth=birth_datetime(payload.dateOfBirth),
        password=hash_password(payload.password),
        role=payload.role,
        isVerified=False,
        **approval_fields(payload.role),
    )
    try:
        account_id = db.create_document("account", account.model_dump(exclude_none=True))
    except DuplicateKeyError:
        raise ConflictError("Account already exists with provided username/email/contactNo")
    created = db.get_document_by_id("account", account_id)
    sms_sent = issue_otp(db, sms, settings, created, now)
    log.info("New %s account %s created, awaiting OTP verification", payload.role, payload.username)
    return {
        "userId": str(account_id),
        "contactNo": created["contactNo"],
        "email": created["email"],
        "role": created["role"],
        "smsSent": sms_sent,
    }


def _unverified_account(db: Database, contact_no: str) -> dict:
    account = db["account"].find_one({"contactNo": contact_no})
    if not account:
        raise NotFoundError("Account not found with this contact number")
    if account.get("isVerified"):
        raise ConflictError("Account is already verified")
    return account


def latest_otp(db: Database, account_id) -> Optional[dict]:
    found = db.get_documents(
        "otp", {"userId": account_id}, limit=1, sort=[("createdAt", DESCENDING), ("_id", DESCENDING)]
    )
    return found[0] if found else None


def can_login(account: dict) -> bool:
    return account.get("role") != "seller" or account.get("sellerApprovalStatus") == "approved"


def verify_otp(
    db: Database, signer: TokenSigner, contact_no: str, code: str, now: Optional[datetime] = None
) -> dict:
    now = now or utcnow()
    account = _unverified_account(db, contact_no)
    record = latest_otp(db, account["_id"])
    if not record:
        raise BadRequestError("No OTP found. Please request a new one")
    if now > as_utc(record["expiresAt"]):
        raise BadRequestError("OTP has expired. Please request a new one")
    if not hmac.compare_digest(record["otp"].encode("utf-8"), code.encode("utf-8")):
        raise BadRequestError("Invalid OTP")

    result = db["account"].update_one(
        {"_id": account["_id"], "isVerified": False},
        {"$set": {"isVerified": True, "updatedAt": now}},
    )
    if result.matched_count == 0:
        raise ConflictError("Account is already verified")
    db["otp"].delete_many({"userId": account["_id"]})
    account = db.get_document_by_id("account", account["_id"])

    # Sellers still wait for an admin before they get a session
    if can_login(account):
        message = "Account verified successfully."
        token = signer.create_token(account["_id"])
    else:
        message = "Account verified successfully. Your seller account is awaiting admin approval."
        token = None
    log.info("Account %s verified", account["username"])
    return {"message": message, "token": token, "user": profile_view(account)}


def resend_otp(db: Database, sms, settings: Settings, contact_no: str, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    account = _unverified_account(db, contact_no)
    active = db["otp"].find_one(
        {"userId": account["_id"], "expiresAt": {"$gt": now}},
        sort=[("expiresAt", DESCENDING)],
    )
    if active:
        remaining = math.ceil((as_utc(active["expiresAt"]) - now).total_seconds())
        raise TooManyRequestsError(
            f"Please wait {remaining} seconds before requesting a new OTP",
            retryAfter=remaining,
        )
    sms_sent = issue_otp(db, sms, settings, account, now)
    return {"contactNo": contact_no, "smsSent": sms_sent}


def login(db: Database, signer: TokenSigner, identifier: str, password: str) -> dict:
    lowered = identifier.lower()
    account = db["account"].find_one(
        {"$or": [{"username": lowered}, {"email": lowered}, {"contactNo": identifier}]}
    )
    if not account:
        raise NotFoundError("Account not found")
    if not account.get("isVerified"):
        raise UnauthenticatedError(
            "Account not verified. Please verify your phone number first.",
            accountNotVerified=True,
            contactNo=account["contactNo"],
        )
    if account.get("role") == "seller":
        status = account.get("sellerApprovalStatus")
        if status == "pending":
            raise UnauthenticatedError("Your seller account is pending admin approval.")
        if status == "rejected":
            raise UnauthenticatedError("Your seller account application has been rejected.")
    if not verify_password(password, account.get("password", "")):
        raise UnauthenticatedError("Invalid credentials")

    token = signer.create_token(account["_id"])
    log.info("User %s has successfully logged in", account["username"])
    return {"token": token, "user": profile_view(account)}


def authenticate(db: Database, signer: TokenSigner, authorization: Optional[str]) -> dict:
    """Resolve a bearer token to its account, without the password hash."""
    if not authorization:
        raise UnauthenticatedError("Access token required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("Invalid token")
    account_id = to_object_id(signer.decode_token(token.strip()))
    if account_id is None:
        raise UnauthenticatedError("Invalid token")
    account = db["account"].find_one({"_id": account_id}, {"password": 0})
    if not account:
        raise UnauthenticatedError("User not found")
    if not account.get("isVerified"):
        raise UnauthenticatedError(
            "Account not verified. Please verify your account first.",
            accountNotVerified=True,
            contactNo=account.get("contactNo"),
        )
    return account


def authorize_role(account: dict, allowed_roles) -> dict:
    if account.get("role") not in allowed_roles:
        raise UnauthorizedError("Insufficient permissions")
    return account


# ============ Dependencies ============
def get_current_account(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
) -> dict:
    return authenticate(db, signer, authorization)


def require_roles(*roles: str):
    def dependency(account: dict = Depends(get_current_account)) -> dict:
        return authorize_role(account, roles)

    return dependency


# ============ Routes ============
@router.post("/signup", status_code=201)
def signup_route(
    payload: SignupRequest,
    db: Database = Depends(get_db),
    sms=Depends(get_sms_gateway),
    settings: Settings = Depends(get_settings),
):
    data = signup(db, sms, settings, payload)
    sms_sent = data.pop("smsSent")
    return {
        "success": True,
        "message": "Account created successfully. Please verify your phone number with the OTP sent.",
        "data": data,
        "smsSent": sms_sent,
    }


@router.post("/verify-otp")
def verify_otp_route(
    payload: VerifyOTPRequest,
    db: Database = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
):
    result = verify_otp(db, signer, payload.contactNo, payload.otp)
    return {
        "success": True,
        "message": result.pop("message"),
        "data": result,
    }


@router.post("/resend-otp")
def resend_otp_route(
    payload: ResendOTPRequest,
    db: Database = Depends(get_db),
    sms=Depends(get_sms_gateway),
    settings: Settings = Depends(get_settings),
):
    data = resend_otp(db, sms, settings, payload.contactNo)
    return {"success": True, "message": "OTP resent successfully", "smsSent": data["smsSent"]}


@router.post("/login")
def login_route(
    payload: LoginRequest,
    db: Database = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
):
    data = login(db, signer, payload.identifier, payload.password)
    return {"success": True, "message": "Login successful", "data": data}
