"""
Account management: own profile, admin accounts (superadmin only) and the
seller approval queue (admin and superadmin).
"""

import logging
import re
from datetime import date, datetime
from typing import Optional, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, field_validator
from pymongo import DESCENDING, ReturnDocument

from auth import SignupRequest, find_conflict, get_current_account, require_roles, role_change
from database import Database, to_object_id, utcnow
from deps import get_db
from errors import BadRequestError, ConflictError, NotFoundError
from presenters import account_view, paginate, profile_view
from schemas import (
    Account,
    ADMIN_ROLES,
    ROLES,
    birth_datetime,
    check_address,
    check_birthdate,
    check_contact_no,
    check_name,
    check_username,
)
from security import hash_password

log = logging.getLogger("coast2cart.accounts")

router = APIRouter(prefix="/accounts", tags=["accounts"])


class ProfileUpdateRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    username: Optional[str] = None
    dateOfBirth: Optional[date] = None
    contactNo: Optional[str] = None
    address: Optional[str] = None
    email: Optional[EmailStr] = None

    @field_validator("firstName")
    @classmethod
    def _first_name(cls, v):
        return check_name(v, "First name") if v is not None else v

    @field_validator("lastName")
    @classmethod
    def _last_name(cls, v):
        return check_name(v, "Last name") if v is not None else v

    @field_validator("username")
    @classmethod
    def _username(cls, v):
        return check_username(v) if v is not None else v

    @field_validator("dateOfBirth")
    @classmethod
    def _birthdate(cls, v):
        return check_birthdate(v) if v is not None else v

    @field_validator("contactNo")
    @classmethod
    def _contact_no(cls, v):
        return check_contact_no(v) if v is not None else v

    @field_validator("address")
    @classmethod
    def _address(cls, v):
        return check_address(v) if v is not None else v

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return v.lower() if v is not None else v


class AdminCreateRequest(SignupRequest):
    role: Literal["admin"] = "admin"


class ApprovalRequest(BaseModel):
    status: Literal["approved", "rejected"]


class RoleChangeRequest(BaseModel):
    role: Literal["buyer", "seller", "admin", "superadmin"]


def _search_filter(search: str) -> dict:
    if not search:
        return {}
    pattern = {"$regex": re.escape(search), "$options": "i"}
    return {
        "$or": [
            {"firstName": pattern},
            {"lastName": pattern},
            {"username": pattern},
            {"email": pattern},
        ]
    }


def _page(db: Database, query: dict, page: int, limit: int):
    docs = db.get_documents(
        "account",
        query,
        sort=[("createdAt", DESCENDING)],
        skip=(page - 1) * limit,
        limit=limit,
        projection={"password": 0},
    )
    total = db.count_documents("account", query)
    return docs, total


def _apply_update(db: Database, account: dict, payload: ProfileUpdateRequest) -> dict:
    changes = payload.model_dump(exclude_none=True)
    conflict = find_conflict(db, changes, exclude_id=account["_id"])
    if conflict:
        label, _ = conflict
        raise ConflictError(f"{label} already exists")
    if "dateOfBirth" in changes:
        changes["dateOfBirth"] = birth_datetime(changes["dateOfBirth"])
    if changes:
        db.update_document("account", account["_id"], changes)
    return db.get_document_by_id("account", account["_id"], {"password": 0})


# ============ Profile ============
def update_profile(db: Database, account: dict, payload: ProfileUpdateRequest) -> dict:
    updated = _apply_update(db, account, payload)
    log.info("User %s updated their profile", updated["username"])
    return updated


# ============ Admin accounts ============
def create_admin(db: Database, actor: dict, payload: AdminCreateRequest) -> dict:
    conflict = find_conflict(db, payload.model_dump())
    if conflict:
        label, _ = conflict
        raise ConflictError(f"{label} already exists")
    admin = Account(
        firstName=payload.firstName,
        lastName=payload.lastName,
        username=payload.username,
        email=payload.email,
        contactNo=payload.contactNo,
        address=payload.address,
        dateOfBirth=birth_datetime(payload.dateOfBirth),
        password=hash_password(payload.password),
        role="admin",
        # Admin accounts are auto-verified
        isVerified=True,
    )
    admin_id = db.create_document("account", admin.model_dump(exclude_none=True))
    log.info("Superadmin %s created admin account: %s", actor["username"], payload.username)
    return db.get_document_by_id("account", admin_id, {"password": 0})


def get_admin(db: Database, admin_id: str) -> dict:
    oid = to_object_id(admin_id)
    admin = db["account"].find_one({"_id": oid, "role": "admin"}, {"password": 0}) if oid else None
    if not admin:
        raise NotFoundError("Admin account not found")
    return admin


def update_admin(db: Database, actor: dict, admin_id: str, payload: ProfileUpdateRequest) -> dict:
    admin = get_admin(db, admin_id)
    updated = _apply_update(db, admin, payload)
    log.info("Superadmin %s updated admin account: %s", actor["username"], updated["username"])
    return updated


def delete_admin(db: Database, actor: dict, admin_id: str) -> None:
    admin = get_admin(db, admin_id)
    db.delete_document("account", admin["_id"])
    log.info("Superadmin %s deleted admin account: %s", actor["username"], admin["username"])


def change_role(db: Database, actor: dict, account_id: str, role: str) -> dict:
    oid = to_object_id(account_id)
    if oid is None or not db.get_document_by_id("account", oid):
        raise NotFoundError("Account not found")
    if oid == actor["_id"]:
        raise BadRequestError("You cannot change your own role")
    updated = db["account"].find_one_and_update(
        {"_id": oid},
        role_change(role, utcnow()),
        projection={"password": 0},
        return_document=ReturnDocument.AFTER,
    )
    log.info("Superadmin %s changed role of %s to %s", actor["username"], updated["username"], role)
    return updated


# ============ Seller approval ============
def review_seller(
    db: Database, actor: dict, seller_id: str, status: str, now: Optional[datetime] = None
) -> dict:
    """Move a pending seller to approved or rejected, recording who decided and when."""
    if status not in ("approved", "rejected"):
        raise BadRequestError("Status must be either 'approved' or 'rejected'")
    oid = to_object_id(seller_id)
    now = now or utcnow()
    seller = None
    if oid is not None:
        seller = db["account"].find_one_and_update(
            {"_id": oid, "role": "seller", "sellerApprovalStatus": "pending"},
            {
                "$set": {
                    "sellerApprovalStatus": status,
                    "approvedBy": actor["_id"],
                    "approvedAt": now,
                    "updatedAt": now,
                }
            },
            projection={"password": 0},
            return_document=ReturnDocument.AFTER,
        )
    if not seller:
        raise NotFoundError("Pending seller account not found")
    log.info("%s %s %s seller account: %s", actor["role"], actor["username"], status, seller["username"])
    return seller


# ============ Routes ============
@router.get("/profile")
def get_profile_route(account: dict = Depends(get_current_account)):
    return {"success": True, "data": {"user": profile_view(account)}}


@router.put("/profile")
def update_profile_route(
    payload: ProfileUpdateRequest,
    account: dict = Depends(get_current_account),
    db: Database = Depends(get_db),
):
    updated = update_profile(db, account, payload)
    return {"success": True, "message": "Profile updated successfully", "data": {"user": profile_view(updated)}}


@router.post("/admin", status_code=201)
def create_admin_route(
    payload: AdminCreateRequest,
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    admin = create_admin(db, actor, payload)
    return {"success": True, "message": "Admin account created successfully", "data": account_view(admin)}


@router.get("/admin")
def list_admins_route(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    query = {"role": "admin", **_search_filter(search)}
    admins, total = _page(db, query, page, limit)
    return {
        "success": True,
        "data": {
            "admins": [account_view(a) for a in admins],
            "pagination": paginate(page, limit, total, len(admins), "totalAdmins"),
        },
    }


@router.get("/admin/{admin_id}")
def get_admin_route(
    admin_id: str,
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    return {"success": True, "data": {"admin": account_view(get_admin(db, admin_id))}}


@router.put("/admin/{admin_id}")
def update_admin_route(
    admin_id: str,
    payload: ProfileUpdateRequest,
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    admin = update_admin(db, actor, admin_id, payload)
    return {"success": True, "message": "Admin account updated successfully", "data": {"admin": account_view(admin)}}


@router.delete("/admin/{admin_id}")
def delete_admin_route(
    admin_id: str,
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    delete_admin(db, actor, admin_id)
    return {"success": True, "message": "Admin account deleted successfully"}


@router.get("")
def list_accounts_route(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: str = "",
    search: str = "",
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    if role and role not in ROLES:
        raise BadRequestError(f"Role must be one of: {', '.join(ROLES)}")
    query = {**({"role": role} if role else {}), **_search_filter(search)}
    accounts, total = _page(db, query, page, limit)
    role_counts = {
        row["_id"]: row["count"]
        for row in db["account"].aggregate([{"$group": {"_id": "$role", "count": {"$sum": 1}}}])
    }
    return {
        "success": True,
        "data": {
            "accounts": [account_view(a) for a in accounts],
            "pagination": paginate(page, limit, total, len(accounts), "totalAccounts"),
            "roleCounts": role_counts,
        },
    }


@router.patch("/{account_id}/role")
def change_role_route(
    account_id: str,
    payload: RoleChangeRequest,
    actor: dict = Depends(require_roles("superadmin")),
    db: Database = Depends(get_db),
):
    updated = change_role(db, actor, account_id, payload.role)
    return {"success": True, "message": "Role updated successfully", "data": account_view(updated)}


@router.get("/sellers/pending")
def pending_sellers_route(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    actor: dict = Depends(require_roles(*ADMIN_ROLES)),
    db: Database = Depends(get_db),
):
    # Only verified sellers are worth reviewing
    query = {"role": "seller", "sellerApprovalStatus": "pending", "isVerified": True, **_search_filter(search)}
    sellers, total = _page(db, query, page, limit)
    return {
        "success": True,
        "data": {
            "pendingSellers": [account_view(s) for s in sellers],
            "pagination": paginate(page, limit, total, len(sellers), "totalPending"),
        },
    }


@router.put("/sellers/{seller_id}/approval")
def review_seller_route(
    seller_id: str,
    payload: ApprovalRequest,
    actor: dict = Depends(require_roles(*ADMIN_ROLES)),
    db: Database = Depends(get_db),
):
    seller = review_seller(db, actor, seller_id, payload.status)
    return {
        "success": True,
        "message": f"Seller account {payload.status} successfully",
        "data": {"seller": account_view(seller)},
    }
