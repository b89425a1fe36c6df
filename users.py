import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import mailer
from database import create_document, get_db, serialize_doc, to_object_id
from schemas import (
    ADMIN,
    VISITOR,
    ForgotPasswordInput,
    LoginInput,
    LoginResponse,
    ResetPasswordInput,
    User,
    UserCreate,
    UserOut,
    UserUpdate,
)
from security import (
    CurrentUser,
    create_access_token,
    dummy_verify,
    ensure_password_complexity,
    ensure_self_or_admin,
    get_current_user,
    get_password_hash,
    require_admin,
    verify_password,
)

router = APIRouter(prefix="/users", tags=["users"])

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
RECOVERY_REQUESTED = "If the email is registered, a recovery code has been sent."
INVALID_RECOVERY_CODE = "Invalid or expired recovery code"

# Never sent to clients
PRIVATE_FIELDS = {"password_hash": 0, "recovery_code": 0, "recovery_code_expires_at": 0}


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(doc)
    for field in PRIVATE_FIELDS:
        user.pop(field, None)
    return user


def ensure_admin(db: Database) -> None:
    """Create the bootstrap administrator from ADMIN_EMAIL / ADMIN_PASSWORD if missing."""
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        return
    email = email.lower()
    if db["user"].find_one({"email": email}):
        return
    admin = User(
        name=os.getenv("ADMIN_NAME", "Administrator"),
        email=email,
        password_hash=get_password_hash(password),
        role=ADMIN,
    )
    create_document(db, "user", admin.model_dump(exclude_none=True))
    logger.info("admin_bootstrapped", email=email)


@router.get("", response_model=List[UserOut])
def list_users(db: Database = Depends(get_db), _admin: CurrentUser = Depends(require_admin)):
    return [public_user(u) for u in db["user"].find({}, PRIVATE_FIELDS)]


@router.post("", status_code=201, response_model=UserOut)
def register(payload: UserCreate, db: Database = Depends(get_db)):
    ensure_password_complexity(payload.password)
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        name=payload.name,
        email=email,
        password_hash=get_password_hash(payload.password),
        role=VISITOR,
    )
    try:
        doc = create_document(db, "user", user.model_dump(exclude_none=True))
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered")
    logger.info("user_registered", user_id=str(doc["_id"]))
    return public_user(doc)


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginInput, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        dummy_verify()
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    user_id = str(user["_id"])
    return {
        "id": user_id,
        "name": user["name"],
        "email": user["email"],
        "role": user["role"],
        "token": create_access_token(user_id, user["role"]),
    }


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordInput, background_tasks: BackgroundTasks, db: Database = Depends(get_db)):
    code = secrets.token_hex(3).upper()
    now = datetime.now(timezone.utc)
    user = db["user"].find_one_and_update(
        {"email": payload.email.lower()},
        {"$set": {
            "recovery_code": code,
            "recovery_code_expires_at": now + timedelta(minutes=mailer.RECOVERY_CODE_TTL_MINUTES),
            "updated_at": now,
        }},
    )
    if user:
        background_tasks.add_task(mailer.send_recovery_code, user["email"], user["name"], code)
    logger.info("password_recovery_requested")
    return {"message": RECOVERY_REQUESTED}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordInput, db: Database = Depends(get_db)):
    ensure_password_complexity(payload.new_password, field="new_password")
    now = datetime.now(timezone.utc)
    # Matching and clearing the code in one update keeps it single-use
    result = db["user"].update_one(
        {
            "email": payload.email.lower(),
            "recovery_code": payload.recovery_code.upper(),
            "recovery_code_expires_at": {"$gt": now},
        },
        {
            "$set": {"password_hash": get_password_hash(payload.new_password), "updated_at": now},
            "$unset": {"recovery_code": "", "recovery_code_expires_at": ""},
        },
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=400, detail=INVALID_RECOVERY_CODE)
    logger.info("password_reset")
    return {"message": "Password changed successfully."}


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: str, db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id)
    obj_id = to_object_id(user_id)
    user = db["user"].find_one({"_id": obj_id}, PRIVATE_FIELDS) if obj_id else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


@router.put("/{user_id}", response_model=UserOut)
def update_user(user_id: str, payload: UserUpdate, db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id)
    data = payload.model_dump(exclude_unset=True)
    if "role" in data and not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can change roles")
    if "password" in data:
        ensure_password_complexity(data["password"])

    obj_id = to_object_id(user_id)
    if obj_id is None:
        raise HTTPException(status_code=404, detail="User not found")

    update: Dict[str, Any] = {}
    if "name" in data:
        update["name"] = data["name"]
    if "email" in data:
        email = data["email"].lower()
        if db["user"].find_one({"email": email, "_id": {"$ne": obj_id}}):
            raise HTTPException(status_code=409, detail="Email already registered to another user")
        update["email"] = email
    if "password" in data:
        update["password_hash"] = get_password_hash(data["password"])
    if "role" in data:
        update["role"] = data["role"]
    if not update:
        raise HTTPException(status_code=400, detail="No fields to update")
    update["updated_at"] = datetime.now(timezone.utc)

    try:
        user = db["user"].find_one_and_update(
            {"_id": obj_id}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered to another user")
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


@router.delete("/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db), _admin: CurrentUser = Depends(require_admin)):
    obj_id = to_object_id(user_id)
    user = db["user"].find_one_and_delete({"_id": obj_id}) if obj_id else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    cart = db["cart"].find_one_and_delete({"user_id": user_id})
    if cart:
        db["cartitem"].delete_many({"cart_id": str(cart["_id"])})
    logger.info("user_deleted", user_id=user_id)
    return {"message": f"User {user['name']} deleted"}
