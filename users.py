import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, parse_object_id, serialize_document, utcnow
from errors import AuthorizationError, ConflictError, NotFoundError
from responses import ok
from schemas import Role, User, UserCreate, UserUpdate
from security import Identity, get_current_user, get_optional_user, get_password_hash, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

EMAIL_TAKEN = "Email already exists."


def find_user(db: Database, user_id: str) -> dict:
    doc = db["user"].find_one({"_id": parse_object_id(user_id, "user")})
    if not doc:
        raise NotFoundError("User not found.")
    return doc


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Database = Depends(get_db),
    caller: Optional[Identity] = Depends(get_optional_user),
):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError(EMAIL_TAKEN)

    # only admins may hand out roles
    role = payload.role if payload.role and caller is not None and caller.is_admin else Role.user
    user = User(
        name=payload.name,
        email=email,
        password=get_password_hash(payload.password),
        phone=payload.phone or None,
        address=payload.address or None,
        role=role,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ConflictError(EMAIL_TAKEN)

    logger.info("Created user %s (%s)", user_id, email)
    doc = db["user"].find_one({"_id": parse_object_id(user_id)})
    return ok(serialize_document(doc), "User created successfully.")


@router.get("")
def list_users(db: Database = Depends(get_db), admin: Identity = Depends(require_admin)):
    users = get_documents(db, "user", sort=[("createdAt", DESCENDING)], projection={"password": 0})
    return ok(serialize_document(users), count=len(users))


@router.get("/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    doc = find_user(db, user_id)
    identity.ensure_can_access(doc["_id"])
    return ok(serialize_document(doc))


@router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdate,
    db: Database = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    oid = parse_object_id(user_id, "user")
    identity.ensure_can_access(oid)

    update_data = {}
    if payload.name:
        update_data["name"] = payload.name
    if payload.email:
        email = payload.email.lower()
        if db["user"].find_one({"email": email, "_id": {"$ne": oid}}):
            raise ConflictError(EMAIL_TAKEN)
        update_data["email"] = email
    if payload.password:
        update_data["password"] = get_password_hash(payload.password)
    if "phone" in payload.model_fields_set:
        update_data["phone"] = payload.phone
    if "address" in payload.model_fields_set:
        update_data["address"] = payload.address
    if payload.role:
        if not identity.is_admin:
            raise AuthorizationError("Only administrators can change roles.")
        update_data["role"] = payload.role
    update_data["updatedAt"] = utcnow()

    try:
        doc = db["user"].find_one_and_update(
            {"_id": oid},
            {"$set": update_data},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ConflictError(EMAIL_TAKEN)
    if not doc:
        raise NotFoundError("User not found.")
    return ok(serialize_document(doc), "User updated successfully.")


@router.delete("/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db), admin: Identity = Depends(require_admin)):
    res = db["user"].delete_one({"_id": parse_object_id(user_id, "user")})
    if res.deleted_count == 0:
        raise NotFoundError("User not found.")
    return ok({}, "User deleted successfully.")
