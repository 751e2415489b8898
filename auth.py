import logging

from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db, parse_object_id, serialize_document
from errors import AuthenticationError, NotFoundError, ValidationError
from responses import ok
from schemas import LoginPayload
from security import Identity, get_current_user, get_settings, token_for_user, verify_password
from settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
def login(payload: LoginPayload, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if not payload.email or not payload.password:
        raise ValidationError("Please enter your email and password.")

    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not user.get("password") or not verify_password(payload.password, user["password"]):
        raise AuthenticationError("Incorrect email or password.")

    token = token_for_user(user, settings)
    logger.info("User %s logged in", user["_id"])
    return ok(
        serialize_document(user),
        "Logged in successfully.",
        token=token,
        tokenType="Bearer",
        expiresIn=settings.jwt_expire,
    )


@router.get("/me")
def me(db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    user = db["user"].find_one({"_id": parse_object_id(identity.user_id, "user")})
    if not user:
        raise NotFoundError("User not found.")
    return ok(serialize_document(user))
