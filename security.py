from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from errors import AuthenticationError, AuthorizationError
from schemas import Role
from settings import Settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


class Identity(BaseModel):
    """Caller identity decoded from a verified access token"""
    user_id: str
    email: str
    name: Optional[str] = None
    role: Role = Role.user

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin

    def ensure_can_access(self, owner_id: Any, message: str = "You do not have permission to access this resource.") -> None:
        if not self.is_admin and str(owner_id) != self.user_id:
            raise AuthorizationError(message)


# Helper functions for auth

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or settings.token_lifetime)
    to_encode.update({"exp": expire, "iss": settings.jwt_issuer, "aud": settings.jwt_audience})
    encoded_jwt = jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return encoded_jwt


def token_for_user(user: dict, settings: Settings) -> str:
    return create_access_token(
        {
            "userId": str(user["_id"]),
            "email": user["email"],
            "name": user.get("name"),
            "role": user.get("role") or Role.user.value,
        },
        settings,
    )


def decode_access_token(token: str, settings: Settings) -> Identity:
    invalid = AuthorizationError("Invalid or expired token.")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
        return Identity(
            user_id=payload.get("userId"),
            email=payload.get("email"),
            name=payload.get("name"),
            role=payload.get("role") or Role.user,
        )
    except (JWTError, PydanticValidationError):
        raise invalid


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> Identity:
    if not token:
        raise AuthenticationError("Authentication token is required.")
    return decode_access_token(token, settings)


def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> Optional[Identity]:
    if not token:
        return None
    return decode_access_token(token, settings)


def require_role(role: Role):
    """Build a dependency that only lets callers with ``role`` through"""

    def dependency(identity: Identity = Depends(get_current_user)) -> Identity:
        if identity.role != role:
            raise AuthorizationError(f"{role.value.capitalize()} privileges are required.")
        return identity

    return dependency


require_admin = require_role(Role.admin)
