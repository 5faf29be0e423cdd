import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, Request
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

import settings
from database import parse_object_id
from errors import Forbidden, Unauthenticated

logger = logging.getLogger("aynwine.security")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class RequestContext(BaseModel):
    """Verified caller identity handed to the services."""
    user_id: str
    email: EmailStr
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user_doc: Dict[str, Any], secret: str = settings.JWT_SECRET,
                 expires_minutes: int = settings.JWT_EXP_MIN) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_doc.get("_id")),
        "email": user_doc.get("email"),
        "role": user_doc.get("role", "customer"),
        "exp": issued + timedelta(minutes=expires_minutes),
        "iat": issued,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_token(token: str, secret: str = settings.JWT_SECRET) -> RequestContext:
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid or expired token")
    try:
        return RequestContext(user_id=payload["sub"], email=payload["email"], role=payload.get("role", "customer"))
    except (KeyError, ValueError):
        raise Unauthenticated("Invalid or expired token")


def get_request_context(request: Request, authorization: Optional[str] = Header(default=None)) -> RequestContext:
    """FastAPI dependency: resolve the bearer token into a RequestContext.

    The role is taken from the stored user rather than the token, so a demoted
    admin loses access without waiting for the token to expire.
    """
    if not authorization:
        raise Unauthenticated("No authentication token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated("Invalid authorization header")
    ctx = decode_token(token, request.app.state.jwt_secret)
    oid = parse_object_id(ctx.user_id)
    user = request.app.state.db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise Unauthenticated("User not found")
    return RequestContext(user_id=ctx.user_id, email=user["email"], role=user.get("role", "customer"))


def require_admin(ctx: RequestContext) -> None:
    if not ctx.is_admin:
        logger.warning("Admin access denied for user %s", ctx.user_id)
        raise Forbidden("Admin access required")
