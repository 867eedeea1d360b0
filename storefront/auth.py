import time
from typing import Optional

import jwt
from fastapi import Depends, Request
from passlib.context import CryptContext
from pydantic import ValidationError

from .errors import Forbidden, InvalidToken, Unauthenticated
from .models import Role
from .schemas import Principal

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


def create_access_token(principal: Principal, secret: str, expires_in: int) -> str:
    now = int(time.time())
    payload = {
        "sub": str(principal.id),
        "username": principal.username,
        "email": principal.email,
        "role": principal.role.value,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> Principal:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
        return Principal(
            id=int(payload["sub"]),
            username=payload.get("username"),
            email=payload.get("email"),
            role=payload.get("role"),
        )
    except (jwt.PyJWTError, ValidationError, ValueError) as e:
        raise InvalidToken() from e


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token part of an `Authorization: Bearer <token>` header."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    parts = authorization.split(None, 1)
    if len(parts) != 2 or not parts[1].strip():
        return None
    return parts[1].strip()


# -------------------- Request guards --------------------

async def get_principal(request: Request) -> Principal:
    token = bearer_token(request.headers.get("authorization"))
    if token is None:
        raise Unauthenticated()
    principal = decode_access_token(token, request.app.state.settings.jwt_secret)
    request.state.principal = principal
    return principal


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != Role.admin:
        raise Forbidden("access denied: admin role required")
    return principal


async def require_buyer(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != Role.buyer:
        raise Forbidden("access denied: only buyers have a cart")
    return principal
