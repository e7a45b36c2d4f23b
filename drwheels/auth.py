import logging
import time
from typing import Optional

import jwt
from fastapi import Depends, Request
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import config, models
from .db import get_db
from .errors import Unauthorized

logger = logging.getLogger(__name__)

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

ALGORITHM = "HS256"

_warned_default_secret = False


def _secret() -> str:
    global _warned_default_secret
    if config.state.jwt_secret_is_default and not _warned_default_secret:
        logger.warning("JWT_SECRET not set, using default. Set JWT_SECRET in .env for production!")
        _warned_default_secret = True
    return config.state.jwt_secret


def create_access_token(user_id: int, role: str, expires_delta: Optional[int] = None) -> str:
    now = int(time.time())
    exp = now + (expires_delta if expires_delta is not None else config.state.jwt_expire_seconds)
    payload = {"sub": str(user_id), "role": role, "iat": now, "exp": exp}
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, _secret(), algorithms=[ALGORITHM])


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def is_admin(user: models.User) -> bool:
    return user.role == "admin"


def can_mutate(actor: models.User, owner_id: Optional[int]) -> bool:
    """Ownership check: the resource's owner or any admin may act on it."""
    return actor.id == owner_id or is_admin(actor)


def can_access(actor: models.User, *party_ids: Optional[int]) -> bool:
    """Read check for shared resources: any listed party or an admin."""
    return any(can_mutate(actor, party_id) for party_id in party_ids) or is_admin(actor)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    """Resolve the bearer token on the request to a stored user."""
    parts = request.headers.get("authorization", "").split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("No token, authorization denied")
    token = parts[1].strip()
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise Unauthorized("Token is not valid")

    user = db.get(models.User, user_id)
    if not user:
        raise Unauthorized("User not found")
    return user
