import time
from dataclasses import dataclass
from typing import Optional

import bcrypt
import jwt
from fastapi import Header

from constants import JWT_ALGORITHM, JWT_EXPIRES_SECONDS, JWT_SECRET
from errors import Unauthenticated
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    username: str


def issue_token(identity: Identity, secret: str = JWT_SECRET,
                ttl_seconds: int = JWT_EXPIRES_SECONDS, now: Optional[float] = None) -> str:
    issued_at = int(now if now is not None else time.time())
    claims = {
        "sub": identity.user_id,
        "username": identity.username,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def verify_token(token: Optional[str], secret: str = JWT_SECRET, now: Optional[float] = None) -> Identity:
    """Return the identity encoded in ``token`` or raise ``Unauthenticated``.

    Expiry is checked against ``now`` (defaults to the current time) rather
    than by PyJWT so the result depends only on the arguments.
    """
    if not token or not isinstance(token, str):
        raise Unauthenticated("No token provided")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"verify_exp": False, "verify_iat": False, "require": ["sub", "exp"]},
        )
    except jwt.InvalidSignatureError as e:
        logger.debug(f"Token signature mismatch: {e}")
        raise Unauthenticated("Invalid token") from e
    except jwt.InvalidTokenError as e:
        logger.debug(f"Malformed token: {e}")
        raise Unauthenticated("Invalid token") from e

    current = now if now is not None else time.time()
    try:
        expires_at = float(claims["exp"])
    except (TypeError, ValueError) as e:
        raise Unauthenticated("Invalid token") from e
    if expires_at <= current:
        raise Unauthenticated("Token expired", reason="jwt_expired")

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise Unauthenticated("Invalid token")
    return Identity(user_id=user_id, username=str(claims.get("username") or ""))


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def get_current_identity(authorization: Optional[str] = Header(None)) -> Identity:
    """FastAPI dependency resolving the caller from ``Authorization: Bearer``."""
    return verify_token(extract_bearer(authorization))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False
