from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

from jose import jwt, JWTError
import structlog

from finapprove.config import settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class Actor:
    """The acting user, passed explicitly to every workflow operation."""

    id: uuid.UUID
    role: str
    department: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: dict) -> "Actor":
        return cls(
            id=uuid.UUID(str(claims["sub"])),
            role=claims["role"],
            department=claims.get("department"),
            email=claims.get("email"),
            name=claims.get("name"),
        )


# ---------- key loading ----------

_public_key: Optional[str] = None


def _load_public_key() -> str:
    global _public_key
    if _public_key is None:
        with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
            _public_key = f.read()
    return _public_key


def _verification_key() -> str:
    if settings.JWT_ALGORITHM.startswith("RS"):
        return _load_public_key()
    return settings.JWT_SECRET_KEY


# ---------- token generation (shared-secret deployments and tests) ----------

def create_access_token(
    user_id: uuid.UUID,
    role: str,
    email: str,
    department: Optional[str] = None,
    name: Optional[str] = None,
) -> str:
    if settings.JWT_ALGORITHM.startswith("RS"):
        raise RuntimeError("Tokens are issued by the identity provider in RS256 deployments")
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
    }
    if department:
        claims["department"] = department
    if name:
        claims["name"] = name
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ---------- token verification ----------

def decode_token(token: str) -> dict:
    """Decode and verify a JWT. Raises JWTError on failure."""
    return jwt.decode(token, _verification_key(), algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    if not payload.get("sub") or not payload.get("role"):
        raise JWTError("Token is missing subject or role")
    return payload
