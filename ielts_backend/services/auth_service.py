# FILE: ielts_backend/services/auth_service.py
"""Password hashing and the bearer tokens issued at login."""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import bcrypt
import jwt

from ielts_backend.core.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRATION_HOURS
from ielts_backend.models.user import ROLE_USER

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
BCRYPT_MAX_BYTES = 72


class TokenError(Exception):
    """The bearer token is expired, forged or missing its claims."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str
    role: str


def hash_password(password: str) -> str:
    secret = password.encode("utf-8")
    if len(secret) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
    return bcrypt.hashpw(secret, bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    secret = password.encode("utf-8")
    if len(secret) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(secret, hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_token(user_id: str, email: str, role: str = ROLE_USER) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "email": email,
        "sub": email,
        # informational only; admin checks always re-read the user row
        "role": role,
        "iat": issued,
        "exp": issued + timedelta(hours=JWT_EXPIRATION_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token.strip(),
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "user_id"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc

    user_id = payload.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise TokenError("Invalid token payload")
    return TokenClaims(
        user_id=user_id,
        email=str(payload.get("email") or payload.get("sub") or ""),
        role=str(payload.get("role") or ROLE_USER),
    )
