"""
Password hashing and access tokens.

Passwords are hashed with bcrypt; access tokens are HMAC-signed JWTs carrying
the user id, e-mail and role names.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

import bcrypt
import jwt

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_PASSWORD_BYTES = 72


class InvalidTokenError(Exception):
    """The bearer token is missing, malformed, expired or wrongly signed."""


@dataclass
class TokenClaims:
    user_id: str
    email: str
    roles: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_PASSWORD_BYTES]


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with a fresh salt."""
    salt = bcrypt.gensalt(rounds=rounds or BCRYPT_ROUNDS)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def create_access_token(user_id: str, email: str, roles: Iterable[str], settings) -> Tuple[str, int]:
    """
    Issue a signed access token.

    Returns:
        Tuple of (token, lifetime in seconds)
    """
    now = datetime.now(timezone.utc)
    expires_in = settings.jwt_expires_minutes * 60
    payload = {
        "sub": user_id,
        "email": email,
        "roles": list(roles),
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_in


def decode_access_token(token: str, settings) -> TokenClaims:
    """Verify a token and return its claims."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.PyJWTError as e:
        raise InvalidTokenError(str(e)) from e

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        raise InvalidTokenError("roles claim must be a list")
    return TokenClaims(user_id=payload["sub"], email=payload.get("email", ""), roles=roles)
