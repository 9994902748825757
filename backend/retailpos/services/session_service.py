# Overview: Bearer token validation for API requests.

"""
Session Token Service

WHY: Every API call must be attributable to a staff user. Tokens are issued
out of band (CLI) and only their SHA-256 hash is stored.
"""

import secrets
import hashlib
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


DEFAULT_TOKEN_TTL = timedelta(days=30)


def generate_token() -> str:
    """64-character hex token (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def issue_token(user_id: int, ttl: timedelta = DEFAULT_TOKEN_TTL) -> str:
    """
    Create a token for a user and return the plaintext (shown once).

    Raises ValueError if the user does not exist or is inactive.
    """
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise ValueError("User not found or inactive")

    plaintext = generate_token()
    db.session.add(SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext),
        expires_at=utcnow() + ttl,
        is_revoked=False,
    ))
    db.session.commit()
    return plaintext


def validate_token(token: str) -> User | None:
    """Return the active user for a valid, unexpired, unrevoked token."""
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None

    expires_at = session.expires_at
    if expires_at.tzinfo is not None:
        expires_at = expires_at.replace(tzinfo=None)
    if expires_at <= utcnow():
        return None

    user = session.user
    if not user or not user.is_active:
        return None
    return user


def revoke_token(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session:
        return False
    session.is_revoked = True
    db.session.commit()
    return True
