from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from .core_settings import get_settings
from .domain.permissions import Identity, ROLE_USER

def create_access_token(identity: Identity, expires_minutes: int = 480) -> str:
    """Issue a token for an identity. Used by tests and local tooling; the
    auth service issues production tokens with the same claims."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(identity.id),
        "email": identity.email,
        "phone": identity.phone,
        "role": identity.role,
        "perms": identity.permissions or {},
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def identity_from_claims(claims: dict) -> Optional[Identity]:
    try:
        user_id = int(claims.get("sub") or claims.get("userId"))
    except (TypeError, ValueError):
        return None
    return Identity(
        id=user_id,
        email=claims.get("email"),
        phone=claims.get("phone"),
        role=claims.get("role") or ROLE_USER,
        permissions=claims.get("perms") or {},
    )
