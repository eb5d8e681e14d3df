import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional
from jose import jwt, JWTError
from passlib.context import CryptContext
from atelier.auth.constants import PASSWORD_MIN_LENGTH
from atelier.config.settings import Settings


@lru_cache(maxsize=4)
def _pwd_context(scheme: str) -> CryptContext:
    return CryptContext(schemes=[scheme], deprecated="auto")


def hash_password(plain_password: str, scheme: str) -> str:
    return _pwd_context(scheme).hash(plain_password)


def verify_password(plain_password: str, password_hash: str, scheme: str) -> bool:
    try:
        return _pwd_context(scheme).verify(plain_password, password_hash)
    except ValueError:
        # hash produced by an unknown scheme
        return False


def validate_password(password: str, min_length: int = PASSWORD_MIN_LENGTH) -> tuple[bool, str]:
    pw = password.strip()
    if len(pw) < min_length:
        return False, f"Password must be at least {min_length} characters long"
    if not any(c.isalpha() for c in pw):
        return False, "Password must include at least one letter"
    if not any(c.isdigit() for c in pw):
        return False, "Password must include at least one digit"
    return True, "OK"


def create_access_token(settings: Settings, user_id: int, role: str, email: str,
                        expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(claims=payload, key=settings.JWT_SECRET, algorithm=settings.JWT_ALGO)


def decode_token(settings: Settings, token: str) -> Optional[Dict[str, Any]]:
    """Verify signature, expiry and the claims the app relies on. None when any check fails."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGO])
    except JWTError:
        return None

    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub.isdigit():
        return None
    if not claims.get("role"):
        return None
    claims["user_id"] = int(sub)
    return claims


def make_anonymous_key() -> str:
    return secrets.token_urlsafe(32)
