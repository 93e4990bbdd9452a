import hmac
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ADMIN_PASSWORD,
    ADMIN_PASSWORD_HASH,
    ADMIN_USERNAME,
    ALGORITHM,
    PASSWORD_SCHEMES,
    SECRET_KEY,
)

pwd_context = CryptContext(schemes=PASSWORD_SCHEMES, deprecated="auto")


# Hash a password
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def is_hashed(stored: str) -> bool:
    return pwd_context.identify(stored, required=False) is not None


def check_password(plain_password: str, stored: str) -> bool:
    """Verify against a stored hash, or compare exactly when stored as given."""
    if is_hashed(stored):
        return pwd_context.verify(plain_password, stored)
    return hmac.compare_digest(plain_password.encode("utf-8"), stored.encode("utf-8"))


def verify_admin(username: str, password: str) -> bool:
    if not hmac.compare_digest(username.encode("utf-8"), ADMIN_USERNAME.encode("utf-8")):
        return False
    if ADMIN_PASSWORD_HASH:
        return pwd_context.verify(password, ADMIN_PASSWORD_HASH)
    return hmac.compare_digest(password.encode("utf-8"), ADMIN_PASSWORD.encode("utf-8"))


# Create JWT access token
def create_access_token(subject: str, role: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": subject, "role": role, "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired token, or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def score_password(pw: str) -> int:
    """Password strength from 0 to 100: up to 40 for length, 15 per character class."""
    if not pw:
        return 0
    score = min(len(pw), 12) * 3.33
    for pattern in (r"[a-z]", r"[A-Z]", r"\d", r"[^A-Za-z0-9]"):
        if re.search(pattern, pw):
            score += 15
    return min(100, int(score + 0.5))
