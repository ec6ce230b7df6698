from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from app.core.config import settings
import hashlib
import hmac
import logging
import uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """An already-authenticated caller: stable id plus the email the identity provider verified."""

    user_id: uuid.UUID
    email: str
    email_verified: bool = False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token with standard claims."""
    to_encode = data.copy()

    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update(
        {
            "exp": int(expire.timestamp()),
            "iat": int(now.timestamp()),
            "iss": settings.PROJECT_NAME,
            "jti": uuid.uuid4().hex,
        }
    )

    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def verify_token(token: str) -> Optional[Principal]:
    """Verify JWT token and return the principal it names."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    subject = payload.get("sub")
    email = payload.get("email")
    if not subject or not email:
        return None
    try:
        user_id = uuid.UUID(str(subject))
    except ValueError:
        logger.warning("Rejected token with non-UUID subject")
        return None

    return Principal(
        user_id=user_id,
        email=str(email).strip().lower(),
        email_verified=bool(payload.get("email_verified", False)),
    )


def sign_payload(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of a webhook body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    """Constant-time check of a ``sha256=<hex>`` (or bare hex) signature header."""
    if not signature:
        return False
    received = signature.split("=", 1)[-1]
    return hmac.compare_digest(sign_payload(secret, raw_body), received)
