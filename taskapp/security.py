from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from taskapp import settings
from taskapp.utils import now_ts

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionUser:
    """Identity carried by a verified session token."""

    id: str
    email: str


def _pw_prehash(pw: str) -> bytes:
    """Pre-hash to avoid bcrypt's 72-byte input limit; base64 keeps NUL bytes out."""
    return base64.b64encode(hashlib.sha256(pw.encode("utf-8")).digest())

def hash_password(pw: str) -> str:
    return bcrypt.hashpw(_pw_prehash(pw), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode("utf-8")

def verify_password(pw: str, pw_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_pw_prehash(pw), pw_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def issue_session(user_id: str, email: str, now: Optional[int] = None) -> str:
    iat = now_ts() if now is None else now
    claims = {"sub": user_id, "email": email, "iat": iat, "exp": iat + settings.SESSION_TTL_SECONDS}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

def issue_random_token() -> str:
    """Opaque single-use token for email verification or password reset."""
    return secrets.token_hex(32)


def decode_session(token: str, now: Optional[int] = None) -> SessionUser:
    """
    Verify signature and expiry of a session token.

    The token stays valid through its `exp` second and is rejected strictly
    after it. Expiry is checked here rather than by jose so the boundary does
    not depend on the library's clock handling.

    Nothing is read from the database: a user changed after issuance is
    trusted until the token expires.
    """
    invalid = HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token")
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG],
            options={"verify_exp": False},
        )
    except JWTError as exc:
        logger.debug("Rejected session token: %s", exc)
        raise invalid
    uid, email, exp = payload.get("sub"), payload.get("email"), payload.get("exp")
    if not uid or not email or not isinstance(exp, int):
        raise invalid
    now = now_ts() if now is None else now
    if now > exp:
        raise invalid
    return SessionUser(id=uid, email=email)

def require_user(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> SessionUser:
    if not creds or not creds.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    return decode_session(creds.credentials)
