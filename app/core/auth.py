from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import HTTPException, Request, status

from app.core.config import settings

PBKDF2_ROUNDS = 120_000
TOKEN_VERSION = "v1"


@dataclass
class SessionUser:
    """Identity carried by a session token; set on request.state.user by the auth middleware."""

    user_id: str
    email: str
    is_admin: bool

    @property
    def uuid(self) -> UUID:
        return UUID(self.user_id)


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    password = (password or "").strip()
    if not password:
        raise ValueError("Password cannot be empty")
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ROUNDS)
    return digest.hex(), salt


def verify_password(password: str, expected_hash: str, salt: str) -> bool:
    try:
        calculated, _ = hash_password(password, salt=salt)
    except ValueError:
        return False
    return hmac.compare_digest(calculated, expected_hash)


def _signature(body: str) -> str:
    key = settings.auth_secret.encode("utf-8")
    return hmac.new(key, f"{TOKEN_VERSION}.{body}".encode("utf-8"), hashlib.sha256).hexdigest()


def _encode_claims(claims: dict[str, Any]) -> str:
    raw = json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_claims(body: str) -> dict[str, Any] | None:
    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
        claims = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def create_session_token(*, user_id: str, email: str, is_admin: bool) -> str:
    issued = int(time.time())
    body = _encode_claims(
        {
            "sub": user_id,
            "eml": email,
            "adm": bool(is_admin),
            "iat": issued,
            "exp": issued + int(settings.auth_session_hours * 3600),
        }
    )
    return f"{TOKEN_VERSION}.{body}.{_signature(body)}"


def parse_session_token(token: str | None) -> SessionUser | None:
    """Return the session for a valid, unexpired token, else None."""
    parts = (token or "").split(".")
    if len(parts) != 3 or parts[0] != TOKEN_VERSION:
        return None
    _, body, sig = parts
    if not hmac.compare_digest(sig, _signature(body)):
        return None
    claims = _decode_claims(body)
    if claims is None or int(claims.get("exp", 0)) <= int(time.time()):
        return None
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("eml") or "").strip()
    if not user_id or not email:
        return None
    return SessionUser(user_id=user_id, email=email, is_admin=bool(claims.get("adm")))


def token_from_request(request: Request) -> str | None:
    # Bearer header, a bare token in Authorization, or the session cookie.
    header = (request.headers.get("authorization") or "").strip()
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer":
        return value.strip() or None
    return header or request.cookies.get(settings.auth_cookie_name)


def get_current_user(request: Request) -> SessionUser:
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user


def require_admin(request: Request) -> SessionUser:
    user = get_current_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
