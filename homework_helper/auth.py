import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from . import config, models
from .database import get_db
from .errors import AuthError

logger = logging.getLogger(__name__)

_PROCESS_SECRET: Optional[str] = None


def _secret() -> str:
    global _PROCESS_SECRET
    secret = config.auth_secret()
    if secret:
        return secret
    if _PROCESS_SECRET is None:
        logger.warning("AUTH_SECRET is not set; using a random per-process key (sessions reset on restart)")
        _PROCESS_SECRET = secrets.token_urlsafe(32)
    return _PROCESS_SECRET


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


# --- Passwords ---

def hash_password(password: str) -> str:
    iterations = 310_000
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "pbkdf2_sha256${}${}${}".format(
        iterations,
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(digest).decode("ascii"),
    )


def verify_password(password: str, stored: str) -> bool:
    parts = (stored or "").split("$")
    if len(parts) != 4 or parts[0] != "pbkdf2_sha256":
        return False
    _, iter_text, salt_text, digest_text = parts
    try:
        iterations = int(iter_text)
        salt = base64.b64decode(salt_text.encode("ascii"), validate=True)
        expected = base64.b64decode(digest_text.encode("ascii"), validate=True)
    except ValueError:
        return False
    computed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, max(1, iterations))
    return hmac.compare_digest(computed, expected)


# --- Session tokens ---

def mint_session_token(user_id: str, now: Optional[int] = None) -> str:
    issued = int(now if now is not None else time.time())
    claims = {"sub": user_id, "iat": issued, "exp": issued + config.session_ttl_sec()}
    payload_segment = _b64url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    digest = hmac.new(_secret().encode("utf-8"), payload_segment.encode("ascii"), hashlib.sha256).digest()
    return f"{payload_segment}.{_b64url_encode(digest)}"


def decode_session_token(token: str) -> Dict[str, Any]:
    parts = (token or "").strip().split(".")
    if len(parts) != 2:
        raise AuthError("Invalid session")

    payload_segment, sig_segment = parts
    try:
        expected = hmac.new(_secret().encode("utf-8"), payload_segment.encode("ascii"), hashlib.sha256).digest()
        got = _b64url_decode(sig_segment)
    except ValueError:
        raise AuthError("Invalid session")
    if not hmac.compare_digest(got, expected):
        raise AuthError("Invalid session")

    try:
        claims = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except ValueError:
        raise AuthError("Invalid session")
    if not isinstance(claims, dict) or not str(claims.get("sub") or "").strip():
        raise AuthError("Invalid session")

    try:
        exp = int(claims.get("exp", 0))
    except (TypeError, ValueError):
        raise AuthError("Invalid session")
    if exp <= int(time.time()):
        raise AuthError("Session expired")
    return claims


def _token_from_request(request: Request) -> str:
    token = request.cookies.get(config.session_cookie_name())
    if token:
        return token
    authz = request.headers.get("authorization", "")
    if authz.lower().startswith("bearer "):
        return authz[7:].strip()
    return ""


def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    token = _token_from_request(request)
    if not token:
        raise AuthError("Not authenticated")
    claims = decode_session_token(token)
    user = db.query(models.User).filter(models.User.id == claims["sub"]).first()
    if not user:
        raise AuthError("Invalid session")
    return user
