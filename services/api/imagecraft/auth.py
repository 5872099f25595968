# services/api/imagecraft/auth.py

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from fastapi import Request

from .config import settings
from .exceptions import SignInRequiredError

SIGN_IN_MESSAGE = "Please sign in to download"

@dataclass
class User:
    id: str
    email: Optional[str] = None

class InvalidToken(Exception):
    pass

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")

def _b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))

def _sign(msg: bytes) -> str:
    key = settings.SESSION_SECRET.encode("utf-8")
    return _b64url(hmac.new(key, msg, hashlib.sha256).digest())

def mint_session_token(user_id: str, ttl_min: int = 60, email: Optional[str] = None) -> str:
    """
    The identity provider mints these in production; we only need it for
    local development and tests.
    """
    header = {"alg": "HS256", "typ": "JWT"}
    now = int(time.time())
    payload = {"sub": user_id, "iat": now, "exp": now + int(ttl_min) * 60}
    if email:
        payload["email"] = email
    h = _b64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    p = _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    sig = _sign(f"{h}.{p}".encode("ascii"))
    return f"{h}.{p}.{sig}"

def verify_session_token(token: str) -> dict:
    try:
        h, p, sig = token.split(".")
    except ValueError:
        raise InvalidToken("malformed")

    expected = _sign(f"{h}.{p}".encode("ascii"))
    if not hmac.compare_digest(expected, sig):
        raise InvalidToken("bad_signature")

    try:
        payload = json.loads(_b64url_decode(p))
    except Exception:
        raise InvalidToken("bad_payload")

    if int(payload.get("exp", 0)) < int(time.time()):
        raise InvalidToken("expired")
    if not payload.get("sub"):
        raise InvalidToken("missing_sub")
    return payload

def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip()

def current_user(request: Request) -> Optional[User]:
    """Signed-in user for this request, or None for anonymous callers."""
    token = extract_bearer(request.headers.get("authorization"))
    if not token:
        token = request.cookies.get(settings.SESSION_TOKEN_COOKIE)
    if not token:
        return None
    try:
        claims = verify_session_token(token)
    except InvalidToken:
        return None
    return User(id=str(claims["sub"]), email=claims.get("email"))

def sign_in_redirect(return_url: str) -> str:
    sep = "&" if "?" in settings.SIGN_IN_URL else "?"
    return f"{settings.SIGN_IN_URL}{sep}redirect_url={quote(return_url, safe='')}"

def require_user(request: Request) -> User:
    """
    FastAPI dependency for signed-in actions. Anonymous callers get a 401
    carrying the sign-in URL so the client can save its work and redirect.
    """
    user = current_user(request)
    if user is None:
        return_to = request.headers.get("x-return-to") or request.url.path
        raise SignInRequiredError(SIGN_IN_MESSAGE, sign_in_url=sign_in_redirect(return_to))
    return user
