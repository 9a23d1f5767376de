"""
Double-submit CSRF protection: non-GET requests must echo the ``csrf-token``
cookie in the ``x-csrf-token`` header.
"""

from __future__ import annotations

import hmac
import secrets

from fastapi import HTTPException, Request

CSRF_TOKEN_LENGTH = 32
CSRF_HEADER = "x-csrf-token"
CSRF_COOKIE = "csrf-token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def generate_csrf_token() -> str:
    return secrets.token_hex(CSRF_TOKEN_LENGTH)


def tokens_match(header_token: str | None, cookie_token: str | None) -> bool:
    if not header_token or not cookie_token:
        return False
    return hmac.compare_digest(header_token.encode("utf-8"), cookie_token.encode("utf-8"))


def validate_csrf(request: Request) -> bool:
    if request.method.upper() in SAFE_METHODS:
        return True
    return tokens_match(request.headers.get(CSRF_HEADER), request.cookies.get(CSRF_COOKIE))


def csrf_headers(token: str, secure: bool = False) -> dict[str, str]:
    secure_flag = "Secure; " if secure else ""
    return {
        "Set-Cookie": f"{CSRF_COOKIE}={token}; HttpOnly; {secure_flag}SameSite=Strict; Path=/",
        CSRF_HEADER: token,
    }


def require_csrf(request: Request) -> None:
    """FastAPI dependency rejecting state-changing requests without a token."""
    if not validate_csrf(request):
        raise HTTPException(status_code=403, detail="Invalid CSRF token")
