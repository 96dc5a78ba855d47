from __future__ import annotations

from typing import Annotated

import jwt
from fastapi import Depends, Header, Request

from estates.config import admin_email
from estates.db import session_scope
from estates.security import ADMIN_COOKIE, decode_admin_token


class AdminLoginRequired(Exception):
    """Raised by `require_admin`; main.py turns it into a redirect (HTML) or 401 (JSON)."""


def get_db():
    with session_scope() as db:
        yield db


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def admin_email_from_request(request: Request, authorization: str | None = None) -> str | None:
    token = _bearer_token(authorization) or request.cookies.get(ADMIN_COOKIE)
    if not token:
        return None
    try:
        payload = decode_admin_token(token)
    except jwt.PyJWTError:
        return None
    email = str(payload.get("sub") or "")
    # Rotating ADMIN_EMAIL invalidates outstanding sessions.
    if not email or email != admin_email():
        return None
    return email


def require_admin(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    email = admin_email_from_request(request, authorization)
    if not email:
        raise AdminLoginRequired()
    return email


AdminEmail = Annotated[str, Depends(require_admin)]
