from __future__ import annotations

import datetime as dt
import secrets

import bcrypt
import jwt

from estates.config import admin_email, admin_password, admin_password_hash, admin_session_hours, jwt_secret


ADMIN_COOKIE = "admin_session"


def hash_password(password: str) -> str:
    # bcrypt stores algorithm + cost + salt in the resulting hash string.
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Invalid hash format.
        return False


def verify_admin_credentials(email: str, password: str) -> bool:
    """
    Admin credentials live in the environment: ADMIN_EMAIL plus either a bcrypt
    ADMIN_PASSWORD_HASH (preferred) or a plaintext ADMIN_PASSWORD.
    """
    expected_email = admin_email()
    if not expected_email or not password:
        return False
    if not secrets.compare_digest((email or "").strip().lower(), expected_email):
        return False
    pw_hash = admin_password_hash()
    if pw_hash:
        return verify_password(password, pw_hash)
    expected_pw = admin_password()
    if not expected_pw:
        return False
    return secrets.compare_digest(password.encode("utf-8"), expected_pw.encode("utf-8"))


def generate_otp() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def create_admin_token(*, email: str) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": email,
        "role": "admin",
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(hours=admin_session_hours())).timestamp()),
    }
    return jwt.encode(payload, jwt_secret(), algorithm="HS256")


def decode_admin_token(token: str) -> dict:
    payload = jwt.decode(token, jwt_secret(), algorithms=["HS256"])
    if payload.get("role") != "admin":
        raise jwt.InvalidTokenError("not an admin token")
    return payload
