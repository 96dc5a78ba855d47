from __future__ import annotations

import os

from dotenv import load_dotenv

# Local .env for dev; real environment variables win.
load_dotenv(override=False)


def _int_env(name: str, default: int, *, lo: int | None = None, hi: int | None = None) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        v = int(raw or str(default))
    except ValueError:
        v = default
    if lo is not None and v < lo:
        v = lo
    if hi is not None and v > hi:
        v = hi
    return v


def _csv_env(name: str, default: str) -> list[str]:
    raw = (os.environ.get(name) or default).strip()
    return [x.strip() for x in raw.split(",") if x.strip()]


def database_url() -> str:
    # Fallback for local dev:
    url = os.environ.get("DATABASE_URL") or "sqlite:///./local.db"
    # Some managed providers still supply `postgres://...` which SQLAlchemy treats as invalid.
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def jwt_secret() -> str:
    return os.environ.get("JWT_SECRET") or "dev-secret-change-me"


def is_local_dev() -> bool:
    """
    We treat the app as "local dev" when DATABASE_URL is not set, because
    `database_url()` falls back to sqlite in that case.
    """
    return not (os.environ.get("DATABASE_URL") or "").strip()


def app_env() -> str:
    """
    Application environment marker:
    - local (default when running with sqlite fallback)
    - staging
    - prod
    """
    raw = (os.environ.get("APP_ENV") or "").strip().lower()
    if raw:
        return raw
    return "local" if is_local_dev() else "prod"


def is_production() -> bool:
    return app_env() in {"prod", "production"}


def log_level() -> str:
    return (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()


def allowed_hosts() -> list[str]:
    """
    Comma-separated list for TrustedHost middleware.
    Example: ALLOWED_HOSTS=gsinfraandestates.com,www.gsinfraandestates.com
    """
    hosts = _csv_env("ALLOWED_HOSTS", "")
    return hosts or ["*"]


def enforce_secure_secrets() -> None:
    """
    Fail-fast in production if dangerous defaults are still in use.
    """
    if is_production():
        if jwt_secret() == "dev-secret-change-me":
            raise RuntimeError("JWT_SECRET must be set in production (default dev secret detected)")
        if not (admin_password() or admin_password_hash()):
            raise RuntimeError("ADMIN_PASSWORD or ADMIN_PASSWORD_HASH must be set in production")


# -----------------------
# Site / branding
# -----------------------
def site_name() -> str:
    return (os.environ.get("SITE_NAME") or "GS Infra & Estate").strip()


def base_url() -> str:
    """Public origin used for canonical URLs and JSON-LD. Empty means: use the request host."""
    return (os.environ.get("BASE_URL") or "").strip().rstrip("/")


def home_state() -> str:
    return (os.environ.get("HOME_STATE") or "Uttarakhand").strip()


def served_cities() -> list[str]:
    return [c.lower() for c in _csv_env("SERVED_CITIES", "dehradun,rishikesh,haridwar")]


def default_city() -> str:
    """City assumed for enquiries that don't name one."""
    return (os.environ.get("DEFAULT_CITY") or "Rishikesh").strip()


def contact_phone() -> str:
    return (os.environ.get("CONTACT_PHONE") or "+91-XXXXXXXXXX").strip()


def contact_email() -> str:
    return (os.environ.get("CONTACT_EMAIL") or "info@gsinfraandestates.com").strip()


# -----------------------
# Admin login
# -----------------------
def admin_email() -> str:
    return (os.environ.get("ADMIN_EMAIL") or "").strip().lower()


def admin_password() -> str:
    return os.environ.get("ADMIN_PASSWORD") or ""


def admin_password_hash() -> str:
    return (os.environ.get("ADMIN_PASSWORD_HASH") or "").strip()


def admin_session_hours() -> int:
    return _int_env("ADMIN_SESSION_HOURS", 24, lo=1, hi=24 * 30)


def otp_exp_minutes() -> int:
    """
    OTP expiry duration in minutes.
    Set via env `OTP_EXP_MINUTES`.
    """
    return _int_env("OTP_EXP_MINUTES", 10, lo=1, hi=60)


def otp_max_attempts() -> int:
    return _int_env("OTP_MAX_ATTEMPTS", 5, lo=1, hi=20)


def rate_limit_per_minute() -> int:
    return _int_env("RATE_LIMIT_PER_MINUTE", 100, lo=1)


# -----------------------
# Email
# -----------------------
def email_backend() -> str:
    """
    Email backend selector:
    - "auto" (default): prefer Resend, then Brevo, then SMTP
    - "resend": force Resend (requires RESEND_API_KEY + FROM_EMAIL)
    - "brevo": force Brevo (requires BREVO_API_KEY + sender)
    - "smtp": force SMTP (requires SMTP_HOST + sender)
    - "console": log email contents instead of sending (dev-only)
    """
    return (os.environ.get("EMAIL_BACKEND") or "auto").strip().lower()


def from_email() -> str:
    return (os.environ.get("FROM_EMAIL") or "").strip()


def enquiry_to_email() -> str:
    return (os.environ.get("ENQUIRY_TO_EMAIL") or admin_email()).strip()


def resend_api_key() -> str:
    return (os.environ.get("RESEND_API_KEY") or "").strip()


def brevo_api_key() -> str:
    return (os.environ.get("BREVO_API_KEY") or "").strip()


def brevo_sender_name() -> str:
    return (os.environ.get("BREVO_SENDER_NAME") or site_name()).strip()


def smtp_host() -> str:
    return (os.environ.get("SMTP_HOST") or "").strip()


def smtp_port() -> int:
    return _int_env("SMTP_PORT", 587)


def smtp_user() -> str:
    return (os.environ.get("SMTP_USER") or "").strip()


def smtp_pass() -> str:
    return (os.environ.get("SMTP_PASS") or "").strip()


def smtp_from_email() -> str:
    # Allow either SMTP_FROM or FROM_EMAIL as the sender address.
    return ((os.environ.get("SMTP_FROM") or "").strip() or from_email() or smtp_user()).strip()


# -----------------------
# Media
# -----------------------
def uploads_dir() -> str:
    return os.environ.get("UPLOADS_DIR") or os.path.join(os.path.dirname(__file__), "..", "uploads")


def max_upload_bytes() -> int:
    return _int_env("MAX_UPLOAD_SIZE_MB", 100, lo=1, hi=500) * 1024 * 1024


def media_max_workers() -> int:
    """Upper bound on concurrent image/video transcodes per process."""
    return _int_env("MEDIA_MAX_WORKERS", 2, lo=1, hi=16)


def ffmpeg_binary() -> str:
    return (os.environ.get("FFMPEG_BINARY") or "ffmpeg").strip()
