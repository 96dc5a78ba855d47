from __future__ import annotations
# ruff: noqa: E402

import io
import os
import re
import sys
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# The engine is built at import time, so the environment has to be in place first.
_TMP = Path(tempfile.mkdtemp(prefix="estates-tests-"))
os.environ.update(
    {
        "DATABASE_URL": f"sqlite:///{_TMP / 'test.db'}",
        "APP_ENV": "test",
        "EMAIL_BACKEND": "console",
        "UPLOADS_DIR": str(_TMP / "uploads"),
        "ADMIN_EMAIL": "admin@example.com",
        "ADMIN_PASSWORD": "s3cret-pass",
        "JWT_SECRET": "test-secret",
        "BASE_URL": "https://example.com",
        "ENQUIRY_TO_EMAIL": "sales@example.com",
        "FROM_EMAIL": "alerts@example.com",
        "RATE_LIMIT_PER_MINUTE": "100",
        "SERVED_CITIES": "dehradun,rishikesh,haridwar",
        "HOME_STATE": "Uttarakhand",
    }
)
for _key in ("ADMIN_PASSWORD_HASH", "CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ.pop(_key, None)

from fastapi.testclient import TestClient
from PIL import Image

from estates.db import ENGINE, session_scope
from estates.main import app
from estates.models import Base, Property
from estates.monitoring import monitor
from estates.rate_limit import limiter
from estates.security import ADMIN_COOKIE, create_admin_token

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "s3cret-pass"

_OTP_RE = re.compile(r"verification code is: (\d{6})")


@pytest.fixture(autouse=True)
def fresh_state() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)
    limiter.reset()
    monitor.reset()
    yield


@pytest.fixture(autouse=True)
def outbox(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every email the app tries to send, in order."""
    sent: list[dict[str, Any]] = []

    def fake_send_email(*, to, subject, text, html=None, bcc=None) -> str:
        sent.append({"to": to, "subject": subject, "text": text, "html": html, "bcc": list(bcc or [])})
        return "console"

    for target in ("estates.mailer.send_email", "estates.alerts.send_email", "estates.routers.alerts.send_email"):
        monkeypatch.setattr(target, fake_send_email)
    return sent


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def admin_client(client: TestClient) -> TestClient:
    client.cookies.set(ADMIN_COOKIE, create_admin_token(email=ADMIN_EMAIL))
    return client


def otp_from(outbox: list[dict[str, Any]]) -> str:
    m = _OTP_RE.search(outbox[-1]["text"])
    assert m, outbox[-1]["text"]
    return m.group(1)


@pytest.fixture
def make_property():
    def _make(**overrides: Any) -> Property:
        fields: dict[str, Any] = {
            "category": "residential_properties",
            "title": "3 BHK Villa near Ganga",
            "description": "Spacious villa with river view.",
            "price": 7_500_000,
            "location": "Tapovan, Rishikesh",
            "city": "Rishikesh",
            "state": "Uttarakhand",
            "locality": "Tapovan",
            "status": "available",
        }
        lists = {k: overrides.pop(k) for k in ("image_urls", "video_urls", "features", "search_tags") if k in overrides}
        fields.update(overrides)
        with session_scope() as db:
            p = Property(**fields)
            for key, value in lists.items():
                setattr(p, key, value)
            db.add(p)
            db.flush()
            db.refresh(p)
        return p

    return _make


def png_bytes(size: tuple[int, int] = (64, 48), color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def uploads_dir() -> Path:
    return Path(os.environ["UPLOADS_DIR"])
