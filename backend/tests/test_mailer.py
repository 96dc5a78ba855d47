from __future__ import annotations

import pytest

from estates import mailer
from estates.mailer import EmailSendError

# Captured before the autouse outbox fixture swaps it out.
real_send_email = mailer.send_email


class FakeResponse:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


@pytest.fixture
def posts(monkeypatch):
    calls: list[dict] = []

    def fake_post(url, *, headers, json, timeout):
        calls.append({"url": url, "headers": headers, "json": json})
        return FakeResponse(202)

    monkeypatch.setattr(mailer.requests, "post", fake_post)
    return calls


def test_console_backend(monkeypatch, posts):
    assert real_send_email(to="a@example.com", subject="Hi", text="Body") == "console"
    assert posts == []


def test_rejects_bad_recipients():
    with pytest.raises(EmailSendError):
        real_send_email(to=["a@example.com", "nope"], subject="Hi", text="Body")
    with pytest.raises(EmailSendError):
        real_send_email(to=" ", subject="Hi", text="Body")


def test_resend_payload(monkeypatch, posts):
    monkeypatch.setenv("EMAIL_BACKEND", "resend")
    monkeypatch.setenv("RESEND_API_KEY", "re_key")
    backend = real_send_email(to="a@example.com", subject="Hi", text="Body", html="<b>Body</b>", bcc=["b@example.com"])
    assert backend == "resend"
    call = posts[0]
    assert call["url"] == "https://api.resend.com/emails"
    assert call["headers"]["Authorization"] == "Bearer re_key"
    assert call["json"] == {
        "from": "alerts@example.com",
        "to": ["a@example.com"],
        "subject": "Hi",
        "text": "Body",
        "html": "<b>Body</b>",
        "bcc": ["b@example.com"],
    }


def test_brevo_payload(monkeypatch, posts):
    monkeypatch.setenv("EMAIL_BACKEND", "brevo")
    monkeypatch.setenv("BREVO_API_KEY", "xkeysib")
    assert real_send_email(to="a@example.com", subject="Hi", text="Body", bcc=["b@example.com"]) == "brevo"
    payload = posts[0]["json"]
    assert posts[0]["headers"]["api-key"] == "xkeysib"
    assert payload["sender"]["email"] == "alerts@example.com"
    assert payload["to"] == [{"email": "a@example.com"}]
    assert payload["bcc"] == [{"email": "b@example.com"}]
    assert "htmlContent" not in payload


def test_provider_error_raises(monkeypatch):
    monkeypatch.setenv("EMAIL_BACKEND", "resend")
    monkeypatch.setenv("RESEND_API_KEY", "re_key")
    monkeypatch.setattr(mailer.requests, "post", lambda *a, **kw: FakeResponse(422, "invalid from"))
    with pytest.raises(EmailSendError, match="HTTP 422"):
        real_send_email(to="a@example.com", subject="Hi", text="Body")


def test_missing_key_raises(monkeypatch):
    monkeypatch.setenv("EMAIL_BACKEND", "brevo")
    monkeypatch.delenv("BREVO_API_KEY", raising=False)
    with pytest.raises(EmailSendError, match="BREVO_API_KEY"):
        real_send_email(to="a@example.com", subject="Hi", text="Body")


def test_auto_picks_first_configured_provider(monkeypatch, posts):
    monkeypatch.setenv("EMAIL_BACKEND", "auto")
    monkeypatch.setenv("BREVO_API_KEY", "xkeysib")
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    assert real_send_email(to="a@example.com", subject="Hi", text="Body") == "brevo"


def test_auto_without_provider_outside_local_dev(monkeypatch):
    monkeypatch.setenv("EMAIL_BACKEND", "auto")
    for key in ("RESEND_API_KEY", "BREVO_API_KEY", "SMTP_HOST"):
        monkeypatch.delenv(key, raising=False)
    with pytest.raises(EmailSendError, match="not configured"):
        real_send_email(to="a@example.com", subject="Hi", text="Body")


def test_enquiry_goes_to_admin_when_no_enquiry_address(monkeypatch, outbox):
    monkeypatch.delenv("ENQUIRY_TO_EMAIL")
    mailer.send_enquiry_email(mailer.Enquiry(name="Asha", phone="99"))
    assert outbox[-1]["to"] == "admin@example.com"
    assert outbox[-1]["subject"] == "New Property Enquiry: Asha - Rishikesh"
