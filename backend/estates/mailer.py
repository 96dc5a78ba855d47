from __future__ import annotations

import datetime as dt
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from html import escape
from zoneinfo import ZoneInfo

import requests

from estates.config import (
    admin_email,
    brevo_api_key,
    brevo_sender_name,
    default_city,
    email_backend,
    enquiry_to_email,
    from_email,
    is_local_dev,
    otp_exp_minutes,
    resend_api_key,
    site_name,
    smtp_from_email,
    smtp_host,
    smtp_pass,
    smtp_port,
    smtp_user,
)

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT = 15


class EmailSendError(RuntimeError):
    pass


def _send_via_resend(*, to: list[str], subject: str, text: str, html: str | None, bcc: list[str] | None) -> None:
    """
    Uses the Resend email API:
    https://resend.com/docs/api-reference/emails/send-email
    """
    key = resend_api_key()
    if not key:
        raise EmailSendError("RESEND_API_KEY not configured")
    sender = from_email()
    if not sender:
        raise EmailSendError("FROM_EMAIL not configured")

    payload: dict = {"from": sender, "to": to, "subject": subject, "text": text}
    if html:
        payload["html"] = html
    if bcc:
        payload["bcc"] = bcc
    resp = requests.post(
        "https://api.resend.com/emails",
        headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
        json=payload,
        timeout=_HTTP_TIMEOUT,
    )
    if not (200 <= int(resp.status_code) < 300):
        raise EmailSendError(f"Resend send failed: HTTP {resp.status_code}: {resp.text[:500]}")


def _send_via_brevo(*, to: list[str], subject: str, text: str, html: str | None, bcc: list[str] | None) -> None:
    """
    Uses Brevo Transactional Email API:
    https://developers.brevo.com/docs/send-a-transactional-email
    """
    key = brevo_api_key()
    if not key:
        raise EmailSendError("BREVO_API_KEY not configured")
    sender = (from_email() or smtp_from_email()).strip()
    if not sender:
        raise EmailSendError("FROM_EMAIL/SMTP_FROM not configured")

    payload: dict = {
        "sender": {"email": sender, "name": brevo_sender_name()},
        "to": [{"email": x} for x in to],
        "subject": subject,
        "textContent": text,
    }
    if html:
        payload["htmlContent"] = html
    if bcc:
        payload["bcc"] = [{"email": x} for x in bcc]
    resp = requests.post(
        "https://api.brevo.com/v3/smtp/email",
        headers={"api-key": key, "Content-Type": "application/json", "Accept": "application/json"},
        json=payload,
        timeout=_HTTP_TIMEOUT,
    )
    if not (200 <= int(resp.status_code) < 300):
        raise EmailSendError(f"Brevo send failed: HTTP {resp.status_code}: {resp.text[:500]}")


def _send_via_smtp(*, to: list[str], subject: str, text: str, html: str | None, bcc: list[str] | None) -> None:
    host = smtp_host()
    port = int(smtp_port())
    user = smtp_user()
    password = smtp_pass()
    sender = smtp_from_email()
    if not host:
        raise EmailSendError("SMTP_HOST not configured")
    if not sender:
        raise EmailSendError("SMTP_FROM (or FROM_EMAIL/SMTP_USER) not configured")

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    recipients = list(to) + list(bcc or [])

    try:
        if port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, timeout=_HTTP_TIMEOUT, context=context) as s:
                if user and password:
                    s.login(user, password)
                s.send_message(msg, to_addrs=recipients)
            return

        with smtplib.SMTP(host, port, timeout=_HTTP_TIMEOUT) as s:
            s.ehlo()
            # Try STARTTLS if available (typical on 587).
            if s.has_extn("starttls"):
                s.starttls(context=ssl.create_default_context())
                s.ehlo()
            if user and password:
                s.login(user, password)
            s.send_message(msg, to_addrs=recipients)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


def _log_to_console(*, to: list[str], subject: str, text: str, bcc: list[str] | None, reason: str) -> None:
    logger.warning("%s: to=%s bcc=%s subject=%s\n%s", reason, ",".join(to), len(bcc or []), subject, text)


def send_email(*, to: str | list[str], subject: str, text: str, html: str | None = None, bcc: list[str] | None = None) -> str:
    """
    Deliver one message through the configured backend. Returns the backend name used.
    """
    recipients = [to] if isinstance(to, str) else list(to)
    recipients = [(x or "").strip() for x in recipients if (x or "").strip()]
    if not recipients or any("@" not in x for x in recipients):
        raise EmailSendError("Invalid recipient email")

    kwargs = {"to": recipients, "subject": subject, "text": text, "html": html, "bcc": bcc}
    backend = email_backend()
    if backend in ("console", "log"):
        _log_to_console(to=recipients, subject=subject, text=text, bcc=bcc, reason="EMAIL_BACKEND=console")
        return "console"

    if backend == "resend":
        _send_via_resend(**kwargs)
        return "resend"
    if backend == "brevo":
        _send_via_brevo(**kwargs)
        return "brevo"
    if backend == "smtp":
        _send_via_smtp(**kwargs)
        return "smtp"

    # "auto" (default): first configured provider wins.
    if resend_api_key():
        _send_via_resend(**kwargs)
        return "resend"
    if brevo_api_key():
        _send_via_brevo(**kwargs)
        return "brevo"
    if smtp_host():
        _send_via_smtp(**kwargs)
        return "smtp"

    # Dev-friendly fallback (no external email service configured).
    if is_local_dev():
        _log_to_console(
            to=recipients,
            subject=subject,
            text=text,
            bcc=bcc,
            reason="No email provider configured; falling back to console output in local dev",
        )
        return "console"

    raise EmailSendError(
        "Email provider not configured. Set RESEND_API_KEY+FROM_EMAIL, BREVO_API_KEY or SMTP_HOST+SMTP_FROM."
    )


def send_admin_otp_email(*, to_email: str, code: str) -> str:
    mins = otp_exp_minutes()
    brand = site_name()
    subject = f"{brand} - Admin Login Verification"
    text = (
        f"Admin login request for: {to_email}\n\n"
        f"Your one-time verification code is: {code}\n\n"
        f"Valid for {mins} minutes only.\n\n"
        "If you didn't request this code, please ignore this email."
    )
    html = (
        f"<h2>{escape(brand)}</h2>"
        "<p>Admin Login Verification</p>"
        f"<p>Your one-time verification code is:</p><h1 style=\"letter-spacing:8px\">{escape(code)}</h1>"
        f"<p>Valid for {mins} minutes only.</p>"
        "<p style=\"color:#999\">If you didn't request this code, please ignore this email.</p>"
    )
    return send_email(to=to_email, subject=subject, text=text, html=html)


@dataclass
class Enquiry:
    name: str
    phone: str
    location: str = ""
    requirement: str = ""
    property_id: str = ""
    subscribe: bool = False
    email: str = ""
    source: str = ""


def enquiry_body(enquiry: Enquiry, *, received_at: dt.datetime | None = None) -> str:
    received = (received_at or dt.datetime.now(dt.timezone.utc)).astimezone(ZoneInfo("Asia/Kolkata"))
    lines = [
        "New Property Enquiry",
        "",
        f"Name: {enquiry.name}",
        f"Phone: {enquiry.phone}",
        f"Location: {enquiry.location or default_city()}",
        f"Requirement: {enquiry.requirement or 'Not specified'}",
        f"Property: {enquiry.property_id or 'General Enquiry'}",
        f"Subscribe: {'YES' if enquiry.subscribe else 'No'}",
        f"Email: {enquiry.email or 'Not provided'}",
        f"Source: {enquiry.source or 'Direct'}",
        f"Received: {received.strftime('%d/%m/%Y, %I:%M:%S %p')}",
    ]
    return "\n".join(lines)


def send_enquiry_email(enquiry: Enquiry) -> str:
    to = enquiry_to_email() or admin_email()
    if not to:
        raise EmailSendError("ENQUIRY_TO_EMAIL/ADMIN_EMAIL not configured")
    subject = f"New Property Enquiry: {enquiry.name} - {enquiry.location or default_city()}"
    return send_email(to=to, subject=subject, text=enquiry_body(enquiry))
