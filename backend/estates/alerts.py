from __future__ import annotations

import logging
import re
from html import escape

from sqlalchemy import select
from sqlalchemy.orm import Session

from estates.config import admin_email, base_url, from_email, site_name
from estates.db import session_scope
from estates.mailer import EmailSendError, send_email
from estates.models import AlertSubscriber, Property
from estates.seo import absolute_url, category_label, detail_path, format_inr

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def subscribe(db: Session, email: str) -> AlertSubscriber:
    email = normalize_email(email)
    sub = db.execute(select(AlertSubscriber).where(AlertSubscriber.email == email)).scalar_one_or_none()
    if sub is None:
        sub = AlertSubscriber(email=email, active=True)
        db.add(sub)
    else:
        sub.active = True
    db.flush()
    return sub


def unsubscribe(db: Session, email: str) -> bool:
    sub = db.execute(select(AlertSubscriber).where(AlertSubscriber.email == normalize_email(email))).scalar_one_or_none()
    if sub is None:
        return False
    sub.active = False
    return True


def _alert_text(p: Property, url: str) -> str:
    lines = [
        f"New property listed: {p.title}",
        f"Location: {p.location}",
        f"Price: Rs {format_inr(p.price)}",
    ]
    if p.builtup_area:
        lines.append(f"Size: {p.builtup_area} sq.ft")
    lines += [f"Category: {category_label(p.category)}", "", f"View property details: {url}"]
    lines += ["", f"You are receiving this email because you subscribed to property alerts on {site_name()}."]
    return "\n".join(lines)


def _alert_html(p: Property, url: str) -> str:
    size = f"<p>Size: <strong>{escape(p.builtup_area)} sq.ft</strong></p>" if p.builtup_area else ""
    return (
        f"<h2>{escape(site_name())} - New Property Alert</h2>"
        f"<p><strong>{escape(p.title)}</strong></p>"
        f"<p>Location: <strong>{escape(p.location)}</strong></p>"
        f"<p>Price: <strong>&#8377;{format_inr(p.price)}</strong></p>"
        f"{size}"
        f"<p>Category: <strong>{escape(category_label(p.category))}</strong></p>"
        f'<p><a href="{escape(url)}">View Property Details</a></p>'
        f"<p style=\"color:#999;font-size:11px\">You are receiving this email because you subscribed "
        f"to property alerts on {escape(site_name())}.</p>"
    )


def notify_new_property(property_id: int, *, request_base: str = "") -> int:
    """
    Background task: send one alert email (subscribers in BCC) for a new listing.
    Returns the number of subscribers addressed. Never raises.
    """
    try:
        with session_scope() as db:
            p = db.get(Property, int(property_id))
            if p is None:
                return 0
            emails = db.execute(select(AlertSubscriber.email).where(AlertSubscriber.active.is_(True))).scalars().all()
            if not emails:
                logger.info("No active subscribers, skipping alert email.")
                return 0
            url = absolute_url(base_url() or request_base, detail_path(p))
            subject = f"New property listed: {p.title}"
            text = _alert_text(p, url)
            html = _alert_html(p, url)

        # Subscribers go in BCC so they don't see each other; the visible "to" is our own mailbox.
        send_email(to=_alerts_mailbox(), subject=subject, text=text, html=html, bcc=list(emails))
        logger.info("Property alert email sent to %s subscribers.", len(emails))
        return len(emails)
    except EmailSendError:
        logger.exception("Property alert email failed for property %s", property_id)
    except Exception:
        logger.exception("notify_new_property failed for property %s", property_id)
    return 0


def _alerts_mailbox() -> str:
    return from_email() or admin_email() or "noreply@localhost.localdomain"
