from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from estates import alerts
from estates.config import site_name
from estates.deps import AdminEmail, get_db
from estates.mailer import EmailSendError, send_email
from estates.web import request_base

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])

DB = Annotated[Session, Depends(get_db)]


class EmailIn(BaseModel):
    email: str | None = None


def _required_email(data: EmailIn) -> str:
    email = alerts.normalize_email(data.email or "")
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    return email


@router.post("/subscribe")
def subscribe(data: EmailIn, db: DB):
    email = _required_email(data)
    if not alerts.is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email")
    alerts.subscribe(db, email)
    return {"message": "Subscribed"}


@router.post("/unsubscribe")
def unsubscribe(data: EmailIn, db: DB):
    email = _required_email(data)
    if not alerts.unsubscribe(db, email):
        logger.info("Unsubscribe for unknown address %s", email)
    return {"message": "Unsubscribed"}


@router.post("/test-mail")
def test_mail(data: EmailIn, request: Request, admin: AdminEmail):
    email = _required_email(data)
    text = (
        f"This is a test property alert from {site_name()}.\n\n"
        f"New listings will link to {request_base(request)}/properties."
    )
    try:
        send_email(to=email, subject=f"{site_name()} - Test Property Alert", text=text)
    except EmailSendError:
        logger.exception("Test alert mail to %s failed", email)
        raise HTTPException(status_code=500, detail="Failed to send test mail")
    return {"message": "Test mail sent"}
