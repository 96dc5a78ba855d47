from __future__ import annotations

import datetime as dt
import logging
import secrets
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from estates.alerts import notify_new_property
from estates.config import admin_email, admin_session_hours, home_state, is_production, otp_exp_minutes, otp_max_attempts
from estates.deps import AdminEmail, admin_email_from_request, get_db
from estates.listing import derive_city_state, property_out, split_csv, split_into_buckets
from estates.mailer import EmailSendError, send_admin_otp_email
from estates.media import UPLOAD_FIELDS, delete_media_urls, optimize_property_media, raw_urls, save_uploads
from estates.models import CATEGORIES, STATUSES, OtpCode, Property
from estates.monitoring import monitor
from estates.rate_limit import client_ip, limiter
from estates.security import ADMIN_COOKIE, create_admin_token, generate_otp, verify_admin_credentials
from estates.seo import category_label, location_search_tags, seo_meta_description
from estates.web import render, request_base, wants_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

DB = Annotated[Session, Depends(get_db)]

OTP_PURPOSE = "admin_login"
DASHBOARD_LIMIT = 1000

_TRUTHY = {"on", "true", "1", "yes"}


def _as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


async def read_payload(request: Request) -> tuple[dict[str, Any], dict[str, list[UploadFile]]]:
    """
    Admin endpoints accept JSON bodies as well as urlencoded/multipart forms.
    Returns (fields, files) where files only holds the known upload fields.
    """
    ctype = (request.headers.get("content-type") or "").lower()
    if "json" in ctype:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        return body, {}

    form = await request.form()
    fields: dict[str, Any] = {}
    files: dict[str, list[UploadFile]] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key in UPLOAD_FIELDS:
                files.setdefault(key, []).append(value)
            continue
        fields[key] = value
    return fields, files


Payload = Annotated[tuple[dict[str, Any], dict[str, list[UploadFile]]], Depends(read_payload)]


def _text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value).strip()


def _list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return split_csv(None if value is None else str(value))


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUTHY


def _parse_price(raw: Any) -> int:
    try:
        price = int(float(str(raw).replace(",", "").strip()))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid price")
    if price < 0:
        raise HTTPException(status_code=400, detail="Invalid price")
    return price


def _parse_category(raw: str) -> str:
    if raw not in CATEGORIES:
        raise HTTPException(status_code=400, detail="Invalid category")
    return raw


def _parse_status(raw: str) -> str:
    if raw not in STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    return raw


def _respond(request: Request, *, status: str, body: dict[str, Any], status_code: int = 200) -> Response:
    if wants_json(request):
        return JSONResponse(body, status_code=status_code)
    return RedirectResponse(f"/admin/dashboard?status={status}", status_code=303)


# -----------------------
# Login / OTP
# -----------------------
@router.get("/login", include_in_schema=False)
def login_page(request: Request):
    if admin_email_from_request(request):
        return RedirectResponse("/admin/dashboard", status_code=303)
    return render(request, "admin/login.html", seo={"title": "Admin Login", "desc": "Admin login"})


@router.get("", include_in_schema=False)
def admin_root():
    return RedirectResponse("/admin/dashboard", status_code=303)


@router.post("/login")
def login(request: Request, payload: Payload, db: DB):
    data, _ = payload
    username = _text(data, "username") or _text(data, "email")
    password = str(data.get("password") or "")
    if not username or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    limiter.hit(
        key=f"admin:login:{client_ip(request)}",
        limit=5,
        window_seconds=10 * 60,
        detail="Too many login attempts. Please try again later.",
    )
    if not verify_admin_credentials(username, password):
        logger.warning("Failed admin login for %s from %s", username, client_ip(request))
        raise HTTPException(status_code=401, detail="Invalid credentials")

    identifier = admin_email()
    code = generate_otp()
    expires = dt.datetime.now(dt.timezone.utc) + dt.timedelta(minutes=otp_exp_minutes())
    # Keep at most one active code for the admin.
    db.execute(delete(OtpCode).where((OtpCode.identifier == identifier) & (OtpCode.purpose == OTP_PURPOSE)))
    otp = OtpCode(identifier=identifier, purpose=OTP_PURPOSE, code=code, attempts=0, expires_at=expires)
    db.add(otp)
    db.commit()

    try:
        delivery = send_admin_otp_email(to_email=identifier, code=code)
    except EmailSendError:
        logger.exception("Admin OTP email failed")
        db.delete(otp)
        db.commit()
        raise HTTPException(status_code=503, detail="Unable to send verification code")

    message = "Verification code sent to admin email"
    if delivery == "console":
        message = "Verification code generated. Email service not configured; check server logs for the code."
    return {"ok": True, "username": identifier, "message": message}


@router.post("/login/verify")
def login_verify(request: Request, payload: Payload, db: DB):
    data, _ = payload
    code = _text(data, "verificationCode") or _text(data, "code")
    if not code:
        raise HTTPException(status_code=400, detail="Verification code is required")

    limiter.hit(
        key=f"admin:verify:{client_ip(request)}",
        limit=12,
        window_seconds=10 * 60,
        detail="Too many verification attempts. Please try again later.",
    )
    otp = (
        db.execute(
            select(OtpCode)
            .where((OtpCode.identifier == admin_email()) & (OtpCode.purpose == OTP_PURPOSE))
            .order_by(OtpCode.id.desc())
        )
        .scalars()
        .first()
    )
    if not otp:
        raise HTTPException(status_code=400, detail="No active verification session. Please login again.")

    max_attempts = otp_max_attempts()
    if otp.attempts >= max_attempts:
        db.delete(otp)
        db.commit()
        raise HTTPException(status_code=400, detail="Too many attempts. Please login again.")

    if _as_utc(otp.expires_at) <= dt.datetime.now(dt.timezone.utc):
        db.delete(otp)
        db.commit()
        raise HTTPException(status_code=400, detail="Code expired. Please login again.")

    if not secrets.compare_digest(code.encode("utf-8"), otp.code.encode("utf-8")):
        otp.attempts += 1
        attempts = otp.attempts
        db.commit()
        raise HTTPException(status_code=400, detail=f"Invalid code. Attempt {attempts}/{max_attempts}")

    # One-time: consume the OTP.
    db.delete(otp)
    db.commit()

    token = create_admin_token(email=otp.identifier)
    resp = JSONResponse({"ok": True, "redirect": "/admin/dashboard"})
    resp.set_cookie(
        ADMIN_COOKIE,
        token,
        max_age=admin_session_hours() * 3600,
        httponly=True,
        samesite="lax",
        secure=is_production(),
    )
    logger.info("Admin logged in from %s", client_ip(request))
    return resp


@router.get("/logout", include_in_schema=False)
def logout():
    resp = RedirectResponse("/", status_code=303)
    resp.delete_cookie(ADMIN_COOKIE)
    return resp


# -----------------------
# Dashboard
# -----------------------
def _all_properties(db: Session) -> list[Property]:
    stmt = select(Property).order_by(Property.created_at.desc(), Property.id.desc()).limit(DASHBOARD_LIMIT)
    return list(db.execute(stmt).scalars().all())


def _dashboard(request: Request, db: Session, *, editing: Property | None, status: str) -> Response:
    return render(
        request,
        "admin/dashboard.html",
        {
            "admin_email": admin_email(),
            "buckets": split_into_buckets(_all_properties(db)),
            "editing": editing,
            "flash": status,
            "categories": [(c, category_label(c)) for c in CATEGORIES],
            "statuses": STATUSES,
        },
        seo={"title": "Admin Dashboard", "desc": "Manage property listings"},
    )


@router.get("/dashboard", include_in_schema=False)
def dashboard(
    request: Request,
    admin: AdminEmail,
    db: DB,
    id: int | None = Query(default=None),
    status: str = Query(default=""),
):
    editing = db.get(Property, id) if id else None
    return _dashboard(request, db, editing=editing, status=status)


@router.get("/properties/json")
def properties_json(admin: AdminEmail, db: DB):
    buckets = split_into_buckets(_all_properties(db))
    return {"ok": True, **{key: [property_out(p) for p in items] for key, items in buckets.items()}}


@router.get("/metrics")
def metrics(admin: AdminEmail):
    health = monitor.health()
    return {
        "ok": True,
        "metrics": health["metrics"],
        "health": {"status": health["status"], "issues": health["issues"]},
    }


# -----------------------
# Property CRUD
# -----------------------
@router.post("/properties/new")
def create_property(
    request: Request,
    admin: AdminEmail,
    payload: Payload,
    background_tasks: BackgroundTasks,
    db: DB,
):
    data, files = payload
    category = _text(data, "category")
    title = _text(data, "title")
    location = _text(data, "location")
    if not category or not title or not location or _text(data, "price") == "":
        raise HTTPException(status_code=400, detail="Missing required fields")
    category = _parse_category(category)
    price = _parse_price(data.get("price"))
    status = _parse_status(_text(data, "status") or "available")

    city, state = derive_city_state(location, _text(data, "city"), _text(data, "state"))
    state = state or home_state()
    if not city:
        raise HTTPException(status_code=400, detail="Missing required fields")
    locality = _text(data, "locality")

    # Raw files go to disk now; optimization happens after the response.
    saved = save_uploads(files)
    urls = raw_urls(saved)
    try:
        p = Property(
            category=category,
            title=title,
            description=_text(data, "description"),
            price=price,
            location=location,
            city=city,
            state=state,
            locality=locality,
            pincode=_text(data, "pincode"),
            builtup_area=_text(data, "builtup_area"),
            seo_meta_description=_text(data, "seo_meta_description")
            or seo_meta_description(title, city, category, price),
            status=status,
            featured=_truthy(data.get("featured")),
            map3d_url=urls["map3d_url"] or _text(data, "map3d_url"),
            virtual_tour_url=urls["virtual_tour_url"] or _text(data, "virtual_tour_url"),
            media_status="processing" if saved else "ready",
        )
        p.suitable_for = _list(data.get("suitable_for"))
        p.features = _list(data.get("features"))
        p.search_tags = _list(data.get("search_tags")) or location_search_tags(city, state, locality)
        p.image_urls = urls["image_urls"]
        p.video_urls = urls["video_urls"]
        db.add(p)
        db.commit()
    except Exception:
        delete_media_urls(list(urls["image_urls"]) + list(urls["video_urls"]) + [urls["map3d_url"], urls["virtual_tour_url"]])
        raise

    logger.info("Property %s created by %s (%s media file(s))", p.id, admin, len(saved.all_paths()))
    if saved:
        background_tasks.add_task(optimize_property_media, p.id, saved)
    if p.status == "available":
        background_tasks.add_task(notify_new_property, p.id, request_base=request_base(request))

    return _respond(
        request,
        status="created",
        body={"ok": True, "property": property_out(p), "message": "Property created successfully"},
        status_code=201,
    )


@router.get("/properties/{property_id}/edit", include_in_schema=False)
def edit_property(property_id: int, request: Request, admin: AdminEmail, db: DB):
    p = db.get(Property, property_id)
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")
    return _dashboard(request, db, editing=p, status="")


@router.post("/properties/{property_id}/update")
def update_property(
    property_id: int,
    request: Request,
    admin: AdminEmail,
    payload: Payload,
    background_tasks: BackgroundTasks,
    db: DB,
):
    data, files = payload
    p = db.get(Property, property_id)
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")

    for key in ("title", "description", "location", "city", "state", "locality", "pincode", "builtup_area", "seo_meta_description"):
        if key in data:
            setattr(p, key, _text(data, key))
    if "category" in data:
        p.category = _parse_category(_text(data, "category"))
    if "price" in data:
        p.price = _parse_price(data.get("price"))
    if "status" in data:
        p.status = _parse_status(_text(data, "status"))
    for key in ("suitable_for", "features", "search_tags"):
        if key in data:
            setattr(p, key, _list(data.get(key)))

    # HTML checkboxes are simply absent when unchecked.
    if "json" in (request.headers.get("content-type") or "").lower():
        if "featured" in data:
            p.featured = _truthy(data.get("featured"))
    else:
        p.featured = _truthy(data.get("featured"))

    if not p.title or not p.location:
        raise HTTPException(status_code=400, detail="Missing required fields")
    p.city, p.state = derive_city_state(p.location, p.city, p.state)
    p.state = p.state or home_state()

    saved = save_uploads(files)
    urls = raw_urls(saved)
    # A background optimization may have swapped media URLs since the row was loaded.
    db.refresh(p, ["image_urls_json", "video_urls_json", "virtual_tour_url", "map3d_url"], with_for_update=True)
    replaced: list[str] = []
    p.image_urls = p.image_urls + urls["image_urls"]
    p.video_urls = p.video_urls + urls["video_urls"]
    if urls["map3d_url"]:
        replaced.append(p.map3d_url)
        p.map3d_url = urls["map3d_url"]
    elif "map3d_url" in data:
        p.map3d_url = _text(data, "map3d_url")
    if urls["virtual_tour_url"]:
        replaced.append(p.virtual_tour_url)
        p.virtual_tour_url = urls["virtual_tour_url"]
    elif "virtual_tour_url" in data:
        p.virtual_tour_url = _text(data, "virtual_tour_url")
    if saved:
        p.media_status = "processing"
    db.commit()

    logger.info("Property %s updated by %s", p.id, admin)
    if saved:
        background_tasks.add_task(optimize_property_media, p.id, saved)
    replaced = [u for u in replaced if u]
    if replaced:
        background_tasks.add_task(delete_media_urls, replaced)

    return _respond(request, status="updated", body={"ok": True, "property": property_out(p)})


@router.post("/properties/{property_id}/delete")
def delete_property(
    property_id: int,
    request: Request,
    admin: AdminEmail,
    background_tasks: BackgroundTasks,
    db: DB,
):
    p = db.get(Property, property_id)
    if not p:
        raise HTTPException(status_code=404, detail="Property not found")
    urls = p.all_media_urls()
    db.delete(p)
    db.commit()

    logger.info("Property %s deleted by %s", property_id, admin)
    if urls:
        background_tasks.add_task(delete_media_urls, urls)
    return _respond(request, status="deleted", body={"ok": True, "id": property_id})
