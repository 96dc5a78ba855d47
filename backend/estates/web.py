from __future__ import annotations

import datetime as dt
import json
import os
from email.utils import format_datetime
from typing import Any

from fastapi import Request, Response
from fastapi.templating import Jinja2Templates
from markupsafe import Markup

from estates.config import base_url, contact_email, contact_phone, served_cities, site_name
from estates.seo import NAV_ITEMS, category_label, detail_path, format_inr

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(__file__), "templates"))


def _jsonld(value: Any) -> Markup:
    # Safe inside <script type="application/ld+json">: no "</" sequences survive.
    raw = json.dumps(value, ensure_ascii=False).replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    return Markup(raw)


templates.env.filters["inr"] = format_inr
templates.env.filters["jsonld"] = _jsonld
templates.env.globals.update(detail_path=detail_path, category_label=category_label)


def request_base(request: Request) -> str:
    return base_url() or str(request.base_url).rstrip("/")


def wants_json(request: Request) -> bool:
    """XHR, an Accept header asking for JSON, or a JSON body."""
    if (request.headers.get("x-requested-with") or "").lower() == "xmlhttprequest":
        return True
    if "application/json" in (request.headers.get("accept") or ""):
        return True
    return "json" in (request.headers.get("content-type") or "")


def default_seo() -> dict[str, str]:
    cities = ", ".join(c.title() for c in served_cities())
    return {
        "title": f"{site_name()} - Properties in {cities} & Surroundings",
        "desc": f"Premium flats, plots & agricultural land in {cities}. Verified properties with virtual tours.",
        "keywords": f"{cities} property, flats, plots, land, real estate, {site_name()}",
    }


def render(
    request: Request,
    template: str,
    context: dict[str, Any] | None = None,
    *,
    status_code: int = 200,
    seo: dict[str, str] | None = None,
) -> Response:
    ctx: dict[str, Any] = {
        "site_name": site_name(),
        "nav_items": NAV_ITEMS,
        "served_cities": served_cities(),
        "contact_phone": contact_phone(),
        "contact_email": contact_email(),
        "canonical": request_base(request) + request.url.path,
        "seo": {**default_seo(), **(seo or {})},
        "schemas": [],
        "year": dt.date.today().year,
    }
    ctx.update(context or {})
    return templates.TemplateResponse(request, template, ctx, status_code=status_code)


def cache_for(response: Response, seconds: int, *, revalidate: bool = False) -> Response:
    directive = f"public, max-age={int(seconds)}"
    if revalidate:
        directive += ", must-revalidate"
    response.headers["Cache-Control"] = directive
    response.headers["Expires"] = format_datetime(
        dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=int(seconds)), usegmt=True
    )
    response.headers["Vary"] = "Accept-Encoding"
    return response


def no_cache(response: Response) -> Response:
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def render_error(request: Request, status_code: int, message: str) -> Response:
    return render(
        request,
        "error.html",
        {"status_code": status_code, "message": message},
        status_code=status_code,
        seo={"title": f"{status_code} - {message} | {site_name()}", "desc": message},
    )
