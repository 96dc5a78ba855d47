from __future__ import annotations

import logging
import os
from typing import Annotated
from xml.sax.saxutils import escape as xml_escape

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from estates import alerts
from estates.config import home_state, served_cities, site_name
from estates.deps import get_db
from estates.listing import (
    SLUG_TYPE_TO_CATEGORY,
    ListingFilters,
    apply_filters,
    apply_sort,
    available_stmt,
    city_stmt,
    latest_available,
    latest_featured,
    paginate,
    related_properties,
    resolve_category,
)
from estates.mailer import EmailSendError, Enquiry, send_enquiry_email
from estates.media import local_path
from estates.models import Property
from estates.rate_limit import public_rate_limit
from estates.seo import (
    CATEGORY_SLUGS,
    breadcrumb_schema,
    breadcrumbs_for_path,
    category_label,
    collection_page_schema,
    detail_path,
    format_inr,
    local_business_schema,
    make_slug,
    property_schema,
)
from estates.web import cache_for, render, request_base

logger = logging.getLogger(__name__)

router = APIRouter()

DB = Annotated[Session, Depends(get_db)]

HOME_SECTIONS = (
    ("residential", "residential_properties"),
    ("commercial_plots", "commercial_plots"),
    ("land_plots", "land_plots"),
    ("premium_investment", "premium_investment"),
)


def _filters(
    type: str = Query(default=""),
    budget: str = Query(default=""),
    locality: str = Query(default=""),
    sort: str = Query(default="newest"),
) -> ListingFilters:
    return ListingFilters(type=type, budget=budget, locality=locality, sort=sort)


Filters = Annotated[ListingFilters, Depends(_filters)]


# -----------------------
# Home & static pages
# -----------------------
@router.get("/", include_in_schema=False)
def home_page(request: Request, db: DB):
    latest = latest_available(db, limit=12)
    sections = {key: latest_available(db, limit=6, category=cat) for key, cat in HOME_SECTIONS}
    featured = latest_featured(db)

    cities = " & ".join(c.title() for c in served_cities()[:2])
    seo = {
        "title": f"{cities} Properties | Residential, Commercial, Land & Investment - {site_name()}",
        "desc": (
            f"Verified properties across {cities} & {home_state()}: residential homes, commercial plots, "
            "land & premium investment assets with virtual tours."
        ),
    }
    if featured:
        label = category_label(featured.category)
        seo["title"] = f"{label} in {featured.location} | ₹{format_inr(featured.price)} - {site_name()}"
        seo["desc"] = f"Premium {label.lower()} in {featured.location}. Virtual tour available."

    resp = render(
        request,
        "home.html",
        {"latest": latest, "sections": sections, "featured": featured, "category_slugs": CATEGORY_SLUGS},
        seo=seo,
    )
    return cache_for(resp, 300)


def _static_page(request: Request, template: str, title: str, desc: str) -> Response:
    return render(
        request,
        template,
        {"trail": breadcrumbs_for_path(request.url.path)},
        seo={"title": f"{title} | {site_name()}", "desc": desc},
    )


@router.get("/about", include_in_schema=False)
def about_page(request: Request):
    return _static_page(request, "about.html", "About Us", f"Learn about {site_name()} - your trusted real estate partner")


@router.get("/services", include_in_schema=False)
def services_page(request: Request):
    return _static_page(request, "services.html", "Our Services", "Explore our comprehensive real estate services")


@router.get("/contact", include_in_schema=False)
def contact_page(request: Request):
    return _static_page(request, "contact.html", "Contact Us", f"Get in touch with {site_name()}")


# -----------------------
# Listing pages
# -----------------------
@router.get("/properties", include_in_schema=False)
def properties_page(request: Request, db: DB, page: int = Query(default=1, ge=1)):
    stmt = available_stmt().order_by(Property.created_at.desc(), Property.id.desc())
    result = paginate(db, stmt, page=page)
    return render(
        request,
        "listing.html",
        {
            "heading": "All Properties",
            "result": result,
            "message": None if result.items else "No properties available right now.",
            "page_url": "/properties",
        },
        seo={
            "title": f"Properties | {site_name()}",
            "desc": "Browse all available properties - Residential, Commercial, Land & Investment properties",
        },
    )


@router.get("/category/{category}", include_in_schema=False)
def category_page(category: str, request: Request, db: DB, page: int = Query(default=1, ge=1)):
    resolved = resolve_category(category)
    if not resolved:
        raise HTTPException(status_code=404, detail="Category not found")
    label = category_label(resolved)
    stmt = available_stmt().where(Property.category == resolved).order_by(Property.created_at.desc(), Property.id.desc())
    result = paginate(db, stmt, page=page)
    cities = " & ".join(c.title() for c in served_cities()[:2])
    resp = render(
        request,
        "listing.html",
        {
            "heading": label,
            "result": result,
            "message": None if result.items else "No properties added in this category yet!",
            "page_url": f"/category/{category}",
        },
        seo={
            "title": f"{label} in {cities} | {site_name()}",
            "desc": f"Browse {label.lower()} listings in {cities} and nearby {home_state()} locations.",
        },
    )
    return cache_for(resp, 600)


def _listing_page(
    request: Request,
    db: Session,
    *,
    city_slug: str,
    page: int,
    filters: ListingFilters,
    type_slug: str | None = None,
) -> Response:
    city_slug = (city_slug or "").lower()
    type_slug = (type_slug or "").lower() or None
    category = SLUG_TYPE_TO_CATEGORY.get(type_slug) if type_slug else None
    if city_slug not in served_cities() or (type_slug and not category):
        raise HTTPException(status_code=404, detail="Invalid property type or city" if type_slug else "City not found")

    stmt = apply_sort(apply_filters(city_stmt(city_slug, home_state(), category=category), filters), filters.sort)
    result = paginate(db, stmt, page=page)

    city = city_slug.capitalize()
    pretty_type = type_slug.replace("-", " ").capitalize() if type_slug else None
    path = f"/{type_slug}-in-{city_slug}" if type_slug else f"/properties-in-{city_slug}"
    base = request_base(request)

    crumbs = [{"name": "Home", "url": "/"}, {"name": city, "url": f"/properties-in-{city_slug}"}]
    if type_slug:
        crumbs.append({"name": pretty_type, "url": path})

    if pretty_type:
        title = f"{pretty_type} in {city} | {site_name()}"
        fallback_desc = (
            f"Browse {result.total}+ {pretty_type.lower()} in {city}. Verified listings with photos, prices & details."
        )
    else:
        title = f"Properties for Sale in {city} | {site_name()}"
        fallback_desc = (
            f"Explore {result.total}+ verified properties in {city}. Find flats, houses, plots & land in {home_state()}."
        )
    first = result.items[0] if result.items else None
    desc = (first.seo_meta_description if first and first.seo_meta_description else fallback_desc)

    prev_page = None
    if result.page > 1:
        prev_page = path if result.page == 2 else f"{path}/{result.page - 1}"
    next_page = f"{path}/{result.page + 1}" if result.page < result.total_pages else None

    resp = render(
        request,
        "listing.html",
        {
            "heading": f"{pretty_type} in {city}" if pretty_type else f"Properties in {city}",
            "result": result,
            "message": None if result.items else "No properties match your search yet.",
            "page_url": path,
            "city": city,
            "city_slug": city_slug,
            "property_type": pretty_type,
            "filters": filters.as_dict(),
            "breadcrumbs": crumbs,
            "prev_page": prev_page,
            "next_page": next_page,
            "schemas": [
                local_business_schema(city_slug, base=base),
                breadcrumb_schema(crumbs, base=base),
                collection_page_schema(city, pretty_type, result.total, base=base),
            ],
            "canonical": base + (f"{path}/{result.page}" if result.page > 1 else path),
        },
        seo={"title": title, "desc": desc},
    )
    return cache_for(resp, 300, revalidate=True)


@router.get("/properties-in-{city}", include_in_schema=False)
def city_page(city: str, request: Request, db: DB, filters: Filters):
    return _listing_page(request, db, city_slug=city, page=1, filters=filters)


@router.get("/properties-in-{city}/{page:int}", include_in_schema=False)
def city_page_n(city: str, page: int, request: Request, db: DB, filters: Filters):
    return _listing_page(request, db, city_slug=city, page=max(1, page), filters=filters)


# Must stay after the /properties-in-<city> routes.
@router.get("/{type_slug}-in-{city}", include_in_schema=False)
def type_city_page(type_slug: str, city: str, request: Request, db: DB, filters: Filters):
    return _listing_page(request, db, city_slug=city, type_slug=type_slug, page=1, filters=filters)


@router.get("/{type_slug}-in-{city}/{page:int}", include_in_schema=False)
def type_city_page_n(type_slug: str, city: str, page: int, request: Request, db: DB, filters: Filters):
    return _listing_page(request, db, city_slug=city, type_slug=type_slug, page=max(1, page), filters=filters)


# -----------------------
# Uploaded media
# -----------------------
@router.get("/uploads/{name}", include_in_schema=False)
def uploaded_file(name: str):
    path = local_path(f"/uploads/{name}")
    if not path or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    resp = FileResponse(path)
    resp.headers["Cache-Control"] = "public, max-age=604800, immutable"
    return resp


# -----------------------
# Property detail & legacy URLs
# -----------------------
@router.get("/property", include_in_schema=False)
def property_root():
    return RedirectResponse("/properties", status_code=302)


@router.get("/property/{ref}", include_in_schema=False)
def property_detail(ref: str, request: Request, db: DB):
    # Legacy short link: /property/<id>
    if ref.isdigit():
        p = db.get(Property, int(ref))
        if not p:
            return RedirectResponse("/", status_code=302)
        return RedirectResponse(detail_path(p), status_code=301)

    slug, sep, raw_id = ref.rpartition("-")
    if not sep or not raw_id.isdigit():
        raise HTTPException(status_code=404, detail="Property not found")
    p = db.get(Property, int(raw_id))
    if not p or p.status != "available":
        raise HTTPException(status_code=404, detail="Property not found")

    correct = make_slug(p.title)
    if slug != correct:
        return RedirectResponse(detail_path(p), status_code=301)

    base = request_base(request)
    city_slug = (p.city or "").lower()
    crumbs = [
        {"name": "Home", "url": "/"},
        {"name": p.city or "Properties", "url": f"/properties-in-{city_slug}" if city_slug else "/properties"},
        {"name": p.title, "url": detail_path(p)},
    ]
    return render(
        request,
        "property_detail.html",
        {
            "property": p,
            "related": related_properties(db, p),
            "breadcrumbs": crumbs,
            "schemas": [property_schema(p, base=base), breadcrumb_schema(crumbs, base=base)],
            "canonical": base + detail_path(p),
            "referrer": request.headers.get("referer") or "/",
        },
        seo={
            "title": f"{p.title} | ₹{format_inr(p.price)} | {p.location} | {site_name()}",
            "desc": (p.seo_meta_description or p.description or "")[:155],
            "keywords": f"{p.location} {category_label(p.category)}, {p.city} real estate",
        },
    )


@router.get("/properties/{location}/{category}/{slug_id}", include_in_schema=False)
def legacy_seo_detail(location: str, category: str, slug_id: str, db: DB):
    _, _, raw_id = slug_id.rpartition("-")
    p = db.get(Property, int(raw_id)) if raw_id.isdigit() else None
    if not p:
        return RedirectResponse("/", status_code=302)
    return RedirectResponse(detail_path(p), status_code=301)


# -----------------------
# SEO: sitemap / robots
# -----------------------
def _url_entry(loc: str, changefreq: str, priority: str, lastmod: str = "") -> str:
    lm = f"    <lastmod>{lastmod}</lastmod>\n" if lastmod else ""
    return (
        f"  <url>\n    <loc>{xml_escape(loc)}</loc>\n{lm}"
        f"    <changefreq>{changefreq}</changefreq>\n    <priority>{priority}</priority>\n  </url>\n"
    )


@router.get("/sitemap.xml", include_in_schema=False)
def sitemap_xml(request: Request, db: DB):
    base = request_base(request)
    props = db.execute(available_stmt().order_by(Property.created_at.desc())).scalars().all()

    xml = '<?xml version="1.0" encoding="UTF-8"?>\n'
    xml += '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
    xml += _url_entry(f"{base}/", "daily", "1.0")
    for slug in CATEGORY_SLUGS.values():
        xml += _url_entry(f"{base}/category/{slug}", "weekly", "0.8")
    for city in served_cities():
        xml += _url_entry(f"{base}/properties-in-{city}", "weekly", "0.8")
    for p in props:
        lastmod = (p.updated_at or p.created_at).date().isoformat() if (p.updated_at or p.created_at) else ""
        xml += _url_entry(f"{base}{detail_path(p)}", "weekly", "0.8", lastmod)
    xml += "</urlset>"
    return Response(content=xml, media_type="application/xml")


@router.get("/robots.txt", include_in_schema=False)
def robots_txt(request: Request):
    base = request_base(request)
    body = f"User-agent: *\nAllow: /\nDisallow: /admin\n\nSitemap: {base}/sitemap.xml\n"
    return PlainTextResponse(body)


# -----------------------
# Enquiry
# -----------------------
class EnquiryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    phone: str | int | None = None
    location: str | None = None
    requirement: str | None = None
    property_id: str | int | None = Field(default=None, alias="propertyId")
    subscribe: bool = False
    email: str | None = None


@router.post("/enquiry", dependencies=[Depends(public_rate_limit)])
def enquiry(data: EnquiryIn, request: Request, db: DB):
    name = (data.name or "").strip()
    phone = str(data.phone if data.phone is not None else "").strip()
    if not name or not phone:
        return JSONResponse({"ok": False, "error": "Name and phone are required"}, status_code=400)

    email = alerts.normalize_email(data.email or "")
    enq = Enquiry(
        name=name,
        phone=phone,
        location=(data.location or "").strip(),
        requirement=(data.requirement or "").strip(),
        property_id=str(data.property_id if data.property_id is not None else "").strip(),
        subscribe=bool(data.subscribe),
        email=email,
        source=request.headers.get("referer") or "",
    )
    try:
        send_enquiry_email(enq)
    except EmailSendError:
        logger.exception("Enquiry email failed name=%s", name)
        return JSONResponse({"ok": False, "error": "Failed to send enquiry"}, status_code=500)

    if enq.subscribe and alerts.is_valid_email(email):
        alerts.subscribe(db, email)

    return {"ok": True, "message": "Enquiry sent successfully"}
