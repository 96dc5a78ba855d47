from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from estates.models import CATEGORIES, Property
from estates.seo import category_label, detail_path, format_inr, make_slug


PER_PAGE = 12

# /category/<alias> -> category
CATEGORY_ALIASES = {
    "flat": "residential_properties",
    "residential": "residential_properties",
    "residential_properties": "residential_properties",
    "commercial": "commercial_plots",
    "commercial-plots": "commercial_plots",
    "commercial_plots": "commercial_plots",
    "plot": "land_plots",
    "plots": "land_plots",
    "land": "land_plots",
    "land-plots": "land_plots",
    "land_plots": "land_plots",
    "agri": "premium_investment",
    "premium": "premium_investment",
    "investment": "premium_investment",
    "premium-investment": "premium_investment",
    "premium_investment": "premium_investment",
}

# ?type=<ui type> filter on listing pages
UI_TYPE_TO_CATEGORY = {
    "residential": "residential_properties",
    "commercial": "commercial_plots",
    "plot": "land_plots",
    "land": "land_plots",
    "premium": "premium_investment",
    "investment": "premium_investment",
}

# /<type>-in-<city> pages; the last four are older URL shapes still linked from outside.
SLUG_TYPE_TO_CATEGORY = {
    "residential": "residential_properties",
    "commercial-plots": "commercial_plots",
    "land-plots": "land_plots",
    "premium-investment": "premium_investment",
    "flats": "residential_properties",
    "houses": "residential_properties",
    "plots": "land_plots",
    "commercial-properties": "commercial_plots",
}

# Budget buckets in rupees: (min, max), either side open.
BUDGETS: dict[str, tuple[int | None, int | None]] = {
    "0-30": (None, 3_000_000),
    "30-50": (3_000_000, 5_000_000),
    "50-100": (5_000_000, 10_000_000),
    "100-plus": (10_000_000, None),
}

SORTS = ("newest", "price-low", "price-high", "featured")


def resolve_category(alias: str) -> str | None:
    return CATEGORY_ALIASES.get((alias or "").strip().lower())


def split_csv(value: str | None) -> list[str]:
    return [x.strip() for x in (value or "").split(",") if x.strip()]


def derive_city_state(location: str, city: str, state: str) -> tuple[str, str]:
    """Fill missing city/state from a "City, State" style location string."""
    parts = split_csv(location)
    if not city and parts:
        city = parts[0]
    if not state and len(parts) >= 2:
        state = parts[1]
    return city, state


def escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class ListingFilters:
    type: str = ""
    budget: str = ""
    locality: str = ""
    sort: str = "newest"

    def as_dict(self) -> dict[str, str]:
        return {"type": self.type, "budget": self.budget, "locality": self.locality, "sort": self.sort or "newest"}


@dataclass
class Page:
    items: list[Property]
    page: int
    total: int
    per_page: int = PER_PAGE
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.total_pages = max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1


def apply_filters(stmt: Select, filters: ListingFilters) -> Select:
    category = UI_TYPE_TO_CATEGORY.get((filters.type or "").strip().lower())
    if category:
        stmt = stmt.where(Property.category == category)

    lo, hi = BUDGETS.get((filters.budget or "").strip(), (None, None))
    if lo is not None:
        stmt = stmt.where(Property.price >= lo)
    if hi is not None:
        stmt = stmt.where(Property.price <= hi)

    locality = (filters.locality or "").strip().lower()
    if locality:
        stmt = stmt.where(func.lower(Property.locality).like(f"%{escape_like(locality)}%", escape="\\"))
    return stmt


def apply_sort(stmt: Select, sort: str) -> Select:
    s = (sort or "").strip().lower()
    if s == "price-low":
        return stmt.order_by(Property.price.asc(), Property.id.desc())
    if s == "price-high":
        return stmt.order_by(Property.price.desc(), Property.id.desc())
    if s == "featured":
        return stmt.order_by(Property.featured.desc(), Property.created_at.desc(), Property.id.desc())
    return stmt.order_by(Property.created_at.desc(), Property.id.desc())


def available_stmt() -> Select:
    return select(Property).where(Property.status == "available")


def paginate(db: Session, stmt: Select, *, page: int, per_page: int = PER_PAGE) -> Page:
    page = max(1, int(page or 1))
    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    items = db.execute(stmt.offset((page - 1) * per_page).limit(per_page)).scalars().all()
    return Page(items=list(items), page=page, total=int(total), per_page=per_page)


def city_stmt(city_slug: str, home_state: str, *, category: str | None = None) -> Select:
    stmt = available_stmt().where(
        (func.lower(Property.city) == city_slug.lower()) & (func.lower(Property.state) == home_state.lower())
    )
    if category:
        stmt = stmt.where(Property.category == category)
    return stmt


def latest_available(db: Session, *, limit: int, category: str | None = None) -> list[Property]:
    stmt = available_stmt()
    if category:
        stmt = stmt.where(Property.category == category)
    stmt = stmt.order_by(Property.created_at.desc(), Property.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def latest_featured(db: Session) -> Property | None:
    stmt = (
        available_stmt()
        .where(Property.featured.is_(True))
        .order_by(Property.created_at.desc(), Property.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def related_properties(db: Session, p: Property, *, limit: int = 4) -> list[Property]:
    stmt = (
        available_stmt()
        .where((Property.id != p.id) & (func.lower(Property.city) == (p.city or "").lower()))
        .order_by(Property.created_at.desc(), Property.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def split_into_buckets(props: list[Property]) -> dict[str, list[Property]]:
    buckets: dict[str, list[Property]] = {c: [] for c in CATEGORIES}
    for p in props:
        buckets.setdefault(p.category, []).append(p)
    return {
        "residential": buckets["residential_properties"],
        "commercial_plots": buckets["commercial_plots"],
        "land_plots": buckets["land_plots"],
        "premium_investment": buckets["premium_investment"],
    }


def property_out(p: Property) -> dict[str, Any]:
    return {
        "id": p.id,
        "slug": make_slug(p.title),
        "url": detail_path(p),
        "category": p.category,
        "category_label": category_label(p.category),
        "title": p.title,
        "description": p.description,
        "price": p.price,
        "price_display": format_inr(p.price),
        "location": p.location,
        "city": p.city,
        "state": p.state,
        "locality": p.locality,
        "pincode": p.pincode,
        "builtup_area": p.builtup_area,
        "suitable_for": p.suitable_for,
        "features": p.features,
        "search_tags": p.search_tags,
        "seo_meta_description": p.seo_meta_description,
        "status": p.status,
        "featured": bool(p.featured),
        "map3d_url": p.map3d_url,
        "virtual_tour_url": p.virtual_tour_url,
        "image_urls": p.image_urls,
        "video_urls": p.video_urls,
        "media_status": p.media_status,
        "created_at": p.created_at.isoformat() if p.created_at else "",
        "updated_at": p.updated_at.isoformat() if p.updated_at else "",
    }
