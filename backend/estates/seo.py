from __future__ import annotations

import re
from typing import Any

from estates.config import contact_email, contact_phone, home_state, site_name


CATEGORY_LABELS = {
    "residential_properties": "Residential Properties",
    "commercial_plots": "Commercial Plots",
    "land_plots": "Land & Plots",
    "premium_investment": "Premium & Investment",
}

# Public URL slug for each category page (/category/<slug>).
CATEGORY_SLUGS = {
    "residential_properties": "residential",
    "commercial_plots": "commercial-plots",
    "land_plots": "land-plots",
    "premium_investment": "premium-investment",
}

NAV_ITEMS: list[dict[str, Any]] = [
    {"label": "Home", "path": "/", "icon": "home", "description": "Go to home page"},
    {"label": "Properties", "path": "/properties", "icon": "building", "description": "View all properties"},
    {"label": "Categories", "path": "/#category", "icon": "tags", "description": "Browse property categories"},
    {"label": "Services", "path": "/services", "icon": "headset", "description": "Our services"},
    {"label": "About", "path": "/about", "icon": "info", "description": "About us"},
    {"label": "Contact", "path": "/contact", "icon": "mail", "description": "Contact information"},
]


def category_label(category: str) -> str:
    return CATEGORY_LABELS.get(category or "", "Property")


def make_slug(title: str) -> str:
    s = (title or "").lower()
    s = re.sub(r"[^\w\s-]", "", s).strip()
    s = re.sub(r"\s+", "-", s)
    return s[:50]


def detail_path(p) -> str:
    return f"/property/{make_slug(p.title)}-{p.id}"


def absolute_url(base: str, path: str) -> str:
    if path.startswith(("http://", "https://", "//")):
        return path
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def format_inr(amount: int | float) -> str:
    """Indian digit grouping: 12,34,56,789."""
    n = int(amount or 0)
    sign = "-" if n < 0 else ""
    s = str(abs(n))
    if len(s) <= 3:
        return f"{sign}{s}"
    head, tail = s[:-3], s[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return f"{sign}{','.join(groups)},{tail}"


def location_search_tags(city: str, state: str, locality: str) -> list[str]:
    tags: list[str] = []
    if city:
        tags += [city, f"{city} properties", f"Buy in {city}", f"Sell in {city}"]
    if locality:
        tags += [locality, f"{locality} {city}".strip(), f"Properties in {locality}"]
    if state:
        tags += [f"{state} properties", f"Real estate in {state}"]
    # dict.fromkeys keeps first-seen order.
    return list(dict.fromkeys(tags))


def seo_meta_description(title: str, city: str, category: str, price: int) -> str:
    label = category_label(category)
    desc = (
        f"{title} in {city}. {label} in {city}. Rs {format_inr(price)}. "
        "Browse top rated properties with photos and details."
    )
    return desc[:160]


def breadcrumbs_for_path(path: str) -> list[dict[str, Any]]:
    parts = [p for p in (path or "").split("/") if p]
    crumbs = [{"label": "Home", "path": "/", "active": not parts}]
    current = ""
    for i, part in enumerate(parts):
        current += "/" + part
        label = part[:1].upper() + part[1:].replace("-", " ")
        crumbs.append({"label": label, "path": current, "active": i == len(parts) - 1})
    return crumbs


# -----------------------
# JSON-LD (schema.org)
# -----------------------
def property_schema(p, *, base: str) -> dict[str, Any]:
    schema_type = "RealEstateListing"
    if p.category == "residential_properties":
        schema_type = "SingleFamilyResidence"
    elif p.category == "land_plots":
        schema_type = "LandParcel"

    return {
        "@context": "https://schema.org",
        "@type": schema_type,
        "name": p.title,
        "description": p.description,
        "image": [absolute_url(base, u) for u in p.image_urls],
        "offers": {
            "@type": "Offer",
            "price": p.price,
            "priceCurrency": "INR",
            "availability": "https://schema.org/InStock" if p.status == "available" else "https://schema.org/SoldOut",
            "seller": {"@type": "Organization", "name": site_name()},
        },
        "address": {
            "@type": "PostalAddress",
            "streetAddress": p.location,
            "addressLocality": p.locality or p.city,
            "addressRegion": p.state or home_state(),
            "addressCountry": "IN",
            "postalCode": p.pincode or "",
        },
        "telephone": contact_phone(),
        "url": absolute_url(base, detail_path(p)),
    }


def local_business_schema(city: str, *, base: str) -> dict[str, Any]:
    slug = (city or "").lower()
    name = slug.capitalize()
    state = home_state()
    return {
        "@context": "https://schema.org",
        "@type": "RealEstateAgent",
        "name": f"{site_name()} - Real Estate Services in {name}",
        "description": (
            f"Leading real estate services in {name}, {state}. "
            "Specializing in residential, plot and agricultural properties."
        ),
        "areaServed": {
            "@type": "City",
            "name": name,
            "containedIn": {"@type": "State", "name": state},
        },
        "telephone": contact_phone(),
        "email": contact_email(),
        "address": {
            "@type": "PostalAddress",
            "addressLocality": name,
            "addressRegion": state,
            "addressCountry": "IN",
        },
        "priceRange": "₹₹",
        "serviceType": ["Property Sales", "Property Rental", "Real Estate Consultation"],
        "url": absolute_url(base, f"/properties-in-{slug}"),
    }


def breadcrumb_schema(crumbs: list[dict[str, str]], *, base: str) -> dict[str, Any]:
    return {
        "@context": "https://schema.org",
        "@type": "BreadcrumbList",
        "itemListElement": [
            {"@type": "ListItem", "position": i + 1, "name": c["name"], "item": absolute_url(base, c["url"])}
            for i, c in enumerate(crumbs)
        ],
    }


def collection_page_schema(city: str, property_type: str | None, total: int, *, base: str) -> dict[str, Any]:
    title = f"{property_type} in {city}" if property_type else f"Properties in {city}"
    return {
        "@context": "https://schema.org",
        "@type": "CollectionPage",
        "name": title,
        "description": f"Browse {total} {title.lower()} with {site_name()}.",
        "url": base,
        "isPartOf": {"@type": "WebSite", "name": site_name(), "url": base},
    }
