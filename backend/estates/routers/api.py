from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from estates.deps import get_db
from estates.listing import escape_like, property_out
from estates.models import Property
from estates.rate_limit import public_rate_limit

router = APIRouter(prefix="/api", tags=["api"], dependencies=[Depends(public_rate_limit)])

DB = Annotated[Session, Depends(get_db)]

MAX_LIMIT = 100


@router.get("/properties")
def list_properties(
    db: DB,
    page: int = Query(default=1),
    limit: int = Query(default=20),
    city: str = Query(default=""),
    state: str = Query(default=""),
    locality: str = Query(default=""),
):
    """
    Newest-first listing for infinite scroll.

    City and state match exactly (case-insensitive); locality is a substring
    match. `has_more` is true whenever the page came back full.
    """
    page = max(1, page)
    limit = min(MAX_LIMIT, max(1, limit))

    stmt = select(Property)
    city, state, locality = city.strip(), state.strip(), locality.strip()
    if city:
        stmt = stmt.where(func.lower(Property.city) == city.lower())
    if state:
        stmt = stmt.where(func.lower(Property.state) == state.lower())
    if locality:
        stmt = stmt.where(func.lower(Property.locality).like(f"%{escape_like(locality.lower())}%", escape="\\"))

    rows = (
        db.execute(stmt.order_by(Property.created_at.desc(), Property.id.desc()).offset((page - 1) * limit).limit(limit))
        .scalars()
        .all()
    )
    return {
        "ok": True,
        "properties": [property_out(p) for p in rows],
        "page": page,
        "has_more": len(rows) == limit,
    }


@router.get("/properties/{property_id}")
def get_property(property_id: int, db: DB):
    p = db.get(Property, property_id)
    if not p:
        return JSONResponse({"ok": False, "error": "Not found"}, status_code=404)
    return {"ok": True, "property": property_out(p)}
