from __future__ import annotations

import datetime as dt
import json

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


CATEGORIES = (
    "residential_properties",
    "commercial_plots",
    "land_plots",
    "premium_investment",
)
STATUSES = ("available", "sold", "on_hold")
MEDIA_STATUSES = ("ready", "processing", "failed")


class Base(DeclarativeBase):
    pass


def _load_list(raw: str | None) -> list[str]:
    try:
        data = json.loads(raw or "[]")
    except ValueError:
        return []
    if not isinstance(data, list):
        return []
    return [str(x) for x in data if str(x).strip()]


def _dump_list(values: list[str] | None) -> str:
    return json.dumps([str(v) for v in (values or []) if str(v).strip()])


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (
        Index("ix_properties_category_created", "category", "created_at"),
        Index("ix_properties_city_status_created", "city", "status", "created_at"),
        Index("ix_properties_city_category_price", "city", "category", "price"),
        Index("ix_properties_status_created", "status", "created_at"),
        Index("ix_properties_featured_status", "featured", "status"),
        Index("ix_properties_price_status", "price", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category: Mapped[str] = mapped_column(String(40), index=True)  # see CATEGORIES

    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[int] = mapped_column(Integer, default=0)

    # Free-form display location, e.g. "Tapovan, Rishikesh".
    location: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(120), default="", index=True)
    state: Mapped[str] = mapped_column(String(120), default="", index=True)
    locality: Mapped[str] = mapped_column(String(160), default="", index=True)
    pincode: Mapped[str] = mapped_column(String(12), default="", index=True)
    builtup_area: Mapped[str] = mapped_column(String(60), default="")

    # JSON-encoded lists of strings.
    suitable_for_json: Mapped[str] = mapped_column(Text, default="[]")
    features_json: Mapped[str] = mapped_column(Text, default="[]")
    search_tags_json: Mapped[str] = mapped_column(Text, default="[]")
    seo_meta_description: Mapped[str] = mapped_column(String(320), default="")

    status: Mapped[str] = mapped_column(String(20), default="available")  # see STATUSES
    featured: Mapped[bool] = mapped_column(Boolean, default=False)

    # Media. Paths are public URLs (/uploads/... or a remote CDN URL).
    map3d_url: Mapped[str] = mapped_column(String(512), default="")
    virtual_tour_url: Mapped[str] = mapped_column(String(512), default="")
    image_urls_json: Mapped[str] = mapped_column(Text, default="[]")
    video_urls_json: Mapped[str] = mapped_column(Text, default="[]")
    media_status: Mapped[str] = mapped_column(String(20), default="ready")  # see MEDIA_STATUSES

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def suitable_for(self) -> list[str]:
        return _load_list(self.suitable_for_json)

    @suitable_for.setter
    def suitable_for(self, values: list[str]) -> None:
        self.suitable_for_json = _dump_list(values)

    @property
    def features(self) -> list[str]:
        return _load_list(self.features_json)

    @features.setter
    def features(self, values: list[str]) -> None:
        self.features_json = _dump_list(values)

    @property
    def search_tags(self) -> list[str]:
        return _load_list(self.search_tags_json)

    @search_tags.setter
    def search_tags(self, values: list[str]) -> None:
        self.search_tags_json = _dump_list(values)

    @property
    def image_urls(self) -> list[str]:
        return _load_list(self.image_urls_json)

    @image_urls.setter
    def image_urls(self, values: list[str]) -> None:
        self.image_urls_json = _dump_list(values)

    @property
    def video_urls(self) -> list[str]:
        return _load_list(self.video_urls_json)

    @video_urls.setter
    def video_urls(self, values: list[str]) -> None:
        self.video_urls_json = _dump_list(values)

    def all_media_urls(self) -> list[str]:
        urls = self.image_urls + self.video_urls + [self.map3d_url, self.virtual_tour_url]
        return [u for u in urls if u]


class AlertSubscriber(Base):
    __tablename__ = "alert_subscribers"
    __table_args__ = (Index("ix_alert_subscribers_active_email", "active", "email"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class OtpCode(Base):
    __tablename__ = "otp_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    identifier: Mapped[str] = mapped_column(String(255), index=True)  # admin email
    purpose: Mapped[str] = mapped_column(String(40), index=True)  # admin_login
    code: Mapped[str] = mapped_column(String(12))
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
