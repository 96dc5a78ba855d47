"""initial schema (properties, alert subscribers, otp codes)

Revision ID: 0001_listings
Revises: 
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_listings"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("city", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("state", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("locality", sa.String(length=160), nullable=False, server_default=""),
        sa.Column("pincode", sa.String(length=12), nullable=False, server_default=""),
        sa.Column("builtup_area", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("suitable_for_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("features_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("search_tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("seo_meta_description", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="available"),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("map3d_url", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("virtual_tour_url", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("image_urls_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("video_urls_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("media_status", sa.String(length=20), nullable=False, server_default="ready"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_properties_category", "properties", ["category"])
    op.create_index("ix_properties_city", "properties", ["city"])
    op.create_index("ix_properties_state", "properties", ["state"])
    op.create_index("ix_properties_locality", "properties", ["locality"])
    op.create_index("ix_properties_pincode", "properties", ["pincode"])
    op.create_index("ix_properties_category_created", "properties", ["category", "created_at"])
    op.create_index("ix_properties_city_status_created", "properties", ["city", "status", "created_at"])
    op.create_index("ix_properties_city_category_price", "properties", ["city", "category", "price"])
    op.create_index("ix_properties_status_created", "properties", ["status", "created_at"])
    op.create_index("ix_properties_featured_status", "properties", ["featured", "status"])
    op.create_index("ix_properties_price_status", "properties", ["price", "status"])

    op.create_table(
        "alert_subscribers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_alert_subscribers_email", "alert_subscribers", ["email"], unique=True)
    op.create_index("ix_alert_subscribers_active_email", "alert_subscribers", ["active", "email"])

    op.create_table(
        "otp_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identifier", sa.String(length=255), nullable=False),
        sa.Column("purpose", sa.String(length=40), nullable=False),
        sa.Column("code", sa.String(length=12), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_otp_codes_identifier", "otp_codes", ["identifier"])
    op.create_index("ix_otp_codes_purpose", "otp_codes", ["purpose"])


def downgrade() -> None:
    op.drop_index("ix_otp_codes_purpose", table_name="otp_codes")
    op.drop_index("ix_otp_codes_identifier", table_name="otp_codes")
    op.drop_table("otp_codes")

    op.drop_index("ix_alert_subscribers_active_email", table_name="alert_subscribers")
    op.drop_index("ix_alert_subscribers_email", table_name="alert_subscribers")
    op.drop_table("alert_subscribers")

    for name in (
        "ix_properties_price_status",
        "ix_properties_featured_status",
        "ix_properties_status_created",
        "ix_properties_city_category_price",
        "ix_properties_city_status_created",
        "ix_properties_category_created",
        "ix_properties_pincode",
        "ix_properties_locality",
        "ix_properties_state",
        "ix_properties_city",
        "ix_properties_category",
    ):
        op.drop_index(name, table_name="properties")
    op.drop_table("properties")
