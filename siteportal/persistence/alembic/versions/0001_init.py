"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "auth_users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_auth_users_email", "auth_users", ["email"], unique=True)

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_auth_sessions_user_id", "auth_sessions", ["user_id"])

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("auth_users.id", ondelete="CASCADE"), nullable=False),
        # Store only the hashed token to avoid plaintext credentials at rest.
        sa.Column("token_hash", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])
    op.create_index("ix_password_reset_tokens_token_hash", "password_reset_tokens", ["token_hash"], unique=True)

    op.create_table(
        "admin_users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="admin"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        *_timestamps(),
    )
    op.create_index("ix_admin_users_email", "admin_users", ["email"], unique=True)

    op.create_table(
        "clients",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        *_timestamps(),
    )
    op.create_index("ix_clients_email", "clients", ["email"], unique=True)

    op.create_table(
        "sites",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("preview_url", sa.String(length=500), nullable=True),
        sa.Column("custom_domain", sa.String(length=255), nullable=True),
        sa.Column("client_id", sa.String(), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_by", sa.String(), sa.ForeignKey("admin_users.id"), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="draft"),
        sa.Column("api_key", sa.String(), nullable=False),
        sa.Column("api_key_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('draft', 'published', 'archived')", name="ck_sites_status"),
    )
    op.create_index("ix_sites_slug", "sites", ["slug"], unique=True)
    op.create_index("ix_sites_client_id", "sites", ["client_id"])
    op.create_index("ix_sites_api_key", "sites", ["api_key"], unique=True)

    op.create_table(
        "site_permissions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("can_edit_business_info", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_edit_text", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_edit_images", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_edit_collections", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_add_collection_items", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_delete_collection_items", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_reorder_collection_items", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_publish", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_site_permissions_site_id", "site_permissions", ["site_id"], unique=True)

    op.create_table(
        "business_info",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address_street", sa.String(length=255), nullable=True),
        sa.Column("address_city", sa.String(length=100), nullable=True),
        sa.Column("address_state", sa.String(length=50), nullable=True),
        sa.Column("address_zip", sa.String(length=20), nullable=True),
        sa.Column("address_country", sa.String(length=100), nullable=True, server_default="USA"),
        sa.Column("hours", postgresql.JSONB(), nullable=True),
        sa.Column("social_links", postgresql.JSONB(), nullable=True),
        sa.Column("logo_url", sa.String(length=500), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_business_info_site_id", "business_info", ["site_id"], unique=True)

    op.create_table(
        "text_content",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content_key", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("content_type", sa.String(length=50), nullable=False, server_default="text"),
        sa.Column("max_length", sa.Integer(), nullable=True),
        sa.Column("placeholder", sa.String(length=500), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("site_id", "content_key", name="uq_text_content_site_key"),
    )
    op.create_index("ix_text_content_site_id", "text_content", ["site_id"])

    op.create_table(
        "collections",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("collection_key", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("item_schema", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("can_add", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_delete", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_reorder", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_items", sa.Integer(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("site_id", "collection_key", name="uq_collections_site_key"),
    )
    op.create_index("ix_collections_site_id", "collections", ["site_id"])

    op.create_table(
        "collection_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "collection_id", sa.String(), sa.ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_visible", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_collection_items_collection_id", "collection_items", ["collection_id"])
    op.create_index("ix_collection_items_collection_sort", "collection_items", ["collection_id", "sort_order"])

    op.create_table(
        "images",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("image_key", sa.String(length=100), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("url", sa.String(length=500), nullable=True),
        sa.Column("alt_text", sa.String(length=255), nullable=True),
        sa.Column("recommended_width", sa.Integer(), nullable=True),
        sa.Column("recommended_height", sa.Integer(), nullable=True),
        sa.Column("max_file_size_kb", sa.Integer(), nullable=False, server_default="2048"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("site_id", "image_key", name="uq_images_site_key"),
    )
    op.create_index("ix_images_site_id", "images", ["site_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("user_type", sa.String(length=20), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("changes", postgresql.JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_log_user_id", "activity_log", ["user_id"])
    op.create_index("ix_activity_log_site_created", "activity_log", ["site_id", "created_at"])

    op.create_table(
        "publish_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("site_id", sa.String(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("published_by", sa.String(), nullable=True),
        sa.Column("publisher_type", sa.String(length=20), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("content_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "version_number", name="uq_publish_history_site_version"),
    )
    op.create_index("ix_publish_history_site_id", "publish_history", ["site_id"])

    op.create_table(
        "security_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("user_type", sa.String(length=20), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("endpoint", sa.String(length=255), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("severity", sa.String(length=20), nullable=False, server_default="info"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("severity IN ('info', 'warning', 'critical')", name="ck_security_logs_severity"),
    )
    op.create_index("ix_security_logs_user_id", "security_logs", ["user_id"])
    op.create_index("ix_security_logs_created_at", "security_logs", ["created_at"])
    op.create_index("ix_security_logs_event_created", "security_logs", ["event_type", "created_at"])

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("user_type", sa.String(length=20), nullable=False),
        # Store only the hashed token; the clear secret is returned exactly once.
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("user_type IN ('admin', 'client')", name="ck_refresh_tokens_user_type"),
    )
    op.create_index("ix_refresh_tokens_token_hash", "refresh_tokens", ["token_hash"], unique=True)
    op.create_index("ix_refresh_tokens_expires_at", "refresh_tokens", ["expires_at"])
    op.create_index("ix_refresh_tokens_user", "refresh_tokens", ["user_id", "user_type"])


def downgrade() -> None:
    op.drop_table("refresh_tokens")
    op.drop_table("security_logs")
    op.drop_table("publish_history")
    op.drop_table("activity_log")
    op.drop_table("images")
    op.drop_table("collection_items")
    op.drop_table("collections")
    op.drop_table("text_content")
    op.drop_table("business_info")
    op.drop_table("site_permissions")
    op.drop_table("sites")
    op.drop_table("clients")
    op.drop_table("admin_users")
    op.drop_table("password_reset_tokens")
    op.drop_table("auth_sessions")
    op.drop_table("auth_users")
