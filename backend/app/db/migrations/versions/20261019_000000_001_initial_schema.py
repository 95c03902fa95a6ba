############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# 001_initial_schema.py: Initial database schema migration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Initial schema: accounts, tool catalog, usage ledger, settings and AI dispatch.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("daily_limit", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_plans_created_at", "plans", ["created_at"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "trialing", "past_due", "canceled", "expired", name="subscriptionstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_created_at", "subscriptions", ["created_at"])

    op.create_table(
        "tools",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("usage_count", sa.BigInteger(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_tools_slug", "tools", ["slug"], unique=True)
    op.create_index("ix_tools_created_at", "tools", ["created_at"])

    op.create_table(
        "usage_records",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("tool_id", sa.Integer(), sa.ForeignKey("tools.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("session_id", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("device_fingerprint", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("used_ai", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_tokens", sa.Integer(), nullable=True),
        sa.Column("ai_cost", sa.Numeric(12, 6), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_usage_records_ip_created", "usage_records", ["ip_address", "created_at"])
    op.create_index("ix_usage_records_session_created", "usage_records", ["session_id", "created_at"])
    op.create_index(
        "ix_usage_records_fingerprint_created", "usage_records", ["device_fingerprint", "created_at"]
    )
    op.create_index("ix_usage_records_user_created", "usage_records", ["user_id", "created_at"])
    op.create_index("ix_usage_records_tool_created", "usage_records", ["tool_id", "created_at"])

    op.create_table(
        "app_config",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_app_config_created_at", "app_config", ["created_at"])

    op.create_table(
        "ai_providers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column(
            "type",
            sa.Enum("openai", "anthropic", "google", "custom", name="providertype"),
            nullable=False,
        ),
        sa.Column("api_key", sa.Text(), nullable=False),
        sa.Column("base_url", sa.String(500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_ai_providers_created_at", "ai_providers", ["created_at"])

    op.create_table(
        "ai_models",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("ai_providers.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("model_id", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("supports_vision", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("supports_tools", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("supports_streaming", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("input_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("output_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_tokens", sa.Integer(), nullable=True),
        sa.Column("context_window", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_ai_models_provider_active", "ai_models", ["provider_id", "is_active"])
    op.create_index("ix_ai_models_created_at", "ai_models", ["created_at"])

    op.create_table(
        "ai_config",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("primary_model_id", sa.Integer(), sa.ForeignKey("ai_models.id"), nullable=True),
        sa.Column("fallback1_model_id", sa.Integer(), sa.ForeignKey("ai_models.id"), nullable=True),
        sa.Column("fallback2_model_id", sa.Integer(), sa.ForeignKey("ai_models.id"), nullable=True),
        sa.Column("retry_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("timeout_seconds", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("enable_fallback", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_ai_config_created_at", "ai_config", ["created_at"])

    # Seed default usage limits (-1 = unlimited)
    op.execute(
        "INSERT INTO app_config (`key`, value, description) VALUES "
        "('usage_limits', "
        "'{\"guest\": {\"dailyLimit\": 10}, \"user\": {\"dailyLimit\": 50}}', "
        "'Daily tool usage limits per tier')"
    )


def downgrade() -> None:
    op.drop_table("ai_config")
    op.drop_table("ai_models")
    op.drop_table("ai_providers")
    op.drop_table("app_config")
    op.drop_table("usage_records")
    op.drop_table("tools")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_table("users")
