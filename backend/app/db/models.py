############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# models.py: SQLAlchemy ORM models for all database entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""SQLAlchemy database models for toolgate."""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, TimestampMixin, utcnow

# Use enum values (lowercase) for database storage, not enum names (uppercase)
_enum_values = lambda obj: [e.value for e in obj]


# Enums
class SubscriptionStatus(str, PyEnum):
    """Subscription lifecycle states."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


class ProviderType(str, PyEnum):
    """AI vendor families."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    CUSTOM = "custom"


class AIUsageStatus(str, PyEnum):
    """Outcome of one dispatch through the fallback chain."""
    SUCCESS = "success"
    FAILED = "failed"


# User and Subscription Models
class User(Base, TimestampMixin):
    """User account (owned by the auth collaborator; read-only here)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    subscription: Mapped[Optional["Subscription"]] = relationship(
        "Subscription", back_populates="user", uselist=False
    )


class Plan(Base, TimestampMixin):
    """Subscription plan with its daily tool quota."""

    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=200)  # -1 = unlimited
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Subscription(Base, TimestampMixin):
    """A user's (single) subscription."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), unique=True, nullable=False
    )
    plan_id: Mapped[int] = mapped_column(Integer, ForeignKey("plans.id"), nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, values_callable=_enum_values),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="subscription")
    plan: Mapped["Plan"] = relationship("Plan", lazy="joined")


# Tool Models
class Tool(Base, TimestampMixin):
    """A catalog tool that can be invoked through the handler factory."""

    __tablename__ = "tools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    usage_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


class UsageRecord(Base):
    """Append-only ledger entry, one per successful tool invocation."""

    __tablename__ = "usage_records"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    tool_id: Mapped[int] = mapped_column(Integer, ForeignKey("tools.id"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    # Identity facets
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    device_fingerprint: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # AI cost metadata
    used_ai: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ai_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 6), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_usage_records_ip_created", "ip_address", "created_at"),
        Index("ix_usage_records_session_created", "session_id", "created_at"),
        Index("ix_usage_records_fingerprint_created", "device_fingerprint", "created_at"),
        Index("ix_usage_records_user_created", "user_id", "created_at"),
        Index("ix_usage_records_tool_created", "tool_id", "created_at"),
    )


# Settings store
class AppConfig(Base, TimestampMixin):
    """Key-value site settings; values are JSON text."""

    __tablename__ = "app_config"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


# AI Models
class AIProvider(Base, TimestampMixin):
    """AI vendor account. ``api_key`` holds Fernet ciphertext, never plaintext."""

    __tablename__ = "ai_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    type: Mapped[ProviderType] = mapped_column(
        Enum(ProviderType, values_callable=_enum_values), nullable=False
    )
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    base_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    models: Mapped[List["AIModel"]] = relationship(
        "AIModel", back_populates="provider", cascade="all, delete-orphan"
    )


class AIModel(Base, TimestampMixin):
    """A vendor model exposed through one provider."""

    __tablename__ = "ai_models"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey("ai_providers.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    model_id: Mapped[str] = mapped_column(String(255), nullable=False)  # vendor-side identifier
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Capabilities
    supports_vision: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    supports_tools: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    supports_streaming: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Pricing, USD per million tokens
    input_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    output_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    context_window: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Call counters, bumped once per tier that reached the vendor
    total_calls: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    success_calls: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    # Relationships
    provider: Mapped["AIProvider"] = relationship("AIProvider", back_populates="models", lazy="joined")

    __table_args__ = (
        Index("ix_ai_models_provider_active", "provider_id", "is_active"),
    )


class AIConfig(Base, TimestampMixin):
    """Singleton dispatch configuration: primary model plus two fallbacks."""

    __tablename__ = "ai_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    primary_model_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ai_models.id"), nullable=True
    )
    fallback1_model_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ai_models.id"), nullable=True
    )
    fallback2_model_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ai_models.id"), nullable=True
    )
    retry_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    timeout_seconds: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    enable_fallback: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def chain(self) -> List[Optional[int]]:
        """Model ids in attempt order; fallbacks only when enabled."""
        ids = [self.primary_model_id]
        if self.enable_fallback:
            ids.extend(
                mid for mid in (self.fallback1_model_id, self.fallback2_model_id)
                if mid is not None
            )
        return ids


class AIUsageLog(Base):
    """One row per dispatch through the fallback chain, success or failure."""

    __tablename__ = "ai_usage_logs"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    provider_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ai_providers.id"), nullable=True
    )
    model_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ai_models.id"), nullable=True
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    tool_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("tools.id"), nullable=True)

    status: Mapped[AIUsageStatus] = mapped_column(
        Enum(AIUsageStatus, values_callable=_enum_values), nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=0, nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    used_fallback: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fallback_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_ai_usage_logs_model_created", "model_id", "created_at"),
        Index("ix_ai_usage_logs_status_created", "status", "created_at"),
    )
