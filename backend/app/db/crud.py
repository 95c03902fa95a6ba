############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# crud.py: Database CRUD operations for all entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database CRUD operations for toolgate."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.models import (
    AIConfig,
    AIModel,
    AIProvider,
    AIUsageLog,
    AIUsageStatus,
    AppConfig,
    ProviderType,
    Subscription,
    Tool,
    UsageRecord,
    User,
)


def _ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware (MariaDB and SQLite return naive datetimes)."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# User CRUD
async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    """Get user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    """Get user by email."""
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    email: str,
    name: Optional[str] = None,
    is_admin: bool = False,
) -> User:
    """Create a new user."""
    user = User(email=email, name=name, is_admin=is_admin)
    db.add(user)
    await db.flush()
    return user


async def get_user_subscription(db: AsyncSession, user_id: int) -> Optional[Subscription]:
    """Get a user's subscription with its plan eagerly loaded."""
    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id)
    )
    return result.unique().scalar_one_or_none()


# Tool CRUD
async def get_tool_by_slug(db: AsyncSession, slug: str) -> Optional[Tool]:
    """Get tool by slug."""
    result = await db.execute(select(Tool).where(Tool.slug == slug))
    return result.scalar_one_or_none()


async def get_tool_by_id(db: AsyncSession, tool_id: int) -> Optional[Tool]:
    """Get tool by ID."""
    result = await db.execute(select(Tool).where(Tool.id == tool_id))
    return result.scalar_one_or_none()


async def create_tool(db: AsyncSession, slug: str, name: str, is_active: bool = True) -> Tool:
    """Create a catalog tool."""
    tool = Tool(slug=slug, name=name, is_active=is_active)
    db.add(tool)
    await db.flush()
    return tool


async def increment_tool_usage(db: AsyncSession, tool_id: int) -> None:
    """Bump the denormalized usage counter on a tool."""
    await db.execute(
        update(Tool)
        .where(Tool.id == tool_id)
        .values(usage_count=Tool.usage_count + 1)
    )


# Usage ledger
async def create_usage_record(
    db: AsyncSession,
    tool_id: int,
    user_id: Optional[int],
    session_id: Optional[str],
    ip_address: Optional[str],
    device_fingerprint: Optional[str],
    user_agent: Optional[str],
    used_ai: bool = False,
    ai_tokens: Optional[int] = None,
    ai_cost: Optional[Decimal] = None,
) -> UsageRecord:
    """Append one usage record."""
    record = UsageRecord(
        tool_id=tool_id,
        user_id=user_id,
        session_id=session_id,
        ip_address=ip_address,
        device_fingerprint=device_fingerprint,
        user_agent=user_agent,
        used_ai=used_ai,
        ai_tokens=ai_tokens,
        ai_cost=ai_cost,
    )
    db.add(record)
    await db.flush()
    return record


async def _count(db: AsyncSession, *conditions) -> int:
    result = await db.execute(
        select(func.count(UsageRecord.id)).where(and_(*conditions))
    )
    return int(result.scalar() or 0)


async def count_guest_identity_usage(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    session_id: Optional[str],
    device_fingerprint: Optional[str],
) -> int:
    """Count guest records in the window matching the session or the fingerprint."""
    matchers = []
    if session_id:
        matchers.append(UsageRecord.session_id == session_id)
    if device_fingerprint:
        matchers.append(UsageRecord.device_fingerprint == device_fingerprint)
    if not matchers:
        return 0
    return await _count(
        db,
        UsageRecord.user_id.is_(None),
        UsageRecord.created_at >= start,
        UsageRecord.created_at < end,
        or_(*matchers),
    )


async def count_guest_ip_usage(
    db: AsyncSession, start: datetime, end: datetime, ip_address: str
) -> int:
    """Count guest records in the window originating from an IP address."""
    return await _count(
        db,
        UsageRecord.user_id.is_(None),
        UsageRecord.ip_address == ip_address,
        UsageRecord.created_at >= start,
        UsageRecord.created_at < end,
    )


async def count_user_usage(
    db: AsyncSession,
    user_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> int:
    """Count a user's records, optionally bounded to a window."""
    conditions = [UsageRecord.user_id == user_id]
    if start is not None:
        conditions.append(UsageRecord.created_at >= start)
    if end is not None:
        conditions.append(UsageRecord.created_at < end)
    return await _count(db, *conditions)


async def count_guest_usage(
    db: AsyncSession,
    session_id: Optional[str],
    ip_address: Optional[str],
    start: Optional[datetime] = None,
) -> int:
    """Count guest records matching a session or an IP, optionally since ``start``."""
    matchers = []
    if session_id:
        matchers.append(UsageRecord.session_id == session_id)
    if ip_address and ip_address != "unknown":
        matchers.append(UsageRecord.ip_address == ip_address)
    if not matchers:
        return 0
    conditions = [UsageRecord.user_id.is_(None), or_(*matchers)]
    if start is not None:
        conditions.append(UsageRecord.created_at >= start)
    return await _count(db, *conditions)


async def count_tool_usage(
    db: AsyncSession, tool_id: int, start: Optional[datetime] = None
) -> int:
    """Count a tool's records, optionally since ``start``."""
    conditions = [UsageRecord.tool_id == tool_id]
    if start is not None:
        conditions.append(UsageRecord.created_at >= start)
    return await _count(db, *conditions)


# App config (key-value settings store)
async def get_config_json(db: AsyncSession, key: str, default: Any = None) -> Any:
    """Read a settings row and decode its JSON value."""
    result = await db.execute(select(AppConfig).where(AppConfig.key == key))
    row = result.scalar_one_or_none()
    if row is None:
        return default
    try:
        return json.loads(row.value)
    except (json.JSONDecodeError, TypeError):
        return default


async def set_config_json(
    db: AsyncSession, key: str, value: Any, description: Optional[str] = None
) -> AppConfig:
    """Upsert a settings row with a JSON-encoded value."""
    result = await db.execute(select(AppConfig).where(AppConfig.key == key))
    row = result.scalar_one_or_none()
    encoded = json.dumps(value)
    if row is None:
        row = AppConfig(key=key, value=encoded, description=description)
        db.add(row)
    else:
        row.value = encoded
        if description is not None:
            row.description = description
    await db.flush()
    return row


# AI provider CRUD
async def get_ai_providers(db: AsyncSession, active_only: bool = False) -> List[AIProvider]:
    """List providers in display order."""
    query = select(AIProvider).order_by(AIProvider.order, AIProvider.id)
    if active_only:
        query = query.where(AIProvider.is_active == True)  # noqa: E712
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_ai_provider_by_id(db: AsyncSession, provider_id: int) -> Optional[AIProvider]:
    """Get provider by ID."""
    result = await db.execute(select(AIProvider).where(AIProvider.id == provider_id))
    return result.scalar_one_or_none()


async def get_ai_provider_by_slug(db: AsyncSession, slug: str) -> Optional[AIProvider]:
    """Get provider by slug."""
    result = await db.execute(select(AIProvider).where(AIProvider.slug == slug))
    return result.scalar_one_or_none()


async def create_ai_provider(
    db: AsyncSession,
    name: str,
    slug: str,
    provider_type: ProviderType,
    encrypted_api_key: str,
    base_url: Optional[str] = None,
    description: Optional[str] = None,
    config: Optional[dict] = None,
    is_active: bool = True,
    order: int = 0,
) -> AIProvider:
    """Create a provider. The caller encrypts the key."""
    provider = AIProvider(
        name=name,
        slug=slug,
        type=provider_type,
        api_key=encrypted_api_key,
        base_url=base_url,
        description=description,
        config=config,
        is_active=is_active,
        order=order,
    )
    db.add(provider)
    await db.flush()
    return provider


async def update_ai_provider(
    db: AsyncSession, provider_id: int, **kwargs: Any
) -> Optional[AIProvider]:
    """Update provider fields; keys not present on the model are ignored."""
    provider = await get_ai_provider_by_id(db, provider_id)
    if not provider:
        return None
    for key, value in kwargs.items():
        if hasattr(provider, key):
            setattr(provider, key, value)
    await db.flush()
    return provider


# AI model CRUD
async def get_ai_model_by_id(db: AsyncSession, model_pk: int) -> Optional[AIModel]:
    """Get model by primary key with its provider loaded."""
    result = await db.execute(select(AIModel).where(AIModel.id == model_pk))
    return result.unique().scalar_one_or_none()


async def get_models_for_provider(db: AsyncSession, provider_id: int) -> List[AIModel]:
    """List the stored models of a provider."""
    result = await db.execute(
        select(AIModel).where(AIModel.provider_id == provider_id).order_by(AIModel.name)
    )
    return list(result.unique().scalars().all())


async def get_active_model_for_provider(
    db: AsyncSession, provider_id: int, model_id: Optional[str] = None
) -> Optional[AIModel]:
    """First active model of a provider, or the one with a given vendor id."""
    query = select(AIModel).where(
        and_(AIModel.provider_id == provider_id, AIModel.is_active == True)  # noqa: E712
    )
    if model_id:
        query = query.where(AIModel.model_id == model_id)
    result = await db.execute(query.order_by(AIModel.id).limit(1))
    return result.unique().scalar_one_or_none()


async def create_ai_model(
    db: AsyncSession,
    provider_id: int,
    name: str,
    model_id: str,
    input_price: float = 0.0,
    output_price: float = 0.0,
    is_active: bool = True,
    max_tokens: Optional[int] = None,
    context_window: Optional[int] = None,
) -> AIModel:
    """Create a model under a provider."""
    model = AIModel(
        provider_id=provider_id,
        name=name,
        model_id=model_id,
        input_price=input_price,
        output_price=output_price,
        is_active=is_active,
        max_tokens=max_tokens,
        context_window=context_window,
    )
    db.add(model)
    await db.flush()
    return model


# AI config (singleton)
async def get_or_create_ai_config(
    db: AsyncSession, retry_attempts: int = 3, timeout_seconds: int = 30
) -> AIConfig:
    """Return the singleton AI config, creating it with defaults on first read."""
    result = await db.execute(select(AIConfig).order_by(AIConfig.id).limit(1))
    config = result.scalar_one_or_none()
    if config is None:
        config = AIConfig(
            retry_attempts=retry_attempts,
            timeout_seconds=timeout_seconds,
            enable_fallback=True,
        )
        db.add(config)
        await db.flush()
    return config


async def update_ai_config(db: AsyncSession, config: AIConfig, **kwargs: Any) -> AIConfig:
    """Apply field updates to the singleton AI config."""
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
    await db.flush()
    return config


# AI usage log
async def create_ai_usage_log(
    db: AsyncSession,
    status: AIUsageStatus,
    provider_id: Optional[int] = None,
    model_id: Optional[int] = None,
    user_id: Optional[int] = None,
    tool_id: Optional[int] = None,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cost: float = 0.0,
    latency_ms: int = 0,
    used_fallback: bool = False,
    fallback_level: int = 0,
    error_message: Optional[str] = None,
) -> AIUsageLog:
    """Append one dispatch log row."""
    log = AIUsageLog(
        status=status,
        provider_id=provider_id,
        model_id=model_id,
        user_id=user_id,
        tool_id=tool_id,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cost=Decimal(str(cost)),
        latency_ms=latency_ms,
        used_fallback=used_fallback,
        fallback_level=fallback_level,
        error_message=error_message,
    )
    db.add(log)
    await db.flush()
    return log


async def increment_model_calls(db: AsyncSession, model_pk: int, success: bool) -> None:
    """Bump a model's call counters."""
    values = {"total_calls": AIModel.total_calls + 1}
    if success:
        values["success_calls"] = AIModel.success_calls + 1
    await db.execute(update(AIModel).where(AIModel.id == model_pk).values(**values))


async def get_ai_usage_logs(
    db: AsyncSession,
    limit: int = 50,
    status: Optional[AIUsageStatus] = None,
    tool_id: Optional[int] = None,
) -> List[AIUsageLog]:
    """Most recent dispatch log rows first."""
    query = select(AIUsageLog).order_by(AIUsageLog.id.desc()).limit(limit)
    if status is not None:
        query = query.where(AIUsageLog.status == status)
    if tool_id is not None:
        query = query.where(AIUsageLog.tool_id == tool_id)
    result = await db.execute(query)
    return list(result.scalars().all())
