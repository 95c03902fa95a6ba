############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# policy.py: Tiered daily quota evaluation and usage recording
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Usage policy engine.

Tiers:
  guest       no authenticated user; global guest limit
  user        authenticated, no current subscription; global user limit
  subscriber  authenticated with an active/trialing subscription on an
              active plan; the plan's daily limit

Guest usage is counted twice over today's guest records: once by session
or device fingerprint, once by IP. The larger count wins, so clearing
cookies does not reset the quota while switching networks does.
Authenticated callers are counted by user id only.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.identity import UNKNOWN, Identity
from backend.app.core.usage.types import (
    UNLIMITED,
    TierLimit,
    UsageDecision,
    UsageLimits,
    UserType,
)
from backend.app.db import crud
from backend.app.db.crud import _ensure_aware
from backend.app.db.models import Subscription, SubscriptionStatus
from backend.app.errors import PersistenceError, QuotaExceeded, ToolNotFound
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)

USAGE_LIMITS_KEY = "usage_limits"
LIMIT_REACHED_REASON = "Daily usage limit reached"

_CURRENT_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def _local_zone():
    name = get_settings().usage_timezone
    return ZoneInfo(name) if name else None


def day_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """UTC bounds of the current local calendar day."""
    now = _ensure_aware(now) if now else datetime.now(timezone.utc)
    local_now = now.astimezone(_local_zone())
    start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def month_start(now: Optional[datetime] = None) -> datetime:
    """UTC instant of the first local midnight of the current month."""
    now = _ensure_aware(now) if now else datetime.now(timezone.utc)
    local_now = now.astimezone(_local_zone())
    start = local_now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc)


def default_usage_limits() -> UsageLimits:
    settings = get_settings()
    return UsageLimits(
        guest=TierLimit(daily_limit=settings.default_guest_daily_limit),
        user=TierLimit(daily_limit=settings.default_user_daily_limit),
    )


async def get_usage_limits(db: AsyncSession) -> UsageLimits:
    """Global limits from the settings store, or the configured defaults."""
    stored = await crud.get_config_json(db, USAGE_LIMITS_KEY)
    if not stored:
        return default_usage_limits()
    try:
        return UsageLimits.model_validate(stored)
    except ValueError:
        logger.warning("usage_limits_invalid", stored=stored)
        return default_usage_limits()


async def set_usage_limits(db: AsyncSession, limits: UsageLimits) -> UsageLimits:
    """Persist global limits."""
    try:
        await crud.set_config_json(
            db,
            USAGE_LIMITS_KEY,
            limits.to_store(),
            description="Daily tool usage limits per tier",
        )
        await db.commit()
    except SQLAlchemyError as e:
        logger.error("usage_limits_write_failed", error=str(e))
        raise PersistenceError() from e
    logger.info(
        "usage_limits_updated",
        guest=limits.guest.daily_limit,
        user=limits.user.daily_limit,
    )
    return limits


def _subscription_is_current(sub: Optional[Subscription], now: datetime) -> bool:
    if sub is None or sub.status not in _CURRENT_STATUSES:
        return False
    if sub.plan is None or not sub.plan.is_active:
        return False
    period_end = _ensure_aware(sub.current_period_end)
    return period_end is None or period_end > now


async def _resolve_tier(
    db: AsyncSession, identity: Identity, limits: UsageLimits, now: datetime
) -> Tuple[UserType, int]:
    if identity.user_id is None:
        return UserType.GUEST, limits.guest.daily_limit

    sub = await crud.get_user_subscription(db, identity.user_id)
    if _subscription_is_current(sub, now):
        return UserType.SUBSCRIBER, sub.plan.daily_limit
    return UserType.USER, limits.user.daily_limit


async def _effective_count(
    db: AsyncSession, identity: Identity, start: datetime, end: datetime
) -> int:
    if identity.user_id is not None:
        return await crud.count_user_usage(db, identity.user_id, start, end)

    identity_count = await crud.count_guest_identity_usage(
        db, start, end, identity.session_id, identity.device_fingerprint
    )
    ip_count = 0
    if identity.ip_address and identity.ip_address != UNKNOWN:
        ip_count = await crud.count_guest_ip_usage(db, start, end, identity.ip_address)
    return max(identity_count, ip_count)


async def _evaluate(
    db: AsyncSession, identity: Identity, now: Optional[datetime]
) -> UsageDecision:
    now = _ensure_aware(now) if now else datetime.now(timezone.utc)
    limits = await get_usage_limits(db)
    user_type, limit = await _resolve_tier(db, identity, limits, now)

    if limit <= UNLIMITED:
        return UsageDecision(
            allowed=True, remaining=UNLIMITED, limit=UNLIMITED, user_type=user_type
        )

    start, end = day_window(now)
    used = await _effective_count(db, identity, start, end)
    allowed = used < limit
    decision = UsageDecision(
        allowed=allowed,
        remaining=max(0, limit - used),
        limit=limit,
        user_type=user_type,
    )
    if not allowed:
        decision.reason = LIMIT_REACHED_REASON
        if user_type == UserType.GUEST:
            decision.requires_login = True
        elif user_type == UserType.USER:
            decision.requires_upgrade = True
    return decision


async def check_usage_limit(
    db: AsyncSession, identity: Identity, now: Optional[datetime] = None
) -> UsageDecision:
    """
    Evaluate the caller's daily quota. Read-only.

    Raises:
        PersistenceError: if the ledger or settings cannot be read
    """
    try:
        decision = await _evaluate(db, identity, now)
    except SQLAlchemyError as e:
        logger.error("usage_check_failed", error=str(e), user_id=identity.user_id)
        raise PersistenceError() from e

    if not decision.allowed:
        logger.info(
            "usage_denied",
            user_type=decision.user_type.value,
            limit=decision.limit,
            user_id=identity.user_id,
            ip=identity.ip_address,
        )
    return decision


async def record_usage(
    db: AsyncSession,
    tool_id: int,
    identity: Identity,
    used_ai: bool = False,
    ai_tokens: Optional[int] = None,
    ai_cost: Optional[float] = None,
) -> None:
    """
    Append one usage record for ``identity`` and bump the tool counter.

    Commits so that the record is visible before any per-identity guard is
    released.

    Raises:
        PersistenceError: if the write fails
    """
    try:
        await crud.create_usage_record(
            db,
            tool_id=tool_id,
            user_id=identity.user_id,
            session_id=identity.session_id,
            ip_address=identity.ip_address,
            device_fingerprint=identity.device_fingerprint,
            user_agent=identity.user_agent,
            used_ai=used_ai,
            ai_tokens=ai_tokens,
            ai_cost=Decimal(str(ai_cost)) if ai_cost is not None else None,
        )
        await crud.increment_tool_usage(db, tool_id)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("usage_record_failed", error=str(e), tool_id=tool_id)
        raise PersistenceError() from e

    logger.info(
        "usage_recorded",
        tool_id=tool_id,
        user_id=identity.user_id,
        used_ai=used_ai,
        ai_tokens=ai_tokens,
    )


async def record_usage_checked(
    db: AsyncSession,
    tool_id: int,
    identity: Identity,
    used_ai: bool = False,
    ai_tokens: Optional[int] = None,
    ai_cost: Optional[float] = None,
) -> UsageDecision:
    """
    Re-check the quota and record one use. Call under ``usage_guard.hold``.

    Returns:
        The decision taken before recording

    Raises:
        ToolNotFound: unknown tool id
        QuotaExceeded: the caller is already at the limit
    """
    try:
        tool = await crud.get_tool_by_id(db, tool_id)
    except SQLAlchemyError as e:
        raise PersistenceError() from e
    if tool is None:
        raise ToolNotFound(f"Tool {tool_id} not found")

    decision = await check_usage_limit(db, identity)
    if not decision.allowed:
        raise QuotaExceeded(decision)

    await record_usage(db, tool_id, identity, used_ai, ai_tokens, ai_cost)
    return decision
