############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# test_usage_policy.py: Unit tests for daily quota evaluation and recording
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for the usage policy engine.

Defaults in the test environment: guests 3/day, users 5/day.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import mysql, sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.schema import CreateTable

from backend.app.core.usage import (
    UNLIMITED,
    TierLimit,
    UsageLimits,
    UserType,
    check_usage_limit,
    get_tool_usage_stats,
    get_usage_limits,
    get_usage_stats,
    record_usage,
    record_usage_checked,
    set_usage_limits,
)
from backend.app.core.usage.policy import LIMIT_REACHED_REASON, USAGE_LIMITS_KEY, day_window
from backend.app.db import crud
from backend.app.db.models import AIUsageLog, SubscriptionStatus, Tool, UsageRecord
from backend.app.errors import PersistenceError, QuotaExceeded, ToolNotFound
from backend.app.tests.factories import (
    make_guest,
    make_member,
    seed_subscription,
    seed_tool,
    seed_user,
)


async def _use(db, tool, identity, times=1):
    for _ in range(times):
        await record_usage(db, tool.id, identity)


async def _ledger(db):
    result = await db.execute(select(UsageRecord).order_by(UsageRecord.id))
    return list(result.scalars().all())


class TestGuestQuota:
    """Guests are counted by session/fingerprint and by IP; the larger wins."""

    @pytest.mark.asyncio
    async def test_fresh_guest_allowed(self, db):
        decision = await check_usage_limit(db, make_guest())
        assert decision.allowed is True
        assert decision.remaining == 3
        assert decision.limit == 3
        assert decision.user_type == UserType.GUEST
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_check_does_not_consume(self, db):
        guest = make_guest()
        for _ in range(5):
            decision = await check_usage_limit(db, guest)
        assert decision.remaining == 3
        assert await _ledger(db) == []

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self, db):
        tool = await seed_tool(db)
        guest = make_guest()
        await _use(db, tool, guest, 2)
        decision = await check_usage_limit(db, guest)
        assert decision.allowed is True
        assert decision.remaining == 1
        assert decision.after_one_use() == 0

    @pytest.mark.asyncio
    async def test_guest_denied_at_limit(self, db):
        tool = await seed_tool(db)
        guest = make_guest()
        await _use(db, tool, guest, 3)

        decision = await check_usage_limit(db, guest)
        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.reason == LIMIT_REACHED_REASON
        assert decision.requires_login is True
        assert decision.requires_upgrade is None
        assert decision.to_response() == {
            "allowed": False,
            "remaining": 0,
            "limit": 3,
            "userType": "guest",
            "reason": LIMIT_REACHED_REASON,
            "requiresLogin": True,
        }

    @pytest.mark.asyncio
    async def test_new_session_same_ip_still_denied(self, db):
        tool = await seed_tool(db)
        await _use(db, tool, make_guest(ip="203.0.113.50"), 3)

        cleared = make_guest(ip="203.0.113.50")
        decision = await check_usage_limit(db, cleared)
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_same_fingerprint_other_network_denied(self, db):
        tool = await seed_tool(db)
        await _use(db, tool, make_guest(ip="203.0.113.50", fingerprint="fp-1"), 3)

        moved = make_guest(ip="198.51.100.99", fingerprint="fp-1")
        decision = await check_usage_limit(db, moved)
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_same_session_other_network_denied(self, db):
        tool = await seed_tool(db)
        guest = make_guest(ip="203.0.113.50")
        await _use(db, tool, guest, 3)

        moved = make_guest(ip="198.51.100.99", session_id=guest.session_id)
        decision = await check_usage_limit(db, moved)
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_unrelated_guest_unaffected(self, db):
        tool = await seed_tool(db)
        await _use(db, tool, make_guest(ip="203.0.113.50"), 3)

        decision = await check_usage_limit(db, make_guest(ip="198.51.100.99"))
        assert decision.allowed is True
        assert decision.remaining == 3

    @pytest.mark.asyncio
    async def test_larger_facet_count_wins(self, db):
        tool = await seed_tool(db)
        guest = make_guest(ip="203.0.113.50")
        await _use(db, tool, guest, 1)
        # Two more from other sessions behind the same address
        await _use(db, tool, make_guest(ip="203.0.113.50"), 1)
        await _use(db, tool, make_guest(ip="203.0.113.50"), 1)

        decision = await check_usage_limit(db, guest)
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_unknown_ip_not_pooled(self, db):
        tool = await seed_tool(db)
        await _use(db, tool, make_guest(ip="unknown"), 3)

        decision = await check_usage_limit(db, make_guest(ip="unknown"))
        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_yesterday_not_counted(self, db):
        tool = await seed_tool(db)
        guest = make_guest()
        yesterday = datetime.now(timezone.utc) - timedelta(days=1, hours=1)
        for _ in range(3):
            db.add(UsageRecord(
                tool_id=tool.id,
                session_id=guest.session_id,
                ip_address=guest.ip_address,
                created_at=yesterday,
            ))
        await db.commit()

        decision = await check_usage_limit(db, guest)
        assert decision.allowed is True
        assert decision.remaining == 3


class TestAuthenticatedQuota:
    """Users are counted by user id only."""

    @pytest.mark.asyncio
    async def test_user_tier_limit(self, db):
        user = await seed_user(db)
        decision = await check_usage_limit(db, make_member(user.id))
        assert decision.user_type == UserType.USER
        assert decision.limit == 5

    @pytest.mark.asyncio
    async def test_guest_usage_on_same_ip_ignored(self, db):
        tool = await seed_tool(db)
        user = await seed_user(db)
        await _use(db, tool, make_guest(ip="203.0.113.50"), 3)

        decision = await check_usage_limit(db, make_member(user.id, ip="203.0.113.50"))
        assert decision.allowed is True
        assert decision.remaining == 5

    @pytest.mark.asyncio
    async def test_user_denied_requires_upgrade(self, db):
        tool = await seed_tool(db)
        user = await seed_user(db)
        member = make_member(user.id)
        await _use(db, tool, member, 5)

        decision = await check_usage_limit(db, member)
        assert decision.allowed is False
        assert decision.requires_upgrade is True
        assert decision.requires_login is None

    @pytest.mark.asyncio
    async def test_user_usage_follows_across_devices(self, db):
        tool = await seed_tool(db)
        user = await seed_user(db)
        await _use(db, tool, make_member(user.id, ip="203.0.113.1"), 5)

        decision = await check_usage_limit(db, make_member(user.id, ip="198.51.100.1"))
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_subscriber_uses_plan_limit(self, db):
        user = await seed_user(db)
        await seed_subscription(db, user, daily_limit=20)

        decision = await check_usage_limit(db, make_member(user.id))
        assert decision.user_type == UserType.SUBSCRIBER
        assert decision.limit == 20
        assert decision.remaining == 20

    @pytest.mark.asyncio
    async def test_unlimited_plan(self, db):
        tool = await seed_tool(db)
        user = await seed_user(db)
        await seed_subscription(db, user, daily_limit=UNLIMITED)
        member = make_member(user.id)
        await _use(db, tool, member, 10)

        decision = await check_usage_limit(db, member)
        assert decision.allowed is True
        assert decision.remaining == UNLIMITED
        assert decision.limit == UNLIMITED
        assert decision.after_one_use() == UNLIMITED

    @pytest.mark.asyncio
    async def test_expired_subscription_falls_back_to_user(self, db):
        user = await seed_user(db)
        await seed_subscription(
            db, user, daily_limit=100,
            period_end=datetime.now(timezone.utc) - timedelta(days=1),
        )
        decision = await check_usage_limit(db, make_member(user.id))
        assert decision.user_type == UserType.USER
        assert decision.limit == 5

    @pytest.mark.asyncio
    async def test_canceled_subscription_falls_back_to_user(self, db):
        user = await seed_user(db)
        await seed_subscription(db, user, status=SubscriptionStatus.CANCELED)
        decision = await check_usage_limit(db, make_member(user.id))
        assert decision.user_type == UserType.USER

    @pytest.mark.asyncio
    async def test_inactive_plan_falls_back_to_user(self, db):
        user = await seed_user(db)
        await seed_subscription(db, user, plan_active=False)
        decision = await check_usage_limit(db, make_member(user.id))
        assert decision.user_type == UserType.USER


class TestLimitSettings:
    """Global limits in the settings store."""

    @pytest.mark.asyncio
    async def test_defaults_when_unset(self, db):
        limits = await get_usage_limits(db)
        assert limits.guest.daily_limit == 3
        assert limits.user.daily_limit == 5

    @pytest.mark.asyncio
    async def test_stored_limits_apply(self, db):
        await set_usage_limits(
            db, UsageLimits(guest=TierLimit(daily_limit=1), user=TierLimit(daily_limit=9))
        )
        tool = await seed_tool(db)
        guest = make_guest()
        await _use(db, tool, guest, 1)

        decision = await check_usage_limit(db, guest)
        assert decision.allowed is False
        assert decision.limit == 1

    @pytest.mark.asyncio
    async def test_unlimited_guests(self, db):
        await set_usage_limits(
            db, UsageLimits(guest=TierLimit(daily_limit=-1), user=TierLimit(daily_limit=5))
        )
        decision = await check_usage_limit(db, make_guest())
        assert decision.allowed is True
        assert decision.remaining == UNLIMITED

    @pytest.mark.asyncio
    async def test_invalid_stored_value_uses_defaults(self, db):
        await crud.set_config_json(db, USAGE_LIMITS_KEY, {"guest": "lots"})
        await db.commit()
        limits = await get_usage_limits(db)
        assert limits.guest.daily_limit == 3

    @pytest.mark.asyncio
    async def test_store_round_trip_format(self, db):
        await set_usage_limits(
            db, UsageLimits(guest=TierLimit(daily_limit=7), user=TierLimit(daily_limit=70))
        )
        stored = await crud.get_config_json(db, USAGE_LIMITS_KEY)
        assert stored == {"guest": {"dailyLimit": 7}, "user": {"dailyLimit": 70}}


class TestRecording:
    """Ledger writes."""

    @pytest.mark.asyncio
    async def test_record_stores_identity_and_cost(self, db):
        tool = await seed_tool(db)
        guest = make_guest(fingerprint="fp-9")
        await record_usage(db, tool.id, guest, used_ai=True, ai_tokens=150, ai_cost=0.0021)

        [record] = await _ledger(db)
        assert record.user_id is None
        assert record.session_id == guest.session_id
        assert record.ip_address == guest.ip_address
        assert record.device_fingerprint == "fp-9"
        assert record.user_agent == "pytest"
        assert record.used_ai is True
        assert record.ai_tokens == 150
        assert Decimal(str(record.ai_cost)) == Decimal("0.0021")

    @pytest.mark.asyncio
    async def test_ledger_ids_assigned(self, db):
        tool = await seed_tool(db)
        await _use(db, tool, make_guest(), 2)
        assert [record.id for record in await _ledger(db)] == [1, 2]

    @pytest.mark.parametrize("table", [UsageRecord.__table__, AIUsageLog.__table__])
    def test_ledger_id_type_per_dialect(self, table):
        sqlite_ddl = str(CreateTable(table).compile(dialect=sqlite.dialect()))
        mysql_ddl = str(CreateTable(table).compile(dialect=mysql.dialect()))
        assert "id INTEGER NOT NULL" in sqlite_ddl
        assert "id BIGINT NOT NULL AUTO_INCREMENT" in mysql_ddl

    @pytest.mark.asyncio
    async def test_record_bumps_tool_counter(self, db):
        tool = await seed_tool(db)
        await _use(db, tool, make_guest(), 2)

        refreshed = (await db.execute(
            select(Tool.usage_count).where(Tool.id == tool.id)
        )).scalar_one()
        assert refreshed == 2

    @pytest.mark.asyncio
    async def test_checked_record_rejects_over_limit(self, db):
        tool = await seed_tool(db)
        guest = make_guest()
        await _use(db, tool, guest, 3)

        with pytest.raises(QuotaExceeded) as exc_info:
            await record_usage_checked(db, tool.id, guest)
        assert exc_info.value.decision.requires_login is True
        assert len(await _ledger(db)) == 3

    @pytest.mark.asyncio
    async def test_checked_record_unknown_tool(self, db):
        with pytest.raises(ToolNotFound):
            await record_usage_checked(db, 999, make_guest())
        assert await _ledger(db) == []

    @pytest.mark.asyncio
    async def test_checked_record_returns_prior_decision(self, db):
        tool = await seed_tool(db)
        decision = await record_usage_checked(db, tool.id, make_guest())
        assert decision.remaining == 3
        assert decision.after_one_use() == 2


class TestPersistenceFailures:
    """Ledger failures fail closed."""

    @pytest.mark.asyncio
    async def test_count_failure_raises_persistence_error(self, db):
        failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        with patch("backend.app.core.usage.policy.crud.count_guest_identity_usage", failing):
            with pytest.raises(PersistenceError):
                await check_usage_limit(db, make_guest())

    @pytest.mark.asyncio
    async def test_write_failure_raises_persistence_error(self, db):
        tool = await seed_tool(db)
        failing = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
        with patch("backend.app.core.usage.policy.crud.create_usage_record", failing):
            with pytest.raises(PersistenceError):
                await record_usage(db, tool.id, make_guest())
        assert await _ledger(db) == []


class TestWindowsAndStats:
    """Day window and usage statistics."""

    def test_day_window_is_utc_midnight_in_utc_zone(self):
        now = datetime(2026, 3, 14, 15, 30, tzinfo=timezone.utc)
        start, end = day_window(now)
        assert start == datetime(2026, 3, 14, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_day_window_follows_configured_zone(self, monkeypatch):
        from backend.app.settings import get_settings

        monkeypatch.setattr(get_settings(), "usage_timezone", "America/Los_Angeles")
        # 03:00 UTC on the 15th is still the 14th in Los Angeles (UTC-7 in March)
        now = datetime(2026, 3, 15, 3, 0, tzinfo=timezone.utc)
        start, end = day_window(now)
        assert start == datetime(2026, 3, 14, 7, 0, tzinfo=timezone.utc)
        assert end - start == timedelta(days=1)

    @pytest.mark.asyncio
    async def test_user_stats(self, db):
        tool = await seed_tool(db)
        user = await seed_user(db)
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        for created in (
            datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc),
            datetime(2026, 10, 5, 9, 0, tzinfo=timezone.utc),
            datetime(2026, 8, 1, 9, 0, tzinfo=timezone.utc),
        ):
            db.add(UsageRecord(tool_id=tool.id, user_id=user.id, created_at=created))
        await db.commit()

        stats = await get_usage_stats(db, make_member(user.id), now=now)
        assert (stats.today, stats.this_month, stats.total) == (1, 2, 3)
        assert stats.model_dump(by_alias=True) == {"today": 1, "thisMonth": 2, "total": 3}

        tool_stats = await get_tool_usage_stats(db, tool.id, now=now)
        assert tool_stats.total == 3
