############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# stats.py: Usage counters for callers and tools
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Usage statistics."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.identity import Identity
from backend.app.core.usage.policy import day_window, month_start
from backend.app.core.usage.types import UsageStats
from backend.app.db import crud
from backend.app.errors import PersistenceError


async def get_usage_stats(
    db: AsyncSession, identity: Identity, now: Optional[datetime] = None
) -> UsageStats:
    """Today / this month / all-time counts for the caller.

    Guests are matched by session or IP, users by user id.
    """
    now = now or datetime.now(timezone.utc)
    today, _ = day_window(now)
    month = month_start(now)

    try:
        if identity.user_id is not None:
            counts = [
                await crud.count_user_usage(db, identity.user_id, start=since)
                for since in (today, month, None)
            ]
        else:
            counts = [
                await crud.count_guest_usage(
                    db, identity.session_id, identity.ip_address, start=since
                )
                for since in (today, month, None)
            ]
    except SQLAlchemyError as e:
        raise PersistenceError() from e

    return UsageStats(today=counts[0], this_month=counts[1], total=counts[2])


async def get_tool_usage_stats(
    db: AsyncSession, tool_id: int, now: Optional[datetime] = None
) -> UsageStats:
    """Today / this month / all-time counts for one tool."""
    now = now or datetime.now(timezone.utc)
    today, _ = day_window(now)
    month = month_start(now)

    try:
        counts = [
            await crud.count_tool_usage(db, tool_id, start=since)
            for since in (today, month, None)
        ]
    except SQLAlchemyError as e:
        raise PersistenceError() from e

    return UsageStats(today=counts[0], this_month=counts[1], total=counts[2])
