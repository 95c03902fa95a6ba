############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: Usage ledger and policy engine package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Tiered daily quotas with multi-identity correlation."""

from backend.app.core.usage.guard import UsageGuard, usage_guard
from backend.app.core.usage.policy import (
    check_usage_limit,
    get_usage_limits,
    record_usage,
    record_usage_checked,
    set_usage_limits,
)
from backend.app.core.usage.stats import get_tool_usage_stats, get_usage_stats
from backend.app.core.usage.types import (
    UNLIMITED,
    TierLimit,
    UsageDecision,
    UsageLimits,
    UsageStats,
    UserType,
)

__all__ = [
    "UNLIMITED",
    "TierLimit",
    "UsageDecision",
    "UsageGuard",
    "UsageLimits",
    "UsageStats",
    "UserType",
    "check_usage_limit",
    "get_tool_usage_stats",
    "get_usage_limits",
    "get_usage_stats",
    "record_usage",
    "record_usage_checked",
    "set_usage_limits",
    "usage_guard",
]
