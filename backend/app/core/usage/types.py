############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# types.py: Usage policy decision and limit models
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pydantic models shared by the usage policy engine and its endpoints."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNLIMITED = -1


class UserType(str, Enum):
    """Quota tiers."""

    GUEST = "guest"
    USER = "user"
    SUBSCRIBER = "subscriber"


class UsageDecision(BaseModel):
    """Outcome of a usage check."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    allowed: bool
    remaining: int
    limit: int
    user_type: UserType
    reason: Optional[str] = None
    requires_login: Optional[bool] = None
    requires_upgrade: Optional[bool] = None

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def after_one_use(self) -> int:
        """Remaining count once the current request has been recorded."""
        if self.unlimited:
            return UNLIMITED
        return max(0, self.remaining - 1)

    def to_response(self) -> Dict[str, Any]:
        """camelCase JSON body; unset optional flags are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TierLimit(BaseModel):
    daily_limit: int = Field(alias="dailyLimit", ge=UNLIMITED)

    model_config = ConfigDict(populate_by_name=True)


class UsageLimits(BaseModel):
    """Global daily limits stored under the ``usage_limits`` settings key."""

    guest: TierLimit
    user: TierLimit

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class UsageStats(BaseModel):
    """Usage counters for one caller."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    today: int
    this_month: int
    total: int
