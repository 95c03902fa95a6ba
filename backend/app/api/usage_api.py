############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# usage_api.py: Usage check, record and stats endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Usage endpoints used by tool pages and by tools that meter themselves."""

from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.identity import apply_guest_cookie, resolve_identity
from backend.app.core.usage import (
    check_usage_limit,
    get_usage_stats,
    record_usage_checked,
    usage_guard,
)
from backend.app.db import crud
from backend.app.db.models import Tool
from backend.app.db.session import get_async_db
from backend.app.errors import ToolNotFound, ValidationError
from backend.app.logging_config import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/usage", tags=["usage"])


class RecordUsageRequest(BaseModel):
    """Body of ``POST /api/usage/record``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tool_id: Optional[Union[int, str]] = None
    used_ai: bool = Field(default=False, alias="usedAI")
    ai_tokens: Optional[int] = Field(default=None, ge=0)
    ai_cost: Optional[float] = Field(default=None, ge=0)


async def _resolve_tool(db: AsyncSession, tool_ref: Union[int, str]) -> Tool:
    """Look a tool up by numeric id or by slug."""
    if isinstance(tool_ref, int) or str(tool_ref).isdigit():
        tool = await crud.get_tool_by_id(db, int(tool_ref))
    else:
        tool = await crud.get_tool_by_slug(db, tool_ref)
    if tool is None or not tool.is_active:
        raise ToolNotFound(f"Tool '{tool_ref}' not found")
    return tool


@router.post("/check")
async def check_usage(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    """Current quota decision for the caller. Never consumes quota."""
    identity = await resolve_identity(request, db)
    decision = await check_usage_limit(db, identity)

    response = JSONResponse(decision.to_response())
    apply_guest_cookie(response, identity)
    return response


@router.post("/record")
async def record_usage_endpoint(
    body: RecordUsageRequest,
    request: Request,
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    """Record one use. The limit is re-checked here regardless of the client."""
    if body.tool_id is None or body.tool_id == "":
        raise ValidationError("toolId is required")

    identity = await resolve_identity(request, db)
    tool = await _resolve_tool(db, body.tool_id)

    async with usage_guard.hold(identity):
        decision = await record_usage_checked(
            db,
            tool.id,
            identity,
            used_ai=body.used_ai,
            ai_tokens=body.ai_tokens,
            ai_cost=body.ai_cost,
        )

    response = JSONResponse({"success": True, "remaining": decision.after_one_use()})
    apply_guest_cookie(response, identity)
    return response


@router.get("/stats")
async def usage_stats(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
) -> JSONResponse:
    """Today, this month and all-time counts for the caller."""
    identity = await resolve_identity(request, db)
    stats = await get_usage_stats(db, identity)

    response = JSONResponse(stats.model_dump(by_alias=True))
    apply_guest_cookie(response, identity)
    return response
