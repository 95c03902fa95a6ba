############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# tool_handler.py: Factory for metered, moderated tool endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Tool handler factory.

``create_tool_handler`` turns a processor function into a FastAPI endpoint
that enforces, in order:

  identity -> tool lookup -> auth -> quota check -> input validation
  -> content scan -> processor -> usage record

The quota check, processor and record run under the caller's identity
guard so concurrent requests from one caller cannot overrun the quota.
Nothing is recorded unless the processor succeeds.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.identity import Identity, apply_guest_cookie, resolve_identity
from backend.app.core.providers import ChatOptions, ProviderFactory, provider_from_record
from backend.app.core.usage import (
    check_usage_limit,
    record_usage,
    usage_guard,
)
from backend.app.db import crud
from backend.app.db.models import Tool
from backend.app.db.session import get_async_db
from backend.app.errors import (
    AuthenticationRequired,
    PersistenceError,
    ProviderError,
    QuotaExceeded,
    ToolGateError,
    ToolNotFound,
    ValidationError,
)
from backend.app.logging_config import bind_request_context, get_logger
from backend.app.services.ai_service import (
    DispatchResult,
    FailoverAIService,
    get_default_ai_service,
)
from backend.app.services.moderation import SafetyConfig, moderate_input

logger = get_logger(__name__)


@dataclass
class ToolResult:
    """What a processor returns."""

    content: Union[str, Dict[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dispatch(
        cls, content: Union[str, Dict[str, Any]], dispatch: DispatchResult, **extra: Any
    ) -> "ToolResult":
        metadata = {
            "aiTokens": dispatch.total_tokens,
            "aiCost": dispatch.cost,
            "model": dispatch.model_used,
            "usedFallback": dispatch.used_fallback,
        }
        metadata.update(extra)
        return cls(content=content, metadata=metadata)


@dataclass
class ToolContext:
    """Everything a processor may need besides its input."""

    identity: Identity
    tool: Tool
    db: AsyncSession
    provider_factory: ProviderFactory = provider_from_record
    _ai: Optional[FailoverAIService] = None

    async def ai(self) -> FailoverAIService:
        """The default dispatch chain, resolved on first use."""
        if self._ai is None:
            self._ai = await get_default_ai_service(self.db, self.provider_factory)
        return self._ai

    async def chat(
        self, messages: List[Dict[str, str]], options: Optional[ChatOptions] = None
    ) -> DispatchResult:
        service = await self.ai()
        return await service.chat(
            messages, options, tool_id=self.tool.id, user_id=self.identity.user_id
        )


Processor = Callable[[Any, ToolContext], Awaitable[ToolResult]]
InputValidator = Callable[[Any], Tuple[bool, Optional[str]]]


@dataclass
class ToolHandlerOptions:
    """Configuration for one tool endpoint."""

    tool_slug: str
    processor: Processor
    validate_input: Optional[InputValidator] = None
    require_auth: bool = False
    skip_usage_check: bool = False
    skip_content_moderation: bool = False
    safety_config: Optional[SafetyConfig] = None
    provider_factory: ProviderFactory = provider_from_record


async def _read_input(request: Request) -> Any:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    value = body.get("input")
    if value is None:
        value = body.get("userInput")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Input is required")
    return value


async def _lookup_tool(db: AsyncSession, slug: str) -> Tool:
    try:
        tool = await crud.get_tool_by_slug(db, slug)
    except SQLAlchemyError as e:
        logger.error("tool_lookup_failed", tool=slug, error=str(e))
        raise PersistenceError() from e
    if tool is None or not tool.is_active:
        raise ToolNotFound(f"Tool '{slug}' not found")
    return tool


def _result_payload(result: ToolResult, remaining: Optional[int]) -> Dict[str, Any]:
    metadata = dict(result.metadata)
    metadata.setdefault("aiTokens", 0)
    metadata.setdefault("aiCost", 0.0)
    payload = {"success": True, "content": result.content, "metadata": metadata}
    if remaining is not None:
        payload["remaining"] = remaining
    return payload


def create_tool_handler(options: ToolHandlerOptions):
    """Build the FastAPI endpoint for one tool."""
    slug = options.tool_slug

    async def _validate_and_process(request: Request, context: ToolContext) -> ToolResult:
        value = await _read_input(request)
        if options.validate_input is not None:
            valid, error = options.validate_input(value)
            if not valid:
                raise ValidationError(error or "Invalid input")

        if not options.skip_content_moderation:
            moderate_input(value, options.safety_config)

        return await options.processor(value, context)

    async def _handle(request: Request, db: AsyncSession, identity: Identity) -> JSONResponse:
        tool = await _lookup_tool(db, slug)

        if options.require_auth and identity.user_id is None:
            raise AuthenticationRequired("Authentication required")

        context = ToolContext(
            identity=identity,
            tool=tool,
            db=db,
            provider_factory=options.provider_factory,
        )

        if options.skip_usage_check:
            result = await _validate_and_process(request, context)
            return JSONResponse(_result_payload(result, None))

        async with usage_guard.hold(identity):
            decision = await check_usage_limit(db, identity)
            if not decision.allowed:
                raise QuotaExceeded(decision)

            result = await _validate_and_process(request, context)

            ai_tokens = result.metadata.get("aiTokens")
            await record_usage(
                db,
                tool.id,
                identity,
                used_ai=bool(ai_tokens),
                ai_tokens=ai_tokens,
                ai_cost=result.metadata.get("aiCost"),
            )

        return JSONResponse(_result_payload(result, decision.after_one_use()))

    async def tool_endpoint(
        request: Request,
        db: AsyncSession = Depends(get_async_db),
    ) -> JSONResponse:
        identity = await resolve_identity(request, db)
        bind_request_context(tool=slug, user_id=identity.user_id)

        try:
            response = await _handle(request, db, identity)
        except ProviderError as e:
            # Exhausted AI chain inside a processor surfaces as a 500 tool failure
            logger.warning("tool_provider_failed", tool=slug, code=e.code, vendor=e.vendor)
            payload = e.to_payload()
            payload["toolId"] = slug
            response = JSONResponse(payload, status_code=500)
        except ToolGateError as e:
            if e.status_code >= 500:
                logger.warning("tool_request_failed", tool=slug, code=e.code, error=e.message)
            response = JSONResponse(e.to_payload(), status_code=e.status_code)
        except Exception:
            logger.exception("tool_processor_error", tool=slug)
            response = JSONResponse(
                {"error": "Internal server error", "code": "server_error", "toolId": slug},
                status_code=500,
            )

        apply_guest_cookie(response, identity)
        return response

    tool_endpoint.__name__ = f"tool_{slug.replace('-', '_')}"
    return tool_endpoint
