############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# admin_api.py: Admin endpoints for AI providers, dispatch config and limits
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Admin API endpoints.

Provider credentials are write-only: every response carries
``apiKey: "***hidden***"``, and sending the mask back on update keeps the
stored key.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.auth import require_admin
from backend.app.core.providers import ProviderFactory, provider_from_record
from backend.app.core.usage import (
    UsageLimits,
    get_tool_usage_stats,
    get_usage_limits,
    set_usage_limits,
)
from backend.app.db import crud
from backend.app.db.models import (
    AIConfig,
    AIModel,
    AIProvider,
    AIUsageLog,
    AIUsageStatus,
    ProviderType,
    User,
)
from backend.app.db.session import get_async_db
from backend.app.errors import NotFound, ToolNotFound, ValidationError
from backend.app.logging_config import get_logger
from backend.app.security.crypto import MASKED_API_KEY, encrypt_api_key, is_masked
from backend.app.services import ai_service

logger = get_logger(__name__)
router = APIRouter()


def get_provider_factory() -> ProviderFactory:
    """Provider factory used by admin connection checks (overridable in tests)."""
    return provider_from_record


# Request models
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AIConfigUpdateRequest(_CamelModel):
    """Only provided fields are changed; null clears a model slot."""
    primary_model_id: Optional[int] = None
    fallback1_model_id: Optional[int] = Field(default=None, alias="fallback1ModelId")
    fallback2_model_id: Optional[int] = Field(default=None, alias="fallback2ModelId")
    retry_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    timeout_seconds: Optional[int] = Field(default=None, ge=5, le=300)
    enable_fallback: Optional[bool] = None


class ProviderCreateRequest(_CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    type: ProviderType
    api_key: str = Field(..., min_length=1)
    base_url: Optional[str] = None
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    is_active: bool = True
    order: int = 0


class ProviderUpdateRequest(_CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[ProviderType] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    order: Optional[int] = None


class ModelCreateRequest(_CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    model_id: str = Field(..., min_length=1, max_length=255)
    input_price: float = Field(default=0.0, ge=0)
    output_price: float = Field(default=0.0, ge=0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    context_window: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True


class UsageLimitsRequest(_CamelModel):
    guest_daily_limit: int = Field(..., alias="guestDailyLimit", ge=-1)
    user_daily_limit: int = Field(..., alias="userDailyLimit", ge=-1)


# Serializers
def _model_payload(model: AIModel) -> Dict[str, Any]:
    return {
        "id": model.id,
        "providerId": model.provider_id,
        "name": model.name,
        "modelId": model.model_id,
        "isActive": model.is_active,
        "supportsVision": model.supports_vision,
        "supportsTools": model.supports_tools,
        "supportsStreaming": model.supports_streaming,
        "inputPrice": model.input_price,
        "outputPrice": model.output_price,
        "maxTokens": model.max_tokens,
        "contextWindow": model.context_window,
        "totalCalls": model.total_calls,
        "successCalls": model.success_calls,
    }


def _provider_payload(
    provider: AIProvider, models: Optional[List[AIModel]] = None
) -> Dict[str, Any]:
    payload = {
        "id": provider.id,
        "name": provider.name,
        "slug": provider.slug,
        "type": provider.type.value,
        "apiKey": MASKED_API_KEY,
        "baseUrl": provider.base_url,
        "description": provider.description,
        "config": provider.config,
        "isActive": provider.is_active,
        "order": provider.order,
    }
    if models is not None:
        payload["models"] = [_model_payload(m) for m in models]
    return payload


def _usage_log_payload(log: AIUsageLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "providerId": log.provider_id,
        "modelId": log.model_id,
        "userId": log.user_id,
        "toolId": log.tool_id,
        "status": log.status.value,
        "errorMessage": log.error_message,
        "inputTokens": log.input_tokens,
        "outputTokens": log.output_tokens,
        "totalTokens": log.total_tokens,
        "cost": float(log.cost),
        "latencyMs": log.latency_ms,
        "usedFallback": log.used_fallback,
        "fallbackLevel": log.fallback_level,
        "createdAt": log.created_at.isoformat() if log.created_at else None,
    }


def _config_payload(config: AIConfig) -> Dict[str, Any]:
    return {
        "primaryModelId": config.primary_model_id,
        "fallback1ModelId": config.fallback1_model_id,
        "fallback2ModelId": config.fallback2_model_id,
        "retryAttempts": config.retry_attempts,
        "timeoutSeconds": config.timeout_seconds,
        "enableFallback": config.enable_fallback,
    }


async def _get_provider_or_404(db: AsyncSession, provider_id: int) -> AIProvider:
    provider = await crud.get_ai_provider_by_id(db, provider_id)
    if not provider:
        raise NotFound("AI provider not found")
    return provider


# AI config
@router.get("/ai-config")
async def get_ai_config(
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Current dispatch configuration."""
    config = await ai_service.get_ai_config(db)
    return _config_payload(config)


@router.put("/ai-config")
async def update_ai_config(
    request: AIConfigUpdateRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Update the dispatch configuration. Referenced models must exist and be active."""
    raw = request.model_dump(exclude_unset=True)
    if not raw:
        raise ValidationError("No fields to update")

    for field_name in ("primary_model_id", "fallback1_model_id", "fallback2_model_id"):
        model_pk = raw.get(field_name)
        if model_pk is None:
            continue
        model = await crud.get_ai_model_by_id(db, model_pk)
        if model is None or not model.is_active:
            raise ValidationError(f"AI model {model_pk} does not exist or is inactive")

    config = await ai_service.get_ai_config(db)
    await crud.update_ai_config(db, config, **raw)
    await db.commit()

    logger.info("ai_config_updated_by_admin", admin_id=admin.id, fields=list(raw.keys()))
    return _config_payload(config)


# AI providers
@router.get("/ai-providers")
async def list_ai_providers(
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """All providers with their stored models."""
    providers = await crud.get_ai_providers(db)
    return {
        "providers": [
            _provider_payload(p, await crud.get_models_for_provider(db, p.id))
            for p in providers
        ]
    }


@router.post("/ai-providers", status_code=status.HTTP_201_CREATED)
async def create_ai_provider(
    request: ProviderCreateRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a provider; the key is encrypted before it is stored."""
    if await crud.get_ai_provider_by_slug(db, request.slug):
        raise ValidationError(f"AI provider slug '{request.slug}' already exists")
    if request.type == ProviderType.CUSTOM and not request.base_url:
        raise ValidationError("Custom AI provider requires a base URL")

    provider = await crud.create_ai_provider(
        db,
        name=request.name,
        slug=request.slug,
        provider_type=request.type,
        encrypted_api_key=encrypt_api_key(request.api_key),
        base_url=request.base_url,
        description=request.description,
        config=request.config,
        is_active=request.is_active,
        order=request.order,
    )
    await db.commit()

    logger.info(
        "ai_provider_created_by_admin",
        admin_id=admin.id,
        provider_id=provider.id,
        type=provider.type.value,
    )
    return _provider_payload(provider, [])


@router.get("/ai-providers/{provider_id}")
async def get_ai_provider(
    provider_id: int,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    provider = await _get_provider_or_404(db, provider_id)
    return _provider_payload(provider, await crud.get_models_for_provider(db, provider_id))


@router.put("/ai-providers/{provider_id}")
async def update_ai_provider(
    provider_id: int,
    request: ProviderUpdateRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Update a provider. An absent or masked ``apiKey`` keeps the stored key."""
    await _get_provider_or_404(db, provider_id)

    raw = request.model_dump(exclude_unset=True)
    api_key = raw.pop("api_key", None)
    if api_key and not is_masked(api_key):
        raw["api_key"] = encrypt_api_key(api_key)

    provider = await crud.update_ai_provider(db, provider_id, **raw)
    await db.commit()

    logger.info(
        "ai_provider_updated_by_admin",
        admin_id=admin.id,
        provider_id=provider_id,
        fields=list(raw.keys()),
    )
    return _provider_payload(provider, await crud.get_models_for_provider(db, provider_id))


@router.get("/ai-providers/{provider_id}/models")
async def list_vendor_models(
    provider_id: int,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
):
    """Models advertised by the vendor for this provider's account."""
    models = await ai_service.list_provider_models(db, provider_id, provider_factory)
    return {"models": [m.to_dict() for m in models]}


@router.post("/ai-providers/{provider_id}/models", status_code=status.HTTP_201_CREATED)
async def create_ai_model(
    provider_id: int,
    request: ModelCreateRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Store a model under a provider so it can be placed in the chain."""
    await _get_provider_or_404(db, provider_id)
    model = await crud.create_ai_model(
        db,
        provider_id=provider_id,
        name=request.name,
        model_id=request.model_id,
        input_price=request.input_price,
        output_price=request.output_price,
        is_active=request.is_active,
        max_tokens=request.max_tokens,
        context_window=request.context_window,
    )
    await db.commit()
    logger.info("ai_model_created_by_admin", admin_id=admin.id, model=model.model_id)
    return _model_payload(model)


@router.post("/ai-providers/{provider_id}/test")
async def test_ai_provider(
    provider_id: int,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
):
    """Check that the stored credentials reach the vendor."""
    return await ai_service.check_provider_connection(db, provider_id, provider_factory)


@router.post("/ai-models/{model_pk}/test")
async def test_ai_model(
    model_pk: int,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
):
    """Send a minimal chat to one stored model."""
    return await ai_service.check_model_connection(db, model_pk, provider_factory)


# Usage limits
@router.get("/usage-limits")
async def get_limits(
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Global daily limits per tier (-1 = unlimited)."""
    limits = await get_usage_limits(db)
    return limits.to_store()


@router.put("/usage-limits")
async def update_limits(
    request: UsageLimitsRequest,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    limits = UsageLimits.model_validate(
        {
            "guest": {"dailyLimit": request.guest_daily_limit},
            "user": {"dailyLimit": request.user_daily_limit},
        }
    )
    await set_usage_limits(db, limits)
    logger.info(
        "usage_limits_updated_by_admin",
        admin_id=admin.id,
        guest=request.guest_daily_limit,
        user=request.user_daily_limit,
    )
    return limits.to_store()


# Tool usage
@router.get("/tools/{slug}/usage")
async def get_tool_usage(
    slug: str,
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Ledger counts for one tool plus its lifetime counter."""
    tool = await crud.get_tool_by_slug(db, slug)
    if tool is None:
        raise ToolNotFound(f"Tool '{slug}' not found")
    stats = await get_tool_usage_stats(db, tool.id)
    payload = stats.model_dump(by_alias=True)
    payload["toolId"] = tool.id
    payload["usageCount"] = tool.usage_count
    return payload


# AI usage log
@router.get("/ai-usage-logs")
async def list_ai_usage_logs(
    limit: int = Query(default=50, ge=1, le=500),
    status_filter: Optional[AIUsageStatus] = Query(default=None, alias="status"),
    tool_id: Optional[int] = Query(default=None, alias="toolId"),
    admin: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_async_db),
):
    """Most recent dispatches through the fallback chain."""
    logs = await crud.get_ai_usage_logs(db, limit=limit, status=status_filter, tool_id=tool_id)
    return {"logs": [_usage_log_payload(log) for log in logs]}
