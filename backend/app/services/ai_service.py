############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# ai_service.py: AI dispatch with per-model retry and fallback chain
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""AI dispatch service.

The default path reads the singleton ``ai_config`` row and walks the
chain primary -> fallback1 -> fallback2 (fallbacks only when enabled).
Each tier gets up to ``retry_attempts`` attempts for retryable failures
(timeouts, connection errors, 429 and 5xx); a non-retryable vendor error
moves straight to the next tier. Every attempt is bounded by
``timeout_seconds``. When the chain is exhausted the last vendor error is
raised.

Each dispatch through the chain appends one ``ai_usage_logs`` row and bumps
the call counters of the models it tried, on a session of its own; a
failed write is logged and otherwise ignored. Dispatch never touches the
usage ledger.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.providers import (
    BaseProvider,
    ChatOptions,
    ModelInfo,
    ProviderFactory,
    provider_from_record,
)
from backend.app.db import crud
from backend.app.db.models import AIModel, AIProvider, AIUsageStatus
from backend.app.errors import (
    ConfigurationError,
    ModelUnavailableError,
    NotFound,
    PersistenceError,
    ProviderError,
    ProviderTimeoutError,
)
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)

Messages = List[Dict[str, str]]


@dataclass
class DispatchResult:
    """Chat result plus how it was obtained."""

    content: str
    model_used: str
    provider_type: str
    input_tokens: int
    output_tokens: int
    cost: float
    used_fallback: bool
    fallback_level: int
    attempts: int
    latency_ms: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ModelTarget:
    """One tier of the chain as resolved from the database."""

    model_pk: Optional[int]
    model: Optional[AIModel]
    provider: Optional[AIProvider]

    @property
    def label(self) -> str:
        if self.model is not None:
            return self.model.model_id
        return f"model#{self.model_pk}"

    def unavailable_reason(self) -> Optional[str]:
        if self.model is None:
            return f"AI model {self.model_pk} not found"
        if not self.model.is_active:
            return f"AI model {self.model.model_id} is inactive"
        if self.provider is None or not self.provider.is_active:
            return f"AI provider for {self.model.model_id} is inactive"
        return None


class _AttemptCounter:
    def __init__(self):
        self.count = 0


async def _run_tier(
    provider: BaseProvider,
    messages: Messages,
    options: ChatOptions,
    retry_attempts: int,
    timeout_seconds: float,
    counter: _AttemptCounter,
    level: int,
):
    """Try one model up to ``retry_attempts`` times.

    Returns the ChatResult, or raises the last ProviderError.
    """
    last_error: Optional[ProviderError] = None

    for attempt in range(retry_attempts):
        counter.count += 1
        start_time = time.monotonic()
        try:
            return await asyncio.wait_for(
                provider.chat(messages, options),
                timeout=float(timeout_seconds),
            )
        except asyncio.TimeoutError:
            last_error = ProviderTimeoutError(
                f"{provider.vendor} request exceeded {timeout_seconds}s",
                vendor=provider.vendor,
            )
        except ProviderError as e:
            last_error = e

        logger.warning(
            "ai_attempt_failed",
            vendor=provider.vendor,
            model=provider.model,
            fallback_level=level,
            attempt=attempt + 1,
            max_attempts=retry_attempts,
            status=last_error.http_status,
            retryable=last_error.retryable,
            elapsed_ms=(time.monotonic() - start_time) * 1000,
        )
        if not last_error.retryable:
            break

    raise last_error


class FailoverAIService:
    """Handle over the configured primary/fallback chain."""

    def __init__(
        self,
        targets: List[ModelTarget],
        retry_attempts: int = 3,
        timeout_seconds: float = 30.0,
        provider_factory: ProviderFactory = provider_from_record,
        db: Optional[AsyncSession] = None,
    ):
        self.targets = targets
        self.retry_attempts = max(1, retry_attempts)
        self.timeout_seconds = timeout_seconds
        self._provider_factory = provider_factory
        self._db = db

    @property
    def max_attempts(self) -> int:
        return self.retry_attempts * len(self.targets)

    async def chat(
        self,
        messages: Messages,
        options: Optional[ChatOptions] = None,
        tool_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> DispatchResult:
        """
        Send a chat through the chain.

        Every call, success or failure, leaves one ai_usage_logs row and
        bumps the call counters of each model that was tried.

        Raises:
            ProviderError: every tier failed; the last tier's error
        """
        options = options or default_chat_options()
        counter = _AttemptCounter()
        start_time = time.monotonic()
        last_error: Optional[ProviderError] = None
        tried: List[Tuple[int, bool]] = []

        for level, target in enumerate(self.targets):
            reason = target.unavailable_reason()
            if reason:
                logger.warning("ai_model_unavailable", fallback_level=level, reason=reason)
                last_error = ModelUnavailableError(reason)
                continue

            try:
                provider = self._provider_factory(
                    target.provider, target.model, self.timeout_seconds
                )
            except ConfigurationError as e:
                logger.warning(
                    "ai_provider_build_failed", fallback_level=level, error=e.message
                )
                last_error = ModelUnavailableError(e.message, vendor=target.provider.type.value)
                continue

            try:
                result = await _run_tier(
                    provider,
                    messages,
                    options,
                    self.retry_attempts,
                    self.timeout_seconds,
                    counter,
                    level,
                )
            except ProviderError as e:
                tried.append((target.model.id, False))
                last_error = e
                continue
            tried.append((target.model.id, True))

            if level > 0:
                logger.info(
                    "ai_fallback_used",
                    fallback_level=level,
                    model=target.label,
                    attempts=counter.count,
                )
            dispatch = DispatchResult(
                content=result.content,
                model_used=target.model.model_id,
                provider_type=provider.vendor,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                cost=result.cost,
                used_fallback=level > 0,
                fallback_level=level,
                attempts=counter.count,
                latency_ms=(time.monotonic() - start_time) * 1000,
            )
            await self._record_dispatch(
                tried,
                status=AIUsageStatus.SUCCESS,
                provider_id=target.provider.id,
                model_id=target.model.id,
                user_id=user_id,
                tool_id=tool_id,
                input_tokens=dispatch.input_tokens,
                output_tokens=dispatch.output_tokens,
                cost=dispatch.cost,
                latency_ms=int(dispatch.latency_ms),
                used_fallback=dispatch.used_fallback,
                fallback_level=level,
            )
            return dispatch

        logger.error(
            "ai_chain_exhausted",
            tiers=len(self.targets),
            attempts=counter.count,
            vendor=last_error.vendor if last_error else None,
            status=last_error.http_status if last_error else None,
        )
        last_error = last_error or ModelUnavailableError("No AI model available")
        primary = self.targets[0] if self.targets else None
        await self._record_dispatch(
            tried,
            status=AIUsageStatus.FAILED,
            provider_id=primary.provider.id if primary and primary.provider else None,
            model_id=primary.model.id if primary and primary.model else None,
            user_id=user_id,
            tool_id=tool_id,
            latency_ms=int((time.monotonic() - start_time) * 1000),
            error_message=last_error.message,
        )
        raise last_error

    async def _record_dispatch(self, tried: List[Tuple[int, bool]], **fields: Any) -> None:
        """Write the dispatch log and model counters on a private session."""
        if self._db is None:
            return
        # Shielded so a cancelled request cannot leave a half-written log
        await asyncio.shield(self._write_dispatch(tried, fields))

    async def _write_dispatch(self, tried: List[Tuple[int, bool]], fields: Dict[str, Any]) -> None:
        async with AsyncSession(self._db.bind, expire_on_commit=False) as session:
            try:
                for model_pk, success in tried:
                    await crud.increment_model_calls(session, model_pk, success)
                await crud.create_ai_usage_log(session, **fields)
                await session.commit()
            except SQLAlchemyError as e:
                # Bookkeeping failures never fail the chat
                await session.rollback()
                logger.warning("ai_usage_log_failed", error=str(e), status=fields["status"].value)


class AIService:
    """Handle bound to a single provider (and model)."""

    def __init__(
        self,
        provider: BaseProvider,
        retry_attempts: int = 3,
        timeout_seconds: float = 30.0,
    ):
        self.provider = provider
        self.retry_attempts = max(1, retry_attempts)
        self.timeout_seconds = timeout_seconds

    async def chat(
        self, messages: Messages, options: Optional[ChatOptions] = None
    ) -> DispatchResult:
        options = options or default_chat_options()
        counter = _AttemptCounter()
        start_time = time.monotonic()
        result = await _run_tier(
            self.provider,
            messages,
            options,
            self.retry_attempts,
            self.timeout_seconds,
            counter,
            0,
        )
        return DispatchResult(
            content=result.content,
            model_used=result.model,
            provider_type=self.provider.vendor,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost=result.cost,
            used_fallback=False,
            fallback_level=0,
            attempts=counter.count,
            latency_ms=(time.monotonic() - start_time) * 1000,
        )


def default_chat_options() -> ChatOptions:
    settings = get_settings()
    return ChatOptions(
        temperature=settings.ai_temperature_default,
        max_tokens=settings.ai_max_tokens_default,
    )


async def _load_target(db: AsyncSession, model_pk: int) -> ModelTarget:
    model = await crud.get_ai_model_by_id(db, model_pk)
    return ModelTarget(
        model_pk=model_pk,
        model=model,
        provider=model.provider if model else None,
    )


async def get_ai_config(db: AsyncSession):
    """The singleton AI config, created with defaults on first read."""
    settings = get_settings()
    try:
        return await crud.get_or_create_ai_config(
            db,
            retry_attempts=settings.ai_default_retry_attempts,
            timeout_seconds=settings.ai_default_timeout_seconds,
        )
    except SQLAlchemyError as e:
        logger.error("ai_config_read_failed", error=str(e))
        raise PersistenceError("AI configuration temporarily unavailable") from e


async def get_default_ai_service(
    db: AsyncSession, provider_factory: ProviderFactory = provider_from_record
) -> FailoverAIService:
    """
    Resolve the configured chain into a dispatch handle.

    Raises:
        ConfigurationError: no primary model configured
        PersistenceError: configuration could not be read
    """
    config = await get_ai_config(db)
    if not config.primary_model_id:
        raise ConfigurationError("No default AI model configured")

    try:
        targets = [await _load_target(db, model_pk) for model_pk in config.chain()]
    except SQLAlchemyError as e:
        raise PersistenceError("AI configuration temporarily unavailable") from e

    return FailoverAIService(
        targets,
        retry_attempts=config.retry_attempts,
        timeout_seconds=config.timeout_seconds,
        provider_factory=provider_factory,
        db=db,
    )


async def get_ai_service_by_id(
    db: AsyncSession,
    provider_id: int,
    model_id: Optional[str] = None,
    provider_factory: ProviderFactory = provider_from_record,
) -> AIService:
    """
    Dispatch handle bound to one provider, bypassing the fallback chain.

    ``model_id`` is the vendor-side identifier; without it the provider's
    first active model is used.
    """
    config = await get_ai_config(db)
    try:
        provider = await crud.get_ai_provider_by_id(db, provider_id)
        model = (
            await crud.get_active_model_for_provider(db, provider_id, model_id)
            if provider else None
        )
    except SQLAlchemyError as e:
        raise PersistenceError("AI configuration temporarily unavailable") from e

    if provider is None or not provider.is_active:
        raise ModelUnavailableError(f"AI provider {provider_id} is not available")
    if model is None and not model_id:
        raise ModelUnavailableError(f"AI provider {provider.slug} has no active model")

    adapter = provider_factory(provider, model, config.timeout_seconds)
    if model is None:
        adapter.model = model_id
    return AIService(
        adapter,
        retry_attempts=config.retry_attempts,
        timeout_seconds=config.timeout_seconds,
    )


async def check_model_connection(
    db: AsyncSession,
    model_pk: int,
    provider_factory: ProviderFactory = provider_from_record,
) -> Dict[str, Any]:
    """Send a minimal chat to one stored model (admin connectivity check)."""
    target = await _load_target(db, model_pk)
    reason = target.unavailable_reason()
    if target.model is None:
        raise NotFound(reason)
    if reason:
        return {"success": False, "error": reason}

    provider = provider_factory(target.provider, target.model, get_settings().ai_default_timeout_seconds)
    start_time = time.monotonic()
    success = await provider.test_connection()
    return {
        "success": success,
        "model": target.model.model_id,
        "latencyMs": round((time.monotonic() - start_time) * 1000, 1),
    }


async def list_provider_models(
    db: AsyncSession,
    provider_id: int,
    provider_factory: ProviderFactory = provider_from_record,
) -> List[ModelInfo]:
    """Models advertised by a stored provider's vendor listing."""
    provider = await crud.get_ai_provider_by_id(db, provider_id)
    if provider is None:
        raise NotFound(f"AI provider {provider_id} not found")
    adapter = provider_factory(provider, None, get_settings().ai_default_timeout_seconds)
    return await adapter.list_models()


async def check_provider_connection(
    db: AsyncSession,
    provider_id: int,
    provider_factory: ProviderFactory = provider_from_record,
) -> Dict[str, Any]:
    """Connectivity check for a stored provider using its first active model."""
    provider = await crud.get_ai_provider_by_id(db, provider_id)
    if provider is None:
        raise NotFound(f"AI provider {provider_id} not found")
    model = await crud.get_active_model_for_provider(db, provider_id)

    adapter = provider_factory(provider, model, get_settings().ai_default_timeout_seconds)
    start_time = time.monotonic()
    success = await adapter.test_connection()
    return {
        "success": success,
        "model": model.model_id if model else None,
        "latencyMs": round((time.monotonic() - start_time) * 1000, 1),
    }
