############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# factory.py: Build provider adapters from types and stored records
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Provider construction."""

from typing import Callable, Optional

import httpx

from backend.app.core.providers.anthropic import AnthropicProvider
from backend.app.core.providers.base import BaseProvider
from backend.app.core.providers.google import GoogleProvider
from backend.app.core.providers.openai import CustomProvider, OpenAIProvider
from backend.app.db.models import AIModel, AIProvider, ProviderType
from backend.app.errors import ConfigurationError
from backend.app.security.crypto import decrypt_api_key

# (provider record, model record or None, timeout seconds) -> adapter
ProviderFactory = Callable[[AIProvider, Optional[AIModel], float], BaseProvider]


def create_provider(
    provider_type: ProviderType,
    api_key: str,
    base_url: Optional[str] = None,
    model: Optional[str] = None,
    input_price: Optional[float] = None,
    output_price: Optional[float] = None,
    timeout_seconds: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseProvider:
    """Instantiate the adapter for a vendor type."""
    match ProviderType(provider_type):
        case ProviderType.OPENAI:
            cls = OpenAIProvider
        case ProviderType.ANTHROPIC:
            cls = AnthropicProvider
        case ProviderType.GOOGLE:
            cls = GoogleProvider
        case ProviderType.CUSTOM:
            if not base_url:
                raise ConfigurationError("Custom AI provider requires a base URL")
            cls = CustomProvider
        case _:
            raise ConfigurationError(f"Unsupported AI provider type: {provider_type}")

    return cls(
        api_key=api_key,
        base_url=base_url,
        model=model,
        input_price=input_price,
        output_price=output_price,
        timeout_seconds=timeout_seconds,
        client=client,
    )


def provider_from_record(
    provider: AIProvider,
    model: Optional[AIModel] = None,
    timeout_seconds: float = 30.0,
) -> BaseProvider:
    """Build an adapter from stored rows. The key is decrypted here and nowhere else."""
    return create_provider(
        provider.type,
        api_key=decrypt_api_key(provider.api_key),
        base_url=provider.base_url,
        model=model.model_id if model else None,
        input_price=model.input_price if model else None,
        output_price=model.output_price if model else None,
        timeout_seconds=timeout_seconds,
    )
