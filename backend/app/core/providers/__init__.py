############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: AI provider adapters package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Vendor adapters translating a uniform chat interface to each AI API."""

from backend.app.core.providers.anthropic import AnthropicProvider
from backend.app.core.providers.base import BaseProvider, ChatOptions, ChatResult, ModelInfo
from backend.app.core.providers.factory import (
    ProviderFactory,
    create_provider,
    provider_from_record,
)
from backend.app.core.providers.google import GoogleProvider
from backend.app.core.providers.openai import CustomProvider, OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "ChatOptions",
    "ChatResult",
    "CustomProvider",
    "GoogleProvider",
    "ModelInfo",
    "OpenAIProvider",
    "ProviderFactory",
    "create_provider",
    "provider_from_record",
]
