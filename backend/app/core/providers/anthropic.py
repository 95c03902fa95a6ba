############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# anthropic.py: Anthropic Messages API adapter
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Anthropic provider.

System messages are lifted out of the message list into the top-level
``system`` field; the remaining turns keep their user/assistant roles.
"""

from typing import Dict, List, Optional, Tuple

from backend.app.core.providers.base import BaseProvider, ChatOptions, ChatResult, ModelInfo
from backend.app.core.providers.pricing import lookup_price
from backend.app.db.models import ProviderType
from backend.app.errors import ProviderError
from backend.app.logging_config import get_logger

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# Served when the listing endpoint is unavailable for the account
KNOWN_MODELS: List[Tuple[str, str]] = [
    ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),
    ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
    ("claude-3-opus-20240229", "Claude 3 Opus"),
    ("claude-3-sonnet-20240229", "Claude 3 Sonnet"),
    ("claude-3-haiku-20240307", "Claude 3 Haiku"),
]


def split_system(messages: List[Dict[str, str]]) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Separate system prompts from conversation turns."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    turns = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m.get("role") != "system"
    ]
    return ("\n\n".join(system_parts) if system_parts else None), turns


class AnthropicProvider(BaseProvider):
    """``POST {base}/messages`` with ``x-api-key`` authentication."""

    provider_type = ProviderType.ANTHROPIC
    default_base_url = "https://api.anthropic.com/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    async def chat(
        self, messages: List[Dict[str, str]], options: Optional[ChatOptions] = None
    ) -> ChatResult:
        options = options or ChatOptions()
        model = self._resolve_model(options)
        system, turns = split_system(messages)

        payload = {
            "model": model,
            "messages": turns,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if system:
            payload["system"] = system
        payload.update(options.extra)

        data = await self._request("POST", "/messages", json=payload)

        try:
            content = "".join(
                block.get("text", "")
                for block in data["content"]
                if block.get("type", "text") == "text"
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise self._malformed(str(e)) from e

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)

        return ChatResult(
            content=content,
            model=data.get("model") or model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self.compute_cost(model, input_tokens, output_tokens),
            raw=data,
        )

    async def list_models(self) -> List[ModelInfo]:
        try:
            data = await self._request("GET", "/models")
            entries = [
                (entry["id"], entry.get("display_name") or entry["id"])
                for entry in data.get("data") or []
                if entry.get("id")
            ]
        except ProviderError as e:
            logger.info("anthropic_model_list_fallback", status=e.http_status)
            entries = list(KNOWN_MODELS)

        models = []
        for model_id, name in entries:
            price = lookup_price(self.provider_type, model_id) or (0.0, 0.0)
            models.append(
                ModelInfo(
                    id=model_id,
                    name=name,
                    input_price=price[0],
                    output_price=price[1],
                    context_window=200000,
                )
            )
        return models
