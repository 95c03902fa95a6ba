############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# openai.py: OpenAI and OpenAI-compatible chat completions adapter
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""OpenAI provider. Also serves any OpenAI-compatible endpoint (``custom``)."""

from typing import Dict, List, Optional

from backend.app.core.providers.base import BaseProvider, ChatOptions, ChatResult, ModelInfo
from backend.app.core.providers.pricing import lookup_price
from backend.app.db.models import ProviderType


class OpenAIProvider(BaseProvider):
    """``POST {base}/chat/completions`` with Bearer authentication."""

    provider_type = ProviderType.OPENAI
    default_base_url = "https://api.openai.com/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def chat(
        self, messages: List[Dict[str, str]], options: Optional[ChatOptions] = None
    ) -> ChatResult:
        options = options or ChatOptions()
        model = self._resolve_model(options)

        payload = {
            "model": model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": False,
        }
        payload.update(options.extra)

        data = await self._request("POST", "/chat/completions", json=payload)

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise self._malformed(str(e)) from e

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)

        return ChatResult(
            content=content,
            model=data.get("model") or model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self.compute_cost(model, input_tokens, output_tokens),
            raw=data,
        )

    async def list_models(self) -> List[ModelInfo]:
        data = await self._request("GET", "/models")
        models = []
        for entry in data.get("data") or []:
            model_id = entry.get("id")
            if not model_id:
                continue
            price = lookup_price(self.provider_type, model_id) or (0.0, 0.0)
            models.append(
                ModelInfo(
                    id=model_id,
                    name=model_id,
                    description=f"{self.vendor} model: {model_id}",
                    input_price=price[0],
                    output_price=price[1],
                )
            )
        return models


class CustomProvider(OpenAIProvider):
    """Self-hosted or third-party endpoint speaking the OpenAI protocol.

    Requires an explicit base URL.
    """

    provider_type = ProviderType.CUSTOM
    default_base_url = ""
