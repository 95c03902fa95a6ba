############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# google.py: Google Gemini generateContent adapter
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Google Gemini provider.

The key travels in the ``x-goog-api-key`` header rather than the query
string so it never appears in logged URLs.
"""

from typing import Any, Dict, List, Optional

from backend.app.core.providers.base import BaseProvider, ChatOptions, ChatResult, ModelInfo
from backend.app.core.providers.pricing import lookup_price
from backend.app.db.models import ProviderType

_ROLE_MAP = {"user": "user", "assistant": "model", "model": "model"}


def _strip_prefix(name: str) -> str:
    return name[len("models/"):] if name.startswith("models/") else name


def to_gemini_payload(
    messages: List[Dict[str, str]], options: ChatOptions
) -> Dict[str, Any]:
    """Translate uniform messages into a generateContent request body."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    contents = [
        {"role": _ROLE_MAP.get(m.get("role"), "user"), "parts": [{"text": m["content"]}]}
        for m in messages
        if m.get("role") != "system"
    ]
    payload: Dict[str, Any] = {
        "contents": contents,
        "generationConfig": {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_tokens,
        },
    }
    if system_parts:
        payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
    payload.update(options.extra)
    return payload


class GoogleProvider(BaseProvider):
    """``POST {base}/models/{model}:generateContent``."""

    provider_type = ProviderType.GOOGLE
    default_base_url = "https://generativelanguage.googleapis.com/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    async def chat(
        self, messages: List[Dict[str, str]], options: Optional[ChatOptions] = None
    ) -> ChatResult:
        options = options or ChatOptions()
        model = _strip_prefix(self._resolve_model(options))

        data = await self._request(
            "POST",
            f"/models/{model}:generateContent",
            json=to_gemini_payload(messages, options),
        )

        try:
            parts = data["candidates"][0]["content"]["parts"]
            content = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise self._malformed(str(e)) from e

        usage = data.get("usageMetadata") or {}
        input_tokens = int(usage.get("promptTokenCount") or 0)
        output_tokens = int(usage.get("candidatesTokenCount") or 0)

        return ChatResult(
            content=content,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=self.compute_cost(model, input_tokens, output_tokens),
            raw=data,
        )

    async def list_models(self) -> List[ModelInfo]:
        data = await self._request("GET", "/models")
        models = []
        for entry in data.get("models") or []:
            if "generateContent" not in (entry.get("supportedGenerationMethods") or []):
                continue
            model_id = _strip_prefix(entry.get("name", ""))
            if not model_id:
                continue
            price = lookup_price(self.provider_type, model_id) or (0.0, 0.0)
            models.append(
                ModelInfo(
                    id=model_id,
                    name=entry.get("displayName") or model_id,
                    description=entry.get("description"),
                    input_price=price[0],
                    output_price=price[1],
                    context_window=entry.get("inputTokenLimit"),
                )
            )
        return models
