############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# test_providers.py: Unit tests for vendor adapters and wire formats
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Unit tests for the OpenAI, Anthropic, Google and custom adapters.

Vendor HTTP is served by ``httpx.MockTransport``; each handler records the
request it saw so the outbound wire format can be asserted.
"""

import json

import httpx
import pytest

from backend.app.core.providers import (
    AnthropicProvider,
    ChatOptions,
    CustomProvider,
    GoogleProvider,
    OpenAIProvider,
    create_provider,
    provider_from_record,
)
from backend.app.core.providers.anthropic import KNOWN_MODELS, split_system
from backend.app.core.providers.google import to_gemini_payload
from backend.app.core.providers.pricing import calculate_cost, lookup_price
from backend.app.db.models import AIModel, AIProvider, ProviderType
from backend.app.errors import ConfigurationError, ProviderError, ProviderTimeoutError
from backend.app.security.crypto import encrypt_api_key

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "Hello!"},
    {"role": "user", "content": "Tell me a joke"},
]


def _client(handler, seen):
    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)
    return httpx.AsyncClient(transport=httpx.MockTransport(recording))


def _json(request: httpx.Request):
    return json.loads(request.content.decode())


class TestOpenAI:
    """OpenAI chat completions protocol."""

    @pytest.mark.asyncio
    async def test_chat_wire_format(self):
        seen = []
        reply = {
            "model": "gpt-4o-mini-2024-07-18",
            "choices": [{"message": {"role": "assistant", "content": "Why did..."}}],
            "usage": {"prompt_tokens": 1000, "completion_tokens": 2000},
        }
        client = _client(lambda r: httpx.Response(200, json=reply), seen)
        provider = create_provider(
            ProviderType.OPENAI, api_key="sk-live", model="gpt-4o-mini", client=client
        )

        result = await provider.chat(MESSAGES, ChatOptions(temperature=0.2, max_tokens=50))

        [request] = seen
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-live"
        body = _json(request)
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"] == MESSAGES
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 50
        assert result.content == "Why did..."
        assert result.input_tokens == 1000
        assert result.output_tokens == 2000
        # Curated gpt-4o-mini pricing: 0.15 in / 0.6 out per million
        assert result.cost == pytest.approx(0.00015 + 0.0012)

    @pytest.mark.asyncio
    async def test_configured_prices_override_table(self):
        reply = {
            "choices": [{"message": {"content": "ok"}}],
            "usage": {"prompt_tokens": 1_000_000, "completion_tokens": 0},
        }
        client = _client(lambda r: httpx.Response(200, json=reply), [])
        provider = create_provider(
            ProviderType.OPENAI, api_key="k", model="gpt-4o", input_price=1.0, output_price=2.0, client=client
        )
        result = await provider.chat([{"role": "user", "content": "x"}])
        assert result.cost == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_error_status_carries_body(self):
        client = _client(lambda r: httpx.Response(429, text="slow down"), [])
        provider = OpenAIProvider(api_key="k", model="gpt-4o", client=client)
        with pytest.raises(ProviderError) as exc_info:
            await provider.chat(MESSAGES)
        err = exc_info.value
        assert err.http_status == 429
        assert err.body == "slow down"
        assert err.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_not_retryable(self):
        client = _client(lambda r: httpx.Response(401, json={"error": "bad key"}), [])
        provider = OpenAIProvider(api_key="k", model="gpt-4o", client=client)
        with pytest.raises(ProviderError) as exc_info:
            await provider.chat(MESSAGES)
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize("status, retryable", [
        (500, True), (501, True), (505, True), (599, True),
        (408, True), (409, True), (429, True),
        (400, False), (403, False), (404, False),
    ])
    def test_retryable_statuses(self, status, retryable):
        assert ProviderError("x", vendor="openai", http_status=status).retryable is retryable

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)
        provider = OpenAIProvider(api_key="k", model="gpt-4o", client=_client(handler, []))
        with pytest.raises(ProviderTimeoutError):
            await provider.chat(MESSAGES)

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)
        provider = OpenAIProvider(api_key="k", model="gpt-4o", client=_client(handler, []))
        with pytest.raises(ProviderError) as exc_info:
            await provider.chat(MESSAGES)
        assert exc_info.value.http_status is None
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_malformed_reply(self):
        client = _client(lambda r: httpx.Response(200, json={"choices": []}), [])
        provider = OpenAIProvider(api_key="k", model="gpt-4o", client=client)
        with pytest.raises(ProviderError, match="missing expected fields"):
            await provider.chat(MESSAGES)

    @pytest.mark.asyncio
    async def test_list_models(self):
        seen = []
        listing = {"data": [{"id": "gpt-4o"}, {"id": "whisper-1"}, {}]}
        provider = OpenAIProvider(api_key="k", client=_client(lambda r: httpx.Response(200, json=listing), seen))
        models = await provider.list_models()
        assert [m.id for m in models] == ["gpt-4o", "whisper-1"]
        assert models[0].input_price == 5.0
        assert seen[0].method == "GET"
        assert str(seen[0].url) == "https://api.openai.com/v1/models"

    def test_repr_hides_key(self):
        provider = OpenAIProvider(api_key="sk-very-secret", model="gpt-4o")
        assert "sk-very-secret" not in repr(provider)


class TestAnthropic:
    """Anthropic messages protocol."""

    def test_split_system(self):
        system, turns = split_system(MESSAGES)
        assert system == "Be brief."
        assert [t["role"] for t in turns] == ["user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_chat_wire_format(self):
        seen = []
        reply = {
            "model": "claude-3-5-haiku-20241022",
            "content": [
                {"type": "text", "text": "Knock "},
                {"type": "text", "text": "knock"},
            ],
            "usage": {"input_tokens": 12, "output_tokens": 4},
        }
        provider = AnthropicProvider(
            api_key="sk-ant", model="claude-3-5-haiku-20241022",
            client=_client(lambda r: httpx.Response(200, json=reply), seen),
        )
        result = await provider.chat(MESSAGES, ChatOptions(max_tokens=64))

        [request] = seen
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = _json(request)
        assert body["system"] == "Be brief."
        assert all(m["role"] != "system" for m in body["messages"])
        assert body["max_tokens"] == 64
        assert result.content == "Knock knock"
        assert (result.input_tokens, result.output_tokens) == (12, 4)

    @pytest.mark.asyncio
    async def test_list_models_falls_back_to_known(self):
        provider = AnthropicProvider(
            api_key="k", client=_client(lambda r: httpx.Response(404, text="no"), [])
        )
        models = await provider.list_models()
        assert [m.id for m in models] == [model_id for model_id, _ in KNOWN_MODELS]


class TestGoogle:
    """Gemini generateContent protocol."""

    def test_payload_translation(self):
        payload = to_gemini_payload(MESSAGES, ChatOptions(temperature=0.5, max_tokens=30))
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
        assert payload["contents"][2]["parts"] == [{"text": "Tell me a joke"}]
        assert payload["generationConfig"] == {"temperature": 0.5, "maxOutputTokens": 30}

    @pytest.mark.asyncio
    async def test_chat_wire_format(self):
        seen = []
        reply = {
            "candidates": [{"content": {"parts": [{"text": "A "}, {"text": "joke"}]}}],
            "usageMetadata": {"promptTokenCount": 8, "candidatesTokenCount": 2},
        }
        provider = GoogleProvider(
            api_key="g-key", model="models/gemini-1.5-flash",
            client=_client(lambda r: httpx.Response(200, json=reply), seen),
        )
        result = await provider.chat(MESSAGES)

        [request] = seen
        assert request.url.path == "/v1/models/gemini-1.5-flash:generateContent"
        assert request.headers["x-goog-api-key"] == "g-key"
        assert "key=" not in str(request.url)
        assert result.content == "A joke"
        assert (result.input_tokens, result.output_tokens) == (8, 2)

    @pytest.mark.asyncio
    async def test_list_models_filters_generate_content(self):
        listing = {
            "models": [
                {"name": "models/gemini-1.5-pro", "displayName": "Gemini 1.5 Pro",
                 "supportedGenerationMethods": ["generateContent"], "inputTokenLimit": 1048576},
                {"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]},
            ]
        }
        provider = GoogleProvider(api_key="k", client=_client(lambda r: httpx.Response(200, json=listing), []))
        models = await provider.list_models()
        assert [m.id for m in models] == ["gemini-1.5-pro"]
        assert models[0].name == "Gemini 1.5 Pro"
        assert models[0].context_window == 1048576


class TestFactory:
    """Adapter construction."""

    def test_type_dispatch(self):
        assert isinstance(create_provider(ProviderType.OPENAI, "k"), OpenAIProvider)
        assert isinstance(create_provider(ProviderType.ANTHROPIC, "k"), AnthropicProvider)
        assert isinstance(create_provider(ProviderType.GOOGLE, "k"), GoogleProvider)
        assert isinstance(
            create_provider("custom", "k", base_url="http://llm.internal/v1"), CustomProvider
        )

    def test_custom_requires_base_url(self):
        with pytest.raises(ConfigurationError):
            create_provider(ProviderType.CUSTOM, "k")

    @pytest.mark.asyncio
    async def test_custom_uses_base_url(self):
        seen = []
        reply = {"choices": [{"message": {"content": "hi"}}]}
        provider = create_provider(
            ProviderType.CUSTOM, "k", base_url="http://llm.internal/v1/", model="llama3",
            client=_client(lambda r: httpx.Response(200, json=reply), seen),
        )
        await provider.chat([{"role": "user", "content": "x"}])
        assert str(seen[0].url) == "http://llm.internal/v1/chat/completions"

    def test_from_record_decrypts_key(self):
        record = AIProvider(
            name="Main", slug="main", type=ProviderType.ANTHROPIC,
            api_key=encrypt_api_key("sk-ant-plain"),
        )
        model = AIModel(model_id="claude-3-haiku-20240307", name="Haiku", input_price=0.25, output_price=1.25)
        provider = provider_from_record(record, model, timeout_seconds=12)
        assert provider._headers()["x-api-key"] == "sk-ant-plain"
        assert provider.model == "claude-3-haiku-20240307"
        assert provider.timeout_seconds == 12

    def test_from_record_with_foreign_ciphertext(self):
        record = AIProvider(name="x", slug="x", type=ProviderType.OPENAI, api_key="not-a-fernet-token")
        with pytest.raises(ConfigurationError):
            provider_from_record(record)


class TestConnectionCheck:
    """BaseProvider.test_connection."""

    @pytest.mark.asyncio
    async def test_connection_check_sends_minimal_chat(self):
        seen = []
        reply = {"choices": [{"message": {"content": "Hello"}}]}
        provider = OpenAIProvider(
            api_key="k", model="gpt-4o-mini",
            client=_client(lambda r: httpx.Response(200, json=reply), seen),
        )
        assert await provider.test_connection() is True
        assert _json(seen[0])["max_tokens"] == 10

    @pytest.mark.asyncio
    async def test_connection_check_failure_returns_false(self):
        provider = OpenAIProvider(
            api_key="k", model="gpt-4o-mini",
            client=_client(lambda r: httpx.Response(500, text="boom"), []),
        )
        assert await provider.test_connection() is False


class TestPricing:
    """Curated fallback price table."""

    def test_longest_contained_name_wins(self):
        assert lookup_price(ProviderType.OPENAI, "gpt-4o-mini-2024-07-18") == (0.15, 0.6)
        assert lookup_price(ProviderType.OPENAI, "gpt-4-0613") == (30.0, 60.0)
        assert lookup_price(ProviderType.ANTHROPIC, "claude-3-5-sonnet-20241022") == (3.0, 15.0)

    def test_unknown_model(self):
        assert lookup_price(ProviderType.GOOGLE, "palm-2") is None
        assert lookup_price(ProviderType.CUSTOM, "llama3") is None

    def test_cost_per_million(self):
        assert calculate_cost(500_000, 250_000, 2.0, 8.0) == pytest.approx(1.0 + 2.0)
