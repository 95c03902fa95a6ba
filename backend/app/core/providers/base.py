############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# base.py: Vendor-neutral chat provider interface
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Provider abstraction shared by every AI vendor adapter."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from backend.app.core.providers.pricing import calculate_cost, lookup_price
from backend.app.db.models import ProviderType
from backend.app.errors import ProviderError, ProviderTimeoutError
from backend.app.logging_config import get_logger

logger = get_logger(__name__)

# Vendor error bodies are kept for diagnostics, truncated
MAX_ERROR_BODY = 2000


@dataclass
class ChatOptions:
    """Per-call generation options."""

    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResult:
    """Uniform chat completion result."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    raw: Optional[Dict[str, Any]] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ModelInfo:
    """A model advertised by a vendor listing."""

    id: str
    name: str
    description: Optional[str] = None
    input_price: float = 0.0
    output_price: float = 0.0
    context_window: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "inputPrice": self.input_price,
            "outputPrice": self.output_price,
            "contextWindow": self.context_window,
        }


class BaseProvider(ABC):
    """
    Base class for vendor adapters.

    Subclasses translate between the uniform message list
    (``[{"role": ..., "content": ...}]``) and the vendor wire format. The
    decrypted API key lives only on the instance and is never rendered by
    ``repr`` or logged.
    """

    provider_type: ProviderType = ProviderType.CUSTOM
    default_base_url: str = ""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        input_price: Optional[float] = None,
        output_price: Optional[float] = None,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.model = model
        self.input_price = input_price
        self.output_price = output_price
        self.timeout_seconds = timeout_seconds
        self._client = client

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(base_url={self.base_url!r}, "
            f"model={self.model!r}, api_key='***hidden***')"
        )

    @property
    def vendor(self) -> str:
        return self.provider_type.value

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """Authentication and protocol headers."""

    @abstractmethod
    async def chat(
        self, messages: List[Dict[str, str]], options: Optional[ChatOptions] = None
    ) -> ChatResult:
        """Send a chat completion and translate the reply."""

    @abstractmethod
    async def list_models(self) -> List[ModelInfo]:
        """Models available to this account."""

    async def test_connection(self) -> bool:
        """True when the vendor answers a minimal chat (or listing) call."""
        try:
            if self.model:
                await self.chat(
                    [{"role": "user", "content": "Hello"}],
                    ChatOptions(max_tokens=10),
                )
            else:
                await self.list_models()
            return True
        except ProviderError as e:
            logger.warning(
                "provider_test_failed",
                vendor=self.vendor,
                status=e.http_status,
                error=e.message,
            )
            return False

    def _resolve_model(self, options: ChatOptions) -> str:
        model = options.model or self.model
        if not model:
            raise ProviderError(f"{self.vendor}: no model specified", vendor=self.vendor)
        return model

    def compute_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Cost from the configured prices, else the curated table, else zero."""
        if self.input_price or self.output_price:
            prices = (self.input_price or 0.0, self.output_price or 0.0)
        else:
            prices = lookup_price(self.provider_type, model) or (0.0, 0.0)
        return calculate_cost(input_tokens, output_tokens, *prices)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        try:
            response = await client.request(
                method, url, headers=self._headers(), json=json
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self.vendor} request timed out", vendor=self.vendor
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"{self.vendor} connection error: {type(e).__name__}",
                vendor=self.vendor,
            ) from e

        if response.status_code >= 400:
            body = response.text[:MAX_ERROR_BODY]
            raise ProviderError(
                f"{self.vendor} API error (HTTP {response.status_code})",
                vendor=self.vendor,
                http_status=response.status_code,
                body=body,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.vendor} returned invalid JSON",
                vendor=self.vendor,
                http_status=response.status_code,
            ) from e

    async def _request(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Call ``{base_url}{path}`` and return the decoded JSON body.

        Raises:
            ProviderTimeoutError: the HTTP timeout elapsed
            ProviderError: connection failure, non-2xx status or bad JSON
        """
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._send(self._client, method, url, json)

        timeout = httpx.Timeout(self.timeout_seconds, connect=min(10.0, self.timeout_seconds))
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await self._send(client, method, url, json)

    def _malformed(self, detail: str) -> ProviderError:
        return ProviderError(
            f"{self.vendor} response missing expected fields: {detail}",
            vendor=self.vendor,
        )
