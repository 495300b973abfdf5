import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import httpx

from pagechat.errors import ConfigurationError, NetworkError
from pagechat.models.domain_models import Conversation
from pagechat.models.schemas import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderFamily(str, Enum):
    """Wire-protocol shape shared by a group of providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


@dataclass(frozen=True)
class ProviderSpec:
    family: ProviderFamily
    requires_api_key: bool = True


PROVIDERS: dict[str, ProviderSpec] = {
    "lmstudio": ProviderSpec(ProviderFamily.OPENAI, requires_api_key=False),
    "openai": ProviderSpec(ProviderFamily.OPENAI),
    "anthropic": ProviderSpec(ProviderFamily.ANTHROPIC),
    "gemini": ProviderSpec(ProviderFamily.GEMINI),
}


def get_provider_spec(provider_id: str) -> ProviderSpec:
    spec = PROVIDERS.get(provider_id)
    if spec is None:
        raise ConfigurationError(
            f"Unsupported provider: {provider_id!r}. "
            f"Supported: {', '.join(PROVIDERS)}"
        )
    return spec


class BaseProviderAdapter(ABC):
    """Turns one conversation into exactly one streaming HTTP call.

    The response is returned as soon as its headers arrive; the body is left
    unread for the stream normalizer. Retries and timeouts are the concern of
    the ``httpx.AsyncClient`` handed in by the caller.
    """

    family: ProviderFamily

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    def get_provider_name(self) -> str:
        return self.family.value

    @abstractmethod
    def build_request(
        self, config: ProviderConfig, conversation: Conversation
    ) -> httpx.Request:
        """Build the provider-specific request without sending it."""
        ...

    async def invoke(
        self,
        provider_id: str,
        config: ProviderConfig,
        conversation: Conversation,
    ) -> httpx.Response:
        spec = get_provider_spec(provider_id)
        if spec.family is not self.family:
            raise ConfigurationError(
                f"Provider {provider_id!r} does not speak the {self.family.value} protocol"
            )
        if spec.requires_api_key and not config.api_key:
            raise ConfigurationError(f"{config.name} API key not configured")

        request = self.build_request(config, conversation)
        logger.debug(
            "POST %s%s (%s, model=%s)",
            request.url.host, request.url.path, provider_id, config.model,
        )
        try:
            return await self._client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise NetworkError(
                f"Could not reach {provider_id}: {exc}", provider=provider_id
            ) from exc
