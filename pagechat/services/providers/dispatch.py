import httpx

from pagechat.models.domain_models import Conversation
from pagechat.models.schemas import ProviderConfig
from pagechat.services.providers.anthropic_provider import AnthropicAdapter
from pagechat.services.providers.base import (
    BaseProviderAdapter,
    ProviderFamily,
    get_provider_spec,
)
from pagechat.services.providers.gemini_provider import GeminiAdapter
from pagechat.services.providers.openai_provider import OpenAIAdapter

ADAPTERS: dict[ProviderFamily, type[BaseProviderAdapter]] = {
    ProviderFamily.OPENAI: OpenAIAdapter,
    ProviderFamily.ANTHROPIC: AnthropicAdapter,
    ProviderFamily.GEMINI: GeminiAdapter,
}


def get_adapter(provider_id: str, client: httpx.AsyncClient) -> BaseProviderAdapter:
    spec = get_provider_spec(provider_id)
    return ADAPTERS[spec.family](client)


async def invoke(
    provider_id: str,
    config: ProviderConfig,
    conversation: Conversation,
    *,
    client: httpx.AsyncClient,
) -> httpx.Response:
    """Send one streaming request to ``provider_id`` and return the open response.

    Raises ``ConfigurationError`` for an unknown provider or a missing key
    (nothing is sent), ``NetworkError`` if the provider cannot be reached.
    """
    adapter = get_adapter(provider_id, client)
    return await adapter.invoke(provider_id, config, conversation)
