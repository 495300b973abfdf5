import logging
from collections.abc import AsyncIterator, Sequence
from typing import Optional

import httpx

from pagechat.config import Settings
from pagechat.errors import ConfigurationError
from pagechat.models.domain_models import Conversation, HistoryItem, PageContext
from pagechat.models.schemas import ProviderConfig
from pagechat.services.config_store import ConfigStore
from pagechat.services.prompt_builder import build_conversation
from pagechat.services.providers.dispatch import invoke
from pagechat.services.stream_normalizer import NormalizedEvent, StreamNormalizer

logger = logging.getLogger(__name__)


class LLMRouter:
    """Routes a page question to the selected provider and normalizes its answer."""

    def __init__(self, settings: Settings, store: ConfigStore, client: httpx.AsyncClient):
        self._settings = settings
        self._store = store
        self._client = client

    def resolve(self, provider_id: Optional[str] = None) -> tuple[str, ProviderConfig]:
        """Pick the requested (or active) provider and snapshot its config."""
        provider_id = provider_id or self._store.active_provider
        config = self._store.snapshot(provider_id)
        if not config.enabled:
            raise ConfigurationError(f"Provider '{provider_id}' is disabled")
        return provider_id, config

    def build_conversation(
        self,
        config: ProviderConfig,
        page: PageContext,
        question: str,
        history: Sequence[HistoryItem] = (),
    ) -> Conversation:
        features = self._store.features
        max_history = features.max_history_length if features.enable_history else 0
        return build_conversation(config.system_prompt, page, question, history, max_history)

    async def open_stream(
        self,
        provider_id: str,
        config: ProviderConfig,
        conversation: Conversation,
    ) -> StreamNormalizer:
        """Send the request and return the event stream for its response.

        Configuration and transport failures are raised here, before any
        event exists. Everything after that arrives as events.
        """
        response = await invoke(provider_id, config, conversation, client=self._client)
        logger.info(
            f"Streaming response from {provider_id} ({config.model}), "
            f"status {response.status_code}"
        )
        return StreamNormalizer(
            provider_id,
            response,
            failure_limit=self._settings.decode_failure_limit or None,
        )

    async def stream_chat(
        self,
        page: PageContext,
        question: str,
        history: Sequence[HistoryItem] = (),
        provider_id: Optional[str] = None,
    ) -> AsyncIterator[NormalizedEvent]:
        provider_id, config = self.resolve(provider_id)
        conversation = self.build_conversation(config, page, question, history)
        stream = await self.open_stream(provider_id, config, conversation)
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()
