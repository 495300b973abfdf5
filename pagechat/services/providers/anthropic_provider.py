import httpx

from pagechat.models.domain_models import Conversation
from pagechat.models.schemas import ProviderConfig
from pagechat.services.providers.base import BaseProviderAdapter, ProviderFamily

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(BaseProviderAdapter):
    family = ProviderFamily.ANTHROPIC

    def build_request(
        self, config: ProviderConfig, conversation: Conversation
    ) -> httpx.Request:
        # Anthropic takes the system prompt as a top-level field, not a message
        system_msg = ""
        chat_messages = []
        for m in conversation:
            if m.role == "system":
                system_msg = (system_msg + "\n" + m.content).strip()
            else:
                chat_messages.append(m.to_dict())

        body = {
            "model": config.model,
            "messages": chat_messages,
            "system": system_msg or config.system_prompt,
            "stream": True,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        return self._client.build_request(
            "POST",
            f"{config.base_url}/messages",
            json=body,
            headers={
                "Content-Type": "application/json",
                "x-api-key": config.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )
