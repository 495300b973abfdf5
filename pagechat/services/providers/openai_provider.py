import httpx

from pagechat.models.domain_models import Conversation
from pagechat.models.schemas import ProviderConfig
from pagechat.services.providers.base import BaseProviderAdapter, ProviderFamily


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Chat Completions and compatible local servers (LM Studio)."""

    family = ProviderFamily.OPENAI

    def build_request(
        self, config: ProviderConfig, conversation: Conversation
    ) -> httpx.Request:
        headers = {"Content-Type": "application/json"}
        # Local servers run without auth
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        body = {
            "model": config.model,
            "messages": [m.to_dict() for m in conversation],
            "stream": True,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        return self._client.build_request(
            "POST",
            f"{config.base_url}/chat/completions",
            json=body,
            headers=headers,
        )
