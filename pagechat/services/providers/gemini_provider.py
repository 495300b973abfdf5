import httpx

from pagechat.models.domain_models import Conversation
from pagechat.models.schemas import ProviderConfig
from pagechat.services.providers.base import BaseProviderAdapter, ProviderFamily


class GeminiAdapter(BaseProviderAdapter):
    """Gemini ``streamGenerateContent``.

    The key travels in the query string. ``alt=sse`` switches the response
    from a streamed JSON array to ``data:`` records.
    """

    family = ProviderFamily.GEMINI

    def build_request(
        self, config: ProviderConfig, conversation: Conversation
    ) -> httpx.Request:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in conversation
        ]
        body = {
            "contents": contents,
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_tokens,
            },
        }
        return self._client.build_request(
            "POST",
            f"{config.base_url}/models/{config.model}:streamGenerateContent",
            params={"alt": "sse", "key": config.api_key},
            json=body,
            headers={"Content-Type": "application/json"},
        )
