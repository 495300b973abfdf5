"""Error types raised by the provider adapters and the chat service."""


class PageChatError(Exception):
    """Base for all pagechat errors."""


class ConfigurationError(PageChatError):
    """Provider cannot be called as configured (unknown provider, missing key).

    Raised before any network call is made and never retried.
    """


class NetworkError(PageChatError):
    """Provider could not be reached, or answered with a failure status."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
