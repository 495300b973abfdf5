from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Keys (seed the provider defaults of a fresh config file)
    openai_api_key: SecretStr = SecretStr("")
    anthropic_api_key: SecretStr = SecretStr("")
    gemini_api_key: SecretStr = SecretStr("")

    # Provider configuration store
    config_path: str = "./config/llm-config.yaml"

    # Server
    host: str = "127.0.0.1"
    port: int = 4000
    log_level: str = "INFO"
    allowed_origins: str = "*"

    # Outbound transport
    request_timeout: float = 120.0
    connect_timeout: float = 10.0

    # Consecutive malformed records tolerated before a stream is failed.
    # 0 disables escalation.
    decode_failure_limit: int = Field(default=5, ge=0)

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
