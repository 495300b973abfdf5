"""Persisted provider configuration.

The store is the only place that mutates configuration. Chat requests never
see it directly: they get an immutable ``ProviderConfig`` snapshot through
``snapshot()``. API keys left empty in the file fall back to the keys in the
environment (``Settings``), and those are never written back to disk.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from pagechat.config import Settings
from pagechat.errors import ConfigurationError
from pagechat.models.schemas import (
    FeaturesConfig,
    LLMConfig,
    ProviderConfig,
    ProviderStatus,
    ProviderStatusResponse,
)

logger = logging.getLogger(__name__)

LOCAL_PROVIDERS = {"lmstudio"}


def default_config() -> LLMConfig:
    return LLMConfig(
        active_provider="lmstudio",
        providers={
            "lmstudio": ProviderConfig(
                name="LM Studio",
                base_url="http://localhost:1234/v1",
                model="auto",
            ),
            "openai": ProviderConfig(
                name="OpenAI",
                base_url="https://api.openai.com/v1",
                model="gpt-4o-mini",
            ),
            "anthropic": ProviderConfig(
                name="Anthropic Claude",
                base_url="https://api.anthropic.com/v1",
                model="claude-3-haiku-20240307",
            ),
            "gemini": ProviderConfig(
                name="Google Gemini",
                base_url="https://generativelanguage.googleapis.com/v1beta",
                model="gemini-1.5-flash",
            ),
        },
        features=FeaturesConfig(),
    )


class ConfigStore:
    def __init__(self, path: str | Path, settings: Optional[Settings] = None):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._env_keys: dict[str, str] = {}
        if settings is not None:
            self._env_keys = {
                "openai": settings.openai_api_key.get_secret_value(),
                "anthropic": settings.anthropic_api_key.get_secret_value(),
                "gemini": settings.gemini_api_key.get_secret_value(),
            }
        self.config = self._load()

    # --- Persistence ---

    def _load(self) -> LLMConfig:
        defaults = default_config()
        try:
            if not self._path.exists():
                self._save(defaults)
                return defaults
            with open(self._path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return self._merge(defaults, data)
        except (OSError, yaml.YAMLError, ValidationError, AttributeError, TypeError) as e:
            logger.error("Error loading config from %s, using defaults: %s", self._path, e)
            return defaults

    @staticmethod
    def _merge(defaults: LLMConfig, data: dict[str, Any]) -> LLMConfig:
        """Overlay a config file on the defaults, provider by provider."""
        merged = defaults.model_dump()
        for name, provider in (data.get("providers") or {}).items():
            merged["providers"][name] = {**merged["providers"].get(name, {}), **provider}
        merged["features"].update(data.get("features") or {})
        active = data.get("active_provider")
        if active in merged["providers"]:
            merged["active_provider"] = active
        elif active:
            logger.warning(
                "Unknown active provider %r in config, keeping %s",
                active, defaults.active_provider,
            )
        return LLMConfig.model_validate(merged)

    def _save(self, config: LLMConfig) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                yaml.safe_dump(config.model_dump(), f, sort_keys=False)
        except OSError as e:
            logger.error("Error saving config to %s: %s", self._path, e)

    # --- Reads ---

    @property
    def active_provider(self) -> str:
        return self.config.active_provider

    @property
    def features(self) -> FeaturesConfig:
        return self.config.features

    def _api_key(self, provider_id: str, provider: ProviderConfig) -> str:
        return provider.api_key or self._env_keys.get(provider_id, "")

    def snapshot(self, provider_id: str) -> ProviderConfig:
        """Immutable view of one provider, with the environment key filled in."""
        provider = self.config.providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(f"Unknown provider: {provider_id}")
        key = self._api_key(provider_id, provider)
        if key != provider.api_key:
            provider = provider.model_copy(update={"api_key": key})
        return provider

    def get_active_provider(self) -> ProviderConfig:
        return self.snapshot(self.config.active_provider)

    def safe_config(self) -> dict:
        """Config for display, with API keys masked."""
        data = self.config.model_dump()
        for name, provider in self.config.providers.items():
            data["providers"][name]["api_key"] = "***" if self._api_key(name, provider) else ""
        return data

    def provider_status(self) -> ProviderStatusResponse:
        providers = {}
        for name, provider in self.config.providers.items():
            has_key = bool(self._api_key(name, provider))
            if name in LOCAL_PROVIDERS:
                status = "local"
            else:
                status = "configured" if has_key else "needs-key"
            providers[name] = ProviderStatus(
                model=provider.model,
                temperature=provider.temperature,
                has_api_key=has_key,
                enabled=provider.enabled,
                status=status,
            )
        return ProviderStatusResponse(
            active=self.config.active_provider,
            available=list(self.config.providers),
            providers=providers,
        )

    # --- Writes ---

    def set_active_provider(self, provider_id: str) -> bool:
        with self._lock:
            if provider_id not in self.config.providers:
                return False
            self.config = self.config.model_copy(update={"active_provider": provider_id})
            self._save(self.config)
        logger.info("Active provider set to %s", provider_id)
        return True

    def update_provider(self, provider_id: str, settings: dict[str, Any]) -> bool:
        """Merge ``settings`` into one provider.

        Raises ``ValidationError`` on bad values or unknown keys.
        """
        # A masked key echoed back from safe_config() keeps the stored one
        if settings.get("api_key") == "***":
            settings = {k: v for k, v in settings.items() if k != "api_key"}
        with self._lock:
            current = self.config.providers.get(provider_id)
            if current is None:
                return False
            updated = ProviderConfig.model_validate({**current.model_dump(), **settings})
            providers = {**self.config.providers, provider_id: updated}
            self.config = self.config.model_copy(update={"providers": providers})
            self._save(self.config)
        logger.info("Updated provider %s: %s", provider_id, sorted(settings))
        return True

    def reset_to_defaults(self) -> None:
        with self._lock:
            self.config = default_config()
            self._save(self.config)
        logger.info("Configuration reset to defaults")
