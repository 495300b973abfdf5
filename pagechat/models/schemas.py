from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant analyzing web content. Be concise but thorough. "
    "Format your responses with markdown when appropriate."
)


# --- Provider configuration ---
class ProviderConfig(BaseModel):
    """Snapshot of one provider's settings. Read-only for the life of a request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    base_url: str
    api_key: str = ""
    model: str
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    enabled: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class FeaturesConfig(BaseModel):
    enable_history: bool = True
    max_history_length: int = Field(default=6, ge=0)


class LLMConfig(BaseModel):
    active_provider: str = "lmstudio"
    providers: dict[str, ProviderConfig]
    features: FeaturesConfig = FeaturesConfig()


# --- Chat ---
class HistoryEntry(BaseModel):
    type: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    title: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1, max_length=6_000_000)
    question: str = Field(..., min_length=1, max_length=50000)
    history: list[HistoryEntry] = []
    provider: Optional[str] = None


# --- Config endpoints ---
class ConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    active_provider: Optional[str] = None
    provider: Optional[str] = None


class ConfigUpdateResponse(BaseModel):
    success: bool = True
    active_provider: str


class ResetResponse(BaseModel):
    success: bool = True
    message: str = "Configuration reset to defaults"


# --- Providers ---
ProviderStatusType = Literal["local", "configured", "needs-key"]


class ProviderStatus(BaseModel):
    model: str
    temperature: float
    has_api_key: bool
    enabled: bool
    status: ProviderStatusType


class ProviderStatusResponse(BaseModel):
    active: str
    available: list[str]
    providers: dict[str, ProviderStatus]


# --- Health ---
class HealthResponse(BaseModel):
    status: Literal["ok", "error"] = "ok"
    timestamp: str
    active_provider: str
    provider_status: Literal[
        "healthy", "configured", "needs-key", "unreachable", "unknown", "error"
    ] = "unknown"
    version: str = "0.1.0"
