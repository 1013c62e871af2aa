from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .llm.types import ProviderKind

DEFAULT_BASE_URLS: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "https://api.openai.com/v1/",
    ProviderKind.GROQ: "https://api.groq.com/openai/v1/",
    ProviderKind.GROK: "https://api.x.ai/v1/",
    ProviderKind.MOONSHOT: "https://api.moonshot.cn/v1/",
    ProviderKind.GEMINI: "https://generativelanguage.googleapis.com/v1beta/",
    ProviderKind.ANTHROPIC: "https://api.anthropic.com/v1/",
    ProviderKind.OLLAMA: "http://localhost:11434/",
}

DEFAULT_MODELS: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "gpt-4o",
    ProviderKind.GROQ: "llama-3.3-70b-versatile",
    ProviderKind.GROK: "grok-2-latest",
    ProviderKind.MOONSHOT: "moonshot-v1-128k",
    ProviderKind.GEMINI: "gemini-2.5-flash",
    ProviderKind.ANTHROPIC: "claude-3-5-sonnet-latest",
    ProviderKind.OLLAMA: "llama3.1",
}


class AgentSettings(BaseSettings):
    """Runtime knobs for the orchestration loop.

    Loads from `CANDY_*` environment variables and an optional `.env` file.
    """

    # Continuations / retries
    max_continuations: int = Field(default=10, ge=0, description="Fresh sessions allowed after context/timeout errors")
    max_request_attempts: int = Field(default=3, ge=1, description="Attempts per model request for transient errors")
    backoff_base_s: float = Field(default=2.0, ge=0, description="Base delay for exponential backoff")
    backoff_max_s: float = Field(default=65.0, ge=0, description="Upper bound for a single backoff delay")

    # Approval gate
    approval_wait_s: float = Field(default=300.0, ge=0, description="Ceiling for waiting on pending file approvals")
    approval_poll_s: float = Field(default=1.0, gt=0, description="Wake-up interval while waiting for approvals")

    request_timeout_s: float = Field(default=180.0, gt=0, description="Per-request HTTP timeout")

    # Context / continuation sizing
    context_token_budget: int = Field(default=1_000_000, ge=0, description="Token budget for assembled project context")
    last_file_preview_chars: int = Field(default=5000, ge=0, description="Chars of the last written file kept on resume")
    max_listed_files: int = Field(default=10, ge=0, description="Created files listed in a continuation prompt")
    history_keep_recent: int = Field(default=10, ge=0, description="History messages kept verbatim (remote providers)")
    history_keep_recent_local: int = Field(default=50, ge=0, description="History messages kept verbatim (ollama)")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    base_urls: dict[ProviderKind, str] = Field(default_factory=lambda: dict(DEFAULT_BASE_URLS))
    default_models: dict[ProviderKind, str] = Field(default_factory=lambda: dict(DEFAULT_MODELS))

    model_config = SettingsConfigDict(
        env_prefix="CANDY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        value = v.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v!r}")
        return value

    @field_validator("base_urls")
    @classmethod
    def merge_base_urls(cls, v: dict[ProviderKind, str]) -> dict[ProviderKind, str]:
        merged = dict(DEFAULT_BASE_URLS)
        for kind, url in v.items():
            if not isinstance(url, str) or not url.strip():
                raise ValueError(f"Empty base URL for {kind}")
            merged[kind] = url.strip().rstrip("/") + "/"
        return merged

    @field_validator("default_models")
    @classmethod
    def merge_default_models(cls, v: dict[ProviderKind, str]) -> dict[ProviderKind, str]:
        merged = dict(DEFAULT_MODELS)
        merged.update({k: m for k, m in v.items() if isinstance(m, str) and m.strip()})
        return merged

    def base_url_for(self, kind: ProviderKind) -> str:
        return self.base_urls[kind]

    def default_model_for(self, kind: ProviderKind) -> str:
        return self.default_models[kind]

    def history_keep_for(self, kind: ProviderKind) -> int:
        return self.history_keep_recent_local if kind is ProviderKind.OLLAMA else self.history_keep_recent


@lru_cache
def get_settings() -> AgentSettings:
    """Get the cached settings instance (validated once per process)."""
    return AgentSettings()
