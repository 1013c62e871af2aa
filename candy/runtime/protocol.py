from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .llm.types import ProviderKind


class ChatEventType(StrEnum):
    TEXT = "text"
    FUNCTION_CALL = "function_call"
    FUNCTION_RESULT = "function_result"
    ERROR = "error"
    DONE = "done"
    CONTINUATION = "continuation"
    # A failed attempt is being retried; `data.discardChars` of streamed text belong to it.
    RETRY = "retry"


@dataclass(frozen=True, slots=True)
class ChatEvent:
    """
    Outward-facing event. `to_dict()` is the wire shape consumed by the UI layer:
    `{type, data, callId, name}` with absent keys omitted.
    """

    type: ChatEventType
    data: Any = None
    call_id: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type.value}
        if self.data is not None:
            d["data"] = self.data
        if self.call_id is not None:
            d["callId"] = self.call_id
        if self.name is not None:
            d["name"] = self.name
        return d


class ContextMode(StrEnum):
    FULL = "full"
    SMART = "smart"
    MINIMAL = "minimal"


class LicenseTier(StrEnum):
    FREE = "free"
    STANDARD = "standard"
    PRO = "pro"


class ContextFile(BaseModel):
    path: str
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class HistoryMessage(BaseModel):
    role: str
    content: str = ""

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str) -> str:
        role = v.strip().lower()
        if role not in {"user", "assistant"}:
            raise ValueError(f"Unsupported history role: {v!r}")
        return role


class ChatContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    files: list[ContextFile] = Field(default_factory=list)
    images: list[Any] = Field(default_factory=list)
    project: str | None = None
    context_mode: ContextMode | None = Field(default=None, alias="contextMode")


class ChatRequest(BaseModel):
    """Unified chat request accepted by the orchestrator (camelCase aliases accepted)."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    provider: ProviderKind
    api_key: str | None = Field(default=None, alias="apiKey")
    model: str | None = None
    context: ChatContext = Field(default_factory=ChatContext)
    conversation_history: list[HistoryMessage] = Field(default_factory=list, alias="conversationHistory")
    license_tier: str | None = Field(default=None, alias="licenseTier")

    @field_validator("api_key", "model")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        cleaned = v.strip()
        return cleaned or None
