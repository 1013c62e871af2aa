from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ProviderKind(StrEnum):
    OPENAI = "openai"
    GROQ = "groq"
    GROK = "grok"
    MOONSHOT = "moonshot"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


# Vendors that speak the OpenAI chat-completions SSE dialect.
OPENAI_COMPATIBLE_KINDS: frozenset[ProviderKind] = frozenset(
    {ProviderKind.OPENAI, ProviderKind.GROQ, ProviderKind.GROK, ProviderKind.MOONSHOT}
)


class CanonicalMessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class ToolCall:
    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw_arguments: str | None = None
    parse_error: str | None = None
    thought_signature: str | None = None
    status: ToolCallStatus = ToolCallStatus.PENDING


@dataclass(frozen=True, slots=True)
class ToolResult:
    call_id: str
    name: str
    response: Any
    is_error: bool = False

    def content_text(self) -> str:
        if isinstance(self.response, str):
            return self.response
        return json.dumps(self.response, ensure_ascii=False, default=str)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]

    @property
    def required(self) -> list[str]:
        req = self.input_schema.get("required")
        return [r for r in req if isinstance(r, str)] if isinstance(req, list) else []


@dataclass(frozen=True, slots=True)
class CanonicalMessage:
    role: CanonicalMessageRole
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    tool_name: str | None = None


@dataclass(frozen=True, slots=True)
class CanonicalRequest:
    model: str
    system: str | None
    messages: list[CanonicalMessage]
    tools: list[ToolSpec] = field(default_factory=list)
    api_key: str | None = None
    params: dict[str, Any] = field(default_factory=dict)


class StreamEventKind(StrEnum):
    TEXT_DELTA = "text_delta"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_END = "tool_call_end"
    FINISH = "finish"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    kind: StreamEventKind
    text: str | None = None
    index: int | None = None
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None
    tool_call: ToolCall | None = None
    finish_reason: str | None = None
    error: str | None = None

    @staticmethod
    def text_delta(text: str) -> "StreamEvent":
        return StreamEvent(kind=StreamEventKind.TEXT_DELTA, text=text)

    @staticmethod
    def finish(reason: str | None) -> "StreamEvent":
        return StreamEvent(kind=StreamEventKind.FINISH, finish_reason=reason)
