from __future__ import annotations

from typing import Any

from ..decoders import ContentBlockDecoder, StreamDecoder
from ..errors import ProviderAdapterError
from ..types import CanonicalMessage, CanonicalMessageRole, CanonicalRequest, ProviderKind
from .base import PreparedRequest, ProviderAdapter

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096

_RESERVED_KEYS = {"model", "messages", "tools", "stream", "system"}


def _message_blocks(msg: CanonicalMessage) -> list[dict[str, Any]]:
    if msg.role is CanonicalMessageRole.TOOL:
        return [{"type": "tool_result", "tool_use_id": msg.tool_call_id or "", "content": msg.content}]
    blocks: list[dict[str, Any]] = []
    if msg.content:
        blocks.append({"type": "text", "text": msg.content})
    if msg.role is CanonicalMessageRole.ASSISTANT:
        for tc in msg.tool_calls:
            blocks.append({"type": "tool_use", "id": tc.call_id, "name": tc.name, "input": dict(tc.arguments)})
    return blocks


class AnthropicAdapter(ProviderAdapter):
    """
    Anthropic Messages API (`POST {base}messages`, `stream: true`).

    Consecutive tool results are merged into one `user` turn, mirroring how the preceding
    assistant turn carried all of its `tool_use` blocks together.
    """

    display_name = "Anthropic"

    def __init__(self, *, base_url: str) -> None:
        super().__init__(kind=ProviderKind.ANTHROPIC, base_url=base_url)

    def new_decoder(self) -> StreamDecoder:
        return ContentBlockDecoder()

    def prepare_request(self, request: CanonicalRequest) -> PreparedRequest:
        if not request.api_key:
            raise ProviderAdapterError("Missing API key for anthropic.")

        messages: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role is CanonicalMessageRole.SYSTEM:
                continue
            role = "assistant" if msg.role is CanonicalMessageRole.ASSISTANT else "user"
            blocks = _message_blocks(msg)
            if not blocks:
                continue
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].extend(blocks)
            else:
                messages.append({"role": role, "content": blocks})

        payload: dict[str, Any] = {k: v for k, v in request.params.items() if k not in _RESERVED_KEYS}
        payload.setdefault("max_tokens", DEFAULT_MAX_TOKENS)
        payload["model"] = request.model
        payload["messages"] = messages
        payload["stream"] = True
        if request.system:
            payload["system"] = request.system
        if request.tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema} for t in request.tools
            ]

        headers = {
            "Content-Type": "application/json",
            "x-api-key": request.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        return PreparedRequest(method="POST", url=self.base_url + "messages", headers=headers, json=payload)
