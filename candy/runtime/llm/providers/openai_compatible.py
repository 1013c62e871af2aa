from __future__ import annotations

import json
from typing import Any

from ..decoders import DeltaIndexedDecoder, StreamDecoder
from ..errors import ProviderAdapterError
from ..types import OPENAI_COMPATIBLE_KINDS, CanonicalMessage, CanonicalMessageRole, CanonicalRequest, ProviderKind
from .base import PreparedRequest, ProviderAdapter

_DISPLAY_NAMES: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.GROQ: "Groq",
    ProviderKind.GROK: "Grok",
    ProviderKind.MOONSHOT: "Moonshot",
}

_RESERVED_KEYS = {"model", "messages", "tools", "stream", "tool_choice"}


def _message_to_openai(msg: CanonicalMessage) -> dict[str, Any]:
    if msg.role is CanonicalMessageRole.TOOL:
        return {"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.content}

    if msg.role is CanonicalMessageRole.ASSISTANT and msg.tool_calls:
        return {
            "role": "assistant",
            # Some gateways reject an empty string alongside tool_calls.
            "content": msg.content or None,
            "tool_calls": [
                {
                    "id": tc.call_id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": tc.raw_arguments if tc.parse_error else json.dumps(tc.arguments, ensure_ascii=False),
                    },
                }
                for tc in msg.tool_calls
            ],
        }

    return {"role": msg.role.value, "content": msg.content}


class OpenAICompatibleAdapter(ProviderAdapter):
    """
    OpenAI chat-completions dialect (`POST {base}chat/completions`, `stream: true`).

    Shared by every vendor in `OPENAI_COMPATIBLE_KINDS`; only the base URL and display name
    differ.
    """

    def __init__(self, *, kind: ProviderKind, base_url: str) -> None:
        if kind not in OPENAI_COMPATIBLE_KINDS:
            raise ProviderAdapterError(f"{kind} does not speak the chat-completions dialect.")
        super().__init__(kind=kind, base_url=base_url)
        self.display_name = _DISPLAY_NAMES[kind]

    def new_decoder(self) -> StreamDecoder:
        return DeltaIndexedDecoder()

    def prepare_request(self, request: CanonicalRequest) -> PreparedRequest:
        if not request.api_key:
            raise ProviderAdapterError(f"Missing API key for {self.kind}.")

        messages: list[dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(_message_to_openai(m) for m in request.messages)

        payload: dict[str, Any] = {k: v for k, v in request.params.items() if k not in _RESERVED_KEYS}
        payload["model"] = request.model
        payload["messages"] = messages
        payload["stream"] = True
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.input_schema},
                }
                for t in request.tools
            ]
            payload["tool_choice"] = "auto"

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {request.api_key}",
        }
        return PreparedRequest(method="POST", url=self.base_url + "chat/completions", headers=headers, json=payload)
