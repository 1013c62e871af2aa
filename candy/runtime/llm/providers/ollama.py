from __future__ import annotations

import json
from typing import Any

from ...ids import new_tool_call_id
from ..decoders import BracketJsonDecoder, StreamDecoder, error_text
from ..types import (
    CanonicalMessage,
    CanonicalMessageRole,
    CanonicalRequest,
    ProviderKind,
    StreamEvent,
    StreamEventKind,
    ToolCall,
)
from .base import PreparedRequest, ProviderAdapter

_RESERVED_KEYS = {"model", "messages", "tools", "stream"}


def _message_to_ollama(msg: CanonicalMessage) -> dict[str, Any]:
    out: dict[str, Any] = {"role": msg.role.value, "content": msg.content}
    if msg.role is CanonicalMessageRole.ASSISTANT and msg.tool_calls:
        out["tool_calls"] = [{"function": {"name": tc.name, "arguments": dict(tc.arguments)}} for tc in msg.tool_calls]
    if msg.role is CanonicalMessageRole.TOOL and msg.tool_name:
        out["tool_name"] = msg.tool_name
    return out


class OllamaStreamDecoder(BracketJsonDecoder):
    """Ollama `/api/chat` streams one JSON object per line, ending with `"done": true`."""

    def __init__(self) -> None:
        super().__init__()
        self._finished = False

    def on_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        err = error_text(obj)
        if err is not None:
            return [StreamEvent(kind=StreamEventKind.ERROR, error=err)]

        events: list[StreamEvent] = []
        message = obj.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str) and content:
                events.append(StreamEvent.text_delta(content))
            tool_calls = message.get("tool_calls")
            for tc in tool_calls if isinstance(tool_calls, list) else []:
                fn = tc.get("function") if isinstance(tc, dict) else None
                if isinstance(fn, dict):
                    events.extend(self._on_function(fn))

        if obj.get("done") is True and not self._finished:
            self._finished = True
            reason = obj.get("done_reason")
            events.append(StreamEvent.finish(reason if isinstance(reason, str) and reason else "stop"))
        return events

    def _on_function(self, fn: dict[str, Any]) -> list[StreamEvent]:
        name = fn.get("name")
        if not isinstance(name, str) or not name:
            return []
        args = fn.get("arguments")
        if isinstance(args, str):
            # Some models emit the arguments object serialized.
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                args = None
        if not isinstance(args, dict):
            call = ToolCall(
                call_id=new_tool_call_id(),
                name=name,
                raw_arguments=str(fn.get("arguments")),
                parse_error="Tool call arguments must be a JSON object.",
            )
        else:
            call = ToolCall(
                call_id=new_tool_call_id(),
                name=name,
                arguments=args,
                raw_arguments=json.dumps(args, ensure_ascii=False),
            )
        return [
            StreamEvent(kind=StreamEventKind.TOOL_CALL_START, call_id=call.call_id, name=call.name),
            StreamEvent(kind=StreamEventKind.TOOL_CALL_END, call_id=call.call_id, name=call.name, tool_call=call),
        ]

    def on_end(self) -> list[StreamEvent]:
        if self._finished:
            return []
        self._finished = True
        return [StreamEvent.finish("stop")]


class OllamaAdapter(ProviderAdapter):
    """Local Ollama server (`POST {base}api/chat`), no credentials."""

    display_name = "Ollama"
    requires_api_key = False

    def __init__(self, *, base_url: str) -> None:
        super().__init__(kind=ProviderKind.OLLAMA, base_url=base_url)

    def new_decoder(self) -> StreamDecoder:
        return OllamaStreamDecoder()

    def prepare_request(self, request: CanonicalRequest) -> PreparedRequest:
        messages: list[dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(_message_to_ollama(m) for m in request.messages)

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
        return PreparedRequest(
            method="POST",
            url=self.base_url + "api/chat",
            headers={"Content-Type": "application/json"},
            json=payload,
        )
