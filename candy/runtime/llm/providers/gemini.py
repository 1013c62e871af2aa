from __future__ import annotations

import json
from typing import Any

import httpx

from ...ids import new_tool_call_id
from ..decoders import BracketJsonDecoder, StreamDecoder, error_text
from ..errors import ProviderAdapterError
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

_RESERVED_KEYS = {"contents", "tools", "model", "systemInstruction", "toolConfig"}


def _function_call_part(*, name: str, args: dict[str, Any], thought_signature: str | None) -> dict[str, Any]:
    part: dict[str, Any] = {"functionCall": {"name": name, "args": args}}
    if thought_signature:
        part["thoughtSignature"] = thought_signature
    return part


def _tool_message_to_part(msg: CanonicalMessage) -> dict[str, Any]:
    try:
        parsed: Any = json.loads(msg.content)
    except json.JSONDecodeError:
        parsed = {"content": msg.content}
    if not isinstance(parsed, dict):
        parsed = {"result": parsed}
    return {"functionResponse": {"name": msg.tool_name or "tool", "response": parsed}}


def _message_to_content(msg: CanonicalMessage) -> dict[str, Any] | None:
    parts: list[dict[str, Any]] = []
    if msg.content:
        parts.append({"text": msg.content})
    if msg.role is CanonicalMessageRole.ASSISTANT:
        for tc in msg.tool_calls:
            parts.append(_function_call_part(name=tc.name, args=dict(tc.arguments), thought_signature=tc.thought_signature))
    if not parts:
        return None
    role = "model" if msg.role is CanonicalMessageRole.ASSISTANT else "user"
    return {"role": role, "parts": parts}


class GeminiStreamDecoder(BracketJsonDecoder):
    """
    `streamGenerateContent` without `alt=sse` returns one JSON array written incrementally:
    `[{...},\\r\\n{...}]`. Each element is a complete response chunk.
    """

    def __init__(self) -> None:
        super().__init__()
        self._finish_reason: str | None = None
        self._finished = False

    def on_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        err = error_text(obj)
        if err is not None:
            return [StreamEvent(kind=StreamEventKind.ERROR, error=err)]

        candidates = obj.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return []
        cand0 = candidates[0]

        events: list[StreamEvent] = []
        content = cand0.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if isinstance(text, str) and text and part.get("thought") is not True:
                events.append(StreamEvent.text_delta(text))
            fc = part.get("functionCall")
            if isinstance(fc, dict):
                events.extend(self._on_function_call(part, fc))

        finish = cand0.get("finishReason")
        if isinstance(finish, str) and finish:
            self._finish_reason = finish
        return events

    def _on_function_call(self, part: dict[str, Any], fc: dict[str, Any]) -> list[StreamEvent]:
        name = fc.get("name")
        if not isinstance(name, str) or not name:
            return []
        args = fc.get("args")
        sig = part.get("thoughtSignature") or part.get("thought_signature")
        call = ToolCall(
            call_id=new_tool_call_id(),
            name=name,
            arguments=dict(args) if isinstance(args, dict) else {},
            raw_arguments=json.dumps(args if isinstance(args, dict) else {}, ensure_ascii=False),
            thought_signature=sig if isinstance(sig, str) and sig else None,
        )
        # Gemini delivers a call whole; start and end arrive together.
        return [
            StreamEvent(kind=StreamEventKind.TOOL_CALL_START, call_id=call.call_id, name=call.name),
            StreamEvent(kind=StreamEventKind.TOOL_CALL_END, call_id=call.call_id, name=call.name, tool_call=call),
        ]

    def on_end(self) -> list[StreamEvent]:
        if self._finished:
            return []
        self._finished = True
        return [StreamEvent.finish(self._finish_reason or "STOP")]


class GeminiAdapter(ProviderAdapter):
    """
    Gemini `v1beta/models/{model}:streamGenerateContent`.

    Function responses for one model turn are grouped into a single `user` content entry so
    the count and order match the preceding `functionCall` parts.
    """

    display_name = "Gemini"

    def __init__(self, *, base_url: str) -> None:
        super().__init__(kind=ProviderKind.GEMINI, base_url=base_url)

    def new_decoder(self) -> StreamDecoder:
        return GeminiStreamDecoder()

    def prepare_request(self, request: CanonicalRequest) -> PreparedRequest:
        if not request.api_key:
            raise ProviderAdapterError("Missing API key for gemini.")

        contents: list[dict[str, Any]] = []
        pending_tool_parts: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role is CanonicalMessageRole.TOOL:
                pending_tool_parts.append(_tool_message_to_part(msg))
                continue
            if pending_tool_parts:
                contents.append({"role": "user", "parts": list(pending_tool_parts)})
                pending_tool_parts.clear()
            content = _message_to_content(msg)
            if content is not None:
                contents.append(content)
        if pending_tool_parts:
            contents.append({"role": "user", "parts": list(pending_tool_parts)})

        payload: dict[str, Any] = {k: v for k, v in request.params.items() if k not in _RESERVED_KEYS}
        payload["contents"] = contents
        if request.system:
            payload["systemInstruction"] = {"parts": [{"text": request.system}]}
        if request.tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {"name": t.name, "description": t.description, "parameters": t.input_schema}
                        for t in request.tools
                    ]
                }
            ]
            payload["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}

        url = build_stream_url(base_url=self.base_url, model_name=request.model, api_key=request.api_key)
        return PreparedRequest(method="POST", url=url, headers={"Content-Type": "application/json"}, json=payload)


def build_stream_url(*, base_url: str, model_name: str, api_key: str) -> str:
    if not model_name:
        raise ProviderAdapterError("gemini model name is empty.")
    if ":streamGenerateContent" in base_url:
        url = base_url.rstrip("/")
    else:
        url = base_url.rstrip("/") + f"/models/{model_name}:streamGenerateContent"
    return str(httpx.URL(url).copy_set_param("key", api_key))
