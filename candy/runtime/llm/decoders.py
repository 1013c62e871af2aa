from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..ids import new_tool_call_id
from .sse import SseFrame, SseLineBuffer
from .types import StreamEvent, StreamEventKind, ToolCall


class StreamDecoder(Protocol):
    """
    Turns arbitrarily chunked response bytes into ordered unified events.

    Decoders never raise on malformed input: incomplete units stay buffered until the next
    `feed()`, and complete-but-unparsable units are dropped.
    """

    def feed(self, chunk: bytes) -> list[StreamEvent]: ...

    def close(self) -> list[StreamEvent]: ...


def finalize_tool_call(*, call_id: str | None, name: str, raw_arguments: str) -> ToolCall:
    raw = raw_arguments or ""
    cid = call_id or new_tool_call_id()
    if not raw.strip():
        return ToolCall(call_id=cid, name=name, arguments={}, raw_arguments=raw)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        return ToolCall(call_id=cid, name=name, arguments={}, raw_arguments=raw, parse_error=f"Invalid JSON arguments: {e}")
    if not isinstance(parsed, dict):
        return ToolCall(
            call_id=cid,
            name=name,
            arguments={},
            raw_arguments=raw,
            parse_error="Tool call arguments must be a JSON object.",
        )
    return ToolCall(call_id=cid, name=name, arguments=parsed, raw_arguments=raw)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def error_text(obj: dict[str, Any]) -> str | None:
    err = obj.get("error")
    if isinstance(err, dict):
        msg = err.get("message")
        return msg if isinstance(msg, str) and msg else json.dumps(err, ensure_ascii=False)
    if isinstance(err, str) and err:
        return err
    return None


@dataclass(slots=True)
class _PartialCall:
    call_id: str | None = None
    name: str = ""
    arguments: list[str] = field(default_factory=list)
    started: bool = False


class DeltaIndexedDecoder:
    """
    OpenAI chat-completions SSE (`data: {...}` lines, `data: [DONE]` terminator).

    Tool-call fragments are keyed by `delta.tool_calls[].index`; `id` and `name` usually
    arrive once, `function.arguments` arrives in pieces. Calls only complete when a
    `finish_reason` (or `[DONE]`) is seen.
    """

    def __init__(self) -> None:
        self._sse = SseLineBuffer()
        self._calls: dict[int, _PartialCall] = {}
        self._finished = False

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        return self._on_frames(self._sse.feed(chunk))

    def close(self) -> list[StreamEvent]:
        return self._on_frames(self._sse.close())

    def _on_frames(self, frames: list[SseFrame]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for frame in frames:
            events.extend(self._on_frame(frame))
        return events

    def _on_frame(self, frame: SseFrame) -> list[StreamEvent]:
        if frame.is_done:
            return self._complete("stop")

        data = _loads_object(frame.data)
        if data is None:
            return []

        err = error_text(data)
        if err is not None:
            return [StreamEvent(kind=StreamEventKind.ERROR, error=err)]

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]

        events: list[StreamEvent] = []
        delta = choice.get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                events.append(StreamEvent.text_delta(content))
            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list):
                for frag in tool_calls:
                    if isinstance(frag, dict):
                        events.extend(self._on_tool_fragment(frag))

        finish = choice.get("finish_reason")
        if isinstance(finish, str) and finish:
            events.extend(self._complete(finish))
        return events

    def _on_tool_fragment(self, frag: dict[str, Any]) -> list[StreamEvent]:
        index = frag.get("index")
        if not isinstance(index, int):
            index = 0
        rec = self._calls.setdefault(index, _PartialCall())

        call_id = frag.get("id")
        if isinstance(call_id, str) and call_id:
            rec.call_id = call_id

        events: list[StreamEvent] = []
        fn = frag.get("function")
        if isinstance(fn, dict):
            name = fn.get("name")
            if isinstance(name, str) and name:
                rec.name = name
            if rec.name and not rec.started:
                rec.started = True
                events.append(
                    StreamEvent(kind=StreamEventKind.TOOL_CALL_START, index=index, call_id=rec.call_id, name=rec.name)
                )
            args = fn.get("arguments")
            if isinstance(args, str) and args:
                rec.arguments.append(args)
                events.append(
                    StreamEvent(
                        kind=StreamEventKind.TOOL_CALL_DELTA,
                        index=index,
                        call_id=rec.call_id,
                        name=rec.name or None,
                        arguments_delta=args,
                    )
                )
        return events

    def _complete(self, reason: str) -> list[StreamEvent]:
        if self._finished:
            return []
        self._finished = True
        events: list[StreamEvent] = []
        for index in sorted(self._calls):
            rec = self._calls[index]
            if not rec.name:
                continue
            call = finalize_tool_call(call_id=rec.call_id, name=rec.name, raw_arguments="".join(rec.arguments))
            events.append(
                StreamEvent(kind=StreamEventKind.TOOL_CALL_END, index=index, call_id=call.call_id, name=call.name, tool_call=call)
            )
        self._calls.clear()
        events.append(StreamEvent.finish(reason))
        return events


class BracketJsonDecoder:
    """
    Raw concatenated JSON objects with no line framing (Gemini's streamed array,
    Ollama's newline-delimited JSON).

    Balanced `{...}` spans are located by tracking nesting depth character by character,
    ignoring braces inside string literals. Subclasses map each parsed object to events.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buf = ""
        self._pos = 0
        self._start: int | None = None
        self._depth = 0
        self._in_string = False
        self._escape = False

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        self._buf += self._decoder.decode(chunk)
        return self._on_objects(self._extract())

    def close(self) -> list[StreamEvent]:
        self._buf += self._decoder.decode(b"", final=True)
        events = self._on_objects(self._extract())
        events.extend(self.on_end())
        return events

    def _on_objects(self, objects: list[dict[str, Any]]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for obj in objects:
            events.extend(self.on_object(obj))
        return events

    def _extract(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        buf = self._buf
        i = self._pos
        while i < len(buf):
            ch = buf[i]
            if self._start is None:
                if ch == "{":
                    self._start = i
                    self._depth = 1
                    self._in_string = False
                    self._escape = False
                i += 1
                continue

            if self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
                if self._depth == 0:
                    obj = _loads_object(buf[self._start : i + 1])
                    if obj is not None:
                        out.append(obj)
                    self._start = None
            i += 1

        if self._start is None:
            self._buf = ""
            self._pos = 0
        else:
            self._buf = buf[self._start :]
            self._pos = i - self._start
            self._start = 0
        return out

    def on_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        raise NotImplementedError

    def on_end(self) -> list[StreamEvent]:
        return []


@dataclass(slots=True)
class _OpenBlock:
    kind: str
    call_id: str | None = None
    name: str = ""
    fragments: list[str] = field(default_factory=list)


class ContentBlockDecoder:
    """
    Anthropic Messages SSE: `content_block_start` / `content_block_delta` /
    `content_block_stop` per block index, then `message_delta` and `message_stop`.

    Tool-use input arrives as `input_json_delta.partial_json` fragments and is only parsed
    once its block closes.
    """

    def __init__(self) -> None:
        self._sse = SseLineBuffer()
        self._open: dict[int, _OpenBlock] = {}
        self._stop_reason: str | None = None
        self._finished = False

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        return self._on_frames(self._sse.feed(chunk))

    def close(self) -> list[StreamEvent]:
        return self._on_frames(self._sse.close())

    def _on_frames(self, frames: list[SseFrame]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for frame in frames:
            if frame.is_done:
                continue
            data = _loads_object(frame.data)
            if data is None:
                continue
            events.extend(self._on_event(data, fallback_type=frame.event))
        return events

    def _on_event(self, data: dict[str, Any], *, fallback_type: str | None) -> list[StreamEvent]:
        event_type = data.get("type") or fallback_type
        index = data.get("index")
        if not isinstance(index, int):
            index = 0

        if event_type == "content_block_start":
            block = data.get("content_block")
            if not isinstance(block, dict):
                return []
            kind = block.get("type")
            if kind == "tool_use":
                rec = _OpenBlock(
                    kind="tool_use",
                    call_id=block.get("id") if isinstance(block.get("id"), str) else None,
                    name=str(block.get("name") or ""),
                )
                self._open[index] = rec
                return [StreamEvent(kind=StreamEventKind.TOOL_CALL_START, index=index, call_id=rec.call_id, name=rec.name)]
            self._open[index] = _OpenBlock(kind="text")
            text = block.get("text")
            if isinstance(text, str) and text:
                return [StreamEvent.text_delta(text)]
            return []

        if event_type == "content_block_delta":
            delta = data.get("delta")
            if not isinstance(delta, dict):
                return []
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                text = delta.get("text")
                if isinstance(text, str) and text:
                    return [StreamEvent.text_delta(text)]
                return []
            if delta_type == "input_json_delta":
                rec = self._open.get(index)
                partial = delta.get("partial_json")
                if rec is None or rec.kind != "tool_use" or not isinstance(partial, str):
                    return []
                rec.fragments.append(partial)
                return [
                    StreamEvent(
                        kind=StreamEventKind.TOOL_CALL_DELTA,
                        index=index,
                        call_id=rec.call_id,
                        name=rec.name,
                        arguments_delta=partial,
                    )
                ]
            return []

        if event_type == "content_block_stop":
            rec = self._open.pop(index, None)
            if rec is None or rec.kind != "tool_use" or not rec.name:
                return []
            call = finalize_tool_call(call_id=rec.call_id, name=rec.name, raw_arguments="".join(rec.fragments))
            return [
                StreamEvent(kind=StreamEventKind.TOOL_CALL_END, index=index, call_id=call.call_id, name=call.name, tool_call=call)
            ]

        if event_type == "message_delta":
            delta = data.get("delta")
            if isinstance(delta, dict) and isinstance(delta.get("stop_reason"), str):
                self._stop_reason = delta["stop_reason"]
            return []

        if event_type == "message_stop":
            if self._finished:
                return []
            self._finished = True
            return [StreamEvent.finish(self._stop_reason or "end_turn")]

        if event_type == "error":
            return [StreamEvent(kind=StreamEventKind.ERROR, error=error_text(data) or "Provider stream error.")]

        return []
