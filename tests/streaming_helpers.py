"""Byte-stream builders and a scripted httpx transport for provider/orchestrator tests."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

import httpx

Responder = Callable[[httpx.Request], httpx.Response]


def split_bytes(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)] or [b""]


def sse_body(*objects: dict[str, Any], done: bool = True) -> bytes:
    out = "".join(f"data: {json.dumps(o, ensure_ascii=False)}\n\n" for o in objects)
    if done:
        out += "data: [DONE]\n\n"
    return out.encode("utf-8")


def anthropic_body(*objects: dict[str, Any]) -> bytes:
    out = "".join(f"event: {o['type']}\ndata: {json.dumps(o, ensure_ascii=False)}\n\n" for o in objects)
    return out.encode("utf-8")


def ndjson_body(*objects: dict[str, Any]) -> bytes:
    return "".join(json.dumps(o, ensure_ascii=False) + "\n" for o in objects).encode("utf-8")


def openai_text_turn(text: str) -> bytes:
    return sse_body(
        {"choices": [{"index": 0, "delta": {"role": "assistant", "content": text}}]},
        {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
    )


def openai_tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> bytes:
    """One assistant turn issuing `calls` as (name, arguments); arguments arrive in two fragments."""
    frames: list[dict[str, Any]] = []
    if text:
        frames.append({"choices": [{"index": 0, "delta": {"content": text}}]})
    for index, (name, args) in enumerate(calls):
        raw = json.dumps(args)
        head, tail = raw[: len(raw) // 2], raw[len(raw) // 2 :]
        first = {
            "index": index,
            "id": f"call_{index}_{name}",
            "type": "function",
            "function": {"name": name, "arguments": head},
        }
        frames.append({"choices": [{"index": 0, "delta": {"tool_calls": [first]}}]})
        frames.append(
            {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": index, "function": {"arguments": tail}}]}}]}
        )
    frames.append({"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]})
    return sse_body(*frames)


def stream_response(body: bytes, *, status_code: int = 200, chunk_size: int = 7) -> httpx.Response:
    def _chunks() -> Iterator[bytes]:
        yield from split_bytes(body, chunk_size)

    return httpx.Response(status_code, content=_chunks())


def ok(body: bytes, *, chunk_size: int = 7) -> Responder:
    return lambda request: stream_response(body, chunk_size=chunk_size)


def fail(status_code: int, payload: Any, *, headers: dict[str, str] | None = None) -> Responder:
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return lambda request: httpx.Response(status_code, content=body.encode("utf-8"), headers=headers)


class ScriptedTransport:
    """
    Replays one responder per request, in order. The last responder repeats once the
    script runs out.
    """

    def __init__(self, responders: Iterable[Responder]) -> None:
        self._script = list(responders)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self._script[min(len(self.requests), len(self._script)) - 1]
        return step(request)

    def payload(self, n: int) -> dict[str, Any]:
        return json.loads(self.requests[n].content)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


def gemini_body(*objects: dict[str, Any]) -> bytes:
    return ("[" + ",\r\n".join(json.dumps(o, ensure_ascii=False) for o in objects) + "]").encode("utf-8")


def gemini_text_turn(text: str) -> bytes:
    return gemini_body(
        {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}]}
    )


def gemini_tool_turn(name: str, args: dict[str, Any]) -> bytes:
    part = {"functionCall": {"name": name, "args": args}}
    return gemini_body({"candidates": [{"content": {"role": "model", "parts": [part]}, "finishReason": "STOP"}]})


def anthropic_text_turn(text: str) -> bytes:
    return anthropic_body(
        {"type": "message_start", "message": {"id": "msg_t", "role": "assistant", "content": []}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
        {"type": "message_stop"},
    )


def anthropic_tool_turn(call_id: str, name: str, args: dict[str, Any]) -> bytes:
    raw = json.dumps(args)
    head, tail = raw[: len(raw) // 2], raw[len(raw) // 2 :]
    return anthropic_body(
        {"type": "message_start", "message": {"id": "msg_c", "role": "assistant", "content": []}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "tool_use", "id": call_id, "name": name, "input": {}}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": head}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": tail}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
        {"type": "message_stop"},
    )


class StallingStream(httpx.SyncByteStream):
    """Sends `head`, then blocks like a silent socket until the response is closed."""

    def __init__(self, head: bytes, *, max_stall_s: float = 10.0) -> None:
        self._head = head
        self._max_stall_s = max_stall_s
        self.closed = threading.Event()

    def __iter__(self) -> Iterator[bytes]:
        yield self._head
        self.closed.wait(self._max_stall_s)

    def close(self) -> None:
        self.closed.set()


def stalled(head: bytes, *, streams: list[StallingStream] | None = None) -> Responder:
    def _respond(request: httpx.Request) -> httpx.Response:
        stream = StallingStream(head)
        if streams is not None:
            streams.append(stream)
        return httpx.Response(200, stream=stream)

    return _respond


def trickle(head: bytes, *, every_s: float, for_s: float) -> Responder:
    """Sends `head`, then an SSE keepalive comment every `every_s` for `for_s` seconds."""

    def _chunks() -> Iterator[bytes]:
        yield head
        stop_at = time.monotonic() + for_s
        while time.monotonic() < stop_at:
            time.sleep(every_s)
            yield b": keepalive\n\n"

    return lambda request: httpx.Response(200, content=_chunks())
