from __future__ import annotations

import logging
import math
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from .context import ContextBuilder, assemble_context, compact_history
from .continuation import ContinuationManager, RunProgress
from .event_bus import EventBus
from .ids import new_id
from .license import TierLimits, limit_reached_notice, limits_for_tier, resolve_context_mode
from .llm.errors import CancellationToken, ErrorCode, LLMRequestError, TooManyContinuationsError
from .llm.providers import ProviderAdapter, build_adapter
from .llm.types import (
    CanonicalMessage,
    CanonicalMessageRole,
    CanonicalRequest,
    ProviderKind,
    StreamEventKind,
    ToolCall,
    ToolCallStatus,
    ToolResult,
)
from .loop import LoopController, LoopStatus
from .prompts.system import build_system_prompt
from .protocol import ChatEvent, ChatEventType, ChatRequest
from .settings import AgentSettings, get_settings
from .tools.catalog import TOOL_SPECS
from .tools.executor import ToolExecutor, ToolRunContext

logger = logging.getLogger(__name__)

CREATING_CONTINUATION_TEXT = "Creating continuation session..."
CONTINUING_SESSION_TEXT = "Continuing session..."

AdapterFactory = Callable[[ProviderKind], ProviderAdapter]


@dataclass(frozen=True, slots=True)
class RunOutcome:
    run_id: str
    status: LoopStatus
    iterations: int = 0
    continuations: int = 0
    error: str | None = None


@dataclass(slots=True)
class _TurnResult:
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class _SessionEnd:
    status: LoopStatus
    iterations: int
    error: LLMRequestError | None = None


class _RunEmitter:
    """Publishes one run's events; guarantees a single trailing `done`."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._done = False

    def emit(
        self, event_type: ChatEventType, data: Any = None, *, call_id: str | None = None, name: str | None = None
    ) -> None:
        if self._done:
            return
        self._bus.publish(ChatEvent(type=event_type, data=data, call_id=call_id, name=name))

    def text(self, data: str) -> None:
        self.emit(ChatEventType.TEXT, data)

    def error(self, data: str) -> None:
        self.emit(ChatEventType.ERROR, data)

    def done(self) -> None:
        if self._done:
            return
        self.emit(ChatEventType.DONE)
        self._done = True


@dataclass(slots=True)
class _Session:
    adapter: ProviderAdapter
    client: httpx.Client
    model: str
    api_key: str | None
    limits: TierLimits
    progress: RunProgress
    messages: list[CanonicalMessage]
    cancel: CancellationToken
    out: _RunEmitter


def _backoff_delay(err: LLMRequestError, attempt: int, settings: AgentSettings) -> float:
    if err.retry_after_s is not None:
        return max(0.0, err.retry_after_s)
    return min(settings.backoff_base_s * (2**attempt), settings.backoff_max_s)


def _retry_notice(err: LLMRequestError, delay: float) -> str:
    secs = math.ceil(delay)
    if err.code is ErrorCode.RATE_LIMIT:
        return f"Rate limit hit. Retrying in {secs}s..."
    return f"Request failed ({err.code.value}). Retrying in {secs}s..."


class Orchestrator:
    """
    Drives one chat request end to end: license limits, context, the model/tool loop,
    retries and continuation sessions.

    One run at a time per instance. `cancel()` may be called from any thread.
    """

    def __init__(
        self,
        *,
        bus: EventBus,
        executor: ToolExecutor,
        settings: AgentSettings | None = None,
        context_builder: ContextBuilder | None = None,
        client: httpx.Client | None = None,
        adapter_factory: AdapterFactory | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.bus = bus
        self.executor = executor
        self.settings = settings or get_settings()
        self.context_builder = context_builder
        self._client = client
        self._adapter_factory = adapter_factory or self._default_adapter
        self._system_prompt = system_prompt
        self._continuations = ContinuationManager(
            max_continuations=self.settings.max_continuations,
            last_file_preview_chars=self.settings.last_file_preview_chars,
            max_listed_files=self.settings.max_listed_files,
        )
        self._lock = threading.Lock()
        self._active_cancel: CancellationToken | None = None

    def _default_adapter(self, kind: ProviderKind) -> ProviderAdapter:
        return build_adapter(kind, base_url=self.settings.base_url_for(kind))

    def cancel(self) -> None:
        """Idempotent; a no-op when nothing is running."""
        with self._lock:
            token = self._active_cancel
        if token is not None:
            token.cancel()

    def run(self, request: ChatRequest) -> RunOutcome:
        run_id = new_id("run")
        cancel = CancellationToken()
        with self._lock:
            if self._active_cancel is not None:
                raise RuntimeError("Orchestrator already has an active run.")
            self._active_cancel = cancel

        out = _RunEmitter(self.bus)
        try:
            return self._run(request, run_id=run_id, cancel=cancel, out=out)
        except Exception as e:
            logger.exception("Run %s failed", run_id)
            out.error(str(e) or e.__class__.__name__)
            return RunOutcome(run_id=run_id, status=LoopStatus.FAILED, error=str(e))
        finally:
            out.done()
            with self._lock:
                self._active_cancel = None

    def _run(self, request: ChatRequest, *, run_id: str, cancel: CancellationToken, out: _RunEmitter) -> RunOutcome:
        kind = request.provider
        adapter = self._adapter_factory(kind)
        limits = limits_for_tier(request.license_tier)
        logger.info("Run %s: provider=%s tier=%s", run_id, kind.value, limits.tier.value)

        if adapter.requires_api_key and not request.api_key:
            out.error(f"No {adapter.display_name} API key provided. Please set it in Settings.")
            return RunOutcome(run_id=run_id, status=LoopStatus.FAILED, error="missing_api_key")

        project = request.context.project
        decision = resolve_context_mode(limits, request.context.context_mode)
        if project and decision.downgraded:
            out.text(decision.notice() or "")

        context_text = assemble_context(
            builder=self.context_builder,
            project_dir=project,
            mode=decision.effective,
            history_len=len(request.conversation_history),
            files=request.context.files,
            token_budget=self.settings.context_token_budget,
        )
        messages = compact_history(
            request.conversation_history,
            keep_recent=self.settings.history_keep_for(kind),
            summarize=kind is not ProviderKind.OLLAMA,
        )
        messages.append(CanonicalMessage(role=CanonicalMessageRole.USER, content=context_text + request.prompt))

        progress = RunProgress(original_goal=request.prompt)
        continuation_count = 0
        total_iterations = 0

        with ExitStack() as stack:
            client = self._client or stack.enter_context(httpx.Client())
            while True:
                session = _Session(
                    adapter=adapter,
                    client=client,
                    model=request.model or self.settings.default_model_for(kind),
                    api_key=request.api_key,
                    limits=limits,
                    progress=progress,
                    messages=messages,
                    cancel=cancel,
                    out=out,
                )
                end = self._run_session(session)
                total_iterations += end.iterations

                if end.status is not LoopStatus.SUSPENDED or end.error is None:
                    return RunOutcome(
                        run_id=run_id,
                        status=end.status,
                        iterations=total_iterations,
                        continuations=continuation_count,
                        error=None if end.error is None else str(end.error),
                    )

                if cancel.cancelled:
                    return RunOutcome(
                        run_id=run_id,
                        status=LoopStatus.ABORTED,
                        iterations=total_iterations,
                        continuations=continuation_count,
                    )

                try:
                    snapshot = self._continuations.build_snapshot(progress, continuation_count=continuation_count)
                except TooManyContinuationsError as e:
                    logger.warning("Run %s: %s", run_id, e)
                    out.error(str(e))
                    return RunOutcome(
                        run_id=run_id,
                        status=LoopStatus.FAILED,
                        iterations=total_iterations,
                        continuations=continuation_count,
                        error=str(e),
                    )

                out.error(str(end.error))
                out.text(CREATING_CONTINUATION_TEXT)
                continuation_count += 1
                progress = self._continuations.restore(snapshot)
                messages = self._continuations.seed_messages(snapshot, project=project)
                out.emit(ChatEventType.CONTINUATION, CONTINUING_SESSION_TEXT)

    def _run_session(self, s: _Session) -> _SessionEnd:
        loop = LoopController(max_iterations=s.limits.max_iterations)
        loop.start()
        tool_ctx = ToolRunContext(progress=s.progress, loop=loop, cancel=s.cancel, notify=s.out.text)

        while loop.should_continue():
            if s.cancel.cancelled:
                loop.abort()
                break
            loop.begin_iteration()

            try:
                turn = self._request_turn(s)
            except LLMRequestError as e:
                if s.cancel.cancelled or e.code is ErrorCode.CANCELLED:
                    loop.abort()
                    break
                if e.needs_continuation:
                    logger.warning("Classified %s: %s; handing over to a continuation session", e.code.value, e)
                    loop.suspend()
                    return _SessionEnd(status=loop.status, iterations=loop.iteration, error=e)
                logger.error("Request failed (%s): %s", e.code.value, e)
                s.out.error(str(e))
                loop.fail()
                return _SessionEnd(status=loop.status, iterations=loop.iteration, error=e)

            calls = _dedupe_calls(turn.tool_calls)
            s.messages.append(CanonicalMessage(role=CanonicalMessageRole.ASSISTANT, content=turn.text, tool_calls=calls))
            executed = self._execute_calls(s, calls, tool_ctx)

            if s.cancel.cancelled:
                loop.abort()
                break
            loop.end_turn(executed_tool_calls=executed)

        if loop.status is LoopStatus.LIMIT_REACHED and s.limits.max_iterations is not None:
            s.out.text(limit_reached_notice(s.limits.max_iterations))
        return _SessionEnd(status=loop.status, iterations=loop.iteration)

    def _request_turn(self, s: _Session) -> _TurnResult:
        request = CanonicalRequest(
            model=s.model,
            system=self._system_prompt if self._system_prompt is not None else build_system_prompt(),
            messages=list(s.messages),
            tools=list(TOOL_SPECS),
            api_key=s.api_key,
        )
        attempts = self.settings.max_request_attempts
        for attempt in range(attempts):
            text_parts: list[str] = []
            calls: list[ToolCall] = []
            try:
                for ev in s.adapter.stream(
                    request, client=s.client, cancel=s.cancel, timeout_s=self.settings.request_timeout_s
                ):
                    if ev.kind is StreamEventKind.TEXT_DELTA and ev.text:
                        text_parts.append(ev.text)
                        s.out.text(ev.text)
                    elif ev.kind is StreamEventKind.TOOL_CALL_END and ev.tool_call is not None:
                        calls.append(ev.tool_call)
                return _TurnResult(text="".join(text_parts), tool_calls=calls)
            except LLMRequestError as e:
                if s.cancel.cancelled or e.code is ErrorCode.CANCELLED:
                    raise
                if not e.retryable or attempt + 1 >= attempts:
                    raise
                delay = _backoff_delay(e, attempt, self.settings)
                logger.info("Attempt %d/%d failed (%s); retrying in %.1fs", attempt + 1, attempts, e.code.value, delay)
                if text_parts:
                    # The retried attempt streams its text from the start.
                    s.out.emit(ChatEventType.RETRY, {"attempt": attempt + 2, "discardChars": len("".join(text_parts))})
                s.out.text(_retry_notice(e, delay))
                if s.cancel.wait(delay):
                    raise LLMRequestError(
                        "Request cancelled.", code=ErrorCode.CANCELLED, provider_kind=s.adapter.kind, model=s.model
                    ) from e
        raise AssertionError("unreachable")

    def _execute_calls(self, s: _Session, calls: list[ToolCall], ctx: ToolRunContext) -> int:
        executed = 0
        for call in calls:
            if s.cancel.cancelled:
                break
            s.out.emit(ChatEventType.FUNCTION_CALL, dict(call.arguments), call_id=call.call_id, name=call.name)
            call.status = ToolCallStatus.EXECUTING
            if call.parse_error:
                result = self.executor.error_result(call.name, call.call_id, call.parse_error)
            else:
                result = self.executor.execute(call.name, call.arguments, call.call_id, run=ctx)
            call.status = ToolCallStatus.FAILED if result.is_error else ToolCallStatus.COMPLETED
            s.out.emit(ChatEventType.FUNCTION_RESULT, result.response, call_id=call.call_id, name=call.name)
            s.messages.append(_tool_message(result))
            executed += 1
        return executed


def _dedupe_calls(calls: list[ToolCall]) -> list[ToolCall]:
    seen: set[str] = set()
    out: list[ToolCall] = []
    for call in calls:
        if call.call_id in seen:
            continue
        seen.add(call.call_id)
        out.append(call)
    return out


def _tool_message(result: ToolResult) -> CanonicalMessage:
    return CanonicalMessage(
        role=CanonicalMessageRole.TOOL,
        content=result.content_text(),
        tool_call_id=result.call_id,
        tool_name=result.name,
    )
