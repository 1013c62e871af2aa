from __future__ import annotations

import argparse
import json
import os
import sys
import threading
from pathlib import Path

from pydantic import ValidationError

from . import __version__
from .runtime.event_bus import EventBus
from .runtime.llm.types import ProviderKind
from .runtime.logger import setup_logging
from .runtime.loop import LoopStatus
from .runtime.orchestrator import Orchestrator, RunOutcome
from .runtime.protocol import ChatEvent, ChatRequest, ContextMode, LicenseTier
from .runtime.settings import get_settings
from .runtime.tools.approvals import PendingApprovalSet
from .runtime.tools.executor import ToolExecutor
from .runtime.tools.workspace import WorkspaceTools

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 5


def _configure_text_io() -> None:
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="backslashreplace")
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(encoding="utf-8", errors="backslashreplace")


def _api_key_from_env(kind: ProviderKind) -> str | None:
    return os.environ.get(f"{kind.value.upper()}_API_KEY") or None


def _print_event(event: ChatEvent) -> None:
    sys.stdout.write(json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n")
    sys.stdout.flush()


def _cmd_chat(args: argparse.Namespace) -> int:
    settings = get_settings()
    setup_logging(args.log_level or settings.log_level, json_format=args.json_logs or settings.log_json)

    kind = ProviderKind(args.provider)
    project = Path(args.project).resolve() if args.project else None
    try:
        request = ChatRequest(
            prompt=args.prompt,
            provider=kind,
            api_key=args.api_key or _api_key_from_env(kind),
            model=args.model,
            context={"project": str(project) if project else None, "contextMode": args.context_mode},
            license_tier=args.tier,
        )
    except ValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    workspace = WorkspaceTools(project or Path.cwd())
    executor = ToolExecutor(
        implementations=workspace.implementations(),
        read_original=workspace.read_original,
        approvals=PendingApprovalSet(),
        approval_wait_s=settings.approval_wait_s,
        approval_poll_s=settings.approval_poll_s,
    )
    bus = EventBus()
    bus.subscribe(_print_event)
    orchestrator = Orchestrator(bus=bus, executor=executor, settings=settings)

    outcome: list[RunOutcome] = []
    worker = threading.Thread(target=lambda: outcome.append(orchestrator.run(request)), daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        orchestrator.cancel()
        worker.join()

    if not outcome:
        return EXIT_ERROR
    return EXIT_OK if outcome[0].status in {LoopStatus.COMPLETED, LoopStatus.LIMIT_REACHED, LoopStatus.ABORTED} else EXIT_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="candy",
        description="Autonomous coding agent loop.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    chat_parser = subparsers.add_parser("chat", help="Run one request and print events as JSON lines.")
    chat_parser.add_argument("prompt", help="What the agent should do.")
    chat_parser.add_argument(
        "--provider",
        choices=[k.value for k in ProviderKind],
        default=ProviderKind.OPENAI.value,
        help="Model vendor (default: openai).",
    )
    chat_parser.add_argument("--model", default=None, help="Model name (default: the provider's default).")
    chat_parser.add_argument(
        "--api-key",
        dest="api_key",
        default=None,
        help="API key (default: <PROVIDER>_API_KEY from the environment).",
    )
    chat_parser.add_argument("--project", default=None, help="Project directory the tools operate on.")
    chat_parser.add_argument(
        "--tier",
        choices=[t.value for t in LicenseTier],
        default=LicenseTier.FREE.value,
        help="License tier (default: free).",
    )
    chat_parser.add_argument(
        "--context-mode",
        dest="context_mode",
        choices=[m.value for m in ContextMode],
        default=None,
        help="Requested project context richness.",
    )
    chat_parser.add_argument("--log-level", dest="log_level", default=None, help="Override CANDY_LOG_LEVEL.")
    chat_parser.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit JSON log lines.")
    chat_parser.set_defaults(func=_cmd_chat)

    return parser


def main(argv: list[str] | None = None) -> int:
    _configure_text_io()
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        func = getattr(args, "func")
        return int(func(args))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
