from __future__ import annotations

import uuid
from datetime import datetime, timezone


def new_id(prefix: str) -> str:
    """`<prefix>-<UTC yyyymmddHHMMSS>-<8 hex>`; sorts by creation time in logs."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:8]}"


def new_tool_call_id() -> str:
    # Gemini and Ollama do not assign call ids. 37 chars fits the 40-char cap some
    # OpenAI-compatible gateways put on echoed ids.
    return f"call_{uuid.uuid4().hex}"
