"""Shared fixtures for the candy test suite."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

from candy.runtime.event_bus import EventBus, EventRecorder
from candy.runtime.settings import AgentSettings, get_settings


@pytest.fixture(autouse=True)
def reset_candy_logging() -> Generator[None, None, None]:
    """`setup_logging()` detaches the candy logger from the root; undo that between tests."""
    yield
    logger = logging.getLogger("candy")
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    get_settings.cache_clear()


@pytest.fixture
def fast_settings() -> AgentSettings:
    return AgentSettings(
        backoff_base_s=0.0,
        backoff_max_s=0.0,
        approval_wait_s=0.05,
        approval_poll_s=0.01,
        request_timeout_s=5.0,
    )


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def bus(recorder: EventRecorder) -> EventBus:
    b = EventBus()
    b.subscribe(recorder)
    return b
