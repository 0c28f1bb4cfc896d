"""Shared fixtures for the Steward test suite."""

import asyncio
import os
import tempfile
from unittest.mock import AsyncMock

import pytest

# Keep the module-level database out of the home directory (config reads env at import time)
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="steward-tests-"))

from steward.services.cache import ResponseCache  # noqa: E402
from steward.services.executor import FunctionExecutor  # noqa: E402
from steward.services.llm_client import ChatDelta, ToolCallDelta  # noqa: E402


class ScriptedChatClient:
    """ChatClient that replays scripted turns and records what it was sent."""

    def __init__(self, turns=None, error: Exception | None = None, hang: bool = False):
        self.turns = list(turns or [])
        self.error = error
        self.hang = hang
        self.calls: list[list[dict]] = []
        self.closed = 0

    async def stream_chat(self, messages, tools):
        self.calls.append([dict(m) for m in messages])
        try:
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
            turn = self.turns.pop(0) if self.turns else text_turn("Done")
            for delta in turn:
                yield delta
        finally:
            self.closed += 1


def text_turn(text: str) -> list[ChatDelta]:
    """A model turn that only streams text, split into two fragments."""
    middle = len(text) // 2
    return [ChatDelta(content=text[:middle]), ChatDelta(content=text[middle:]), ChatDelta()]


def tool_turn(name: str, arguments: str, index: int = 0, call_id: str | None = "call_1") -> list[ChatDelta]:
    """A model turn requesting one tool call, arguments split across deltas."""
    middle = len(arguments) // 2
    return [
        ChatDelta(tool_calls=[ToolCallDelta(index=index, id=call_id, name=name, arguments=arguments[:middle])]),
        ChatDelta(tool_calls=[ToolCallDelta(index=index, arguments=arguments[middle:])]),
        ChatDelta(finish_reason="tool_calls"),
    ]


@pytest.fixture()
def cache():
    """A fresh response cache, disposed after the test."""
    response_cache = ResponseCache(default_ttl=3600, sweep_interval=0.05)
    yield response_cache
    response_cache.dispose()


@pytest.fixture()
def vendor_fn():
    return AsyncMock(return_value={"vendor": "chick-fil-a", "total": 45.92, "count": 3, "currency": "USD"})


@pytest.fixture()
def analytics_functions(vendor_fn):
    """Mocked analytics collaborators keyed by function name."""
    return {
        "getSpendingByVendor": vendor_fn,
        "getSpendingByCategory": AsyncMock(return_value={"category": "Coffee", "total": 23.5, "count": 4}),
        "getSpendingByTime": AsyncMock(return_value={"total": 310.0, "count": 12}),
        "getTopMerchants": AsyncMock(
            return_value=[
                {"vendor": "Costco", "total": 420.0, "count": 3},
                {"vendor": "Target", "total": 120.5, "count": 2},
            ]
        ),
    }


@pytest.fixture()
def executor(analytics_functions):
    return FunctionExecutor(analytics_functions)
