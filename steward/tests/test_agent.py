"""Tests for the query dispatch engine."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from conftest import ScriptedChatClient, text_turn, tool_turn

from steward.config import settings
from steward.errors import ValidationError
from steward.models import AgentResponse
from steward.services.agent import NO_RESULTS_MESSAGE, QueryDispatchEngine, cache_key
from steward.services.executor import FunctionExecutor
from steward.services.orchestrator import ToolCallOrchestrator

CHICK_FIL_A = "How much did I spend at Chick-fil-A?"


def make_engine(cache, executor, client=None, **kwargs):
    orchestrator = ToolCallOrchestrator(client or ScriptedChatClient(), executor)
    return QueryDispatchEngine(cache=cache, executor=executor, orchestrator=orchestrator, **kwargs)


async def collect(stream):
    return [event async for event in stream]


class TestDirectPath:
    @pytest.mark.asyncio
    async def test_vendor_question_then_cache_hit(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor)

        first = await engine.handle(CHICK_FIL_A, "U1")
        assert isinstance(first, AgentResponse)
        assert first.cached is False
        assert first.error is None
        assert first.data["total"] == 45.92
        assert "45.92" in first.message

        second = await engine.handle(CHICK_FIL_A, "U1")
        assert second.cached is True
        assert second.data == first.data
        assert second.message == first.message
        vendor_fn.assert_awaited_once_with("U1", {"vendor": "chick-fil-a"})

    @pytest.mark.asyncio
    async def test_cache_key_ignores_case_and_spacing(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor)
        await engine.handle(CHICK_FIL_A, "U1")
        again = await engine.handle("  how much did i spend   at chick-fil-a? ", "U1")
        assert again.cached is True
        assert cache_key(CHICK_FIL_A) == cache_key(CHICK_FIL_A.upper())

    @pytest.mark.asyncio
    async def test_served_responses_do_not_share_data_with_the_cache(self, cache, executor):
        engine = make_engine(cache, executor)

        first = await engine.handle(CHICK_FIL_A, "U1")
        first.data["total"] = 0
        hit = await engine.handle(CHICK_FIL_A, "U1")
        assert hit.data["total"] == 45.92

        hit.data["total"] = -1
        again = await engine.handle(CHICK_FIL_A, "U1")
        assert again.cached is True
        assert again.data["total"] == 45.92
        assert again.data is not hit.data

    @pytest.mark.asyncio
    async def test_users_do_not_share_answers(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor)
        await engine.handle(CHICK_FIL_A, "U1")
        other = await engine.handle(CHICK_FIL_A, "U2")
        assert other.cached is False
        assert vendor_fn.await_count == 2

    @pytest.mark.asyncio
    async def test_routes_superlatives_to_top_merchants(self, cache, executor, analytics_functions):
        engine = make_engine(cache, executor)
        response = await engine.handle("What are my biggest expenses?", "U1")

        analytics_functions["getTopMerchants"].assert_awaited_once_with("U1", {"limit": 5})
        assert response.data["total"] == 540.5
        assert "Costco" in response.message
        assert response.insights == ["Top vendor: Costco ($420.00)"]

    @pytest.mark.asyncio
    async def test_category_summary(self, cache, executor):
        response = await make_engine(cache, executor).handle("How much on coffee last month?", "U1")
        assert response.message == "You spent $23.50 on Coffee last month across 4 receipts."

    @pytest.mark.asyncio
    async def test_empty_result_message(self, cache):
        executor = FunctionExecutor({"getSpendingByVendor": AsyncMock(return_value={"total": 0, "count": 0})})
        response = await make_engine(cache, executor).handle("How much at Target?", "U1")
        assert response.message == NO_RESULTS_MESSAGE

    @pytest.mark.asyncio
    async def test_cache_disabled(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor, cache_enabled=False)
        await engine.handle(CHICK_FIL_A, "U1")
        second = await engine.handle(CHICK_FIL_A, "U1")
        assert second.cached is False
        assert vendor_fn.await_count == 2

    @pytest.mark.asyncio
    async def test_entries_expire_with_ttl(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor, cache_ttl=0.05)
        await engine.handle(CHICK_FIL_A, "U1")
        await asyncio.sleep(0.1)
        again = await engine.handle(CHICK_FIL_A, "U1")
        assert again.cached is False


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", None, 42])
    async def test_rejects_empty_or_non_string(self, cache, executor, query):
        with pytest.raises(ValidationError):
            await make_engine(cache, executor).handle(query, "U1")

    @pytest.mark.asyncio
    async def test_rejects_overlong_query(self, cache, executor, vendor_fn):
        with pytest.raises(ValidationError):
            await make_engine(cache, executor).handle("x" * (settings.query_max_length + 1), "U1")
        vendor_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_streaming_validates_before_streaming(self, cache, executor):
        with pytest.raises(ValidationError):
            await make_engine(cache, executor).handle("", "U1", streaming=True)


class TestErrors:
    @pytest.mark.asyncio
    async def test_collaborator_failure_becomes_error_response(self, cache):
        executor = FunctionExecutor({"getSpendingByVendor": AsyncMock(side_effect=RuntimeError("db down"))})
        response = await make_engine(cache, executor).handle(CHICK_FIL_A, "U1")

        assert response.error == "getSpendingByVendor: db down"
        assert response.data is None
        assert response.cached is False

    @pytest.mark.asyncio
    async def test_error_responses_are_not_cached(self, cache):
        fn = AsyncMock(side_effect=[RuntimeError("db down"), {"total": 12.0, "count": 1}])
        engine = make_engine(cache, FunctionExecutor({"getSpendingByVendor": fn}))

        await engine.handle(CHICK_FIL_A, "U1")
        recovered = await engine.handle(CHICK_FIL_A, "U1")
        assert recovered.error is None
        assert recovered.cached is False


class TestLLMPath:
    @pytest.mark.asyncio
    async def test_reasoning_uses_tool_loop(self, cache, executor, vendor_fn):
        client = ScriptedChatClient(
            [
                tool_turn("getSpendingByVendor", '{"vendor": "Chick-fil-A"}'),
                text_turn("You spent $45.92 at Chick-fil-A."),
            ]
        )
        engine = make_engine(cache, executor, client)
        response = await engine.handle(CHICK_FIL_A, "U1", reasoning=True)

        assert response.message == "You spent $45.92 at Chick-fil-A."
        assert response.data["total"] == 45.92
        vendor_fn.assert_awaited_once_with("U1", {"vendor": "Chick-fil-A"})
        assert "getSpendingByVendor" in client.calls[0][0]["content"]

    @pytest.mark.asyncio
    async def test_multiple_calls_return_list_data(self, cache, executor):
        client = ScriptedChatClient(
            [
                tool_turn("getSpendingByCategory", '{"category": "Coffee"}'),
                tool_turn("getTopMerchants", "{}", call_id="call_2"),
                text_turn("Here is your summary."),
            ]
        )
        response = await make_engine(cache, executor, client).handle("coffee and top spots", "U1", reasoning=True)
        assert [d["function"] for d in response.data] == ["getSpendingByCategory", "getTopMerchants"]
        assert response.insights == ["You spent $23.50 on Coffee", "Top vendor: Costco ($420.00)"]

    @pytest.mark.asyncio
    async def test_loop_exhaustion_is_reported(self, cache, executor):
        client = ScriptedChatClient([tool_turn("getSpendingByTime", "{}") for _ in range(10)])
        response = await make_engine(cache, executor, client).handle("q", "U1", reasoning=True)
        assert "exceeded" in response.error

    @pytest.mark.asyncio
    async def test_settings_default_is_deterministic(self, cache, executor):
        client = ScriptedChatClient()
        await make_engine(cache, executor, client, use_llm=False).handle(CHICK_FIL_A, "U1")
        assert client.calls == []


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_events(self, cache, executor):
        stream = await make_engine(cache, executor).handle(CHICK_FIL_A, "U1", streaming=True)
        events = await collect(stream)

        assert [e.type for e in events] == ["start", "tool_call", "tool_call", "complete"]
        assert events[-1].response.data["total"] == 45.92

    @pytest.mark.asyncio
    async def test_streaming_cache_hit(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor)
        await engine.handle(CHICK_FIL_A, "U1")
        events = await collect(await engine.handle(CHICK_FIL_A, "U1", streaming=True))

        assert [e.type for e in events] == ["start", "complete"]
        assert events[-1].response.cached is True
        vendor_fn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stream_failure_ends_with_error(self, cache):
        executor = FunctionExecutor({"getSpendingByVendor": AsyncMock(side_effect=RuntimeError("db down"))})
        events = await collect(await make_engine(cache, executor).handle(CHICK_FIL_A, "U1", streaming=True))
        assert [e.type for e in events] == ["start", "tool_call", "error"]
        assert events[-1].error == "getSpendingByVendor: db down"

    @pytest.mark.asyncio
    async def test_llm_stream_closed_when_client_disconnects(self, cache, executor):
        client = ScriptedChatClient(hang=True)
        stream = await make_engine(cache, executor, client).handle(CHICK_FIL_A, "U1", streaming=True, reasoning=True)

        assert (await stream.__anext__()).type == "start"
        await asyncio.sleep(0.05)
        await stream.aclose()

        assert client.closed == 1
        assert await cache.get(cache_key(CHICK_FIL_A), "U1") is None


class TestCacheMaintenance:
    @pytest.mark.asyncio
    async def test_clear_user_cache(self, cache, executor, vendor_fn):
        engine = make_engine(cache, executor)
        await engine.handle(CHICK_FIL_A, "U1")
        await engine.handle(CHICK_FIL_A, "U2")

        assert engine.clear_user_cache("U1") == 1
        assert (await engine.handle(CHICK_FIL_A, "U1")).cached is False
        assert (await engine.handle(CHICK_FIL_A, "U2")).cached is True

    @pytest.mark.asyncio
    async def test_cache_stats(self, cache, executor):
        engine = make_engine(cache, executor)
        await engine.handle(CHICK_FIL_A, "U1")
        await engine.handle(CHICK_FIL_A, "U1")
        stats = engine.cache_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.user_specific_entries == 1
