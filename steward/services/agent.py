"""Query dispatch engine for natural language spending questions.

Checks the response cache, routes the question (keyword selector, or the LLM
tool-calling loop when reasoning is requested), executes the analytics
function(s), and writes the assembled response back to the cache. Dispatch
failures are reported in the response or as an error event, never raised.
"""

import hashlib
import logging
import time
from typing import Any

from steward.config import settings
from steward.errors import ValidationError
from steward.models import AgentResponse, CacheStats, FunctionCall, NormalizedResult, StreamingEvent
from steward.services.cache import ResponseCache
from steward.services.executor import FunctionExecutor
from steward.services.llm_client import LiteLLMChatClient
from steward.services.orchestrator import Emit, ExecutedCall, ToolCallOrchestrator, emit_event
from steward.services.selector import (
    GET_SPENDING_BY_CATEGORY,
    GET_SPENDING_BY_TIME,
    GET_SPENDING_BY_VENDOR,
    GET_TOP_MERCHANTS,
    build_function_call,
    normalize_query,
)
from steward.services.streaming import ERROR_MESSAGE, StreamingResponder

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "I couldn't find any receipts matching your question."


def cache_key(query: str) -> str:
    """Logical cache key for a query; the user scope is added by the cache."""
    return f"agent:{hashlib.md5(normalize_query(query).encode()).hexdigest()}"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class QueryDispatchEngine:
    """Top-level entry point for spending questions."""

    def __init__(
        self,
        cache: ResponseCache,
        executor: FunctionExecutor | None = None,
        orchestrator: ToolCallOrchestrator | None = None,
        responder: StreamingResponder | None = None,
        use_llm: bool | None = None,
        cache_ttl: float | None = None,
        cache_enabled: bool | None = None,
    ):
        self.cache = cache
        self.executor = executor or FunctionExecutor()
        self.orchestrator = orchestrator or ToolCallOrchestrator(LiteLLMChatClient(), self.executor)
        self.responder = responder or StreamingResponder()
        self.use_llm = settings.agent_use_llm if use_llm is None else use_llm
        self.cache_ttl = settings.agent_cache_ttl_seconds if cache_ttl is None else cache_ttl
        self.cache_enabled = settings.cache_enabled if cache_enabled is None else cache_enabled

    def validate(self, query: Any) -> str:
        """Return the trimmed query, or raise ValidationError."""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query must be a non-empty string")
        text = query.strip()
        if len(text) > settings.query_max_length:
            raise ValidationError(f"Query must be at most {settings.query_max_length} characters")
        return text

    async def handle(
        self,
        query: Any,
        user_id: str,
        streaming: bool = False,
        reasoning: bool | None = None,
    ):
        """
        Answer a spending question.

        Returns an AgentResponse, or an async iterator of StreamingEvent when
        streaming. Raises ValidationError for bad input before any work starts.
        """
        text = self.validate(query)
        use_llm = self.use_llm if reasoning is None else reasoning

        if streaming:
            return self.responder.stream(lambda emit: self._dispatch(text, user_id, use_llm, emit))

        started = time.perf_counter()
        try:
            return await self._dispatch(text, user_id, use_llm)
        except Exception as e:
            logger.exception(f"Query dispatch failed for user {user_id}")
            return AgentResponse(
                message=ERROR_MESSAGE,
                data=None,
                error=str(e) or type(e).__name__,
                execution_time=_elapsed_ms(started),
            )

    async def _dispatch(
        self, text: str, user_id: str, use_llm: bool, emit: Emit | None = None
    ) -> AgentResponse:
        started = time.perf_counter()
        key = cache_key(text)

        if self.cache_enabled:
            cached = await self.cache.get(key, user_id=user_id)
            if isinstance(cached, AgentResponse):
                logger.info(f"Serving cached answer for user {user_id}")
                return cached.model_copy(
                    update={"cached": True, "execution_time": _elapsed_ms(started)}, deep=True
                )

        call = build_function_call(text)
        if use_llm:
            logger.info(f"Routing query through tool-calling loop (hint: {call.name})")
            outcome = await self.orchestrator.run(text, user_id, hint=call.name, emit=emit)
            message, executed = outcome.message, outcome.calls
        else:
            logger.info(f"Routing query to {call.name} with {call.arguments}")
            executed = [await self._execute_direct(call, user_id, emit)]
            message = summarize(executed[0])

        response = AgentResponse(
            message=message,
            data=_response_data(executed),
            insights=extract_insights(executed) or None,
            cached=False,
            execution_time=_elapsed_ms(started),
        )

        if self.cache_enabled:
            # Callers get their own copy; the cached entry is never shared
            await self.cache.set(key, response.model_copy(deep=True), ttl_seconds=self.cache_ttl, user_id=user_id)
        return response

    async def _execute_direct(self, call: FunctionCall, user_id: str, emit: Emit | None) -> ExecutedCall:
        await emit_event(
            emit,
            StreamingEvent(
                type="tool_call", tool=call.name, arguments=call.arguments, status="started",
                message=f"Running {call.name}...",
            ),
        )
        result = await self.executor.execute(call.name, call.arguments, user_id)
        await emit_event(
            emit,
            StreamingEvent(type="tool_call", tool=call.name, status="completed", message=f"Finished {call.name}"),
        )
        return ExecutedCall(call=call, result=result)

    def clear_user_cache(self, user_id: str) -> int:
        return self.cache.clear_user(user_id)

    def cache_stats(self) -> CacheStats:
        return self.cache.get_stats()


def _response_data(executed: list[ExecutedCall]) -> Any:
    if not executed:
        return None
    if len(executed) == 1:
        return executed[0].result.model_dump()
    return [e.result.model_dump() for e in executed]


def _label(executed: ExecutedCall, field: str) -> str | None:
    return executed.call.arguments.get(field) or executed.result.details.get(field)


def summarize(executed: ExecutedCall) -> str:
    """Template answer for a directly executed function."""
    name, result = executed.call.name, executed.result
    if not result.total and not result.count:
        return NO_RESULTS_MESSAGE

    timeframe = executed.call.arguments.get("timeframe")
    suffix = f" {timeframe}" if isinstance(timeframe, str) else ""
    receipts = f" across {result.count} receipts" if result.count else ""

    if name == GET_SPENDING_BY_VENDOR:
        vendor = _label(executed, "vendor")
        where = f" at {vendor}" if vendor and vendor != "all" else " in total"
        return f"You spent ${result.total:.2f}{where}{suffix}{receipts}."
    if name == GET_SPENDING_BY_CATEGORY:
        return f"You spent ${result.total:.2f} on {_label(executed, 'category')}{suffix}{receipts}."
    if name == GET_SPENDING_BY_TIME:
        return f"You spent ${result.total:.2f}{suffix}{receipts}."
    if name == GET_TOP_MERCHANTS and result.breakdown:
        top = ", ".join(f"{m['vendor']} (${m['total']:.2f})" for m in result.breakdown)
        return f"Your top merchants{suffix}: {top}."
    return f"Found ${result.total:.2f} in spending{suffix}."


def _first(result: NormalizedResult, field: str) -> tuple[str, float] | None:
    if not result.breakdown:
        return None
    top = result.breakdown[0]
    return str(top.get(field) or "Unknown"), float(top.get("total") or 0)


def extract_insights(executed: list[ExecutedCall]) -> list[str]:
    """Short highlights from each executed function's result."""
    insights = []
    for item in executed:
        name, result = item.call.name, item.result
        if name == GET_SPENDING_BY_CATEGORY and result.total > 0:
            insights.append(f"You spent ${result.total:.2f} on {_label(item, 'category')}")
        elif name == GET_SPENDING_BY_VENDOR and result.total > 0:
            vendor = _label(item, "vendor")
            if vendor and vendor != "all":
                insights.append(f"You spent ${result.total:.2f} at {vendor}")
        elif name == "detectSpendingAnomalies" and result.count:
            insights.append(f"Found {result.count} unusual spending patterns")
        elif name == "getSpendingTrends" and result.count:
            insights.append(f"Analyzed spending trends over {result.count} periods")
        elif name == GET_TOP_MERCHANTS and (top := _first(result, "vendor")):
            insights.append(f"Top vendor: {top[0]} (${top[1]:.2f})")
        elif name == "summarizeTopCategories" and (top := _first(result, "category")):
            insights.append(f"Top category: {top[0]} (${top[1]:.2f})")
    return insights
