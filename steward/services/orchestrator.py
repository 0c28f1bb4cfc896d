"""LLM tool-calling loop for spending questions.

Each turn streams the model's reply. Text deltas accumulate into the answer;
tool-call deltas are grouped by index and their name/argument fragments are
concatenated until the stream ends. Completed calls are executed and their
results appended to the history as tool messages before the next turn. The
loop ends when the model replies without tool calls, or fails after
``max_turns`` turns.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from steward.config import settings
from steward.errors import ToolArgumentParseError, ToolLoopExceededError
from steward.models import FunctionCall, NormalizedResult, StreamingEvent
from steward.services.executor import FunctionExecutor
from steward.services.llm_client import ChatClient

logger = logging.getLogger(__name__)

Emit = Callable[[StreamingEvent], Awaitable[None]]

DEFAULT_ANSWER = "Analysis complete"

_TIMEFRAME = {
    "type": "string",
    "description": 'Time period to analyze (e.g., "last month", "this year", "last 30 days")',
}
_LIMIT = {"type": "number", "description": "Number of results to return (default: 10)"}


def _tool(name: str, description: str, properties: dict, required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


TOOL_SCHEMAS = [
    _tool(
        "getSpendingByVendor",
        "Get total spending at a specific vendor or merchant",
        {"vendor": {"type": "string", "description": "The vendor or merchant name"}, "timeframe": _TIMEFRAME},
        ["vendor"],
    ),
    _tool(
        "getSpendingByCategory",
        "Get total spending in a category for a timeframe",
        {
            "category": {
                "type": "string",
                "description": 'The spending category (e.g., "Food & Dining", "Coffee", "Gas")',
            },
            "timeframe": _TIMEFRAME,
        },
        ["category"],
    ),
    _tool("getSpendingByTime", "Get total spending for a time period", {"timeframe": _TIMEFRAME}, ["timeframe"]),
    _tool(
        "getTopMerchants",
        "Get the merchants with the highest total spending",
        {"timeframe": _TIMEFRAME, "limit": _LIMIT},
        [],
    ),
    _tool(
        "summarizeTopCategories",
        "Get the categories with the highest total spending",
        {"timeframe": _TIMEFRAME, "limit": _LIMIT},
        [],
    ),
    _tool(
        "getSpendingForCustomPeriod",
        "Get spending with a category breakdown for a custom date range",
        {
            "startDate": {"type": "string", "description": "Start date in YYYY-MM-DD format"},
            "endDate": {"type": "string", "description": "End date in YYYY-MM-DD format"},
        },
        ["startDate", "endDate"],
    ),
    _tool(
        "getSpendingComparison",
        "Compare spending between two time periods",
        {
            "period1": {"type": "string", "description": 'First period (e.g., "this month")'},
            "period2": {"type": "string", "description": 'Second period (e.g., "last month")'},
        },
        ["period1", "period2"],
    ),
    _tool(
        "detectSpendingAnomalies",
        "Detect unusually large purchases",
        {
            "timeframe": _TIMEFRAME,
            "category": {"type": "string", "description": "Optional category to focus on"},
            "vendor": {"type": "string", "description": "Optional vendor to focus on"},
        },
        ["timeframe"],
    ),
    _tool(
        "getSpendingTrends",
        "Analyze spending over time at a daily, weekly or monthly interval",
        {
            "timeframe": _TIMEFRAME,
            "interval": {"type": "string", "enum": ["daily", "weekly", "monthly"]},
        },
        ["timeframe"],
    ),
]


def build_system_prompt(hint: str | None = None) -> str:
    prompt = f"""You are Steward's financial assistant. You help users understand their spending by analyzing their receipt data.

Today's date is {date.today().isoformat()}.

Guidelines:
- Always call the most appropriate function for the user's question
- Pass relative timeframes through as phrases (e.g., "last month")
- Use the exact dollar amounts returned by the functions - do not recalculate them
- Answer in 2-4 concise, friendly sentences"""
    if hint:
        prompt += f"\n\nA keyword router suggests the function {hint} for this question."
    return prompt


@dataclass
class _PendingCall:
    """Tool call assembled from streamed fragments."""

    index: int
    id: str | None = None
    name_parts: list[str] = field(default_factory=list)
    argument_parts: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return "".join(self.name_parts)

    @property
    def raw_arguments(self) -> str:
        return "".join(self.argument_parts)

    def parse_arguments(self) -> dict[str, Any]:
        raw = self.raw_arguments.strip()
        if not raw:
            return {}
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolArgumentParseError(self.name, raw, str(e)) from e
        if not isinstance(arguments, dict):
            raise ToolArgumentParseError(self.name, raw, "arguments must be a JSON object")
        return arguments


@dataclass
class ExecutedCall:
    call: FunctionCall
    result: NormalizedResult


@dataclass
class OrchestratorResult:
    message: str
    calls: list[ExecutedCall] = field(default_factory=list)


class ToolCallOrchestrator:
    """Drives a bounded model/tool loop for one query."""

    def __init__(
        self,
        client: ChatClient,
        executor: FunctionExecutor,
        max_turns: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ):
        self.client = client
        self.executor = executor
        self.max_turns = max_turns if max_turns is not None else settings.agent_max_tool_turns
        self.tools = tools if tools is not None else TOOL_SCHEMAS

    async def run(
        self,
        query: str,
        user_id: str,
        hint: str | None = None,
        emit: Emit | None = None,
    ) -> OrchestratorResult:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(hint)},
            {"role": "user", "content": query},
        ]
        executed: list[ExecutedCall] = []

        for turn in range(self.max_turns):
            content, pending = await self._stream_turn(messages, turn)
            if not pending:
                logger.info(f"Tool loop finished after {turn + 1} turn(s), {len(executed)} call(s)")
                return OrchestratorResult(message=content.strip() or DEFAULT_ANSWER, calls=executed)

            messages.append(
                {
                    "role": "assistant",
                    "content": content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.raw_arguments},
                        }
                        for call in pending
                    ],
                }
            )
            for call in pending:
                messages.append(await self._run_tool(call, user_id, emit, executed))

        raise ToolLoopExceededError(self.max_turns)

    async def _stream_turn(self, messages: list[dict[str, Any]], turn: int) -> tuple[str, list[_PendingCall]]:
        """Consume one streamed model turn. Returns (content, completed calls)."""
        content_parts: list[str] = []
        pending: dict[int, _PendingCall] = {}

        stream = self.client.stream_chat(messages, self.tools)
        try:
            async for delta in stream:
                if delta.content:
                    content_parts.append(delta.content)
                for fragment in delta.tool_calls:
                    call = pending.setdefault(fragment.index, _PendingCall(index=fragment.index))
                    if fragment.id:
                        call.id = fragment.id
                    if fragment.name:
                        call.name_parts.append(fragment.name)
                    if fragment.arguments:
                        call.argument_parts.append(fragment.arguments)
        finally:
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()

        calls = [pending[i] for i in sorted(pending)]
        for call in calls:
            call.id = call.id or f"call_{turn}_{call.index}"
        return "".join(content_parts), calls

    async def _run_tool(
        self,
        pending: _PendingCall,
        user_id: str,
        emit: Emit | None,
        executed: list[ExecutedCall],
    ) -> dict[str, Any]:
        """Execute one completed call and build its tool message."""
        try:
            arguments = pending.parse_arguments()
        except ToolArgumentParseError as e:
            logger.warning(f"Skipping tool call: {e}")
            await emit_event(
                emit,
                StreamingEvent(
                    type="tool_call",
                    tool=pending.name,
                    status="failed",
                    message=f"Could not read the arguments for {pending.name}",
                    error=str(e),
                ),
            )
            return {"role": "tool", "tool_call_id": pending.id, "content": json.dumps({"error": str(e)})}

        call = FunctionCall(name=pending.name, arguments=arguments)
        await emit_event(
            emit,
            StreamingEvent(
                type="tool_call", tool=call.name, arguments=call.arguments, status="started",
                message=f"Running {call.name}...",
            ),
        )
        result = await self.executor.execute(call.name, call.arguments, user_id)
        executed.append(ExecutedCall(call=call, result=result))
        await emit_event(
            emit,
            StreamingEvent(type="tool_call", tool=call.name, status="completed", message=f"Finished {call.name}"),
        )
        return {"role": "tool", "tool_call_id": pending.id, "content": result.model_dump_json()}


async def emit_event(emit: Emit | None, event: StreamingEvent) -> None:
    if emit is not None:
        await emit(event)
