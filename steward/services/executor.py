"""Executes analytics functions and normalizes their results."""

import inspect
import logging
from collections.abc import Callable, Mapping
from numbers import Real
from typing import Any

from steward.errors import ExecutionError
from steward.models import NormalizedResult

logger = logging.getLogger(__name__)

AnalyticsFunction = Callable[[str, dict[str, Any]], Any]


class FunctionExecutor:
    """Invokes named analytics functions for a user."""

    def __init__(self, functions: Mapping[str, AnalyticsFunction] | None = None):
        if functions is None:
            from steward.services.analytics import FUNCTION_REGISTRY

            functions = FUNCTION_REGISTRY
        self.functions = dict(functions)

    @property
    def function_names(self) -> list[str]:
        return list(self.functions)

    async def execute(self, name: str, arguments: dict[str, Any], user_id: str) -> NormalizedResult:
        """
        Run one analytics function and normalize what it returns.

        Raises:
            ExecutionError: Unknown function, collaborator failure, or a
                result shape that cannot be normalized. Never retried here.
        """
        fn = self.functions.get(name)
        if fn is None:
            raise ExecutionError(name, "Unknown function")

        logger.info(f"Executing {name} for user {user_id} with {arguments}")
        try:
            result = fn(user_id, dict(arguments))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"Analytics function {name} failed: {e}")
            raise ExecutionError(name, str(e) or type(e).__name__, cause=e) from e

        return normalize_result(name, result)


def normalize_result(name: str, result: Any) -> NormalizedResult:
    """Coerce a collaborator's return value into {total, breakdown?, count?}."""
    if isinstance(result, Real) and not isinstance(result, bool):
        return NormalizedResult(function=name, total=float(result))

    if isinstance(result, Mapping):
        if not isinstance(result.get("total"), Real):
            raise ExecutionError(name, "Result has no numeric total")
        breakdown = result.get("breakdown")
        if breakdown is not None and not isinstance(breakdown, list):
            raise ExecutionError(name, "Result breakdown is not a list")
        count = result.get("count")
        return NormalizedResult(
            function=name,
            total=float(result["total"]),
            breakdown=breakdown,
            count=count if count is not None else (len(breakdown) if breakdown is not None else None),
            details={k: v for k, v in result.items() if k not in ("total", "breakdown", "count")},
        )

    if isinstance(result, list):
        if not all(isinstance(item, Mapping) for item in result):
            raise ExecutionError(name, "Result list contains non-object items")
        return NormalizedResult(
            function=name,
            total=round(sum(float(item.get("total") or 0) for item in result), 2),
            breakdown=[dict(item) for item in result],
            count=len(result),
        )

    raise ExecutionError(name, f"Unrecognized result type {type(result).__name__}")
