"""Tests for function execution and result normalization."""

from unittest.mock import AsyncMock

import pytest

from steward.errors import ExecutionError
from steward.services.executor import FunctionExecutor, normalize_result


class TestNormalizeResult:
    def test_bare_number(self):
        result = normalize_result("getSpendingByTime", 42)
        assert result.total == 42.0
        assert result.breakdown is None
        assert result.count is None

    def test_mapping_keeps_extra_fields_as_details(self):
        result = normalize_result(
            "getSpendingByVendor", {"vendor": "chick-fil-a", "total": 45.92, "count": 3, "currency": "USD"}
        )
        assert result.total == 45.92
        assert result.count == 3
        assert result.details == {"vendor": "chick-fil-a", "currency": "USD"}

    def test_mapping_count_defaults_to_breakdown_length(self):
        result = normalize_result("x", {"total": 10, "breakdown": [{"total": 4}, {"total": 6}]})
        assert result.count == 2

    def test_list_of_objects(self):
        result = normalize_result(
            "getTopMerchants",
            [{"vendor": "Costco", "total": 420.0}, {"vendor": "Target", "total": 120.5}],
        )
        assert result.total == 540.5
        assert result.count == 2
        assert result.breakdown[0]["vendor"] == "Costco"

    def test_empty_list(self):
        result = normalize_result("detectSpendingAnomalies", [])
        assert result.total == 0
        assert result.count == 0

    @pytest.mark.parametrize("bad", ["lots", None, True, {"count": 3}, [1, 2], {"total": 1, "breakdown": "x"}])
    def test_unrecognized_shapes(self, bad):
        with pytest.raises(ExecutionError):
            normalize_result("x", bad)


class TestFunctionExecutor:
    @pytest.mark.asyncio
    async def test_executes_with_user_and_arguments(self, executor, vendor_fn):
        result = await executor.execute("getSpendingByVendor", {"vendor": "chick-fil-a"}, "U1")
        vendor_fn.assert_awaited_once_with("U1", {"vendor": "chick-fil-a"})
        assert result.function == "getSpendingByVendor"
        assert result.total == 45.92

    @pytest.mark.asyncio
    async def test_unknown_function(self, executor):
        with pytest.raises(ExecutionError) as exc_info:
            await executor.execute("getHoroscope", {}, "U1")
        assert exc_info.value.function == "getHoroscope"
        assert "Unknown function" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_collaborator_failure_is_wrapped(self):
        boom = RuntimeError("database is locked")
        executor = FunctionExecutor({"getSpendingByTime": AsyncMock(side_effect=boom)})
        with pytest.raises(ExecutionError) as exc_info:
            await executor.execute("getSpendingByTime", {}, "U1")
        assert exc_info.value.cause is boom
        assert "database is locked" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_sync_functions_are_supported(self):
        executor = FunctionExecutor({"getSpendingByTime": lambda user_id, params: 99.5})
        result = await executor.execute("getSpendingByTime", {}, "U1")
        assert result.total == 99.5

    @pytest.mark.asyncio
    async def test_arguments_are_copied(self, executor, vendor_fn):
        arguments = {"vendor": "target"}
        await executor.execute("getSpendingByVendor", arguments, "U1")
        passed = vendor_fn.await_args.args[1]
        assert passed == arguments
        assert passed is not arguments

    def test_default_registry(self):
        assert "getSpendingTrends" in FunctionExecutor().function_names
