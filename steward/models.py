"""Data models for Steward."""

from datetime import date
from enum import Enum
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class ReceiptCategory(str, Enum):
    """Receipt categories."""

    FOOD_DINING = "Food & Dining"
    COFFEE = "Coffee"
    GROCERIES = "Groceries"
    GAS = "Gas"
    SHOPPING = "Shopping"
    TRANSPORTATION = "Transportation"
    ENTERTAINMENT = "Entertainment"
    BILLS_UTILITIES = "Bills & Utilities"
    TRAVEL = "Travel"
    HEALTH = "Health"
    SUBSCRIPTIONS = "Subscriptions"
    OTHER = "Other"


class Receipt(BaseModel):
    """A stored receipt."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    merchant: str
    total: float  # Always positive, the amount paid
    purchase_date: date
    category: ReceiptCategory | None = None
    currency: str = "USD"

    model_config = ConfigDict(from_attributes=True)


class ReceiptCreate(BaseModel):
    """Receipt data for creation (before ID assignment)."""

    merchant: str
    total: float
    purchase_date: date
    category: ReceiptCategory | None = None
    currency: str = "USD"


# ==================== QUERY AGENT ====================


class QueryRequest(BaseModel):
    """Natural language query request."""

    query: str
    streaming: bool = False
    reasoning: bool | None = None  # None falls back to settings.agent_use_llm


class FunctionCall(BaseModel):
    """An analytics function invocation, synthesized or requested by the model."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class NormalizedResult(BaseModel):
    """Common shape for analytics results."""

    function: str
    total: float
    breakdown: list[dict[str, Any]] | None = None
    count: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class AgentResponse(BaseModel):
    """Terminal value of one dispatch."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str
    data: Any = None
    insights: list[str] | None = None
    error: str | None = None
    cached: bool = False
    execution_time: float = Field(default=0.0, alias="executionTime")  # milliseconds


class StreamingEvent(BaseModel):
    """One unit of the newline-delimited streaming protocol."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["start", "tool_call", "complete", "error"]
    message: str | None = None
    tool: str | None = None
    arguments: dict[str, Any] | None = None
    status: Literal["started", "completed", "failed"] | None = None
    response: AgentResponse | None = None
    error: str | None = None
    execution_time: float | None = Field(default=None, alias="executionTime")

    @property
    def is_terminal(self) -> bool:
        return self.type in ("complete", "error")

    def to_line(self) -> str:
        """Serialize as one line of newline-delimited JSON."""
        return self.model_dump_json(by_alias=True, exclude_none=True) + "\n"


class CacheStats(BaseModel):
    """Aggregate response cache statistics."""

    model_config = ConfigDict(populate_by_name=True)

    size: int
    hits: int
    misses: int
    hit_rate: float = Field(alias="hitRate")
    user_specific_entries: int = Field(alias="userSpecificEntries")
    keys: list[str]


class CacheHealth(BaseModel):
    """Response cache health report."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["healthy", "degraded", "unhealthy"]
    hit_rate: float = Field(alias="hitRate")
    size: int
    memory_usage: int = Field(alias="memoryUsage")  # estimated bytes
