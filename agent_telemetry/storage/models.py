"""
Data models for storage layer.

Defines the persisted records and the report structures built from them.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class BudgetStatus(Enum):
    """Budget state reported alongside agent statistics."""
    OK = "ok"
    WARNING = "warning"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class OperationMetric:
    """Immutable record of one tracked agent operation.

    Append-only facts: exactly one is written per tracked invocation and
    none is ever modified. ``timestamp`` and ``id`` are assigned by the
    recorder when the metric is stored.
    """
    agent_id: str
    operation: str
    duration_ms: int
    success: bool
    page_id: Optional[str] = None
    tokens_used: int = 0
    cost_usd: float = 0.0
    cache_hit_rate: Optional[float] = None
    database_queries: int = 0
    api_calls: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    memory_mb: Optional[float] = None
    cpu_percent: Optional[float] = None
    timestamp: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        """Validate fields and default absent counters to zero."""
        if not self.agent_id:
            raise ValueError("agent_id cannot be empty")
        if not self.operation:
            raise ValueError("operation cannot be empty")

        # frozen dataclass: normalise None counters through object.__setattr__
        for name in ("tokens_used", "database_queries", "api_calls"):
            if getattr(self, name) is None:
                object.__setattr__(self, name, 0)
        if self.cost_usd is None:
            object.__setattr__(self, "cost_usd", 0.0)

        if self.duration_ms < 0:
            raise ValueError("duration_ms cannot be negative")
        if self.tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")
        if not math.isfinite(self.cost_usd) or self.cost_usd < 0:
            raise ValueError("cost_usd cannot be negative or non-finite")
        if self.database_queries < 0 or self.api_calls < 0:
            raise ValueError("database_queries and api_calls cannot be negative")
        if self.cache_hit_rate is not None and not 0 <= self.cache_hit_rate <= 1:
            raise ValueError("cache_hit_rate must be between 0 and 1")
        if self.success and (self.error_type or self.error_message):
            raise ValueError("successful operations cannot carry error details")


@dataclass(frozen=True)
class CostBudget:
    """Per-agent spend counters and ceilings.

    Rows are replaced, never mutated in place; the ledger builds a new
    instance for every update.
    """
    agent_id: str
    daily_budget_usd: float
    monthly_budget_usd: float
    alert_threshold: float
    today_spent_usd: float
    month_spent_usd: float
    last_daily_reset: datetime
    last_monthly_reset: datetime
    budget_exceeded: bool
    created_at: datetime
    updated_at: datetime

    def __post_init__(self):
        """Reject ceilings and counters that would poison the arithmetic."""
        if not self.agent_id:
            raise ValueError("agent_id cannot be empty")
        for name in ("daily_budget_usd", "monthly_budget_usd"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be a finite number > 0")
        if not 0 < self.alert_threshold <= 1:
            raise ValueError("alert_threshold must be in (0, 1]")
        for name in ("today_spent_usd", "month_spent_usd"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a finite number >= 0")

    @property
    def daily_alert_level(self) -> float:
        """Daily spend at which the early warning fires."""
        return self.daily_budget_usd * self.alert_threshold

    @property
    def monthly_alert_level(self) -> float:
        """Monthly spend at which the early warning fires."""
        return self.monthly_budget_usd * self.alert_threshold


def utc_now() -> datetime:
    """Current time as an aware UTC datetime; the default clock everywhere."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range [start, end) used to filter analytics."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("window start must be before window end")


@dataclass(frozen=True)
class AgentStats:
    """Aggregated performance and cost figures for one agent."""
    agent_id: str
    total_operations: int
    success_rate: float
    avg_duration_ms: float
    total_cost_usd: float
    total_tokens_used: int
    budget_status: BudgetStatus


@dataclass(frozen=True)
class AgentCost:
    """Total spend of one agent, used for top-spender rankings."""
    agent_id: str
    total_cost_usd: float
    operation_count: int


@dataclass(frozen=True)
class ErrorStat:
    """Failed operations grouped by error type."""
    error_type: str
    count: int
    agent_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CostSummary:
    """Spend across all agents."""
    total_cost_usd: float
    total_operations: int
    avg_cost_per_operation: float
