"""
Operation metric recording and analytics.

Appends one immutable metric per tracked operation and answers the
read-only reporting queries built on top of them. Empty data produces
zero values rather than errors.
"""

from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from ..storage.models import (
    AgentCost,
    AgentStats,
    CostSummary,
    ErrorStat,
    OperationMetric,
    TimeWindow,
    utc_now,
)
from ..storage.repository import BudgetRepository, MetricsRepository
from .ledger import budget_status_of


class MetricsRecorder:
    """Durable, append-only store of operation metrics."""

    def __init__(
        self,
        metrics: MetricsRepository,
        budgets: BudgetRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the recorder.

        Args:
            metrics: Metric persistence
            budgets: Budget persistence, joined for budget status in stats
            clock: Source of record timestamps
        """
        self.metrics = metrics
        self.budgets = budgets
        self.clock = clock

    def record(self, metric: OperationMetric) -> OperationMetric:
        """Persist a metric, stamping it with the recorder's clock.

        Any timestamp or id set by the caller is replaced.

        Returns:
            The stored metric with ``id`` and ``timestamp`` populated
        """
        stamped = replace(metric, timestamp=self.clock(), id=None)
        row_id = self.metrics.insert(stamped)
        return replace(stamped, id=row_id)

    def stats_for_agent(
        self,
        agent_id: str,
        window: Optional[TimeWindow] = None,
    ) -> AgentStats:
        """Success rate, latency, cost and budget status for one agent."""
        totals = self.metrics.agent_totals(agent_id, window)
        total = totals["total_operations"]

        return AgentStats(
            agent_id=agent_id,
            total_operations=total,
            success_rate=totals["success_count"] / total if total else 0.0,
            avg_duration_ms=totals["total_duration_ms"] / total if total else 0.0,
            total_cost_usd=totals["total_cost_usd"],
            total_tokens_used=totals["total_tokens_used"],
            budget_status=budget_status_of(self.budgets.get(agent_id)),
        )

    def top_expensive_agents(
        self,
        limit: int = 10,
        window: Optional[TimeWindow] = None,
    ) -> List[AgentCost]:
        """Agents ranked by total cost, highest first."""
        _require_positive_limit(limit)
        return self.metrics.cost_by_agent(limit, window)

    def slowest_operations(
        self,
        limit: int = 10,
        window: Optional[TimeWindow] = None,
    ) -> List[OperationMetric]:
        """Operations ranked by duration, longest first."""
        _require_positive_limit(limit)
        return self.metrics.fetch_slowest(limit, window)

    def error_stats(self, window: Optional[TimeWindow] = None) -> List[ErrorStat]:
        """Failed operations grouped by error type, most frequent first."""
        return self.metrics.error_groups(window)

    def cost_summary(self, window: Optional[TimeWindow] = None) -> CostSummary:
        total_cost, total_operations = self.metrics.cost_totals(window)
        return CostSummary(
            total_cost_usd=total_cost,
            total_operations=total_operations,
            avg_cost_per_operation=(
                total_cost / total_operations if total_operations else 0.0
            ),
        )

    def recent_operations(
        self,
        agent_id: Optional[str] = None,
        limit: int = 100,
        window: Optional[TimeWindow] = None,
    ) -> List[OperationMetric]:
        """Most recent operations, optionally for a single agent."""
        _require_positive_limit(limit)
        return self.metrics.fetch_recent(agent_id, limit, window)


def _require_positive_limit(limit: int) -> None:
    if limit <= 0:
        raise ValueError("limit must be > 0")
