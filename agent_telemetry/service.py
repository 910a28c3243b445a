"""
Agent telemetry service.

Single entry point that wires the recorder, budget ledger and operation
tracker to one database and one configuration.
"""

from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from .config.loader import TelemetryConfig
from .core.ledger import BudgetLedger
from .core.recorder import MetricsRecorder
from .core.tracker import OperationTracker
from .storage.models import (
    AgentCost,
    AgentStats,
    BudgetStatus,
    CostBudget,
    CostSummary,
    ErrorStat,
    OperationMetric,
    TimeWindow,
    utc_now,
)
from .storage.repository import BudgetRepository, MetricsRepository, initialize_schema

T = TypeVar("T")


class AgentTelemetryService:
    """Tracks agent operations, their cost, and per-agent budgets.

    Each instance owns its configuration; there is no process-wide
    mutable state, so tests and tenants can run side by side with
    different settings.
    """

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        db_path: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the service and create the schema if needed.

        Args:
            config: Telemetry settings (defaults when None)
            db_path: Database file, overriding ``config.db_path``
            clock: Source of the current time for records and budgets
        """
        self.config = config or TelemetryConfig()
        self.db_path = db_path or self.config.db_path
        initialize_schema(self.db_path)

        metrics = MetricsRepository(self.db_path)
        budgets = BudgetRepository(self.db_path)
        self.recorder = MetricsRecorder(metrics, budgets, clock=clock)
        self.ledger = BudgetLedger(budgets, self.config, clock=clock)
        self.tracker = OperationTracker(self.recorder, self.ledger, self.config)

    def track_operation(
        self,
        agent_id: str,
        operation: str,
        work: Callable[[], T],
        *,
        page_id: Optional[str] = None,
        tokens_used: Optional[int] = None,
        tokens_from_result: Optional[Callable[[T], int]] = None,
    ) -> T:
        """Run ``work`` with telemetry; see OperationTracker.track_operation."""
        return self.tracker.track_operation(
            agent_id,
            operation,
            work,
            page_id=page_id,
            tokens_used=tokens_used,
            tokens_from_result=tokens_from_result,
        )

    def record_metrics(self, metric: OperationMetric) -> OperationMetric:
        """Record a metric for work tracked outside ``track_operation``."""
        return self.recorder.record(metric)

    # Budgets

    def initialize_budget(
        self,
        agent_id: str,
        daily_budget_usd: Optional[float] = None,
        monthly_budget_usd: Optional[float] = None,
    ) -> CostBudget:
        return self.ledger.initialize_budget(agent_id, daily_budget_usd, monthly_budget_usd)

    def get_budget(self, agent_id: str) -> Optional[CostBudget]:
        return self.ledger.get_budget(agent_id)

    def add_spend(self, agent_id: str, cost_usd: float) -> CostBudget:
        return self.ledger.add_spend(agent_id, cost_usd)

    def can_execute(self, agent_id: str) -> bool:
        return self.ledger.can_execute(agent_id)

    def reset_budget(self, agent_id: str) -> Optional[CostBudget]:
        return self.ledger.reset_budget(agent_id)

    def list_budget_alerts(self) -> List[CostBudget]:
        return self.ledger.list_budget_alerts()

    def budget_status(self, agent_id: str) -> BudgetStatus:
        return self.ledger.budget_status(agent_id)

    # Analytics

    def stats_for_agent(
        self, agent_id: str, window: Optional[TimeWindow] = None
    ) -> AgentStats:
        return self.recorder.stats_for_agent(agent_id, window)

    def top_expensive_agents(
        self, limit: int = 10, window: Optional[TimeWindow] = None
    ) -> List[AgentCost]:
        return self.recorder.top_expensive_agents(limit, window)

    def slowest_operations(
        self, limit: int = 10, window: Optional[TimeWindow] = None
    ) -> List[OperationMetric]:
        return self.recorder.slowest_operations(limit, window)

    def error_stats(self, window: Optional[TimeWindow] = None) -> List[ErrorStat]:
        return self.recorder.error_stats(window)

    def cost_summary(self, window: Optional[TimeWindow] = None) -> CostSummary:
        return self.recorder.cost_summary(window)

    def recent_operations(
        self,
        agent_id: Optional[str] = None,
        limit: int = 100,
        window: Optional[TimeWindow] = None,
    ) -> List[OperationMetric]:
        return self.recorder.recent_operations(agent_id, limit, window)
