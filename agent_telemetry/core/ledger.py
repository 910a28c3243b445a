"""
Per-agent cost budgets.

Maintains rolling daily and monthly spend counters, rolls them over when
their period has elapsed, raises threshold alerts and answers whether an
agent may keep executing.

Period rules:
1. Daily counter resets once 24 hours have elapsed since the last reset
2. Monthly counter resets once 30 days have elapsed since the last reset
   (an elapsed-time window, not calendar months)
3. A budget is exceeded while either counter is above its ceiling

Elapsed time is measured on timezone-aware timestamps (UTC by default),
so daylight saving changes never stretch or shrink a period.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..config.loader import TelemetryConfig
from ..observability.logger import get_logger
from ..storage.models import BudgetStatus, CostBudget, utc_now
from ..storage.repository import BudgetRepository

log = get_logger("agent_telemetry.budget")

DAILY_PERIOD = timedelta(days=1)
MONTHLY_PERIOD = timedelta(days=30)


@dataclass(frozen=True)
class SpendOutcome:
    """Result of applying one cost to a budget."""
    budget: CostBudget
    daily_rollover: bool
    monthly_rollover: bool
    daily_warning: bool
    monthly_warning: bool


def apply_spend(budget: CostBudget, cost_usd: float, now: datetime) -> SpendOutcome:
    """Add a cost to a budget, rolling periods over first.

    Pure function: the caller is responsible for persisting the returned
    budget atomically.

    Args:
        budget: Budget as currently stored
        cost_usd: Non-negative cost to add
        now: Current time

    Returns:
        SpendOutcome with the new budget and the alerts it triggers
    """
    daily_rollover = now - budget.last_daily_reset >= DAILY_PERIOD
    monthly_rollover = now - budget.last_monthly_reset >= MONTHLY_PERIOD

    previous_today = 0.0 if daily_rollover else budget.today_spent_usd
    previous_month = 0.0 if monthly_rollover else budget.month_spent_usd
    today = previous_today + cost_usd
    month = previous_month + cost_usd

    daily_exceeded = today > budget.daily_budget_usd
    monthly_exceeded = month > budget.monthly_budget_usd

    updated = replace(
        budget,
        today_spent_usd=today,
        month_spent_usd=month,
        last_daily_reset=now if daily_rollover else budget.last_daily_reset,
        last_monthly_reset=now if monthly_rollover else budget.last_monthly_reset,
        budget_exceeded=daily_exceeded or monthly_exceeded,
        updated_at=now,
    )

    # Warn only on the update that crosses the level, once per period
    daily_warning = (
        previous_today < budget.daily_alert_level <= today and not daily_exceeded
    )
    monthly_warning = (
        previous_month < budget.monthly_alert_level <= month and not monthly_exceeded
    )

    return SpendOutcome(
        budget=updated,
        daily_rollover=daily_rollover,
        monthly_rollover=monthly_rollover,
        daily_warning=daily_warning,
        monthly_warning=monthly_warning,
    )


def budget_status_of(budget: Optional[CostBudget]) -> BudgetStatus:
    """Classify a budget as ok, warning or exceeded.

    An agent without a budget has spent nothing and is reported as ok.
    """
    if budget is None:
        return BudgetStatus.OK
    if budget.budget_exceeded:
        return BudgetStatus.EXCEEDED
    if budget.today_spent_usd > budget.daily_alert_level:
        return BudgetStatus.WARNING
    return BudgetStatus.OK


class BudgetLedger:
    """Owns all cost budgets and their period arithmetic.

    Only ``add_spend`` and ``reset_budget`` change spend counters or the
    exceeded flag.
    """

    def __init__(
        self,
        repository: BudgetRepository,
        config: Optional[TelemetryConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the ledger.

        Args:
            repository: Budget persistence
            config: Default ceilings, alert threshold and alert policy
            clock: Source of the current time
        """
        self.repository = repository
        self.config = config or TelemetryConfig()
        self.clock = clock

    def initialize_budget(
        self,
        agent_id: str,
        daily_budget_usd: Optional[float] = None,
        monthly_budget_usd: Optional[float] = None,
    ) -> CostBudget:
        """Create a budget for an agent unless one already exists.

        An existing budget is returned unchanged; its ceilings are never
        overwritten by this call.

        Args:
            agent_id: Agent to budget
            daily_budget_usd: Daily ceiling (configured default if None)
            monthly_budget_usd: Monthly ceiling (configured default if None)

        Returns:
            The agent's budget

        Raises:
            ValueError: If agent_id is empty or a ceiling is not positive
        """
        _require_agent_id(agent_id)
        existing = self.repository.get(agent_id)
        if existing is not None:
            return existing

        budget, created = self.repository.create_if_absent(
            self._new_budget(agent_id, daily_budget_usd, monthly_budget_usd)
        )
        if created:
            log.info(
                "budget_initialized",
                agent_id=agent_id,
                daily_budget_usd=budget.daily_budget_usd,
                monthly_budget_usd=budget.monthly_budget_usd,
            )
        return budget

    def get_budget(self, agent_id: str) -> Optional[CostBudget]:
        """Return the agent's budget, or None if it has never been created."""
        return self.repository.get(agent_id)

    def add_spend(self, agent_id: str, cost_usd: float) -> CostBudget:
        """Add an operation's cost to the agent's running totals.

        The budget is created with defaults on first use. Read, rollover,
        addition and write happen in one write transaction, so concurrent
        calls for the same agent never lose an update.

        Args:
            agent_id: Agent that incurred the cost
            cost_usd: Non-negative cost in USD

        Returns:
            The updated budget

        Raises:
            ValueError: If agent_id is empty or cost_usd is negative or not finite
        """
        _require_agent_id(agent_id)
        if not math.isfinite(cost_usd) or cost_usd < 0:
            raise ValueError("cost_usd must be a finite number >= 0")

        outcomes: List[SpendOutcome] = []

        def _spend(budget: CostBudget) -> CostBudget:
            # Read under the write lock so updated_at never goes backwards
            outcome = apply_spend(budget, cost_usd, self.clock())
            outcomes.append(outcome)
            return outcome.budget

        previous, updated = self.repository.change(
            agent_id,
            _spend,
            create_with=lambda: self._new_budget(agent_id, None, None),
        )
        self._emit_alerts(agent_id, previous, outcomes[-1])
        return updated

    def can_execute(self, agent_id: str) -> bool:
        """Whether the agent is still within budget.

        Agents that were never tracked cannot have exceeded anything, so
        they are allowed.
        """
        budget = self.repository.get(agent_id)
        return not budget.budget_exceeded if budget else True

    def reset_budget(self, agent_id: str) -> Optional[CostBudget]:
        """Zero both counters and clear the exceeded flag (admin operation).

        Returns:
            The reset budget, or None if the agent has no budget
        """
        def _reset(budget: CostBudget) -> CostBudget:
            now = self.clock()
            return replace(
                budget,
                today_spent_usd=0.0,
                month_spent_usd=0.0,
                last_daily_reset=now,
                last_monthly_reset=now,
                budget_exceeded=False,
                updated_at=now,
            )

        result = self.repository.change(agent_id, _reset)
        if result is None:
            log.warning("budget_reset_skipped", agent_id=agent_id, reason="no budget")
            return None

        previous, updated = result
        log.info(
            "budget_reset",
            agent_id=agent_id,
            previous_today_spent_usd=round(previous.today_spent_usd, 6),
            previous_month_spent_usd=round(previous.month_spent_usd, 6),
            was_exceeded=previous.budget_exceeded,
        )
        return updated

    def list_budget_alerts(self) -> List[CostBudget]:
        """Every budget currently in the exceeded state."""
        return self.repository.list_exceeded()

    def budget_status(self, agent_id: str) -> BudgetStatus:
        return budget_status_of(self.repository.get(agent_id))

    def _new_budget(
        self,
        agent_id: str,
        daily_budget_usd: Optional[float],
        monthly_budget_usd: Optional[float],
    ) -> CostBudget:
        daily = (
            self.config.default_daily_budget_usd
            if daily_budget_usd is None else daily_budget_usd
        )
        monthly = (
            self.config.default_monthly_budget_usd
            if monthly_budget_usd is None else monthly_budget_usd
        )
        now = self.clock()
        return CostBudget(
            agent_id=agent_id,
            daily_budget_usd=float(daily),
            monthly_budget_usd=float(monthly),
            alert_threshold=self.config.budget_alert_threshold,
            today_spent_usd=0.0,
            month_spent_usd=0.0,
            last_daily_reset=now,
            last_monthly_reset=now,
            budget_exceeded=False,
            created_at=now,
            updated_at=now,
        )

    def _emit_alerts(
        self,
        agent_id: str,
        previous: CostBudget,
        outcome: SpendOutcome,
    ) -> None:
        budget = outcome.budget

        if outcome.daily_rollover:
            log.info(
                "budget_daily_rollover",
                agent_id=agent_id,
                previous_spent_usd=round(previous.today_spent_usd, 6),
            )
        if outcome.monthly_rollover:
            log.info(
                "budget_monthly_rollover",
                agent_id=agent_id,
                previous_spent_usd=round(previous.month_spent_usd, 6),
            )

        if outcome.daily_warning:
            log.warning(
                "budget_threshold_warning",
                agent_id=agent_id,
                period="daily",
                spent_usd=round(budget.today_spent_usd, 2),
                budget_usd=round(budget.daily_budget_usd, 2),
                percent_used=round(budget.today_spent_usd / budget.daily_budget_usd * 100),
            )
        if outcome.monthly_warning:
            log.warning(
                "budget_threshold_warning",
                agent_id=agent_id,
                period="monthly",
                spent_usd=round(budget.month_spent_usd, 2),
                budget_usd=round(budget.monthly_budget_usd, 2),
                percent_used=round(budget.month_spent_usd / budget.monthly_budget_usd * 100),
            )

        newly_exceeded = budget.budget_exceeded and not previous.budget_exceeded
        if budget.budget_exceeded and (self.config.repeat_exceeded_alerts or newly_exceeded):
            log.error(
                "budget_exceeded",
                agent_id=agent_id,
                today_spent_usd=round(budget.today_spent_usd, 2),
                daily_budget_usd=round(budget.daily_budget_usd, 2),
                month_spent_usd=round(budget.month_spent_usd, 2),
                monthly_budget_usd=round(budget.monthly_budget_usd, 2),
                newly_exceeded=newly_exceeded,
            )


def _require_agent_id(agent_id: str) -> None:
    if not agent_id or not agent_id.strip():
        raise ValueError("agent_id is required and cannot be empty")
