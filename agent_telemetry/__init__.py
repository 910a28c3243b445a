"""
Agent operation telemetry and cost-budget governor.
"""

from .config.loader import TelemetryConfig, load_telemetry_config
from .service import AgentTelemetryService
from .storage.models import BudgetStatus, CostBudget, OperationMetric, TimeWindow

__all__ = [
    "AgentTelemetryService",
    "BudgetStatus",
    "CostBudget",
    "OperationMetric",
    "TelemetryConfig",
    "TimeWindow",
    "load_telemetry_config",
]
