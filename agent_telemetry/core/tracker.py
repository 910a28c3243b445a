"""
Operation tracking.

Wraps a unit of agent work, times it and records its telemetry exactly
once, whether the work returns or raises.

Failure policy:
- Errors raised by the work are captured on the metric and re-raised
  unchanged once telemetry has been attempted
- Errors raised while recording telemetry are logged and never reach the
  caller, so observability cannot change the outcome of the work
"""

import time
from typing import Any, Callable, Optional, TypeVar

from ..config.loader import TelemetryConfig
from ..observability.logger import get_logger
from ..storage.models import OperationMetric
from .ledger import BudgetLedger
from .pricing import calculate_cost
from .recorder import MetricsRecorder

log = get_logger("agent_telemetry.tracker")

T = TypeVar("T")

UNKNOWN_ERROR_MESSAGE = "Unknown error"


class OperationTracker:
    """Executes agent operations while recording metrics and spend."""

    def __init__(
        self,
        recorder: MetricsRecorder,
        ledger: BudgetLedger,
        config: Optional[TelemetryConfig] = None,
    ):
        self.recorder = recorder
        self.ledger = ledger
        self.config = config or TelemetryConfig()

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
        """Run ``work`` and record one metric and one budget update for it.

        Args:
            agent_id: Agent performing the operation
            operation: Short name of the unit of work
            work: Zero-argument callable doing the work
            page_id: Optional correlation id of a generated artifact
            tokens_used: Token count known before the call
            tokens_from_result: Derives additional tokens from the result
                of a successful call

        Returns:
            Whatever ``work`` returns

        Raises:
            ValueError: If agent_id or operation is empty, or tokens_used
                is negative (before ``work`` runs)
            Exception: Any error raised by ``work``, unchanged
        """
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id is required and cannot be empty")
        if not operation or not operation.strip():
            raise ValueError("operation is required and cannot be empty")
        if tokens_used is not None and tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")

        tokens = tokens_used or 0
        success = True
        error_type = None
        error_message = None

        start = time.monotonic()
        try:
            result = work()
        except BaseException as e:
            success = False
            error_type = type(e).__name__
            error_message = str(e) or UNKNOWN_ERROR_MESSAGE
            raise
        else:
            if tokens_from_result is not None:
                tokens += self._result_tokens(tokens_from_result, result, agent_id, operation)
            return result
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            self._record_telemetry(
                agent_id=agent_id,
                operation=operation,
                page_id=page_id,
                duration_ms=duration_ms,
                tokens_used=tokens,
                success=success,
                error_type=error_type,
                error_message=error_message,
            )

    def _result_tokens(
        self,
        tokens_from_result: Callable[[Any], int],
        result: Any,
        agent_id: str,
        operation: str,
    ) -> int:
        try:
            return max(int(tokens_from_result(result) or 0), 0)
        except Exception:
            log.error(
                "telemetry_token_extraction_failed",
                agent_id=agent_id,
                operation=operation,
                exc_info=True,
            )
            return 0

    def _record_telemetry(
        self,
        agent_id: str,
        operation: str,
        page_id: Optional[str],
        duration_ms: int,
        tokens_used: int,
        success: bool,
        error_type: Optional[str],
        error_message: Optional[str],
    ) -> None:
        cost_usd = calculate_cost(tokens_used, self.config.price_per_1k_tokens)

        if self.config.enable_performance_tracking:
            try:
                self.recorder.record(OperationMetric(
                    agent_id=agent_id,
                    operation=operation,
                    page_id=page_id,
                    duration_ms=duration_ms,
                    tokens_used=tokens_used,
                    cost_usd=cost_usd,
                    success=success,
                    error_type=error_type,
                    error_message=error_message,
                ))
            except Exception:
                log.error(
                    "telemetry_record_failed",
                    agent_id=agent_id,
                    operation=operation,
                    exc_info=True,
                )

        if self.config.enable_cost_tracking:
            try:
                self.ledger.add_spend(agent_id, cost_usd)
            except Exception:
                log.error(
                    "telemetry_budget_update_failed",
                    agent_id=agent_id,
                    operation=operation,
                    cost_usd=cost_usd,
                    exc_info=True,
                )

        log.debug(
            "operation_tracked",
            agent_id=agent_id,
            operation=operation,
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            cost_usd=cost_usd,
            success=success,
        )
