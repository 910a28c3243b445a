"""
Unit tests for storage layer.

Tests schema creation, metric insertion and retrieval, and budget row
persistence.
"""

import os
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from agent_telemetry.storage.db import get_connection
from agent_telemetry.storage.models import CostBudget, OperationMetric, TimeWindow
from agent_telemetry.storage.repository import (
    BudgetRepository,
    MetricsRepository,
    TelemetryStorageError,
    initialize_schema,
)


def _metric(agent_id="agent-1", minute=0, **overrides) -> OperationMetric:
    values = dict(
        agent_id=agent_id,
        operation="generate_page",
        duration_ms=100,
        success=True,
        tokens_used=1000,
        cost_usd=0.01,
        timestamp=datetime(2024, 1, 1, 12, minute, 0),
    )
    values.update(overrides)
    return OperationMetric(**values)


def _budget(agent_id="agent-1", **overrides) -> CostBudget:
    now = datetime(2024, 1, 1, 9, 0, 0)
    values = dict(
        agent_id=agent_id,
        daily_budget_usd=1.0,
        monthly_budget_usd=10.0,
        alert_threshold=0.8,
        today_spent_usd=0.0,
        month_spent_usd=0.0,
        last_daily_reset=now,
        last_monthly_reset=now,
        budget_exceeded=False,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return CostBudget(**values)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self, db_path):
        conn = get_connection(db_path)
        try:
            tables = {
                row[0] for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                )
            }
            assert {"agent_operation_metric", "agent_cost_budget"} <= tables

            columns = [col[1] for col in conn.execute("PRAGMA table_info(agent_operation_metric)")]
            assert columns == [
                'id', 'timestamp', 'agent_id', 'operation', 'page_id',
                'duration_ms', 'tokens_used', 'cost_usd', 'cache_hit_rate',
                'database_queries', 'api_calls', 'success', 'error_type',
                'error_message', 'memory_mb', 'cpu_percent',
            ]
        finally:
            conn.close()

    def test_schema_creation_is_idempotent(self, db_path):
        initialize_schema(db_path)
        initialize_schema(db_path)

    def test_missing_schema_raises_storage_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = MetricsRepository(os.path.join(temp_dir, "empty.db"))
            with pytest.raises(TelemetryStorageError, match="no such table"):
                repo.insert(_metric())


class TestOperationMetricModel:
    """Test OperationMetric validation at the boundary."""

    def test_counters_default_to_zero(self):
        metric = OperationMetric(agent_id="a", operation="op", duration_ms=5, success=True)
        assert metric.tokens_used == 0
        assert metric.cost_usd == 0.0
        assert metric.database_queries == 0
        assert metric.api_calls == 0

    def test_none_counters_normalised(self):
        metric = OperationMetric(
            agent_id="a", operation="op", duration_ms=5, success=True,
            tokens_used=None, database_queries=None, api_calls=None, cost_usd=None,
        )
        assert metric.tokens_used == 0
        assert metric.api_calls == 0
        assert metric.cost_usd == 0.0

    @pytest.mark.parametrize("overrides, message", [
        ({"agent_id": ""}, "agent_id"),
        ({"operation": ""}, "operation"),
        ({"duration_ms": -1}, "duration_ms"),
        ({"tokens_used": -1}, "tokens_used"),
        ({"cost_usd": -0.5}, "cost_usd"),
        ({"cost_usd": float("nan")}, "cost_usd"),
        ({"api_calls": -2}, "api_calls"),
        ({"cache_hit_rate": 1.5}, "cache_hit_rate"),
        ({"error_type": "ValueError"}, "error details"),
    ])
    def test_invalid_metrics_rejected(self, overrides, message):
        with pytest.raises(ValueError, match=message):
            _metric(**overrides)


class TestMetricInsertion:
    """Test operation metric insertion and retrieval."""

    def test_insert_and_fetch_all_fields(self, db_path):
        repo = MetricsRepository(db_path)
        metric = _metric(
            page_id="page-9",
            cache_hit_rate=0.25,
            database_queries=3,
            api_calls=2,
            memory_mb=128.5,
            cpu_percent=12.0,
        )
        row_id = repo.insert(metric)

        stored = repo.fetch_recent()
        assert len(stored) == 1
        assert stored[0].id == row_id
        assert stored[0].timestamp == datetime(2024, 1, 1, 12, 0, 0)
        assert stored[0].page_id == "page-9"
        assert stored[0].cache_hit_rate == 0.25
        assert stored[0].database_queries == 3
        assert stored[0].api_calls == 2
        assert stored[0].memory_mb == 128.5
        assert stored[0].cpu_percent == 12.0
        assert stored[0].success is True

    def test_failed_metric_round_trip(self, db_path):
        repo = MetricsRepository(db_path)
        repo.insert(_metric(success=False, error_type="TimeoutError", error_message="slow"))

        stored = repo.fetch_recent()[0]
        assert stored.success is False
        assert stored.error_type == "TimeoutError"
        assert stored.error_message == "slow"

    def test_insert_requires_timestamp(self, db_path):
        with pytest.raises(ValueError, match="timestamp"):
            MetricsRepository(db_path).insert(_metric(timestamp=None))

    def test_fetch_recent_newest_first_with_filters(self, db_path):
        repo = MetricsRepository(db_path)
        repo.insert(_metric("agent-1", minute=0))
        repo.insert(_metric("agent-2", minute=1))
        repo.insert(_metric("agent-1", minute=2))

        events = repo.fetch_recent()
        assert [e.timestamp.minute for e in events] == [2, 1, 0]

        agent_events = repo.fetch_recent(agent_id="agent-1")
        assert [e.agent_id for e in agent_events] == ["agent-1", "agent-1"]

        assert len(repo.fetch_recent(limit=2)) == 2

    def test_window_is_half_open(self, db_path):
        repo = MetricsRepository(db_path)
        for minute in range(4):
            repo.insert(_metric(minute=minute))

        window = TimeWindow(
            start=datetime(2024, 1, 1, 12, 1, 0),
            end=datetime(2024, 1, 1, 12, 3, 0),
        )
        minutes = sorted(e.timestamp.minute for e in repo.fetch_recent(window=window))
        assert minutes == [1, 2]

    def test_window_orders_microsecond_timestamps(self, db_path):
        repo = MetricsRepository(db_path)
        repo.insert(_metric(timestamp=datetime(2024, 1, 1, 12, 0, 0)))
        repo.insert(_metric(timestamp=datetime(2024, 1, 1, 12, 0, 0, 500)))

        window = TimeWindow(
            start=datetime(2024, 1, 1, 12, 0, 0, 1),
            end=datetime(2024, 1, 1, 12, 0, 1),
        )
        assert len(repo.fetch_recent(window=window)) == 1

    def test_invalid_window_rejected(self):
        with pytest.raises(ValueError, match="window start"):
            TimeWindow(start=datetime(2024, 1, 2), end=datetime(2024, 1, 1))


class TestAppendOnlyNature:
    """Test that metric storage maintains append-only behavior."""

    def test_no_update_methods_exist(self):
        public = {name for name in dir(MetricsRepository) if not name.startswith('_')}
        for name in public:
            assert 'update' not in name.lower()
            assert 'delete' not in name.lower()
            assert 'remove' not in name.lower()
            assert 'modify' not in name.lower()


class TestBudgetRows:
    """Test cost budget row persistence."""

    def test_get_missing_budget(self, db_path):
        assert BudgetRepository(db_path).get("ghost") is None

    def test_create_if_absent_is_idempotent(self, db_path):
        repo = BudgetRepository(db_path)
        first, created = repo.create_if_absent(_budget(daily_budget_usd=2.0))
        second, created_again = repo.create_if_absent(_budget(daily_budget_usd=50.0))

        assert created is True
        assert created_again is False
        assert first == second
        assert second.daily_budget_usd == 2.0

    def test_change_applies_mutation(self, db_path):
        repo = BudgetRepository(db_path)
        repo.create_if_absent(_budget())
        later = datetime(2024, 1, 1, 10, 0, 0)

        previous, updated = repo.change(
            "agent-1",
            lambda b: replace(b, today_spent_usd=0.5, month_spent_usd=0.5, updated_at=later),
        )
        assert previous.today_spent_usd == 0.0
        assert updated.today_spent_usd == 0.5
        assert repo.get("agent-1") == updated

    def test_change_without_budget_returns_none(self, db_path):
        assert BudgetRepository(db_path).change("ghost", lambda b: b) is None

    def test_change_creates_missing_budget(self, db_path):
        repo = BudgetRepository(db_path)
        previous, updated = repo.change("agent-1", lambda b: b, create_with=_budget)
        assert previous == updated
        assert repo.get("agent-1") is not None

    def test_change_rolls_back_on_error(self, db_path):
        repo = BudgetRepository(db_path)

        def _explode(budget):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            repo.change("agent-1", _explode, create_with=_budget)

        # Lazy creation happened in the same transaction and was rolled back
        assert repo.get("agent-1") is None

    def test_list_exceeded(self, db_path):
        repo = BudgetRepository(db_path)
        repo.create_if_absent(_budget("b-agent", budget_exceeded=True))
        repo.create_if_absent(_budget("a-agent", budget_exceeded=True))
        repo.create_if_absent(_budget("c-agent"))

        assert [b.agent_id for b in repo.list_exceeded()] == ["a-agent", "b-agent"]

    def test_change_raises_when_created_row_is_missing(self, db_path):
        repo = BudgetRepository(db_path)

        with pytest.raises(TelemetryStorageError, match="agent-1"):
            repo.change("agent-1", lambda b: b, create_with=lambda: _budget("other-agent"))

        assert repo.get("agent-1") is None
        assert repo.get("other-agent") is None


class TestCostBudgetModel:
    """Test CostBudget validation."""

    @pytest.mark.parametrize("overrides, message", [
        ({"agent_id": ""}, "agent_id"),
        ({"daily_budget_usd": float("nan")}, "daily_budget_usd"),
        ({"daily_budget_usd": 0.0}, "daily_budget_usd"),
        ({"monthly_budget_usd": float("inf")}, "monthly_budget_usd"),
        ({"alert_threshold": float("nan")}, "alert_threshold"),
        ({"alert_threshold": 0.0}, "alert_threshold"),
        ({"today_spent_usd": float("nan")}, "today_spent_usd"),
        ({"month_spent_usd": -1.0}, "month_spent_usd"),
    ])
    def test_invalid_budgets_rejected(self, overrides, message):
        with pytest.raises(ValueError, match=message):
            _budget(**overrides)


class TestAwareTimestamps:
    """Test storage of timezone-aware timestamps."""

    def test_aware_timestamps_stored_as_utc(self, db_path):
        repo = MetricsRepository(db_path)
        local = datetime(2024, 6, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        repo.insert(_metric(timestamp=local))

        [stored] = repo.fetch_recent()
        assert stored.timestamp == local
        assert stored.timestamp.utcoffset() == timedelta(0)
        assert stored.timestamp.hour == 12

    def test_window_over_mixed_offsets(self, db_path):
        repo = MetricsRepository(db_path)
        utc = timezone.utc
        # 11:30 UTC written with a +02:00 offset sorts before 12:00 UTC
        plus_two = timezone(timedelta(hours=2))
        repo.insert(_metric(timestamp=datetime(2024, 6, 1, 13, 30, tzinfo=plus_two)))
        repo.insert(_metric(timestamp=datetime(2024, 6, 1, 12, 0, tzinfo=utc)))

        window = TimeWindow(
            start=datetime(2024, 6, 1, 11, 45, tzinfo=utc),
            end=datetime(2024, 6, 1, 13, 0, tzinfo=utc),
        )
        [inside] = repo.fetch_recent(window=window)
        assert inside.timestamp == datetime(2024, 6, 1, 12, 0, tzinfo=utc)
