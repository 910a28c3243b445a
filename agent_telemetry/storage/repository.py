"""
Repository pattern for data access.

Handles database operations for operation metrics (append-only) and
per-agent cost budgets (one row per agent, updated under the write lock).
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .db import get_connection, write_transaction
from .models import AgentCost, CostBudget, ErrorStat, OperationMetric, TimeWindow


UNKNOWN_ERROR_TYPE = "UnknownError"

_METRIC_COLUMNS = (
    "id, timestamp, agent_id, operation, page_id, duration_ms, tokens_used, "
    "cost_usd, cache_hit_rate, database_queries, api_calls, success, "
    "error_type, error_message, memory_mb, cpu_percent"
)

_BUDGET_COLUMNS = (
    "agent_id, daily_budget_usd, monthly_budget_usd, alert_threshold, "
    "today_spent_usd, month_spent_usd, last_daily_reset, last_monthly_reset, "
    "budget_exceeded, created_at, updated_at"
)


class TelemetryStorageError(Exception):
    """Raised when the telemetry store cannot be read or written."""


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise TelemetryStorageError(f"Failed to {action}: {e}") from e


def _to_db_time(value: datetime) -> str:
    # Aware values are normalised to UTC so the ISO text stays fixed-width
    # and lexical order matches chronological order
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _window_clause(window: Optional[TimeWindow]) -> Tuple[List[str], List[str]]:
    if window is None:
        return [], []
    return (
        ["timestamp >= ?", "timestamp < ?"],
        [_to_db_time(window.start), _to_db_time(window.end)],
    )


def _where(conditions: List[str]) -> str:
    return " WHERE " + " AND ".join(conditions) if conditions else ""


def _row_to_metric(row: sqlite3.Row) -> OperationMetric:
    return OperationMetric(
        id=row["id"],
        timestamp=_from_db_time(row["timestamp"]),
        agent_id=row["agent_id"],
        operation=row["operation"],
        page_id=row["page_id"],
        duration_ms=row["duration_ms"],
        tokens_used=row["tokens_used"],
        cost_usd=row["cost_usd"],
        cache_hit_rate=row["cache_hit_rate"],
        database_queries=row["database_queries"],
        api_calls=row["api_calls"],
        success=bool(row["success"]),
        error_type=row["error_type"],
        error_message=row["error_message"],
        memory_mb=row["memory_mb"],
        cpu_percent=row["cpu_percent"],
    )


def _row_to_budget(row: sqlite3.Row) -> CostBudget:
    return CostBudget(
        agent_id=row["agent_id"],
        daily_budget_usd=row["daily_budget_usd"],
        monthly_budget_usd=row["monthly_budget_usd"],
        alert_threshold=row["alert_threshold"],
        today_spent_usd=row["today_spent_usd"],
        month_spent_usd=row["month_spent_usd"],
        last_daily_reset=_from_db_time(row["last_daily_reset"]),
        last_monthly_reset=_from_db_time(row["last_monthly_reset"]),
        budget_exceeded=bool(row["budget_exceeded"]),
        created_at=_from_db_time(row["created_at"]),
        updated_at=_from_db_time(row["updated_at"]),
    )


def initialize_schema(db_path: str) -> None:
    """Create the metric and budget tables if they don't exist.

    ``agent_operation_metric`` is an append-only ledger: no UPDATE or
    DELETE is ever issued against it. ``agent_cost_budget`` holds one row
    per agent, enforced by the UNIQUE constraint.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        with _storage_errors("initialize schema"):
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS agent_operation_metric (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    page_id TEXT,
                    duration_ms INTEGER NOT NULL,
                    tokens_used INTEGER NOT NULL DEFAULT 0,
                    cost_usd REAL NOT NULL DEFAULT 0,
                    cache_hit_rate REAL,
                    database_queries INTEGER NOT NULL DEFAULT 0,
                    api_calls INTEGER NOT NULL DEFAULT 0,
                    success INTEGER NOT NULL,
                    error_type TEXT,
                    error_message TEXT,
                    memory_mb REAL,
                    cpu_percent REAL
                );
                CREATE INDEX IF NOT EXISTS idx_metric_agent_time
                    ON agent_operation_metric (agent_id, timestamp);
                CREATE INDEX IF NOT EXISTS idx_metric_time
                    ON agent_operation_metric (timestamp);

                CREATE TABLE IF NOT EXISTS agent_cost_budget (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    agent_id TEXT NOT NULL UNIQUE,
                    daily_budget_usd REAL NOT NULL,
                    monthly_budget_usd REAL NOT NULL,
                    alert_threshold REAL NOT NULL DEFAULT 0.8,
                    today_spent_usd REAL NOT NULL DEFAULT 0,
                    month_spent_usd REAL NOT NULL DEFAULT 0,
                    last_daily_reset TEXT NOT NULL,
                    last_monthly_reset TEXT NOT NULL,
                    budget_exceeded INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
            """)
    finally:
        conn.close()


class MetricsRepository:
    """Append-only access to operation metrics plus aggregate reads.

    Deliberately exposes no update or delete operation.
    """

    def __init__(self, db_path: str):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def insert(self, metric: OperationMetric) -> int:
        """Append a metric and return its row id.

        Args:
            metric: Metric with its timestamp already assigned

        Returns:
            The id of the new row
        """
        if metric.timestamp is None:
            raise ValueError("metric timestamp must be set before insertion")

        conn = get_connection(self.db_path)
        try:
            with _storage_errors("insert operation metric"):
                cursor = conn.execute("""
                    INSERT INTO agent_operation_metric
                    (timestamp, agent_id, operation, page_id, duration_ms,
                     tokens_used, cost_usd, cache_hit_rate, database_queries,
                     api_calls, success, error_type, error_message,
                     memory_mb, cpu_percent)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    _to_db_time(metric.timestamp),
                    metric.agent_id,
                    metric.operation,
                    metric.page_id,
                    metric.duration_ms,
                    metric.tokens_used,
                    metric.cost_usd,
                    metric.cache_hit_rate,
                    metric.database_queries,
                    metric.api_calls,
                    int(metric.success),
                    metric.error_type,
                    metric.error_message,
                    metric.memory_mb,
                    metric.cpu_percent,
                ))
                return cursor.lastrowid
        finally:
            conn.close()

    def fetch_recent(
        self,
        agent_id: Optional[str] = None,
        limit: int = 100,
        window: Optional[TimeWindow] = None,
    ) -> List[OperationMetric]:
        """Fetch metrics newest first, optionally for one agent."""
        conditions, params = _window_clause(window)
        if agent_id is not None:
            conditions.append("agent_id = ?")
            params.append(agent_id)

        query = (
            f"SELECT {_METRIC_COLUMNS} FROM agent_operation_metric"
            f"{_where(conditions)} ORDER BY timestamp DESC, id DESC LIMIT ?"
        )
        return self._fetch_metrics(query, [*params, limit])

    def fetch_slowest(
        self,
        limit: int = 10,
        window: Optional[TimeWindow] = None,
    ) -> List[OperationMetric]:
        """Fetch metrics ordered by duration, longest first."""
        conditions, params = _window_clause(window)
        query = (
            f"SELECT {_METRIC_COLUMNS} FROM agent_operation_metric"
            f"{_where(conditions)} ORDER BY duration_ms DESC, id DESC LIMIT ?"
        )
        return self._fetch_metrics(query, [*params, limit])

    def agent_totals(
        self,
        agent_id: str,
        window: Optional[TimeWindow] = None,
    ) -> Dict[str, float]:
        """Aggregate counts, durations, cost and tokens for one agent.

        Returns:
            Dictionary with total_operations, success_count,
            total_duration_ms, total_cost_usd and total_tokens_used
        """
        conditions, params = _window_clause(window)
        conditions.append("agent_id = ?")
        params.append(agent_id)

        query = f"""
            SELECT
                COUNT(*),
                SUM(success),
                SUM(duration_ms),
                SUM(cost_usd),
                SUM(tokens_used)
            FROM agent_operation_metric{_where(conditions)}
        """
        row = self._fetch_one(query, params)
        return {
            "total_operations": row[0] or 0,
            "success_count": row[1] or 0,
            "total_duration_ms": row[2] or 0,
            "total_cost_usd": float(row[3] or 0),
            "total_tokens_used": row[4] or 0,
        }

    def cost_by_agent(
        self,
        limit: int = 10,
        window: Optional[TimeWindow] = None,
    ) -> List[AgentCost]:
        """Total cost per agent, most expensive first, ties by agent id."""
        conditions, params = _window_clause(window)
        query = f"""
            SELECT agent_id, SUM(cost_usd) AS total_cost, COUNT(*)
            FROM agent_operation_metric{_where(conditions)}
            GROUP BY agent_id
            ORDER BY total_cost DESC, agent_id ASC
            LIMIT ?
        """
        conn = get_connection(self.db_path)
        try:
            with _storage_errors("aggregate cost by agent"):
                rows = conn.execute(query, [*params, limit]).fetchall()
        finally:
            conn.close()
        return [
            AgentCost(
                agent_id=row[0],
                total_cost_usd=float(row[1] or 0),
                operation_count=row[2],
            )
            for row in rows
        ]

    def error_groups(self, window: Optional[TimeWindow] = None) -> List[ErrorStat]:
        """Failed operations grouped by error type.

        Agent ids are collected per group in Python rather than with
        GROUP_CONCAT, which cannot round-trip ids containing separators.
        """
        conditions, params = _window_clause(window)
        conditions.append("success = 0")
        query = f"""
            SELECT COALESCE(error_type, ?) AS kind, agent_id, COUNT(*)
            FROM agent_operation_metric{_where(conditions)}
            GROUP BY kind, agent_id
        """
        conn = get_connection(self.db_path)
        try:
            with _storage_errors("aggregate error statistics"):
                rows = conn.execute(query, [UNKNOWN_ERROR_TYPE, *params]).fetchall()
        finally:
            conn.close()

        counts: Dict[str, int] = {}
        agents: Dict[str, set] = {}
        for kind, agent_id, count in rows:
            counts[kind] = counts.get(kind, 0) + count
            agents.setdefault(kind, set()).add(agent_id)

        stats = [
            ErrorStat(error_type=kind, count=counts[kind], agent_ids=sorted(agents[kind]))
            for kind in counts
        ]
        stats.sort(key=lambda s: (-s.count, s.error_type))
        return stats

    def cost_totals(self, window: Optional[TimeWindow] = None) -> Tuple[float, int]:
        """Total cost and operation count across all agents."""
        conditions, params = _window_clause(window)
        query = (
            "SELECT SUM(cost_usd), COUNT(*) FROM agent_operation_metric"
            f"{_where(conditions)}"
        )
        row = self._fetch_one(query, params)
        return float(row[0] or 0), row[1] or 0

    def _fetch_one(self, query: str, params: List) -> sqlite3.Row:
        conn = get_connection(self.db_path)
        try:
            with _storage_errors("query operation metrics"):
                return conn.execute(query, params).fetchone()
        finally:
            conn.close()

    def _fetch_metrics(self, query: str, params: List) -> List[OperationMetric]:
        conn = get_connection(self.db_path)
        try:
            with _storage_errors("query operation metrics"):
                rows = conn.execute(query, params).fetchall()
            return [_row_to_metric(row) for row in rows]
        finally:
            conn.close()


class BudgetRepository:
    """Access to per-agent cost budget rows.

    Every mutation runs in a write transaction so concurrent updates for
    the same agent are applied one after another.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def get(self, agent_id: str) -> Optional[CostBudget]:
        """Look up the budget for an agent without side effects."""
        conn = get_connection(self.db_path)
        try:
            with _storage_errors("read cost budget"):
                row = conn.execute(
                    f"SELECT {_BUDGET_COLUMNS} FROM agent_cost_budget WHERE agent_id = ?",
                    (agent_id,),
                ).fetchone()
            return _row_to_budget(row) if row else None
        finally:
            conn.close()

    def create_if_absent(self, budget: CostBudget) -> Tuple[CostBudget, bool]:
        """Insert a budget unless the agent already has one.

        Args:
            budget: Row to insert for a new agent

        Returns:
            The stored budget and whether it was created by this call
        """
        with _storage_errors("create cost budget"):
            with write_transaction(self.db_path) as conn:
                created = self._insert_if_absent(conn, budget)
                return self._require(conn, budget.agent_id), created

    def change(
        self,
        agent_id: str,
        mutate: Callable[[CostBudget], CostBudget],
        create_with: Optional[Callable[[], CostBudget]] = None,
    ) -> Optional[Tuple[CostBudget, CostBudget]]:
        """Apply ``mutate`` to an agent's budget atomically.

        The row is read and written inside one ``BEGIN IMMEDIATE``
        transaction. When the agent has no budget, the row built by
        ``create_with`` is inserted first; without it nothing is changed.

        Args:
            agent_id: Agent whose budget changes
            mutate: Pure function from the current row to the new row
            create_with: Builds the row to insert if the agent has no budget yet

        Returns:
            (previous, updated) budgets, or None if no budget exists
        """
        with _storage_errors("update cost budget"):
            with write_transaction(self.db_path) as conn:
                previous = self._select(conn, agent_id)
                if previous is None:
                    if create_with is None:
                        return None
                    self._insert_if_absent(conn, create_with())
                    previous = self._require(conn, agent_id)

                updated = mutate(previous)
                conn.execute("""
                    UPDATE agent_cost_budget
                    SET today_spent_usd = ?,
                        month_spent_usd = ?,
                        last_daily_reset = ?,
                        last_monthly_reset = ?,
                        budget_exceeded = ?,
                        updated_at = ?
                    WHERE agent_id = ?
                """, (
                    updated.today_spent_usd,
                    updated.month_spent_usd,
                    _to_db_time(updated.last_daily_reset),
                    _to_db_time(updated.last_monthly_reset),
                    int(updated.budget_exceeded),
                    _to_db_time(updated.updated_at),
                    agent_id,
                ))
                return previous, updated

    def list_exceeded(self) -> List[CostBudget]:
        """All budgets whose exceeded flag is set, ordered by agent id."""
        conn = get_connection(self.db_path)
        try:
            with _storage_errors("list exceeded budgets"):
                rows = conn.execute(
                    f"SELECT {_BUDGET_COLUMNS} FROM agent_cost_budget "
                    "WHERE budget_exceeded = 1 ORDER BY agent_id"
                ).fetchall()
            return [_row_to_budget(row) for row in rows]
        finally:
            conn.close()

    @staticmethod
    def _select(conn: sqlite3.Connection, agent_id: str) -> Optional[CostBudget]:
        row = conn.execute(
            f"SELECT {_BUDGET_COLUMNS} FROM agent_cost_budget WHERE agent_id = ?",
            (agent_id,),
        ).fetchone()
        return _row_to_budget(row) if row else None

    @classmethod
    def _require(cls, conn: sqlite3.Connection, agent_id: str) -> CostBudget:
        budget = cls._select(conn, agent_id)
        if budget is None:
            raise TelemetryStorageError(f"Budget row for agent '{agent_id}' was not stored")
        return budget

    @staticmethod
    def _insert_if_absent(conn: sqlite3.Connection, budget: CostBudget) -> bool:
        cursor = conn.execute(f"""
            INSERT INTO agent_cost_budget ({_BUDGET_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (agent_id) DO NOTHING
        """, (
            budget.agent_id,
            budget.daily_budget_usd,
            budget.monthly_budget_usd,
            budget.alert_threshold,
            budget.today_spent_usd,
            budget.month_spent_usd,
            _to_db_time(budget.last_daily_reset),
            _to_db_time(budget.last_monthly_reset),
            int(budget.budget_exceeded),
            _to_db_time(budget.created_at),
            _to_db_time(budget.updated_at),
        ))
        return cursor.rowcount == 1
