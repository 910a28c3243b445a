"""
Core modules for agent telemetry.

This package contains the cost model, the metrics recorder, the budget
ledger and the operation tracker.
"""
