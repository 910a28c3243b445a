"""
Configuration management and loading.

Handles telemetry settings and their YAML representation.
"""

import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_DB_PATH = "agent_telemetry.db"


@dataclass(frozen=True)
class TelemetryConfig:
    """Settings shared by the tracker, recorder and budget ledger.

    Every field has a default so that a missing configuration never
    prevents operation.
    """
    enable_cost_tracking: bool = True
    enable_performance_tracking: bool = True
    budget_alert_threshold: float = 0.8
    default_daily_budget_usd: float = 1.0
    default_monthly_budget_usd: float = 10.0
    price_per_1k_tokens: float = 0.01
    repeat_exceeded_alerts: bool = True
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate thresholds and ceilings."""
        if not 0 < self.budget_alert_threshold <= 1:
            raise ValueError("budget_alert_threshold must be in (0, 1]")
        if not (math.isfinite(self.default_daily_budget_usd)
                and self.default_daily_budget_usd > 0):
            raise ValueError("default_daily_budget_usd must be a finite number > 0")
        if not (math.isfinite(self.default_monthly_budget_usd)
                and self.default_monthly_budget_usd > 0):
            raise ValueError("default_monthly_budget_usd must be a finite number > 0")
        if not math.isfinite(self.price_per_1k_tokens) or self.price_per_1k_tokens < 0:
            raise ValueError("price_per_1k_tokens must be >= 0")
        if not self.db_path:
            raise ValueError("db_path cannot be empty")


_BOOL_KEYS = {
    'enable_cost_tracking',
    'enable_performance_tracking',
    'repeat_exceeded_alerts',
}
_FLOAT_KEYS = {
    'budget_alert_threshold',
    'default_daily_budget_usd',
    'default_monthly_budget_usd',
    'price_per_1k_tokens',
}
_STR_KEYS = {'db_path'}


def load_telemetry_config(path: str) -> TelemetryConfig:
    """Load and validate telemetry configuration from a YAML file.

    Unknown keys and wrongly typed values are rejected instead of being
    ignored, so a typo cannot silently fall back to a default budget.
    An empty file yields the default configuration.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated TelemetryConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Telemetry config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return TelemetryConfig()

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    return TelemetryConfig(**_parse_config_values(raw_config))


def _parse_config_values(data: Dict[str, Any]) -> Dict[str, Any]:
    """Type-check raw configuration values.

    Args:
        data: Raw mapping read from YAML

    Returns:
        Keyword arguments for TelemetryConfig

    Raises:
        ValueError: If a key is unknown or a value has the wrong type
    """
    allowed_keys = {f.name for f in fields(TelemetryConfig)}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values = {}
    for key, value in data.items():
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"'{key}' must be a boolean")
            values[key] = value
        elif key in _FLOAT_KEYS:
            # bool is an int subclass; true/false is never a valid amount
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{key}' must be a number")
            values[key] = float(value)
        elif key in _STR_KEYS:
            if not isinstance(value, str):
                raise ValueError(f"'{key}' must be a string")
            values[key] = value
    return values
