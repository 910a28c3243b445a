"""
Unit tests for configuration loading and validation.

Tests defaults, strict validation and error handling for telemetry configs.
"""

import os
import tempfile

import pytest
import yaml

from agent_telemetry.config.loader import (
    DEFAULT_DB_PATH,
    TelemetryConfig,
    load_telemetry_config,
)


class TestTelemetryConfigDefaults:
    """Test TelemetryConfig defaults and validation."""

    def test_defaults(self):
        config = TelemetryConfig()
        assert config.enable_cost_tracking is True
        assert config.enable_performance_tracking is True
        assert config.budget_alert_threshold == 0.8
        assert config.default_daily_budget_usd == 1.0
        assert config.default_monthly_budget_usd == 10.0
        assert config.price_per_1k_tokens == 0.01
        assert config.repeat_exceeded_alerts is True
        assert config.db_path == DEFAULT_DB_PATH

    @pytest.mark.parametrize("threshold", [0, -0.1, 1.01])
    def test_threshold_out_of_range(self, threshold):
        with pytest.raises(ValueError, match="budget_alert_threshold"):
            TelemetryConfig(budget_alert_threshold=threshold)

    def test_threshold_of_one_allowed(self):
        assert TelemetryConfig(budget_alert_threshold=1.0).budget_alert_threshold == 1.0

    def test_non_positive_budgets_rejected(self):
        with pytest.raises(ValueError, match="default_daily_budget_usd"):
            TelemetryConfig(default_daily_budget_usd=0)
        with pytest.raises(ValueError, match="default_monthly_budget_usd"):
            TelemetryConfig(default_monthly_budget_usd=-5)

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError, match="price_per_1k_tokens"):
            TelemetryConfig(price_per_1k_tokens=-0.01)

    @pytest.mark.parametrize("field", [
        "default_daily_budget_usd",
        "default_monthly_budget_usd",
        "price_per_1k_tokens",
        "budget_alert_threshold",
    ])
    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_non_finite_values_rejected(self, field, value):
        with pytest.raises(ValueError, match=field):
            TelemetryConfig(**{field: value})

    def test_config_is_immutable(self):
        config = TelemetryConfig()
        with pytest.raises(Exception):
            config.default_daily_budget_usd = 5.0


class TestConfigLoading:
    """Test configuration loading from YAML."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        config_path = self._write_config({
            "enable_cost_tracking": False,
            "budget_alert_threshold": 0.9,
            "default_daily_budget_usd": 5,
            "default_monthly_budget_usd": 100.0,
            "price_per_1k_tokens": 0.002,
            "repeat_exceeded_alerts": False,
            "db_path": "telemetry.db",
        })
        config = load_telemetry_config(config_path)

        assert config.enable_cost_tracking is False
        assert config.enable_performance_tracking is True
        assert config.budget_alert_threshold == 0.9
        assert config.default_daily_budget_usd == 5.0
        assert isinstance(config.default_daily_budget_usd, float)
        assert config.default_monthly_budget_usd == 100.0
        assert config.price_per_1k_tokens == 0.002
        assert config.repeat_exceeded_alerts is False
        assert config.db_path == "telemetry.db"

    def test_partial_config_uses_defaults(self):
        config = load_telemetry_config(self._write_config({"default_daily_budget_usd": 2.5}))
        assert config.default_daily_budget_usd == 2.5
        assert config.default_monthly_budget_usd == 10.0

    def test_empty_file_yields_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")
        assert load_telemetry_config(config_path) == TelemetryConfig()

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="Telemetry config file not found"):
            load_telemetry_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("budget: [unclosed\n")
        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_telemetry_config(config_path)

    def test_unknown_keys_rejected(self):
        config_path = self._write_config({"daily_budget": 5.0})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_telemetry_config(config_path)

    def test_non_mapping_rejected(self):
        config_path = self._write_config([1, 2, 3])
        with pytest.raises(ValueError, match="must be a mapping"):
            load_telemetry_config(config_path)

    def test_wrong_types_rejected(self):
        with pytest.raises(ValueError, match="'enable_cost_tracking' must be a boolean"):
            load_telemetry_config(self._write_config({"enable_cost_tracking": "yes"}))
        with pytest.raises(ValueError, match="'default_daily_budget_usd' must be a number"):
            load_telemetry_config(self._write_config({"default_daily_budget_usd": "ten"}))
        with pytest.raises(ValueError, match="'price_per_1k_tokens' must be a number"):
            load_telemetry_config(self._write_config({"price_per_1k_tokens": True}))
        with pytest.raises(ValueError, match="'db_path' must be a string"):
            load_telemetry_config(self._write_config({"db_path": 42}))

    def test_out_of_range_values_rejected(self):
        config_path = self._write_config({"budget_alert_threshold": 1.5})
        with pytest.raises(ValueError, match="budget_alert_threshold"):
            load_telemetry_config(config_path)

    def test_nan_budget_in_yaml_rejected(self):
        config_path = os.path.join(self.temp_dir, "nan.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("default_daily_budget_usd: .nan\n")

        with pytest.raises(ValueError, match="default_daily_budget_usd"):
            load_telemetry_config(config_path)
