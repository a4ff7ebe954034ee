"""
Tests for configuration loading and validation.
"""

import logging
from pathlib import Path

import pytest
import yaml

from config_manager import ConfigManager, ConfigurationError, LoggingConfig, apply_logging_config, get_config


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def fresh_singleton():
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


class TestDefaults:

    def test_missing_file_uses_defaults(self, config):
        assert config.alerts.deadline_warning_days == [7, 3, 1]
        assert config.alerts.overdue_threshold_days == 7
        assert config.alerts.escalation_threshold_days == 14
        assert config.alerts.unacknowledged_hours == 24
        assert config.alerts.bottleneck_date_opened_fallback is False
        assert config.logging.level == "INFO"
        assert config.api.enable_scheduler is True

    def test_shipped_config_loads(self):
        shipped = Path(__file__).parent.parent / "config.yaml"
        manager = ConfigManager(str(shipped))
        assert manager.database.name == "casetrack"
        assert manager.alerts.scan_interval_minutes == 60
        assert manager.metrics.slow_operation_threshold_ms == 1000


class TestLoading:

    def test_overrides_from_yaml(self, tmp_path):
        path = _write(tmp_path, {
            "alerts": {
                "deadline_warning_days": [14, 7, 1],
                "overdue_threshold_days": 5,
                "escalation_threshold_days": 10,
                "bottleneck_date_opened_fallback": True,
            },
            "logging": {"level": "debug"},
            "api": {"enable_scheduler": False, "cors_origins": ["https://*.firm.example"]},
        })
        manager = ConfigManager(path)

        assert manager.alerts.deadline_warning_days == [14, 7, 1]
        assert manager.alerts.overdue_threshold_days == 5
        assert manager.alerts.escalation_threshold_days == 10
        assert manager.alerts.bottleneck_date_opened_fallback is True
        assert manager.alerts.unacknowledged_hours == 24
        assert manager.api.enable_scheduler is False
        assert manager.api.cors_origins == ["https://*.firm.example"]

    def test_metrics_section(self, tmp_path):
        path = _write(tmp_path, {
            "metrics": {"slow_operation_threshold_ms": 250, "warning_threshold_ms": 100, "enable_prometheus": False},
        })
        metrics = ConfigManager(path).metrics
        assert metrics.slow_operation_threshold_ms == 250
        assert metrics.warning_threshold_ms == 100
        assert metrics.enable_prometheus is False
        assert metrics.enable_logging is True

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert ConfigManager(str(path)).alerts.overdue_threshold_days == 7

    def test_to_dict_omits_password(self, tmp_path):
        path = _write(tmp_path, {"database": {"password": "s3cret"}})
        exported = ConfigManager(path).to_dict()
        assert "password" not in exported["database"]
        assert exported["alerts"]["deadline_warning_days"] == [7, 3, 1]

    def test_singleton(self, tmp_path):
        path = _write(tmp_path, {})
        assert get_config(path) is get_config()


class TestValidation:

    @pytest.mark.parametrize("alerts", [
        {"deadline_warning_days": "7,3,1"},
        {"deadline_warning_days": [7, 0]},
        {"overdue_threshold_days": 0},
        {"unacknowledged_hours": -4},
        {"escalation_threshold_days": "soon"},
        {"overdue_threshold_days": 10, "escalation_threshold_days": 5},
        {"scan_interval_minutes": 0},
    ])
    def test_invalid_alert_settings(self, tmp_path, alerts):
        with pytest.raises(ConfigurationError):
            ConfigManager(_write(tmp_path, {"alerts": alerts}))

    def test_unknown_log_level(self, tmp_path):
        with pytest.raises(ConfigurationError, match="logging.level"):
            ConfigManager(_write(tmp_path, {"logging": {"level": "CHATTY"}}))

    @pytest.mark.parametrize("metrics", [
        {"slow_operation_threshold_ms": -1},
        {"warning_threshold_ms": "fast"},
        {"slow_operation_threshold_ms": 100, "warning_threshold_ms": 200},
    ])
    def test_invalid_metrics_settings(self, tmp_path, metrics):
        with pytest.raises(ConfigurationError, match="metrics"):
            ConfigManager(_write(tmp_path, {"metrics": metrics}))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("alerts: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigManager(str(path))

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigManager(str(path))


class TestApplyLogging:

    @pytest.fixture
    def root_logger(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        yield root
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    def test_file_and_console_handlers(self, tmp_path, root_logger):
        log_file = tmp_path / "logs" / "casetrack.log"
        apply_logging_config(LoggingConfig(level="debug", file=str(log_file), console=True))

        assert root_logger.level == logging.DEBUG
        kinds = sorted(type(h).__name__ for h in root_logger.handlers)
        assert kinds == ["FileHandler", "StreamHandler"]

        logging.getLogger("casetrack.test").info("scan finished")
        for handler in root_logger.handlers:
            handler.flush()
        assert "scan finished" in log_file.read_text(encoding="utf-8")

    def test_console_fallback_without_file(self, root_logger):
        apply_logging_config(LoggingConfig(file="", console=False))
        assert [type(h).__name__ for h in root_logger.handlers] == ["StreamHandler"]
