"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "casetrack"
    password: str = "casetrack"
    name: str = "casetrack"
    url: Optional[str] = None


@dataclass
class AlertConfig:
    """Alert engine thresholds"""
    deadline_warning_days: List[int] = field(default_factory=lambda: [7, 3, 1])
    overdue_threshold_days: int = 7
    escalation_threshold_days: int = 14
    unacknowledged_hours: int = 24
    bottleneck_date_opened_fallback: bool = False
    scan_interval_minutes: int = 60


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/casetrack.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    security_log_dir: str = "logs/security"


@dataclass
class MetricsConfig:
    """Operation timing thresholds and metric sinks"""
    slow_operation_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0
    enable_prometheus: bool = True
    enable_logging: bool = True


@dataclass
class ApiConfig:
    """HTTP API configuration"""
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:8000",
    ])
    enable_scheduler: bool = True


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.alerts: AlertConfig = AlertConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.api: ApiConfig = ApiConfig()
        self.metrics: MetricsConfig = MetricsConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_alerts()
        self._parse_logging()
        self._parse_api()
        self._parse_metrics()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {}) or {}
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            url=cfg.get('url', self.database.url)
        )

    def _parse_alerts(self) -> None:
        """Parse alert engine configuration"""
        cfg = self._raw_config.get('alerts', {}) or {}
        self.alerts = AlertConfig(
            deadline_warning_days=cfg.get('deadline_warning_days', self.alerts.deadline_warning_days),
            overdue_threshold_days=cfg.get('overdue_threshold_days', 7),
            escalation_threshold_days=cfg.get('escalation_threshold_days', 14),
            unacknowledged_hours=cfg.get('unacknowledged_hours', 24),
            bottleneck_date_opened_fallback=cfg.get('bottleneck_date_opened_fallback', False),
            scan_interval_minutes=cfg.get('scan_interval_minutes', 60)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {}) or {}
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', 'logs/casetrack.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format),
            security_log_dir=cfg.get('security_log_dir', 'logs/security')
        )

    def _parse_api(self) -> None:
        """Parse API configuration"""
        cfg = self._raw_config.get('api', {}) or {}
        self.api = ApiConfig(
            host=cfg.get('host', '0.0.0.0'),
            port=cfg.get('port', 8000),
            cors_origins=cfg.get('cors_origins', self.api.cors_origins),
            enable_scheduler=cfg.get('enable_scheduler', True)
        )

    def _parse_metrics(self) -> None:
        """Parse operation metrics configuration"""
        cfg = self._raw_config.get('metrics', {}) or {}
        self.metrics = MetricsConfig(
            slow_operation_threshold_ms=cfg.get('slow_operation_threshold_ms', 1000.0),
            warning_threshold_ms=cfg.get('warning_threshold_ms', 500.0),
            enable_prometheus=cfg.get('enable_prometheus', True),
            enable_logging=cfg.get('enable_logging', True)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            },
            'alerts': {
                'deadline_warning_days': list(self.alerts.deadline_warning_days),
                'overdue_threshold_days': self.alerts.overdue_threshold_days,
                'escalation_threshold_days': self.alerts.escalation_threshold_days,
                'unacknowledged_hours': self.alerts.unacknowledged_hours,
                'bottleneck_date_opened_fallback': self.alerts.bottleneck_date_opened_fallback,
                'scan_interval_minutes': self.alerts.scan_interval_minutes
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'api': {
                'host': self.api.host,
                'port': self.api.port,
                'cors_origins': list(self.api.cors_origins),
                'enable_scheduler': self.api.enable_scheduler
            },
            'metrics': {
                'slow_operation_threshold_ms': self.metrics.slow_operation_threshold_ms,
                'warning_threshold_ms': self.metrics.warning_threshold_ms,
                'enable_prometheus': self.metrics.enable_prometheus,
                'enable_logging': self.metrics.enable_logging
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        alerts = self.alerts
        if not isinstance(alerts.deadline_warning_days, list) or not all(
            isinstance(d, int) and d > 0 for d in alerts.deadline_warning_days
        ):
            raise ConfigurationError(
                "alerts.deadline_warning_days must be a list of positive integers"
            )
        for name in ('overdue_threshold_days', 'escalation_threshold_days', 'unacknowledged_hours'):
            value = getattr(alerts, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"alerts.{name} must be a positive integer, got {value!r}")
        if alerts.escalation_threshold_days < alerts.overdue_threshold_days:
            raise ConfigurationError(
                "alerts.escalation_threshold_days must not be below alerts.overdue_threshold_days"
            )
        if alerts.scan_interval_minutes <= 0:
            raise ConfigurationError("alerts.scan_interval_minutes must be positive")

        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigurationError(f"Unknown logging.level: {self.logging.level}")

        metrics = self.metrics
        for name in ('slow_operation_threshold_ms', 'warning_threshold_ms'):
            value = getattr(metrics, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"metrics.{name} must be a non-negative number, got {value!r}")
        if metrics.warning_threshold_ms > metrics.slow_operation_threshold_ms:
            raise ConfigurationError(
                "metrics.warning_threshold_ms must not exceed metrics.slow_operation_threshold_ms"
            )


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def apply_logging_config(cfg: LoggingConfig) -> None:
    """Install root handlers from the logging section"""
    handlers: List[logging.Handler] = []
    if cfg.file:
        log_path = Path(cfg.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))
    if cfg.console or not handlers:
        handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=cfg.level.upper(),
        format=cfg.format,
        handlers=handlers,
        force=True
    )
