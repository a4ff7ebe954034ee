"""
Operational Monitoring for CaseTrack

This module provides:
- Operation timing context manager for slow operation detection
- Prometheus metrics for ledger operations, alert creation and scan passes
- Database connection pool monitoring and health checks

Usage:
    from casetrack.monitoring import operation_timer

    with operation_timer("transfer_custody"):
        ledger.transfer_custody(...)
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from prometheus_client import Counter, Gauge, Histogram
from sqlalchemy import text

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class MonitoringConfig:
    """Configuration for operation monitoring."""
    slow_operation_threshold_ms: float = 1000.0  # Log operations slower than this
    warning_threshold_ms: float = 500.0
    enable_prometheus: bool = True
    enable_logging: bool = True


_config = MonitoringConfig()


def configure_monitoring(
    slow_operation_threshold_ms: float = 1000.0,
    warning_threshold_ms: float = 500.0,
    enable_prometheus: bool = True,
    enable_logging: bool = True
) -> None:
    """
    Configure monitoring settings.

    Args:
        slow_operation_threshold_ms: Log operations slower than this (ms)
        warning_threshold_ms: Info-log operations slower than this (ms)
        enable_prometheus: Enable Prometheus metrics
        enable_logging: Enable logging
    """
    global _config
    _config = MonitoringConfig(
        slow_operation_threshold_ms=slow_operation_threshold_ms,
        warning_threshold_ms=warning_threshold_ms,
        enable_prometheus=enable_prometheus,
        enable_logging=enable_logging
    )


# ============================================
# PROMETHEUS METRICS
# ============================================

operation_duration = Histogram(
    'casetrack_operation_duration_seconds',
    'Core operation duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

operation_total = Counter(
    'casetrack_operation_total',
    'Total number of core operations',
    ['operation', 'status']
)

alerts_created_total = Counter(
    'casetrack_alerts_created_total',
    'Alerts created by the alert engine',
    ['alert_type', 'severity']
)

scan_pass_failures_total = Counter(
    'casetrack_scan_pass_failures_total',
    'Alert scan passes that failed and were skipped',
    ['scan_pass']
)

db_pool_checked_out = Gauge(
    'casetrack_db_pool_checked_out',
    'Number of connections currently checked out'
)


# ============================================
# OPERATION STATS TRACKING
# ============================================

@dataclass
class OperationStats:
    """Statistics for a single operation type."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    errors: int = 0
    slow: int = 0

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        self.count += 1
        self.total_time_ms += duration_ms
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        if error:
            self.errors += 1
        if slow:
            self.slow += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'avg_time_ms': round(self.avg_time_ms, 2),
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow': self.slow,
        }


class OperationStatsCollector:
    """Thread-safe collector for operation statistics."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float, error: bool = False, slow: bool = False) -> None:
        with self._lock:
            if operation not in self._stats:
                self._stats[operation] = OperationStats(operation=operation)
            self._stats[operation].record(duration_ms, error, slow)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {op: stats.to_dict() for op, stats in self._stats.items()}

    def get_slow(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [s.to_dict() for s in self._stats.values() if s.slow > 0]

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_stats_collector = OperationStatsCollector()


def get_operation_metrics() -> Dict[str, Any]:
    """Collected per-operation statistics."""
    return _stats_collector.get_stats()


def get_slow_operation_report() -> List[Dict[str, Any]]:
    return _stats_collector.get_slow()


def reset_metrics() -> None:
    """Reset all collected statistics."""
    _stats_collector.reset()


# ============================================
# OPERATION TIMER
# ============================================

@contextmanager
def operation_timer(operation: str):
    """
    Context manager to time and monitor core operations.

    Args:
        operation: Name of the operation (e.g., 'transfer_custody')
    """
    start_time = time.perf_counter()
    error_occurred = False

    try:
        yield
    except Exception:
        error_occurred = True
        raise
    finally:
        duration = time.perf_counter() - start_time
        duration_ms = duration * 1000
        is_slow = duration_ms > _config.slow_operation_threshold_ms

        _stats_collector.record(operation, duration_ms, error=error_occurred, slow=is_slow)

        if _config.enable_prometheus:
            status = "error" if error_occurred else "success"
            operation_duration.labels(operation=operation, status=status).observe(duration)
            operation_total.labels(operation=operation, status=status).inc()

        if _config.enable_logging:
            if is_slow:
                logger.warning(
                    f"SLOW OPERATION: {operation} took {duration_ms:.2f}ms "
                    f"(threshold: {_config.slow_operation_threshold_ms}ms)"
                )
            elif duration_ms > _config.warning_threshold_ms and not error_occurred:
                logger.info(f"Operation {operation} took {duration_ms:.2f}ms")


def record_alert_created(alert_type: str, severity: str) -> None:
    if _config.enable_prometheus:
        alerts_created_total.labels(alert_type=alert_type, severity=severity).inc()


def record_scan_pass_failure(scan_pass: str) -> None:
    if _config.enable_prometheus:
        scan_pass_failures_total.labels(scan_pass=scan_pass).inc()


# ============================================
# HEALTH CHECK
# ============================================

@dataclass
class HealthStatus:
    """Database health status."""
    healthy: bool
    latency_ms: float
    pool_checked_out: int = 0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'pool_checked_out': self.pool_checked_out,
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


def check_health(engine, session_factory) -> HealthStatus:
    """
    Perform database health check with metrics.

    Args:
        engine: SQLAlchemy Engine
        session_factory: SQLAlchemy session factory

    Returns:
        HealthStatus with check results
    """
    start_time = time.perf_counter()

    try:
        session = session_factory()
        try:
            session.execute(text("SELECT 1"))
            latency = (time.perf_counter() - start_time) * 1000

            # Not every pool class tracks checkouts (StaticPool does not)
            checked_out_fn = getattr(engine.pool, "checkedout", None)
            checked_out = checked_out_fn() if callable(checked_out_fn) else 0
            if _config.enable_prometheus:
                db_pool_checked_out.set(checked_out)

            return HealthStatus(healthy=True, latency_ms=latency, pool_checked_out=checked_out)
        finally:
            session.close()

    except Exception as e:
        latency = (time.perf_counter() - start_time) * 1000
        logger.error(f"Database health check failed: {e}")
        return HealthStatus(healthy=False, latency_ms=latency, error=str(e))
