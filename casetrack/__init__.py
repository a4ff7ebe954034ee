"""
CaseTrack: custody ledger and alert engine for physical case files.

This package provides:
- SQLAlchemy ORM models for users, files, movements, deadlines, alerts
  and attachment links
- Session provider with one Unit of Work per operation
- Repository pattern for data access
- Custody ledger, deadline tracker, bottleneck analyzer and alert engine
- Operation timing and Prometheus metrics
"""

from casetrack.models import (
    Base,
    User,
    CaseFile,
    Movement,
    Deadline,
    Alert,
    Attachment,
    Role,
    FileStatus,
    MovementPurpose,
    DeadlineType,
    DeadlineStatus,
    AlertType,
    AlertSeverity,
    AppendOnlyViolation,
)
from casetrack.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    init_db,
    close_db,
    create_test_provider,
)
from casetrack.errors import (
    ErrorKind,
    OperationResult,
    CaseTrackError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    InvalidStateError,
)
from casetrack.permissions import Actor, Capability, ROLE_CAPABILITIES
from casetrack.ledger import CustodyLedger
from casetrack.deadlines import DeadlineTracker, days_until
from casetrack.bottlenecks import BottleneckAnalyzer, BottleneckItem, CustodianWorkload
from casetrack.alerts import AlertEngine, ScanSummary, create_alert_if_new
from casetrack.reports import ReportService
from casetrack.users import UserDirectory
from casetrack.monitoring import (
    operation_timer,
    get_operation_metrics,
    reset_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Models
    'Base',
    'User',
    'CaseFile',
    'Movement',
    'Deadline',
    'Alert',
    'Attachment',
    'Role',
    'FileStatus',
    'MovementPurpose',
    'DeadlineType',
    'DeadlineStatus',
    'AlertType',
    'AlertSeverity',
    'AppendOnlyViolation',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Errors
    'ErrorKind',
    'OperationResult',
    'CaseTrackError',
    'NotFoundError',
    'UnauthorizedError',
    'ValidationError',
    'InvalidStateError',
    # Permissions
    'Actor',
    'Capability',
    'ROLE_CAPABILITIES',
    # Services
    'CustodyLedger',
    'DeadlineTracker',
    'days_until',
    'BottleneckAnalyzer',
    'BottleneckItem',
    'CustodianWorkload',
    'AlertEngine',
    'ScanSummary',
    'create_alert_if_new',
    'ReportService',
    'UserDirectory',
    # Monitoring
    'operation_timer',
    'get_operation_metrics',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
