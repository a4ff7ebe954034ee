"""
Shared fixtures for CaseTrack tests.

Every test gets a fresh in-memory SQLite database (StaticPool, so all
sessions share one connection), a controllable clock and a security
logger that only writes to memory.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

import security_logger
from casetrack.alerts import AlertEngine
from casetrack.bottlenecks import BottleneckAnalyzer
from casetrack.connection import DatabaseSettings, create_test_provider
from casetrack.deadlines import DeadlineTracker
from casetrack.ledger import CustodyLedger
from casetrack.models import Role
from casetrack.monitoring import configure_monitoring, reset_metrics
from casetrack.reports import ReportService
from casetrack.repositories import UserRepository
from config_manager import AlertConfig, ConfigManager


START = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


USERS = [
    {"user_id": "U1", "name": "Mary Clerk", "role": Role.CLERK, "department": "Registry"},
    {"user_id": "U2", "name": "Sarah Advocate", "role": Role.ADVOCATE, "department": "Commercial"},
    {"user_id": "U3", "name": "Peter Advocate", "role": Role.ADVOCATE, "department": "Litigation"},
    {"user_id": "P1", "name": "James Partner", "role": Role.PARTNER, "department": "Managing"},
    {"user_id": "P2", "name": "Ruth Partner", "role": Role.PARTNER, "department": "Managing"},
    {"user_id": "X1", "name": "Former Clerk", "role": Role.CLERK, "active": False},
]


@pytest.fixture(autouse=True)
def memory_security_logger():
    """Route security events to an in-memory logger."""
    logger = security_logger.SecurityLogger(enable_file=False)
    security_logger._security_logger = logger
    yield logger
    security_logger.reset_security_logger()


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    configure_monitoring()
    reset_metrics()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def provider(engine):
    provider = create_test_provider(engine, settings=DatabaseSettings(url="sqlite://"))
    provider.init()
    provider.create_tables()
    with provider.session_scope() as session:
        repo = UserRepository(session)
        for user in USERS:
            repo.create(dict(user))
    yield provider
    provider.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def alert_config():
    return AlertConfig()


@pytest.fixture
def ledger(provider, clock, memory_security_logger):
    return CustodyLedger(provider, clock=clock, security_log=memory_security_logger)


@pytest.fixture
def tracker(provider, clock, memory_security_logger):
    return DeadlineTracker(provider, clock=clock, security_log=memory_security_logger)


@pytest.fixture
def analyzer(provider, clock, memory_security_logger):
    return BottleneckAnalyzer(provider, clock=clock, security_log=memory_security_logger)


@pytest.fixture
def engine_alerts(provider, clock, alert_config, memory_security_logger):
    return AlertEngine(provider, config=alert_config, clock=clock, security_log=memory_security_logger)


@pytest.fixture
def reports(provider, clock):
    return ReportService(provider, clock=clock)


@pytest.fixture
def config(tmp_path):
    """ConfigManager loaded from defaults (no file on disk)."""
    ConfigManager.reset_instance()
    manager = ConfigManager(str(tmp_path / "missing.yaml"))
    yield manager
    ConfigManager.reset_instance()


@pytest.fixture
def make_file(ledger):
    """Register a file and return it."""
    def _make(custodian="U1", advocates=("U2",), case_name="Acme v. Widget", **kwargs):
        return ledger.register_file(
            case_name, "Acme Ltd", custodian,
            assigned_advocates=list(advocates), created_by="U1", **kwargs
        ).unwrap()
    return _make
