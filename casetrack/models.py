"""
SQLAlchemy ORM Models for the CaseTrack Custody Ledger

This module defines the database schema for case-file custody tracking:
- Users (the custodian directory)
- Files (physical case files with a derived current-custodian pointer)
- Movements (append-only custody transfer log)
- Deadlines (dated obligations tied to a file)
- Alerts (derived notifications with an atomic dedup key)
- Attachments (link records for digital documents stored elsewhere)

All timestamps are stored as timezone-aware UTC values. The UTCDateTime
column type keeps aware datetimes round-tripping on both PostgreSQL and
SQLite (used by the test suite).

Tables:
1. users - Firm staff who can hold files
2. files - Registered case files
3. movements - Custody transfer log (immutable except acknowledgment)
4. deadlines - Hearings, filings and other dated obligations
5. alerts - Scan-generated notifications
6. attachments - Digital document links per file
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Boolean, DateTime, Text, Integer,
    ForeignKey, Index, Enum, JSON, Uuid, event, inspect, text
)
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always hands back aware UTC datetimes."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


def _enum(enum_cls: type, name: str) -> Enum:
    """Store enum values (not member names) so rows read like the domain."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================
# ENUMS
# ============================================

class Role(str, PyEnum):
    """Staff role; capabilities per role live in casetrack.permissions"""
    CLERK = "Clerk"
    ADVOCATE = "Advocate"
    PARTNER = "Partner"


class FileStatus(str, PyEnum):
    """Lifecycle status of a case file"""
    ACTIVE = "Active"
    DORMANT = "Dormant"
    CLOSED = "Closed"


class MovementPurpose(str, PyEnum):
    """Recognized reasons for moving a file"""
    DRAFTING = "Drafting"
    FILING = "Filing"
    REVIEW = "Review"
    COURT_MENTION = "Court Mention"
    COURT_HEARING = "Court Hearing"
    CLIENT_MEETING = "Client Meeting"
    PARTNER_REVIEW = "Partner Review"
    SENIOR_REVIEW = "Senior Review"
    STORAGE_ARCHIVE = "Storage/Archive"
    RETURN_TO_CUSTODIAN = "Return to Custodian"
    OTHER = "Other"


class DeadlineType(str, PyEnum):
    """Kind of dated obligation"""
    COURT_MENTION = "Court Mention"
    COURT_HEARING = "Court Hearing"
    FILING_DEADLINE = "Filing Deadline"
    MOTION_RESPONSE = "Motion Response"
    DISCOVERY = "Discovery"
    APPEAL_DEADLINE = "Appeal Deadline"
    LIMITATION_PERIOD = "Limitation Period"
    CLIENT_DEADLINE = "Client Deadline"
    INTERNAL_DEADLINE = "Internal Deadline"
    OTHER = "Other"


class DeadlineStatus(str, PyEnum):
    """Deadline lifecycle; Completed is terminal"""
    PENDING = "Pending"
    COMPLETED = "Completed"


class AlertType(str, PyEnum):
    """Alert rule that produced an alert"""
    DEADLINE_UPCOMING = "deadline_upcoming"
    DEADLINE_OVERDUE = "deadline_overdue"
    FILE_OVERDUE_AT_CUSTODIAN = "file_overdue_at_custodian"
    MOVEMENT_UNACKNOWLEDGED = "movement_unacknowledged"
    MISSING_DIGITAL_LINK = "missing_digital_link"
    ESCALATION = "escalation"
    FILE_LOCATION_WARNING = "file_location_warning"
    FILE_REQUEST = "file_request"


class AlertSeverity(str, PyEnum):
    """Alert urgency"""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# CORE MODELS
# ============================================

class User(Base, TimestampMixin):
    """
    A member of staff who can hold custody of files.

    Authentication data lives outside the core; only the fields needed
    for routing custody and alerts are kept here.
    """
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "user_role"), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User(user_id='{self.user_id}', name='{self.name}', role={self.role})>"


class CaseFile(Base, TimestampMixin):
    """
    A physical case file.

    current_custodian_id is a derived pointer: it always equals the
    to_custodian_id of the file's latest movement, or the registration
    custodian while no movement exists. Only the custody ledger writes it.
    """
    __tablename__ = "files"

    # CT-<year>-<4-digit sequence>
    file_id: Mapped[str] = mapped_column(String(20), primary_key=True)

    case_name: Mapped[str] = mapped_column(String(500), nullable=False)
    client_name: Mapped[str] = mapped_column(String(500), nullable=False)
    practice_area: Mapped[str] = mapped_column(String(100), nullable=False, default="General")
    court_jurisdiction: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    status: Mapped[FileStatus] = mapped_column(
        _enum(FileStatus, "file_status"),
        nullable=False,
        default=FileStatus.ACTIVE,
        index=True
    )

    current_custodian_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("users.user_id"),
        nullable=False,
        index=True
    )

    # Ordered; element 0 is the lead advocate
    assigned_advocates: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_opened: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    date_closed: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    @property
    def lead_advocate_id(self) -> Optional[str]:
        """First assigned advocate, or None when nobody is assigned."""
        return self.assigned_advocates[0] if self.assigned_advocates else None

    def __repr__(self) -> str:
        return f"<CaseFile(file_id='{self.file_id}', custodian='{self.current_custodian_id}', status={self.status})>"


class Movement(Base):
    """
    One custody transfer. Append-only.

    Everything except the acknowledgment fields is fixed at creation;
    see the before_update guard below.
    """
    __tablename__ = "movements"

    movement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4
    )
    file_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("files.file_id"),
        nullable=False,
        index=True
    )

    # NULL means the file came from the registry / creation
    from_custodian_id: Mapped[Optional[str]] = mapped_column(
        String(50),
        ForeignKey("users.user_id"),
        nullable=True
    )
    to_custodian_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("users.user_id"),
        nullable=False,
        index=True
    )

    purpose: Mapped[MovementPurpose] = mapped_column(
        _enum(MovementPurpose, "movement_purpose"),
        nullable=False
    )
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    logged_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    # Acknowledgment (the only mutable part)
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index('ix_movement_file_timestamp', 'file_id', 'timestamp'),
        Index('ix_movement_pending', 'to_custodian_id', 'acknowledged'),
    )

    def __repr__(self) -> str:
        return (
            f"<Movement(id={self.movement_id}, file='{self.file_id}', "
            f"{self.from_custodian_id} -> {self.to_custodian_id}, ack={self.acknowledged})>"
        )


class Deadline(Base):
    """
    A dated obligation tied to a file. Never deleted.
    """
    __tablename__ = "deadlines"

    deadline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4
    )
    file_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("files.file_id"),
        nullable=False,
        index=True
    )
    deadline_type: Mapped[DeadlineType] = mapped_column(
        _enum(DeadlineType, "deadline_type"),
        nullable=False,
        default=DeadlineType.OTHER
    )
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[DeadlineStatus] = mapped_column(
        _enum(DeadlineStatus, "deadline_status"),
        nullable=False,
        default=DeadlineStatus.PENDING
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_deadline_status_due', 'status', 'due_date'),
    )

    def __repr__(self) -> str:
        return f"<Deadline(id={self.deadline_id}, file='{self.file_id}', due={self.due_date}, status={self.status})>"


class Alert(Base):
    """
    A scan-generated notification.

    dedup_key is "<type>|<file_id>|<target_user_id>" (empty string for a
    missing part). The partial unique index over non-dismissed rows makes
    the existence check and the insert a single atomic step.
    """
    __tablename__ = "alerts"

    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4
    )
    alert_type: Mapped[AlertType] = mapped_column(
        _enum(AlertType, "alert_type"),
        nullable=False,
        index=True
    )
    severity: Mapped[AlertSeverity] = mapped_column(
        _enum(AlertSeverity, "alert_severity"),
        nullable=False
    )
    file_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        ForeignKey("files.file_id"),
        nullable=True,
        index=True
    )
    deadline_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        ForeignKey("deadlines.deadline_id"),
        nullable=True
    )

    # NULL means broadcast
    target_user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    dedup_key: Mapped[str] = mapped_column(String(200), nullable=False)

    __table_args__ = (
        Index(
            'uq_alert_active_dedup',
            'dedup_key',
            unique=True,
            postgresql_where=text('NOT dismissed'),
            sqlite_where=text('NOT dismissed'),
        ),
        Index('ix_alert_active_created', 'dismissed', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<Alert(id={self.alert_id}, type={self.alert_type}, target='{self.target_user_id}')>"


class Attachment(Base):
    """
    Link record for a digital document attached to a file.

    Bytes live in external storage; the core only needs to know that a
    link exists.
    """
    __tablename__ = "attachments"

    attachment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4
    )
    file_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("files.file_id"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_by: Mapped[str] = mapped_column(String(50), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Attachment(id={self.attachment_id}, file='{self.file_id}', name='{self.name}')>"


# ============================================
# APPEND-ONLY GUARD
# ============================================

class AppendOnlyViolation(Exception):
    """Raised when code tries to rewrite a recorded movement."""
    pass


MOVEMENT_IMMUTABLE_COLUMNS = (
    'file_id', 'from_custodian_id', 'to_custodian_id',
    'purpose', 'notes', 'logged_by', 'timestamp',
)


@event.listens_for(Movement, "before_update")
def _guard_movement_update(mapper, connection, target: Movement) -> None:
    state = inspect(target)
    for column in MOVEMENT_IMMUTABLE_COLUMNS:
        if state.attrs[column].history.has_changes():
            raise AppendOnlyViolation(
                f"Movement {target.movement_id}: '{column}' is immutable"
            )
    ack_history = state.attrs['acknowledged'].history
    if ack_history.deleted and ack_history.deleted[0] and not target.acknowledged:
        raise AppendOnlyViolation(
            f"Movement {target.movement_id}: acknowledgment cannot be revoked"
        )


# ============================================
# HELPER FUNCTIONS
# ============================================

def build_dedup_key(
    alert_type: AlertType,
    file_id: Optional[str],
    target_user_id: Optional[str]
) -> str:
    """
    Build the (type, file, target) dedup key for an alert.

    Args:
        alert_type: Alert rule
        file_id: File the alert concerns (can be None)
        target_user_id: Recipient, None for broadcast

    Returns:
        Key string used by the partial unique index
    """
    kind = alert_type.value if isinstance(alert_type, AlertType) else str(alert_type)
    return f"{kind}|{file_id or ''}|{target_user_id or ''}"
