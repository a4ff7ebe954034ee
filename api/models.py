"""
Pydantic request/response schemas for the CaseTrack API

Response models read straight from ORM objects (from_attributes). Enum
fields are serialized by value.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from casetrack.models import (
    AlertSeverity,
    AlertType,
    DeadlineStatus,
    DeadlineType,
    FileStatus,
    MovementPurpose,
    Role,
)

ORM_CONFIG = {"from_attributes": True, "use_enum_values": True}


# ============================================
# USERS
# ============================================

class UserResponse(BaseModel):
    """Directory entry for a member of staff."""
    user_id: str
    name: str
    role: Role
    email: Optional[str] = None
    department: Optional[str] = None
    active: bool = True

    model_config = ORM_CONFIG


class UserCreateRequest(BaseModel):
    """New staff member."""
    user_id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    role: str = Field(..., description="Clerk, Advocate or Partner")
    email: Optional[str] = Field(default=None, max_length=200)
    department: Optional[str] = Field(default=None, max_length=200)


class UserStatusRequest(BaseModel):
    active: bool


# ============================================
# FILES
# ============================================

class FileCreateRequest(BaseModel):
    """Request schema for registering a case file."""
    case_name: str = Field(..., max_length=500, description="Case name")
    client_name: str = Field(..., max_length=500, description="Client name")
    current_custodian: str = Field(..., description="User who holds the physical file")
    practice_area: str = Field(default="General", max_length=100)
    assigned_advocates: List[str] = Field(
        default_factory=list,
        description="Assigned advocates; the first is the lead advocate"
    )
    court_jurisdiction: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    date_opened: Optional[datetime] = None

    @field_validator('assigned_advocates')
    @classmethod
    def no_duplicate_advocates(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("assigned_advocates must not contain duplicates")
        return v


class FileResponse(BaseModel):
    """Case file as stored."""
    file_id: str
    case_name: str
    client_name: str
    practice_area: str
    court_jurisdiction: Optional[str] = None
    status: FileStatus
    current_custodian_id: str
    assigned_advocates: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    date_opened: datetime
    date_closed: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ORM_CONFIG


class FileUpdateRequest(BaseModel):
    """Descriptive fields of a file; only the fields sent are changed."""
    case_name: Optional[str] = Field(default=None, max_length=500)
    client_name: Optional[str] = Field(default=None, max_length=500)
    practice_area: Optional[str] = Field(default=None, max_length=100)
    court_jurisdiction: Optional[str] = Field(default=None, max_length=200)
    assigned_advocates: Optional[List[str]] = None
    notes: Optional[str] = None

    @field_validator('assigned_advocates')
    @classmethod
    def no_duplicate_advocates(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and len(set(v)) != len(v):
            raise ValueError("assigned_advocates must not contain duplicates")
        return v



class StatusChangeRequest(BaseModel):
    status: str = Field(..., description="Active, Dormant or Closed")


class FileRequestBody(BaseModel):
    reason: str = Field(default="", max_length=1000)


class CheckInRequest(BaseModel):
    notes: str = Field(default="", max_length=2000)


class FileRequestResponse(BaseModel):
    """Result of asking a custodian for a file."""
    file_id: str
    requested_from: str
    alert_created: bool = Field(..., description="False when an earlier request is still open")


class AttachmentCreateRequest(BaseModel):
    """Link record for a document stored elsewhere."""
    name: str = Field(..., min_length=1, max_length=500)
    content_type: str = Field(default="application/octet-stream", max_length=100)
    size_bytes: int = Field(default=0, ge=0)


class AttachmentResponse(BaseModel):
    attachment_id: UUID
    file_id: str
    name: str
    content_type: str
    size_bytes: int
    uploaded_by: str
    uploaded_at: datetime

    model_config = ORM_CONFIG


# ============================================
# MOVEMENTS
# ============================================

class TransferRequest(BaseModel):
    """Request schema for a custody transfer."""
    file_id: str
    to_custodian: str
    purpose: str = Field(..., description="Movement purpose, e.g. 'Filing'")
    notes: Optional[str] = Field(default=None, max_length=2000)


class MovementResponse(BaseModel):
    movement_id: UUID
    file_id: str
    from_custodian_id: Optional[str] = None
    to_custodian_id: str
    purpose: MovementPurpose
    notes: str = ""
    logged_by: Optional[str] = None
    timestamp: datetime
    acknowledged: bool
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    model_config = ORM_CONFIG


# ============================================
# DEADLINES
# ============================================

class DeadlineCreateRequest(BaseModel):
    """Request schema for scheduling a deadline."""
    file_id: str
    deadline_type: str = Field(default="Other")
    due_date: Optional[str] = Field(default=None, description="ISO 8601 date/time; naive values are UTC")
    description: str = Field(default="", max_length=2000)


class DeadlineResponse(BaseModel):
    deadline_id: UUID
    file_id: str
    deadline_type: DeadlineType
    due_date: datetime
    description: str = ""
    status: DeadlineStatus
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    created_by: Optional[str] = None
    days_until: Optional[int] = None

    model_config = ORM_CONFIG


class DeadlineListResponse(BaseModel):
    upcoming: List[DeadlineResponse] = Field(default_factory=list)
    overdue: List[DeadlineResponse] = Field(default_factory=list)


# ============================================
# ALERTS
# ============================================

class AlertResponse(BaseModel):
    alert_id: UUID
    alert_type: AlertType
    severity: AlertSeverity
    file_id: Optional[str] = None
    deadline_id: Optional[UUID] = None
    target_user_id: Optional[str] = None
    message: str
    created_at: datetime
    read: bool
    read_at: Optional[datetime] = None

    model_config = ORM_CONFIG


class AlertListResponse(BaseModel):
    alerts: List[AlertResponse] = Field(default_factory=list)
    unread_count: int = Field(..., ge=0)
    summary: Dict[str, Any] = Field(default_factory=dict)


class MarkAllReadResponse(BaseModel):
    marked_read: int = Field(..., ge=0)


class ScanSummaryResponse(BaseModel):
    started_at: str
    finished_at: Optional[str] = None
    created: Dict[str, int] = Field(default_factory=dict)
    total_created: int = Field(..., ge=0)
    failed_passes: List[str] = Field(default_factory=list)


# ============================================
# REPORTS
# ============================================

class StatisticsResponse(BaseModel):
    total_files: int
    active_files: int
    dormant_files: int
    closed_files: int
    total_movements: int
    unacknowledged_movements: int
    upcoming_deadlines: int
    overdue_deadlines: int
    active_alerts: int
    unread_alerts: int


class BottleneckResponse(BaseModel):
    file_id: str
    case_name: str
    current_custodian: str
    last_movement_id: Optional[str] = None
    last_movement_at: Optional[str] = None
    days_held: int
    risk_level: str


class CustodianWorkloadResponse(BaseModel):
    user_id: str
    name: str
    role: str
    file_count: int
    file_ids: List[str] = Field(default_factory=list)
    unacknowledged: int
    avg_days_in_possession: int


class AuditEntryResponse(BaseModel):
    """A movement with user names resolved."""
    movement_id: str
    file_id: str
    timestamp: str
    from_custodian: Optional[str] = None
    from_name: Optional[str] = None
    to_custodian: str
    to_name: str
    purpose: str
    notes: str = ""
    logged_by: Optional[str] = None
    logged_by_name: Optional[str] = None
    acknowledged: bool
    acknowledged_at: Optional[str] = None
    acknowledged_by: Optional[str] = None
    acknowledged_by_name: Optional[str] = None


class AuditSummary(BaseModel):
    total_movements: int
    acknowledged: int
    pending: int


class AuditLogResponse(BaseModel):
    entries: List[AuditEntryResponse]
    summary: AuditSummary


class RiskItemResponse(BaseModel):
    category: str
    severity: str
    file_id: str
    case_name: str
    description: str
    recommendation: str


class RiskReportResponse(BaseModel):
    risks: List[RiskItemResponse]
    summary: Dict[str, int]
    generated_at: str


class PracticeAreaResponse(BaseModel):
    practice_area: str
    count: int
    active: int


# ============================================
# HEALTH / ERRORS
# ============================================

class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: bool = Field(..., description="Database reachable")
    latency_ms: Optional[float] = None
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
