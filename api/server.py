"""
FastAPI CaseTrack API Server

REST endpoints over the custody ledger, deadline tracker, alert engine
and reports, plus a WebSocket push channel. The acting user is named in
the X-User-ID header; authentication happens in front of this service.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import logging
import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, List, Optional, Set

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import RedirectResponse
from prometheus_client import make_asgi_app

from api.middleware import (
    RequestLoggingMiddleware,
    setup_cors,
    setup_exception_handlers,
)
from api.models import (
    AlertListResponse,
    AlertResponse,
    AttachmentCreateRequest,
    AttachmentResponse,
    AuditEntryResponse,
    AuditLogResponse,
    BottleneckResponse,
    CheckInRequest,
    CustodianWorkloadResponse,
    DeadlineCreateRequest,
    DeadlineListResponse,
    DeadlineResponse,
    ErrorResponse,
    FileCreateRequest,
    FileRequestBody,
    FileRequestResponse,
    FileResponse,
    FileUpdateRequest,
    HealthResponse,
    MarkAllReadResponse,
    MovementResponse,
    PracticeAreaResponse,
    RiskReportResponse,
    ScanSummaryResponse,
    StatisticsResponse,
    StatusChangeRequest,
    TransferRequest,
    UserCreateRequest,
    UserResponse,
    UserStatusRequest,
)
from api.notifications import EventType, connection_manager
from casetrack.alerts import AlertEngine
from casetrack.bottlenecks import BottleneckAnalyzer
from casetrack.connection import DatabaseSessionProvider, DatabaseSettings, init_db, close_db
from casetrack.deadlines import DeadlineTracker
from casetrack.errors import NotFoundError
from casetrack.ledger import CustodyLedger
from casetrack.models import Deadline, utcnow
from casetrack.monitoring import (
    check_health,
    configure_monitoring,
    get_operation_metrics,
    get_slow_operation_report,
)
from casetrack.permissions import Actor, Capability
from casetrack.reports import ReportService
from casetrack.repositories import UserRepository
from casetrack.users import UserDirectory
from config_manager import ConfigManager, ConfigurationError, apply_logging_config, get_config
from security_logger import get_security_logger

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")

# Global state
_provider: Optional[DatabaseSessionProvider] = None
_ledger: Optional[CustodyLedger] = None
_deadlines: Optional[DeadlineTracker] = None
_alerts: Optional[AlertEngine] = None
_bottlenecks: Optional[BottleneckAnalyzer] = None
_reports: Optional[ReportService] = None
_users: Optional[UserDirectory] = None
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None
_scan_task: Optional[asyncio.Task] = None
_executor = ThreadPoolExecutor(max_workers=4)  # For blocking database calls

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Unknown or missing acting user"},
    403: {"model": ErrorResponse, "description": "Missing capability"},
    404: {"model": ErrorResponse, "description": "Record not found"},
    409: {"model": ErrorResponse, "description": "Invalid state for this operation"},
    422: {"model": ErrorResponse, "description": "Validation error"},
}


def configure_services(
    provider: DatabaseSessionProvider,
    config: ConfigManager,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Build the service objects over one database provider."""
    global _provider, _ledger, _deadlines, _alerts, _bottlenecks, _reports, _users, _config

    _provider = provider
    _config = config
    _ledger = CustodyLedger(provider, clock=clock)
    _deadlines = DeadlineTracker(provider, clock=clock)
    _alerts = AlertEngine(provider, config=config.alerts, clock=clock)
    _bottlenecks = _alerts.bottlenecks
    _reports = ReportService(provider, clock=clock, bottlenecks=_bottlenecks)
    _users = UserDirectory(provider, clock=clock)


def _require(service: Any, name: str) -> Any:
    if service is None:
        raise HTTPException(
            status_code=503, detail=f"{name} not initialized. Service is starting up."
        )
    return service


def get_provider() -> DatabaseSessionProvider:
    """Dependency to get the database provider."""
    return _require(_provider, "Database")


def get_ledger() -> CustodyLedger:
    return _require(_ledger, "Custody ledger")


def get_deadlines() -> DeadlineTracker:
    return _require(_deadlines, "Deadline tracker")


def get_alerts() -> AlertEngine:
    return _require(_alerts, "Alert engine")


def get_bottlenecks() -> BottleneckAnalyzer:
    return _require(_bottlenecks, "Bottleneck analyzer")


def get_reports() -> ReportService:
    return _require(_reports, "Report service")


def get_users() -> UserDirectory:
    return _require(_users, "User directory")


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def get_actor(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    provider: DatabaseSessionProvider = Depends(get_provider),
) -> Actor:
    """Resolve the acting user from the X-User-ID header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")

    with provider.get_unit_of_work() as uow:
        user = UserRepository(uow.session).get_by_id(x_user_id)
    if user is None or not user.active:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return Actor.from_user(user)


def require_capability(actor: Actor, capability: Capability, resource: str) -> None:
    """Reject the request unless the actor's role grants the capability."""
    if not actor.can(capability):
        get_security_logger().log_access_denied(
            user_id=actor.user_id, capability=capability.value, resource=resource
        )
        raise HTTPException(
            status_code=403, detail=f"Role {actor.role.value} lacks {capability.value}"
        )


async def _call(func: Callable, *args, **kwargs) -> Any:
    """Run a blocking service call off the event loop and unwrap its result."""
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(_executor, partial(func, *args, **kwargs))
    return result.unwrap()


async def _notify(coro) -> None:
    """Push notifications never fail the request."""
    try:
        await coro
    except Exception as e:
        logger.warning(f"Push notification failed: {e}")


def _deadline_response(deadline: Deadline, tracker: DeadlineTracker) -> DeadlineResponse:
    response = DeadlineResponse.model_validate(deadline)
    response.days_until = tracker.days_until(deadline)
    return response


# Create FastAPI application
app = FastAPI(
    title="CaseTrack API",
    description="Custody ledger, deadlines and alerts for physical case files",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app, get_config(CONFIG_PATH).api.cors_origins)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)

# Prometheus scrape endpoint
app.mount("/metrics", make_asgi_app())


# ============================================
# LIFECYCLE
# ============================================

async def _scan_loop(interval_minutes: int) -> None:
    """Run the alert scan every interval until cancelled."""
    loop = asyncio.get_running_loop()
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            summary = await loop.run_in_executor(_executor, _alerts.run_alert_check)
            logger.info(f"Scheduled alert scan created {summary.total_created} alert(s)")
        except Exception:
            logger.exception("Scheduled alert scan failed")


@app.on_event("startup")
async def startup():
    """Connect to the database and start the alert scheduler."""
    global _startup_time, _scan_task

    logger.info("Starting CaseTrack API...")
    start_time = time.time()

    try:
        config = get_config(CONFIG_PATH)
        apply_logging_config(config.logging)
        configure_monitoring(
            slow_operation_threshold_ms=config.metrics.slow_operation_threshold_ms,
            warning_threshold_ms=config.metrics.warning_threshold_ms,
            enable_prometheus=config.metrics.enable_prometheus,
            enable_logging=config.metrics.enable_logging,
        )
        get_security_logger(log_dir=config.logging.security_log_dir)

        settings = DatabaseSettings.from_config(config.database)

        loop = asyncio.get_running_loop()
        provider = await loop.run_in_executor(_executor, partial(init_db, settings=settings))
        await loop.run_in_executor(_executor, provider.create_tables)
        configure_services(provider, config)

        if config.api.enable_scheduler:
            _scan_task = asyncio.create_task(_scan_loop(config.alerts.scan_interval_minutes))
            logger.info(f"Alert scan scheduled every {config.alerts.scan_interval_minutes} min")

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready in %.2f seconds", time.time() - start_time)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Stop the scheduler and release database connections."""
    global _scan_task
    logger.info("Shutting down CaseTrack API...")
    if _scan_task is not None:
        _scan_task.cancel()
        _scan_task = None
    close_db()


# ============================================
# HEALTH & USERS
# ============================================

@app.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check database connectivity. Always returns HTTP 200.",
)
def health_check(provider: DatabaseSessionProvider = Depends(get_provider)):
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    status = check_health(provider.engine, provider.session_factory)
    return HealthResponse(
        status="healthy" if status.healthy else "error",
        database=status.healthy,
        latency_ms=round(status.latency_ms, 2),
        uptime_seconds=uptime_seconds,
        error_message=status.error,
    )


@app.get("/api/users", response_model=List[UserResponse], summary="List users")
async def list_users(
    include_inactive: bool = Query(default=False),
    actor: Actor = Depends(get_actor),
    directory: UserDirectory = Depends(get_users),
):
    if include_inactive:
        require_capability(actor, Capability.MANAGE_USERS, "GET /api/users?include_inactive")
    users = await _call(directory.list_users, active_only=not include_inactive)
    return [UserResponse.model_validate(u) for u in users]


@app.post("/api/users", response_model=UserResponse, status_code=201, responses=ERROR_RESPONSES)
async def create_user(
    request: UserCreateRequest,
    actor: Actor = Depends(get_actor),
    directory: UserDirectory = Depends(get_users),
):
    require_capability(actor, Capability.MANAGE_USERS, "POST /api/users")
    user = await _call(
        directory.create_user,
        request.user_id, request.name, request.role,
        email=request.email, department=request.department,
    )
    return UserResponse.model_validate(user)


@app.post("/api/users/{user_id}/status", response_model=UserResponse, responses=ERROR_RESPONSES)
async def set_user_status(
    user_id: str,
    request: UserStatusRequest,
    actor: Actor = Depends(get_actor),
    directory: UserDirectory = Depends(get_users),
):
    require_capability(actor, Capability.MANAGE_USERS, f"POST /api/users/{user_id}/status")
    user = await _call(directory.set_active, user_id, request.active)
    return UserResponse.model_validate(user)



# ============================================
# FILES
# ============================================

@app.get("/api/files", response_model=List[FileResponse], summary="List or search visible files")
async def list_files(
    status: Optional[str] = Query(default=None),
    custodian_id: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None, description="Free-text search"),
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    if q is not None:
        files = await _call(ledger.search_files, q)
    else:
        files = await _call(ledger.list_files, status=status, custodian_id=custodian_id)
    return [FileResponse.model_validate(f) for f in actor.visible_files(files)]



@app.post(
    "/api/files",
    response_model=FileResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Register a case file",
)
async def register_file(
    request: FileCreateRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    require_capability(actor, Capability.REGISTER_FILES, "POST /api/files")
    case_file = await _call(
        ledger.register_file,
        case_name=request.case_name,
        client_name=request.client_name,
        current_custodian=request.current_custodian,
        practice_area=request.practice_area,
        assigned_advocates=request.assigned_advocates,
        court_jurisdiction=request.court_jurisdiction,
        notes=request.notes,
        created_by=actor.user_id,
        date_opened=request.date_opened,
    )
    await _notify(connection_manager.broadcast(
        EventType.FILE_CREATED, {"file_id": case_file.file_id, "case_name": case_file.case_name}
    ))
    return FileResponse.model_validate(case_file)


async def _visible_file(file_id: str, actor: Actor, ledger: CustodyLedger):
    case_file = await _call(ledger.get_file, file_id)
    if not actor.can_view_file(case_file):
        get_security_logger().log_access_denied(
            user_id=actor.user_id,
            capability=Capability.VIEW_ALL_FILES.value,
            resource=f"file:{file_id}",
        )
        raise HTTPException(status_code=403, detail="File is not assigned to you")
    return case_file


@app.get("/api/files/{file_id}", response_model=FileResponse, responses=ERROR_RESPONSES)
async def get_file(
    file_id: str,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    return FileResponse.model_validate(await _visible_file(file_id, actor, ledger))


@app.patch("/api/files/{file_id}", response_model=FileResponse, responses=ERROR_RESPONSES)
async def update_file(
    file_id: str,
    request: FileUpdateRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    require_capability(actor, Capability.UPDATE_FILE_STATUS, f"PATCH /api/files/{file_id}")
    await _visible_file(file_id, actor, ledger)
    case_file = await _call(ledger.update_file, file_id, request.model_dump(exclude_unset=True))
    return FileResponse.model_validate(case_file)


@app.get("/api/files/{file_id}/audit-trail", response_model=List[AuditEntryResponse], responses=ERROR_RESPONSES)
async def file_audit_trail(
    file_id: str,
    actor: Actor = Depends(get_actor),
    reports: ReportService = Depends(get_reports),
):
    require_capability(actor, Capability.VIEW_AUDIT_LOGS, f"GET /api/files/{file_id}/audit-trail")
    return [AuditEntryResponse(**entry) for entry in await _call(reports.get_audit_trail, file_id)]


@app.get("/api/files/{file_id}/audit-trail/export", summary="Chain-of-custody export", responses=ERROR_RESPONSES)
async def export_audit_trail(
    file_id: str,
    actor: Actor = Depends(get_actor),
    reports: ReportService = Depends(get_reports),
):
    require_capability(actor, Capability.VIEW_AUDIT_LOGS, f"GET /api/files/{file_id}/audit-trail/export")
    return await _call(reports.export_audit_trail, file_id, actor.user_id)



@app.post("/api/files/{file_id}/status", response_model=FileResponse, responses=ERROR_RESPONSES)
async def change_file_status(
    file_id: str,
    request: StatusChangeRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    require_capability(actor, Capability.UPDATE_FILE_STATUS, f"POST /api/files/{file_id}/status")
    case_file = await _call(ledger.change_status, file_id, request.status)
    return FileResponse.model_validate(case_file)


@app.post("/api/files/{file_id}/request", response_model=FileRequestResponse, responses=ERROR_RESPONSES)
async def request_file(
    file_id: str,
    request: FileRequestBody,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    require_capability(actor, Capability.REQUEST_FILES, f"POST /api/files/{file_id}/request")
    case_file = await _call(ledger.get_file, file_id)
    alert = await _call(ledger.request_file, file_id, actor.user_id, request.reason)
    return FileRequestResponse(
        file_id=file_id,
        requested_from=case_file.current_custodian_id,
        alert_created=alert is not None,
    )


@app.post("/api/files/{file_id}/check-in", response_model=MovementResponse, responses=ERROR_RESPONSES)
async def check_in_file(
    file_id: str,
    request: CheckInRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    await _visible_file(file_id, actor, ledger)
    movement = await _call(ledger.check_in_file, file_id, actor.user_id, request.notes)
    await _push_movement(movement)
    return MovementResponse.model_validate(movement)


@app.get("/api/files/{file_id}/history", response_model=List[MovementResponse], responses=ERROR_RESPONSES)
async def file_history(
    file_id: str,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    await _visible_file(file_id, actor, ledger)
    movements = await _call(ledger.get_history, file_id)
    return [MovementResponse.model_validate(m) for m in movements]


@app.get("/api/files/{file_id}/deadlines", response_model=List[DeadlineResponse], responses=ERROR_RESPONSES)
async def file_deadlines(
    file_id: str,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
    tracker: DeadlineTracker = Depends(get_deadlines),
):
    await _visible_file(file_id, actor, ledger)
    deadlines = await _call(tracker.get_file_deadlines, file_id)
    return [_deadline_response(d, tracker) for d in deadlines]


@app.post(
    "/api/files/{file_id}/attachments",
    response_model=AttachmentResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Link a digital document to a file",
)
async def link_document(
    file_id: str,
    request: AttachmentCreateRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    require_capability(actor, Capability.UPLOAD_DOCUMENTS, f"POST /api/files/{file_id}/attachments")
    attachment = await _call(
        ledger.link_document, file_id, request.name, actor.user_id,
        content_type=request.content_type, size_bytes=request.size_bytes,
    )
    return AttachmentResponse.model_validate(attachment)


# ============================================
# MOVEMENTS
# ============================================

async def _push_movement(movement) -> None:
    data = {
        "movement_id": str(movement.movement_id),
        "file_id": movement.file_id,
        "from": movement.from_custodian_id,
        "to": movement.to_custodian_id,
        "purpose": movement.purpose.value,
    }
    await _notify(connection_manager.send_to_user(
        movement.to_custodian_id, EventType.MOVEMENT_RECEIVED, data
    ))
    await _notify(connection_manager.broadcast(EventType.MOVEMENT_LOGGED, data))


@app.get("/api/movements", response_model=List[MovementResponse], summary="Pending acknowledgments")
async def pending_movements(
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    movements = await _call(ledger.get_pending_acknowledgments, actor.user_id)
    return [MovementResponse.model_validate(m) for m in movements]


@app.post(
    "/api/movements",
    response_model=MovementResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Transfer custody of a file",
)
async def transfer_custody(
    request: TransferRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    require_capability(actor, Capability.LOG_MOVEMENTS, "POST /api/movements")
    movement = await _call(
        ledger.transfer_custody,
        request.file_id, request.to_custodian, request.purpose,
        logged_by=actor.user_id, notes=request.notes,
    )
    await _push_movement(movement)
    return MovementResponse.model_validate(movement)


@app.post(
    "/api/movements/{movement_id}/acknowledge",
    response_model=MovementResponse,
    responses=ERROR_RESPONSES,
    summary="Acknowledge receipt of a transfer",
)
async def acknowledge_movement(
    movement_id: str,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
):
    movement = await _call(
        ledger.acknowledge_receipt, movement_id, actor.user_id, has_override=actor.has_override
    )
    await _notify(connection_manager.broadcast(
        EventType.MOVEMENT_ACKNOWLEDGED,
        {"movement_id": str(movement.movement_id), "file_id": movement.file_id, "by": actor.user_id},
    ))
    return MovementResponse.model_validate(movement)


# ============================================
# DEADLINES
# ============================================

@app.get("/api/deadlines", response_model=DeadlineListResponse, summary="Upcoming and overdue deadlines")
async def list_deadlines(
    window_days: int = Query(default=7, ge=0, le=365),
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
    tracker: DeadlineTracker = Depends(get_deadlines),
):
    upcoming = await _call(tracker.get_upcoming, window_days)
    overdue = await _call(tracker.get_overdue)
    files = await _call(ledger.list_files)
    visible_ids = {f.file_id for f in actor.visible_files(files)}
    return DeadlineListResponse(
        upcoming=[_deadline_response(d, tracker) for d in upcoming if d.file_id in visible_ids],
        overdue=[_deadline_response(d, tracker) for d in overdue if d.file_id in visible_ids],
    )


@app.post(
    "/api/deadlines",
    response_model=DeadlineResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Schedule a deadline",
)
async def create_deadline(
    request: DeadlineCreateRequest,
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
    tracker: DeadlineTracker = Depends(get_deadlines),
):
    await _visible_file(request.file_id, actor, ledger)
    deadline = await _call(
        tracker.create_deadline,
        request.file_id,
        deadline_type=request.deadline_type,
        due_date=request.due_date,
        description=request.description,
        created_by=actor.user_id,
    )
    await _notify(connection_manager.broadcast(
        EventType.DEADLINE_ADDED,
        {"deadline_id": str(deadline.deadline_id), "file_id": deadline.file_id,
         "due_date": deadline.due_date.isoformat()},
    ))
    return _deadline_response(deadline, tracker)


@app.post(
    "/api/deadlines/{deadline_id}/complete",
    response_model=DeadlineResponse,
    responses=ERROR_RESPONSES,
)
async def complete_deadline(
    deadline_id: str,
    actor: Actor = Depends(get_actor),
    tracker: DeadlineTracker = Depends(get_deadlines),
):
    deadline = await _call(tracker.complete_deadline, deadline_id, actor.user_id)
    return _deadline_response(deadline, tracker)


# ============================================
# ALERTS
# ============================================

@app.get("/api/alerts", response_model=AlertListResponse, summary="Alerts visible to the acting user")
async def list_alerts(
    actor: Actor = Depends(get_actor),
    engine: AlertEngine = Depends(get_alerts),
):
    alerts = await _call(engine.get_visible_alerts, actor)
    summary = await _call(engine.dashboard_summary, actor)
    return AlertListResponse(
        alerts=[AlertResponse.model_validate(a) for a in alerts],
        unread_count=summary["unread"],
        summary=summary,
    )


@app.post("/api/alerts/read", response_model=MarkAllReadResponse, summary="Mark all visible alerts read")
async def mark_all_alerts_read(
    actor: Actor = Depends(get_actor),
    engine: AlertEngine = Depends(get_alerts),
):
    return MarkAllReadResponse(marked_read=await _call(engine.mark_all_read, actor))


async def _own_alert(alert_id: str, actor: Actor, engine: AlertEngine) -> None:
    visible = await _call(engine.get_visible_alerts, actor)
    if not any(str(a.alert_id) == alert_id for a in visible):
        raise NotFoundError("Alert not found")


@app.post("/api/alerts/{alert_id}/read", response_model=AlertResponse, responses=ERROR_RESPONSES)
async def mark_alert_read(
    alert_id: str,
    actor: Actor = Depends(get_actor),
    engine: AlertEngine = Depends(get_alerts),
):
    await _own_alert(alert_id, actor, engine)
    return AlertResponse.model_validate(await _call(engine.mark_read, alert_id))


@app.post("/api/alerts/{alert_id}/dismiss", response_model=AlertResponse, responses=ERROR_RESPONSES)
async def dismiss_alert(
    alert_id: str,
    actor: Actor = Depends(get_actor),
    engine: AlertEngine = Depends(get_alerts),
):
    await _own_alert(alert_id, actor, engine)
    return AlertResponse.model_validate(await _call(engine.dismiss, alert_id))


@app.post("/api/alerts/scan", response_model=ScanSummaryResponse, summary="Run the alert scan now")
async def run_alert_scan(
    actor: Actor = Depends(get_actor),
    engine: AlertEngine = Depends(get_alerts),
):
    require_capability(actor, Capability.GENERATE_REPORTS, "POST /api/alerts/scan")
    loop = asyncio.get_running_loop()
    summary = await loop.run_in_executor(_executor, engine.run_alert_check)
    return ScanSummaryResponse(**summary.to_dict())


# ============================================
# REPORTS
# ============================================

@app.get("/api/reports/statistics", response_model=StatisticsResponse, responses=ERROR_RESPONSES)
async def statistics(
    actor: Actor = Depends(get_actor),
    reports: ReportService = Depends(get_reports),
):
    require_capability(actor, Capability.GENERATE_REPORTS, "GET /api/reports/statistics")
    return StatisticsResponse(**await _call(reports.get_statistics))


@app.get("/api/reports/bottlenecks", response_model=List[BottleneckResponse], responses=ERROR_RESPONSES)
async def bottlenecks(
    threshold_days: Optional[int] = Query(default=None, ge=0),
    actor: Actor = Depends(get_actor),
    analyzer: BottleneckAnalyzer = Depends(get_bottlenecks),
    config: ConfigManager = Depends(get_config_instance),
):
    require_capability(actor, Capability.GENERATE_REPORTS, "GET /api/reports/bottlenecks")
    if threshold_days is None:
        threshold_days = config.alerts.overdue_threshold_days
    items = await _call(analyzer.analyze, threshold_days)
    return [BottleneckResponse(**item.to_dict()) for item in items]


@app.get("/api/reports/custodians", response_model=List[CustodianWorkloadResponse], responses=ERROR_RESPONSES)
async def custodian_report(
    actor: Actor = Depends(get_actor),
    analyzer: BottleneckAnalyzer = Depends(get_bottlenecks),
):
    require_capability(actor, Capability.GENERATE_REPORTS, "GET /api/reports/custodians")
    rows = await _call(analyzer.custodian_report)
    return [CustodianWorkloadResponse(**row.to_dict()) for row in rows]


@app.get("/api/reports/operations", summary="Per-operation timing since startup", responses=ERROR_RESPONSES)
async def operation_report(actor: Actor = Depends(get_actor)):
    require_capability(actor, Capability.GENERATE_REPORTS, "GET /api/reports/operations")
    return {
        "operations": get_operation_metrics(),
        "slow": get_slow_operation_report(),
    }


async def _visible_ids(actor: Actor, ledger: CustodyLedger) -> Optional[Set[str]]:
    """None for roles that see every file."""
    if actor.can(Capability.VIEW_ALL_FILES):
        return None
    files = await _call(ledger.list_files)
    return {f.file_id for f in actor.visible_files(files)}


@app.get("/api/reports/audit-log", response_model=AuditLogResponse, responses=ERROR_RESPONSES)
async def audit_log(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    file_id: Optional[str] = Query(default=None),
    user_id: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    reports: ReportService = Depends(get_reports),
):
    require_capability(actor, Capability.VIEW_AUDIT_LOGS, "GET /api/reports/audit-log")
    return AuditLogResponse(**await _call(
        reports.get_audit_log, start=start, end=end, file_id=file_id, user_id=user_id
    ))


@app.get("/api/reports/risks", response_model=RiskReportResponse, responses=ERROR_RESPONSES)
async def risk_report(
    actor: Actor = Depends(get_actor),
    reports: ReportService = Depends(get_reports),
):
    require_capability(actor, Capability.GENERATE_REPORTS, "GET /api/reports/risks")
    return RiskReportResponse(**await _call(reports.get_risk_report))


@app.get("/api/reports/deadlines", summary="Overdue and upcoming deadlines by week", responses=ERROR_RESPONSES)
async def deadline_report(
    days: int = Query(default=30, ge=0, le=365),
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
    reports: ReportService = Depends(get_reports),
):
    file_ids = await _visible_ids(actor, ledger)
    return await _call(reports.get_deadline_report, days, file_ids)


@app.get("/api/reports/file-status", summary="Visible files grouped by status", responses=ERROR_RESPONSES)
async def file_status_report(
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
    reports: ReportService = Depends(get_reports),
):
    file_ids = await _visible_ids(actor, ledger)
    return await _call(reports.get_file_status_report, file_ids)


@app.get("/api/reports/practice-areas", response_model=List[PracticeAreaResponse], responses=ERROR_RESPONSES)
async def practice_area_report(
    actor: Actor = Depends(get_actor),
    ledger: CustodyLedger = Depends(get_ledger),
    reports: ReportService = Depends(get_reports),
):
    file_ids = await _visible_ids(actor, ledger)
    rows = await _call(reports.get_practice_area_report, file_ids)
    return [PracticeAreaResponse(**row) for row in rows]



# ============================================
# PUSH CHANNEL
# ============================================

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: str = Query(...)):
    await connection_manager.connect(websocket, user_id)
    try:
        while True:
            # Inbound messages are ignored; the socket is push-only
            await websocket.receive_text()
    except WebSocketDisconnect:
        await connection_manager.disconnect(websocket, user_id)


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
