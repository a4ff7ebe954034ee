"""
Alert Engine for CaseTrack

Runs four independent scan passes over the ledger, the deadline tracker
and the bottleneck analyzer:

1. Deadline pass - overdue deadlines (plus partner escalation) and
   upcoming deadlines at exact day counts (plus a location warning when
   the file is away from its advocates)
2. Bottleneck pass - files held too long by one custodian
3. Unacknowledged-movement pass - transfers nobody has confirmed
4. Missing-digital-link pass - active files without attachments

Every alert goes through create_alert_if_new. The active-alert unique
index on dedup_key makes it safe for overlapping scans: the second
insert of the same (type, file, target) fails at the database and is
treated as a no-op.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from casetrack.base import Clock, CoreService
from casetrack.bottlenecks import BottleneckAnalyzer
from casetrack.connection import DatabaseSessionProvider
from casetrack.deadlines import SECONDS_PER_DAY, days_until
from casetrack.errors import InvalidStateError, NotFoundError, OperationResult, as_uuid
from casetrack.models import (
    Alert,
    AlertSeverity,
    AlertType,
    CaseFile,
    FileStatus,
    build_dedup_key,
    utcnow,
)
from casetrack.monitoring import record_alert_created, record_scan_pass_failure
from casetrack.permissions import Actor, Capability, roles_with
from casetrack.repositories import (
    AlertRepository,
    AttachmentRepository,
    DeadlineRepository,
    DuplicateEntityError,
    FileRepository,
    MovementRepository,
    UserRepository,
)
from config_manager import AlertConfig
from security_logger import SecurityLogger

logger = logging.getLogger(__name__)


# ============================================
# DEDUP PRIMITIVE
# ============================================

def create_alert_if_new(
    provider: DatabaseSessionProvider,
    alert_type: AlertType,
    severity: AlertSeverity,
    message: str,
    file_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    deadline_id: Optional[UUID] = None,
    clock: Clock = utcnow
) -> Optional[Alert]:
    """
    Insert an alert unless an active one with the same key exists.

    Runs in its own transaction.

    Returns:
        The new Alert, or None when an active duplicate exists
    """
    dedup_key = build_dedup_key(alert_type, file_id, target_user_id)

    with provider.get_unit_of_work() as uow:
        repo = AlertRepository(uow.session)
        if repo.find_active(dedup_key) is not None:
            return None
        try:
            alert = repo.create({
                'alert_type': alert_type,
                'severity': severity,
                'file_id': file_id,
                'deadline_id': deadline_id,
                'target_user_id': target_user_id,
                'message': message,
                'created_at': clock(),
                'dedup_key': dedup_key,
            })
            uow.commit()
        except DuplicateEntityError:
            logger.debug(f"Concurrent insert won for {dedup_key}")
            return None

    record_alert_created(alert_type.value, severity.value)
    logger.info(f"Alert created: {dedup_key} ({severity.value})")
    return alert


# ============================================
# SCAN SUMMARY
# ============================================

@dataclass
class ScanSummary:
    """Outcome of one run_alert_check invocation."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    created: Dict[str, int] = field(default_factory=dict)
    failed_passes: List[str] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        return sum(self.created.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'created': dict(self.created),
            'total_created': self.total_created,
            'failed_passes': list(self.failed_passes),
        }


# ============================================
# ALERT ENGINE
# ============================================

class AlertEngine(CoreService):
    """Periodic scan passes plus the consumer-side alert operations."""

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        config: Optional[AlertConfig] = None,
        clock: Clock = utcnow,
        security_log: Optional[SecurityLogger] = None
    ):
        super().__init__(provider, clock, security_log)
        self.config = config or AlertConfig()
        self.bottlenecks = BottleneckAnalyzer(
            provider,
            clock=clock,
            security_log=security_log,
            use_date_opened_fallback=self.config.bottleneck_date_opened_fallback,
            high_risk_days=self.config.escalation_threshold_days
        )

    def create_alert_if_new(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        file_id: Optional[str] = None,
        target_user_id: Optional[str] = None,
        deadline_id: Optional[UUID] = None
    ) -> Optional[Alert]:
        return create_alert_if_new(
            self._provider, alert_type, severity, message,
            file_id=file_id, target_user_id=target_user_id,
            deadline_id=deadline_id, clock=self._clock
        )

    # ============================================
    # SCAN
    # ============================================

    def run_alert_check(self) -> ScanSummary:
        """
        Run every scan pass in order.

        A pass that fails is logged and skipped; the others still run.
        """
        passes: List[tuple] = [
            ("deadlines", self.check_deadline_alerts),
            ("bottlenecks", self.check_overdue_files),
            ("unacknowledged_movements", self.check_unacknowledged_movements),
            ("missing_digital_links", self.check_missing_digital_links),
        ]

        summary = ScanSummary(started_at=self.now())
        logger.info("Alert scan started")

        for name, scan_pass in passes:
            try:
                summary.created[name] = scan_pass()
            except Exception:
                logger.exception(f"Alert scan pass '{name}' failed, skipping")
                record_scan_pass_failure(name)
                summary.created[name] = 0
                summary.failed_passes.append(name)

        summary.finished_at = self.now()
        logger.info(
            f"Alert scan complete: {summary.total_created} created, "
            f"{len(summary.failed_passes)} pass(es) failed"
        )
        return summary

    def _partner_ids(self) -> List[str]:
        with self._provider.get_unit_of_work() as uow:
            partners = UserRepository(uow.session).list_active_by_roles(
                roles_with(Capability.RECEIVE_ESCALATIONS)
            )
            return [p.user_id for p in partners]

    def _user_names(self) -> Dict[str, str]:
        with self._provider.get_unit_of_work() as uow:
            return UserRepository(uow.session).names_by_id()

    @staticmethod
    def _name(names: Dict[str, str], user_id: Optional[str]) -> str:
        if not user_id:
            return "Unknown"
        return names.get(user_id, "Unknown User")

    def _emit(self, created: List[Optional[Alert]], *args, **kwargs) -> None:
        created.append(self.create_alert_if_new(*args, **kwargs))

    def check_deadline_alerts(self) -> int:
        """Overdue and upcoming deadline alerts. Returns alerts created."""
        now = self.now()
        with self._provider.get_unit_of_work() as uow:
            deadlines = DeadlineRepository(uow.session).pending()
            files: Dict[str, CaseFile] = {
                f.file_id: f for f in FileRepository(uow.session).list_files()
            }
        names = self._user_names()
        partners = self._partner_ids()
        warning_days = set(self.config.deadline_warning_days)

        created: List[Optional[Alert]] = []
        for deadline in deadlines:
            case_file = files.get(deadline.file_id)
            if case_file is None:
                continue
            kind = deadline.deadline_type.value
            lead = case_file.lead_advocate_id

            if deadline.due_date < now:
                days_ago = math.ceil((now - deadline.due_date).total_seconds() / SECONDS_PER_DAY)
                self._emit(
                    created, AlertType.DEADLINE_OVERDUE, AlertSeverity.CRITICAL,
                    f'OVERDUE: {kind} for "{case_file.case_name}" was due {days_ago} day(s) ago. '
                    f'{deadline.description}'.strip(),
                    file_id=case_file.file_id, target_user_id=lead,
                    deadline_id=deadline.deadline_id
                )
                for partner_id in partners:
                    self._emit(
                        created, AlertType.ESCALATION, AlertSeverity.CRITICAL,
                        f'ESCALATION: Deadline overdue for "{case_file.case_name}" - {kind}. '
                        f'Current custodian: {self._name(names, case_file.current_custodian_id)}',
                        file_id=case_file.file_id, target_user_id=partner_id,
                        deadline_id=deadline.deadline_id
                    )
                continue

            remaining = days_until(deadline.due_date, now)
            if remaining not in warning_days:
                continue

            if remaining == 1:
                severity = AlertSeverity.CRITICAL
            elif remaining <= 3:
                severity = AlertSeverity.WARNING
            else:
                severity = AlertSeverity.INFO

            self._emit(
                created, AlertType.DEADLINE_UPCOMING, severity,
                f'DEADLINE: {kind} for "{case_file.case_name}" in {remaining} day(s). '
                f'{deadline.description}'.strip(),
                file_id=case_file.file_id, target_user_id=lead,
                deadline_id=deadline.deadline_id
            )

            advocates = case_file.assigned_advocates or []
            if case_file.current_custodian_id not in advocates:
                self._emit(
                    created, AlertType.FILE_LOCATION_WARNING, AlertSeverity.WARNING,
                    f'File "{case_file.case_name}" has upcoming deadline but is not with assigned '
                    f'advocate. Current location: {self._name(names, case_file.current_custodian_id)}',
                    file_id=case_file.file_id, target_user_id=case_file.current_custodian_id
                )

        return sum(1 for a in created if a is not None)

    def check_overdue_files(self) -> int:
        """Files held past the overdue threshold. Returns alerts created."""
        escalation_days = self.config.escalation_threshold_days
        items = self.bottlenecks.analyze(self.config.overdue_threshold_days).unwrap()
        names = self._user_names()
        partners = self._partner_ids() if any(i.days_held >= escalation_days for i in items) else []

        created: List[Optional[Alert]] = []
        for item in items:
            holder = self._name(names, item.current_custodian)
            escalate = item.days_held >= escalation_days
            self._emit(
                created, AlertType.FILE_OVERDUE_AT_CUSTODIAN,
                AlertSeverity.CRITICAL if escalate else AlertSeverity.WARNING,
                f'File "{item.file.case_name}" has been with {holder} for {item.days_held} days '
                f'without movement.',
                file_id=item.file.file_id, target_user_id=item.current_custodian
            )
            if escalate:
                for partner_id in partners:
                    self._emit(
                        created, AlertType.ESCALATION, AlertSeverity.CRITICAL,
                        f'BOTTLENECK: "{item.file.case_name}" held by {holder} for '
                        f'{item.days_held} days. Intervention may be required.',
                        file_id=item.file.file_id, target_user_id=partner_id
                    )

        return sum(1 for a in created if a is not None)

    def check_unacknowledged_movements(self) -> int:
        """Transfers unconfirmed for too long. Returns alerts created."""
        now = self.now()
        threshold_hours = self.config.unacknowledged_hours
        with self._provider.get_unit_of_work() as uow:
            pending = MovementRepository(uow.session).unacknowledged()
            files = {f.file_id: f for f in FileRepository(uow.session).list_files()}
        names = self._user_names()

        created: List[Optional[Alert]] = []
        for movement in pending:
            hours_since = (now - movement.timestamp).total_seconds() / 3600
            if hours_since < threshold_hours:
                continue
            case_file = files.get(movement.file_id)
            if case_file is None:
                continue
            self._emit(
                created, AlertType.MOVEMENT_UNACKNOWLEDGED, AlertSeverity.WARNING,
                f'Pending acknowledgement: "{case_file.case_name}" transferred to '
                f'{self._name(names, movement.to_custodian_id)} '
                f'{math.floor(hours_since + 0.5)} hours ago.',
                file_id=movement.file_id, target_user_id=movement.to_custodian_id
            )

        return sum(1 for a in created if a is not None)

    def check_missing_digital_links(self) -> int:
        """Active files with no attachments. Returns alerts created."""
        with self._provider.get_unit_of_work() as uow:
            files = FileRepository(uow.session).list_files(status=FileStatus.ACTIVE)
            linked = AttachmentRepository(uow.session).file_ids_with_attachments()

        created: List[Optional[Alert]] = []
        for case_file in files:
            if case_file.file_id in linked:
                continue
            self._emit(
                created, AlertType.MISSING_DIGITAL_LINK, AlertSeverity.INFO,
                f'File "{case_file.case_name}" has no linked digital documents. '
                f'Consider uploading scans for backup.',
                file_id=case_file.file_id, target_user_id=case_file.lead_advocate_id
            )

        return sum(1 for a in created if a is not None)

    # ============================================
    # CONSUMER OPERATIONS
    # ============================================

    def _visible(self, session, actor: Actor) -> List[Alert]:
        repo = AlertRepository(session)
        if actor.can(Capability.VIEW_ALL_FILES):
            return repo.list_active()
        return repo.list_active(target_user_id=actor.user_id)

    def get_visible_alerts(self, actor: Actor) -> OperationResult[List[Alert]]:
        """Active alerts the actor may see, newest first."""
        def _list() -> List[Alert]:
            with self._provider.get_unit_of_work() as uow:
                return self._visible(uow.session, actor)
        return self._run("get_visible_alerts", _list)

    def get_unread_count(self, actor: Actor) -> OperationResult[int]:
        def _count() -> int:
            with self._provider.get_unit_of_work() as uow:
                return sum(1 for a in self._visible(uow.session, actor) if not a.read)
        return self._run("get_unread_count", _count)

    def mark_read(self, alert_id) -> OperationResult[Alert]:
        return self._run("mark_alert_read", self._update_alert, alert_id, self._apply_read)

    def dismiss(self, alert_id) -> OperationResult[Alert]:
        """Dismiss an alert. Dismissed alerts no longer block a new one."""
        return self._run("dismiss_alert", self._update_alert, alert_id, self._apply_dismiss)

    def _apply_read(self, alert: Alert) -> None:
        if not alert.read:
            alert.read = True
            alert.read_at = self.now()

    def _apply_dismiss(self, alert: Alert) -> None:
        alert.dismissed = True
        alert.dismissed_at = self.now()

    def _update_alert(self, alert_id, change: Callable[[Alert], None]) -> Alert:
        parsed_id = as_uuid(alert_id, "alert")
        with self._provider.get_unit_of_work() as uow:
            alert = AlertRepository(uow.session).get_by_id(parsed_id)
            if alert is None:
                raise NotFoundError("Alert not found")
            if alert.dismissed:
                raise InvalidStateError("Alert already dismissed")
            change(alert)
            uow.session.flush()
            uow.commit()
            return alert

    def mark_all_read(self, actor: Actor) -> OperationResult[int]:
        """Mark every alert visible to the actor as read. Returns the count changed."""
        def _mark_all() -> int:
            with self._provider.get_unit_of_work() as uow:
                ids = [a.alert_id for a in self._visible(uow.session, actor) if not a.read]
                changed = AlertRepository(uow.session).mark_read(ids, self.now())
                uow.commit()
                return changed
        return self._run("mark_all_alerts_read", _mark_all)

    def dashboard_summary(self, actor: Actor) -> OperationResult[Dict[str, Any]]:
        """Counts by severity and alert family for the actor's visible alerts."""
        def _summary() -> Dict[str, Any]:
            with self._provider.get_unit_of_work() as uow:
                alerts = self._visible(uow.session, actor)
            return {
                'total': len(alerts),
                'unread': sum(1 for a in alerts if not a.read),
                'critical': sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL),
                'warning': sum(1 for a in alerts if a.severity == AlertSeverity.WARNING),
                'info': sum(1 for a in alerts if a.severity == AlertSeverity.INFO),
                'by_type': {
                    'deadlines': sum(1 for a in alerts if 'deadline' in a.alert_type.value),
                    'movements': sum(1 for a in alerts if 'movement' in a.alert_type.value),
                    'escalations': sum(1 for a in alerts if a.alert_type == AlertType.ESCALATION),
                },
            }
        return self._run("dashboard_summary", _summary)
