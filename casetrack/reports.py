"""
Firm-wide reports over files, movements, deadlines and alerts.

Most reports take an optional set of visible file ids; the API passes
the acting user's visible files so clerks and advocates only see rows
for files they hold or are assigned to. None means every file.
"""

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from casetrack.base import Clock, CoreService
from casetrack.bottlenecks import BottleneckAnalyzer
from casetrack.connection import DatabaseSessionProvider
from casetrack.deadlines import days_until
from casetrack.errors import NotFoundError, OperationResult, ValidationError
from casetrack.models import Deadline, FileStatus, Movement, ensure_utc, utcnow
from casetrack.repositories import (
    AlertRepository,
    AttachmentRepository,
    DeadlineRepository,
    FileRepository,
    MovementRepository,
    UserRepository,
)
from security_logger import SecurityLogger

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = 7
DEADLINE_REPORT_DAYS = 30
RISK_BOTTLENECK_DAYS = 14
RISK_UNACKNOWLEDGED_HOURS = 48
MISSING_DOCUMENT_LIMIT = 5

SEVERITY_ORDER = {'high': 0, 'medium': 1, 'low': 2}


def urgency(days: int) -> str:
    if days < 0:
        return "overdue"
    if days <= 3:
        return "urgent"
    if days <= 7:
        return "soon"
    return "normal"


def week_label(due_date: datetime, now: datetime) -> str:
    """Calendar bucket counted in 7-day blocks from now."""
    weeks = math.ceil((ensure_utc(due_date) - ensure_utc(now)).total_seconds() / (7 * 86400))
    if weeks <= 1:
        return "This Week"
    if weeks <= 2:
        return "Next Week"
    return f"Week {weeks}"


@dataclass
class RiskItem:
    """One finding in the risk report."""
    category: str
    severity: str
    file_id: str
    case_name: str
    description: str
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'severity': self.severity,
            'file_id': self.file_id,
            'case_name': self.case_name,
            'description': self.description,
            'recommendation': self.recommendation,
        }


def _visible(file_id: Optional[str], file_ids: Optional[Set[str]]) -> bool:
    return file_ids is None or file_id in file_ids


def movement_entry(movement: Movement, names: Dict[str, str]) -> Dict[str, Any]:
    """A movement with user ids resolved to display names."""
    return {
        'movement_id': str(movement.movement_id),
        'file_id': movement.file_id,
        'timestamp': movement.timestamp.isoformat(),
        'from_custodian': movement.from_custodian_id,
        'from_name': names.get(movement.from_custodian_id) if movement.from_custodian_id else None,
        'to_custodian': movement.to_custodian_id,
        'to_name': names.get(movement.to_custodian_id, "Unknown"),
        'purpose': movement.purpose.value,
        'notes': movement.notes,
        'logged_by': movement.logged_by,
        'logged_by_name': names.get(movement.logged_by) if movement.logged_by else None,
        'acknowledged': movement.acknowledged,
        'acknowledged_at': movement.acknowledged_at.isoformat() if movement.acknowledged_at else None,
        'acknowledged_by': movement.acknowledged_by,
        'acknowledged_by_name': names.get(movement.acknowledged_by) if movement.acknowledged_by else None,
    }


class ReportService(CoreService):

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        clock: Clock = utcnow,
        security_log: Optional[SecurityLogger] = None,
        bottlenecks: Optional[BottleneckAnalyzer] = None
    ):
        super().__init__(provider, clock, security_log)
        self.bottlenecks = bottlenecks or BottleneckAnalyzer(provider, clock, security_log)

    # ============================================
    # STATISTICS
    # ============================================

    def get_statistics(self) -> OperationResult[Dict[str, Any]]:
        return self._run("get_statistics", self._statistics)

    def _statistics(self) -> Dict[str, Any]:
        now = self.now()
        with self._provider.get_unit_of_work() as uow:
            by_status = FileRepository(uow.session).count_by_status()
            movements = MovementRepository(uow.session)
            deadlines = DeadlineRepository(uow.session)
            alerts = AlertRepository(uow.session)

            return {
                'total_files': sum(by_status.values()),
                'active_files': by_status.get(FileStatus.ACTIVE.value, 0),
                'dormant_files': by_status.get(FileStatus.DORMANT.value, 0),
                'closed_files': by_status.get(FileStatus.CLOSED.value, 0),
                'total_movements': movements.count(),
                'unacknowledged_movements': movements.count(unacknowledged_only=True),
                'upcoming_deadlines': len(deadlines.pending(
                    due_from=now, due_to=now + timedelta(days=UPCOMING_WINDOW_DAYS)
                )),
                'overdue_deadlines': len(deadlines.pending(due_before=now)),
                'active_alerts': alerts.count(),
                'unread_alerts': alerts.count(unread_only=True),
            }

    # ============================================
    # FILE REPORTS
    # ============================================

    def get_file_status_report(self, file_ids: Optional[Set[str]] = None) -> OperationResult[Dict[str, Any]]:
        """Files grouped by status with counts."""
        def _report() -> Dict[str, Any]:
            with self._provider.get_unit_of_work() as uow:
                files = FileRepository(uow.session).list_files()

            groups: Dict[str, Dict[str, Any]] = OrderedDict(
                (status.value, {'count': 0, 'files': []}) for status in FileStatus
            )
            total = 0
            for case_file in files:
                if not _visible(case_file.file_id, file_ids):
                    continue
                group = groups[case_file.status.value]
                group['count'] += 1
                group['files'].append({'file_id': case_file.file_id, 'case_name': case_file.case_name})
                total += 1
            return {'total': total, 'by_status': groups}
        return self._run("file_status_report", _report)

    def get_practice_area_report(self, file_ids: Optional[Set[str]] = None) -> OperationResult[List[Dict[str, Any]]]:
        """File and active-file counts per practice area, busiest first."""
        def _report() -> List[Dict[str, Any]]:
            with self._provider.get_unit_of_work() as uow:
                files = FileRepository(uow.session).list_files()

            areas: Dict[str, Dict[str, Any]] = {}
            for case_file in files:
                if not _visible(case_file.file_id, file_ids):
                    continue
                row = areas.setdefault(
                    case_file.practice_area,
                    {'practice_area': case_file.practice_area, 'count': 0, 'active': 0}
                )
                row['count'] += 1
                if case_file.status == FileStatus.ACTIVE:
                    row['active'] += 1
            return sorted(areas.values(), key=lambda row: (-row['count'], row['practice_area']))
        return self._run("practice_area_report", _report)

    # ============================================
    # DEADLINE REPORT
    # ============================================

    def get_deadline_report(
        self,
        days: int = DEADLINE_REPORT_DAYS,
        file_ids: Optional[Set[str]] = None
    ) -> OperationResult[Dict[str, Any]]:
        """
        Overdue deadlines plus those due within `days`, grouped by week.

        Each item carries days_until and an urgency band: overdue,
        urgent (3 days or less), soon (7 or less) or normal.
        """
        return self._run("deadline_report", self._deadline_report, days, file_ids)

    def _deadline_report(self, days: int, file_ids: Optional[Set[str]]) -> Dict[str, Any]:
        if days < 0:
            raise ValidationError("days must not be negative", field="days")

        now = self.now()
        with self._provider.get_unit_of_work() as uow:
            deadlines = DeadlineRepository(uow.session)
            overdue = deadlines.pending(due_before=now)
            upcoming = deadlines.pending(due_from=now, due_to=now + timedelta(days=days))

        def _item(deadline: Deadline) -> Dict[str, Any]:
            remaining = days_until(deadline.due_date, now)
            return {
                'deadline_id': str(deadline.deadline_id),
                'file_id': deadline.file_id,
                'deadline_type': deadline.deadline_type.value,
                'description': deadline.description,
                'due_date': deadline.due_date.isoformat(),
                'days_until': remaining,
                'urgency': urgency(remaining),
            }

        overdue_items = [_item(d) for d in overdue if _visible(d.file_id, file_ids)]
        upcoming_items = []
        by_week: Dict[str, List[Dict[str, Any]]] = OrderedDict()
        for deadline in upcoming:
            if not _visible(deadline.file_id, file_ids):
                continue
            item = _item(deadline)
            upcoming_items.append(item)
            by_week.setdefault(week_label(deadline.due_date, now), []).append(item)

        return {
            'overdue': overdue_items,
            'upcoming': upcoming_items,
            'by_week': by_week,
            'summary': {
                'overdue_count': len(overdue_items),
                'upcoming_count': len(upcoming_items),
                'this_week': sum(1 for item in upcoming_items if item['days_until'] <= 7),
            },
        }

    # ============================================
    # RISK REPORT
    # ============================================

    def get_risk_report(self) -> OperationResult[Dict[str, Any]]:
        """
        Everything that needs a partner's attention, most severe first.

        Covers overdue deadlines, files held too long, transfers nobody
        has acknowledged, and active files with no digital copy.
        """
        return self._run("risk_report", self._risk_report)

    def _risk_report(self) -> Dict[str, Any]:
        now = self.now()
        held_too_long = self.bottlenecks.analyze(RISK_BOTTLENECK_DAYS).unwrap()

        with self._provider.get_unit_of_work() as uow:
            files = {f.file_id: f for f in FileRepository(uow.session).list_files()}
            names = UserRepository(uow.session).names_by_id()
            overdue = DeadlineRepository(uow.session).pending(due_before=now)
            unacknowledged = MovementRepository(uow.session).unacknowledged(
                older_than=now - timedelta(hours=RISK_UNACKNOWLEDGED_HOURS)
            )
            linked = AttachmentRepository(uow.session).file_ids_with_attachments()

        def _case_name(file_id: str) -> str:
            case_file = files.get(file_id)
            return case_file.case_name if case_file else ""

        risks: List[RiskItem] = []
        for deadline in overdue:
            risks.append(RiskItem(
                category="overdue_deadline",
                severity="high",
                file_id=deadline.file_id,
                case_name=_case_name(deadline.file_id),
                description=f"{deadline.deadline_type.value}: {deadline.description}",
                recommendation="Immediately address this deadline. Notify assigned advocate and partner.",
            ))

        for item in held_too_long:
            holder = names.get(item.current_custodian, "Unknown")
            risks.append(RiskItem(
                category="bottleneck",
                severity=item.risk_level,
                file_id=item.file.file_id,
                case_name=item.file.case_name,
                description=f"File held by {holder} for {item.days_held} days",
                recommendation="Review whether file movement is required. "
                               "Consider reassignment if custodian is unavailable.",
            ))

        for movement in unacknowledged:
            risks.append(RiskItem(
                category="unacknowledged_transfer",
                severity="medium",
                file_id=movement.file_id,
                case_name=_case_name(movement.file_id),
                description=f"Transfer to {names.get(movement.to_custodian_id, 'Unknown')} not acknowledged",
                recommendation="Confirm file location with recipient. "
                               "Update movement log if location is verified.",
            ))

        undocumented = [
            f for f in files.values()
            if f.status == FileStatus.ACTIVE and f.file_id not in linked
        ]
        for case_file in undocumented[:MISSING_DOCUMENT_LIMIT]:
            risks.append(RiskItem(
                category="missing_documents",
                severity="low",
                file_id=case_file.file_id,
                case_name=case_file.case_name,
                description="No digital documents linked to this file",
                recommendation="Upload scanned copies of key documents for backup and easy reference.",
            ))

        # Stable sort keeps each category's own order inside a severity band
        risks.sort(key=lambda risk: SEVERITY_ORDER.get(risk.severity, len(SEVERITY_ORDER)))
        return {
            'risks': [risk.to_dict() for risk in risks],
            'summary': {
                'total': len(risks),
                'high': sum(1 for r in risks if r.severity == "high"),
                'medium': sum(1 for r in risks if r.severity == "medium"),
                'low': sum(1 for r in risks if r.severity == "low"),
            },
            'generated_at': now.isoformat(),
        }

    # ============================================
    # AUDIT
    # ============================================

    def get_audit_log(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        file_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> OperationResult[Dict[str, Any]]:
        """
        Movement log filtered by date range, file and user, newest first.

        Args:
            start: Inclusive lower bound
            end: Inclusive upper bound
            file_id: Only movements of this file
            user_id: Movements the user sent, received or logged
        """
        return self._run("audit_log", self._audit_log, start, end, file_id, user_id)

    def _audit_log(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        file_id: Optional[str],
        user_id: Optional[str]
    ) -> Dict[str, Any]:
        start = ensure_utc(start) if start is not None else None
        end = ensure_utc(end) if end is not None else None
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end", field="start")

        with self._provider.get_unit_of_work() as uow:
            movements = MovementRepository(uow.session).audit_log(
                start=start, end=end, file_id=file_id, user_id=user_id
            )
            names = UserRepository(uow.session).names_by_id()

        entries = [movement_entry(m, names) for m in movements]
        acknowledged = sum(1 for m in movements if m.acknowledged)
        return {
            'entries': entries,
            'summary': {
                'total_movements': len(entries),
                'acknowledged': acknowledged,
                'pending': len(entries) - acknowledged,
            },
        }

    def get_audit_trail(self, file_id: str) -> OperationResult[List[Dict[str, Any]]]:
        """A file's complete movement history, oldest first, with names."""
        def _trail() -> List[Dict[str, Any]]:
            with self._provider.get_unit_of_work() as uow:
                if FileRepository(uow.session).get_by_id(file_id) is None:
                    raise NotFoundError(f"File not found: {file_id}")
                movements = MovementRepository(uow.session).history(file_id)
                names = UserRepository(uow.session).names_by_id()
            return [movement_entry(m, names) for m in movements]
        return self._run("audit_trail", _trail)

    def export_audit_trail(self, file_id: str, exported_by: str) -> OperationResult[Dict[str, Any]]:
        """Printable chain-of-custody record for one file."""
        return self._run("export_audit_trail", self._export_audit_trail, file_id, exported_by)

    def _export_audit_trail(self, file_id: str, exported_by: str) -> Dict[str, Any]:
        with self._provider.get_unit_of_work() as uow:
            case_file = FileRepository(uow.session).get_by_id(file_id)
            if case_file is None:
                raise NotFoundError(f"File not found: {file_id}")
            movements = MovementRepository(uow.session).history(file_id)
            names = UserRepository(uow.session).names_by_id()

        trail = [
            {
                'date': m.timestamp.isoformat(),
                'from': names.get(m.from_custodian_id, "Unknown") if m.from_custodian_id else "Unknown",
                'to': names.get(m.to_custodian_id, "Unknown"),
                'purpose': m.purpose.value,
                'notes': m.notes,
                'acknowledged': "Yes" if m.acknowledged else "Pending",
                'logged_by': names.get(m.logged_by, "System") if m.logged_by else "System",
            }
            for m in movements
        ]
        logger.info(f"Audit trail for {file_id} exported by {exported_by}")
        return {
            'file': {
                'file_id': case_file.file_id,
                'case_name': case_file.case_name,
                'client_name': case_file.client_name,
                'status': case_file.status.value,
                'date_opened': case_file.date_opened.isoformat(),
            },
            'trail': trail,
            'export_date': self.now().isoformat(),
            'exported_by': names.get(exported_by, "Unknown"),
        }
