"""
Bottleneck Analyzer for CaseTrack

Derives "days held without movement" per Active file from the movement
log, and summarizes custodian workload.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from casetrack.base import Clock, CoreService
from casetrack.connection import DatabaseSessionProvider
from casetrack.errors import OperationResult, ValidationError
from casetrack.models import CaseFile, FileStatus, Movement, User, utcnow
from casetrack.repositories import FileRepository, MovementRepository, UserRepository
from security_logger import SecurityLogger

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
HIGH_RISK_DAYS = 14


class RiskLevel:
    MEDIUM = "medium"
    HIGH = "high"


def days_held(since: datetime, now: datetime) -> int:
    """Whole days since a timestamp, rounded half up."""
    return math.floor((now - since).total_seconds() / SECONDS_PER_DAY + 0.5)


@dataclass
class BottleneckItem:
    """One file sitting with its custodian past the threshold."""
    file: CaseFile
    current_custodian: str
    last_movement: Optional[Movement]
    days_held: int
    risk_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'file_id': self.file.file_id,
            'case_name': self.file.case_name,
            'current_custodian': self.current_custodian,
            'last_movement_id': str(self.last_movement.movement_id) if self.last_movement else None,
            'last_movement_at': self.last_movement.timestamp.isoformat() if self.last_movement else None,
            'days_held': self.days_held,
            'risk_level': self.risk_level,
        }


@dataclass
class CustodianWorkload:
    """Files currently held by one user."""
    user: User
    file_count: int
    files: List[CaseFile] = field(default_factory=list)
    unacknowledged: int = 0
    avg_days_in_possession: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user.user_id,
            'name': self.user.name,
            'role': self.user.role.value,
            'file_count': self.file_count,
            'file_ids': [f.file_id for f in self.files],
            'unacknowledged': self.unacknowledged,
            'avg_days_in_possession': self.avg_days_in_possession,
        }


class BottleneckAnalyzer(CoreService):
    """
    Finds files held too long by one custodian.

    Files that have never moved have no reference point and are left out,
    unless use_date_opened_fallback is set; then date_opened stands in.
    """

    def __init__(
        self,
        provider: DatabaseSessionProvider,
        clock: Clock = utcnow,
        security_log: Optional[SecurityLogger] = None,
        use_date_opened_fallback: bool = False,
        high_risk_days: int = HIGH_RISK_DAYS
    ):
        super().__init__(provider, clock, security_log)
        self.use_date_opened_fallback = use_date_opened_fallback
        self.high_risk_days = high_risk_days

    def analyze(self, threshold_days: int) -> OperationResult[List[BottleneckItem]]:
        """
        Active files held for at least threshold_days, longest first.

        Args:
            threshold_days: Minimum days held for inclusion
        """
        return self._run("analyze_bottlenecks", self._analyze, threshold_days)

    def _analyze(self, threshold_days: int) -> List[BottleneckItem]:
        if threshold_days < 0:
            raise ValidationError("threshold_days must not be negative", field="threshold_days")

        now = self.now()
        with self._provider.get_unit_of_work() as uow:
            active_files = FileRepository(uow.session).list_files(status=FileStatus.ACTIVE)
            latest = MovementRepository(uow.session).latest_by_file()

        items: List[BottleneckItem] = []
        for case_file in active_files:
            last_movement = latest.get(case_file.file_id)
            if last_movement is not None:
                reference = last_movement.timestamp
            elif self.use_date_opened_fallback:
                reference = case_file.date_opened
            else:
                continue

            held = days_held(reference, now)
            if held < threshold_days:
                continue

            items.append(BottleneckItem(
                file=case_file,
                current_custodian=case_file.current_custodian_id,
                last_movement=last_movement,
                days_held=held,
                risk_level=RiskLevel.HIGH if held >= self.high_risk_days else RiskLevel.MEDIUM,
            ))

        items.sort(key=lambda item: item.days_held, reverse=True)
        return items

    def custodian_report(self) -> OperationResult[List[CustodianWorkload]]:
        """Per-user workload for every user holding at least one file."""
        return self._run("custodian_report", self._custodian_report)

    def _custodian_report(self) -> List[CustodianWorkload]:
        now = self.now()
        with self._provider.get_unit_of_work() as uow:
            users = UserRepository(uow.session).list_users()
            files = FileRepository(uow.session).list_files()
            movements = MovementRepository(uow.session)
            pending = movements.unacknowledged()
            history: Dict[str, List[Movement]] = {
                f.file_id: movements.history(f.file_id) for f in files
            }

        files_by_holder: Dict[str, List[CaseFile]] = defaultdict(list)
        for case_file in files:
            files_by_holder[case_file.current_custodian_id].append(case_file)

        pending_by_user: Dict[str, int] = defaultdict(int)
        for movement in pending:
            pending_by_user[movement.to_custodian_id] += 1

        report: List[CustodianWorkload] = []
        for user in users:
            held = files_by_holder.get(user.user_id, [])
            if not held:
                continue

            total_days = 0.0
            for case_file in held:
                received = [m for m in history[case_file.file_id] if m.to_custodian_id == user.user_id]
                if received:
                    total_days += (now - received[-1].timestamp).total_seconds() / SECONDS_PER_DAY

            report.append(CustodianWorkload(
                user=user,
                file_count=len(held),
                files=held,
                unacknowledged=pending_by_user.get(user.user_id, 0),
                avg_days_in_possession=math.floor(total_days / len(held) + 0.5),
            ))

        report.sort(key=lambda row: row.file_count, reverse=True)
        return report
