"""
Deadline Tracker for CaseTrack

Deadlines move Pending -> Completed exactly once and are never deleted.
Day counts use the ceiling of the remaining time in whole days, so a
deadline 6 hours away is 1 day away and one 26 hours away is 2 days away.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Union

from casetrack.base import CoreService
from casetrack.errors import (
    InvalidStateError,
    NotFoundError,
    OperationResult,
    ValidationError,
    as_uuid,
    coerce_enum,
)
from casetrack.models import (
    Deadline,
    DeadlineStatus,
    DeadlineType,
    FileStatus,
    ensure_utc,
)
from casetrack.repositories import DeadlineRepository, FileRepository

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def days_until(due_date: datetime, now: datetime) -> int:
    """Whole days until due_date, rounded up (negative once past due)."""
    seconds = (ensure_utc(due_date) - ensure_utc(now)).total_seconds()
    return math.ceil(seconds / SECONDS_PER_DAY)


def parse_due_date(value: Union[str, datetime, None]) -> datetime:
    """
    Accept a datetime or an ISO 8601 string; naive values are taken as UTC.

    Raises:
        ValidationError: If the value is missing or cannot be parsed
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Due date is required", field="due_date")
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            raise ValidationError(f"Unparsable due date: {value!r}", field="due_date")
    raise ValidationError(f"Unparsable due date: {value!r}", field="due_date")


class DeadlineTracker(CoreService):
    """Deadline lifecycle and time-window queries."""

    def create_deadline(
        self,
        file_id: str,
        deadline_type=DeadlineType.OTHER,
        due_date: Union[str, datetime, None] = None,
        description: str = "",
        created_by: Optional[str] = None
    ) -> OperationResult[Deadline]:
        return self._run(
            "create_deadline", self._create,
            file_id, deadline_type, due_date, description, created_by
        )

    def _create(
        self,
        file_id: str,
        deadline_type,
        due_date,
        description: str,
        created_by: Optional[str]
    ) -> Deadline:
        parsed_due = parse_due_date(due_date)
        parsed_type = coerce_enum(DeadlineType, deadline_type or DeadlineType.OTHER, "deadline type")

        with self._provider.get_unit_of_work() as uow:
            case_file = FileRepository(uow.session).get_by_id(file_id)
            if case_file is None:
                raise NotFoundError(f"File not found: {file_id}")
            if case_file.status == FileStatus.CLOSED:
                raise InvalidStateError(f"File {file_id} is closed; no new deadlines")

            deadline = DeadlineRepository(uow.session).create({
                'file_id': file_id,
                'deadline_type': parsed_type,
                'due_date': parsed_due,
                'description': description or "",
                'status': DeadlineStatus.PENDING,
                'created_by': created_by,
                'created_at': self.now(),
            })
            uow.commit()

        logger.info(f"Deadline {deadline.deadline_id} ({parsed_type.value}) on {file_id} due {parsed_due.isoformat()}")
        return deadline

    def complete_deadline(self, deadline_id, completed_by: str) -> OperationResult[Deadline]:
        return self._run("complete_deadline", self._complete, deadline_id, completed_by)

    def _complete(self, deadline_id, completed_by: str) -> Deadline:
        parsed_id = as_uuid(deadline_id, "deadline")
        with self._provider.get_unit_of_work() as uow:
            deadline = DeadlineRepository(uow.session).get_by_id(parsed_id, for_update=True)
            if deadline is None:
                raise NotFoundError("Deadline not found")
            if deadline.status == DeadlineStatus.COMPLETED:
                raise InvalidStateError("Deadline already completed")

            deadline.status = DeadlineStatus.COMPLETED
            deadline.completed_at = self.now()
            deadline.completed_by = completed_by
            uow.session.flush()
            uow.commit()

        logger.info(f"Deadline {parsed_id} completed by {completed_by}")
        return deadline

    def get_upcoming(self, window_days: int) -> OperationResult[List[Deadline]]:
        """Pending deadlines with now <= due_date <= now + window_days."""
        def _upcoming() -> List[Deadline]:
            if window_days < 0:
                raise ValidationError("window_days must not be negative", field="window_days")
            now = self.now()
            with self._provider.get_unit_of_work() as uow:
                return DeadlineRepository(uow.session).pending(
                    due_from=now, due_to=now + timedelta(days=window_days)
                )
        return self._run("get_upcoming", _upcoming)

    def get_overdue(self) -> OperationResult[List[Deadline]]:
        """Pending deadlines already past due."""
        def _overdue() -> List[Deadline]:
            with self._provider.get_unit_of_work() as uow:
                return DeadlineRepository(uow.session).pending(due_before=self.now())
        return self._run("get_overdue", _overdue)

    def get_pending(self) -> OperationResult[List[Deadline]]:
        def _pending() -> List[Deadline]:
            with self._provider.get_unit_of_work() as uow:
                return DeadlineRepository(uow.session).pending()
        return self._run("get_pending", _pending)

    def get_file_deadlines(self, file_id: str) -> OperationResult[List[Deadline]]:
        def _for_file() -> List[Deadline]:
            with self._provider.get_unit_of_work() as uow:
                if FileRepository(uow.session).get_by_id(file_id) is None:
                    raise NotFoundError(f"File not found: {file_id}")
                return DeadlineRepository(uow.session).for_file(file_id)
        return self._run("get_file_deadlines", _for_file)

    def days_until(self, deadline: Deadline) -> int:
        return days_until(deadline.due_date, self.now())
