"""
Repository Pattern for CaseTrack Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories never commit; transaction boundaries belong to the caller's
UnitOfWork.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Set
from uuid import UUID
from datetime import datetime

from sqlalchemy import select, func, and_, or_, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from casetrack.models import (
    User,
    CaseFile,
    Movement,
    Deadline,
    Alert,
    Attachment,
    Role,
    FileStatus,
    DeadlineStatus,
)

logger = logging.getLogger(__name__)

FILE_ID_PATTERN = re.compile(r"^CT-(\d{4})-(\d+)$")


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


# ============================================
# USER REPOSITORY
# ============================================

class UserRepository:
    """Repository for the user directory."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, user_data: Dict[str, Any]) -> User:
        """
        Create a user.

        Raises:
            DuplicateEntityError: If the user_id is taken
        """
        try:
            user = User(**user_data)
            self.session.add(user)
            self.session.flush()
            logger.debug(f"Created user: {user.user_id} ({user.name})")
            return user
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"User already exists: {e}")

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    def list_users(self, active_only: bool = False) -> List[User]:
        query = select(User)
        if active_only:
            query = query.where(User.active == True)
        query = query.order_by(User.user_id)
        return list(self.session.execute(query).scalars().all())

    def list_active_by_roles(self, roles: Sequence[Role]) -> List[User]:
        """Active users holding any of the given roles, ordered by id."""
        if not roles:
            return []
        query = select(User).where(
            and_(User.active == True, User.role.in_(list(roles)))
        ).order_by(User.user_id)
        return list(self.session.execute(query).scalars().all())

    def names_by_id(self) -> Dict[str, str]:
        rows = self.session.execute(select(User.user_id, User.name))
        return {row[0]: row[1] for row in rows}


# ============================================
# FILE REPOSITORY
# ============================================

class FileRepository:
    """Repository for case file operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, file_data: Dict[str, Any]) -> CaseFile:
        """
        Create a case file.

        Raises:
            DuplicateEntityError: If the file_id is taken
        """
        try:
            case_file = CaseFile(**file_data)
            self.session.add(case_file)
            self.session.flush()
            logger.debug(f"Created file: {case_file.file_id} ({case_file.case_name})")
            return case_file
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"File already exists: {e}")

    def get_by_id(self, file_id: str, for_update: bool = False) -> Optional[CaseFile]:
        """
        Get file by ID.

        Args:
            file_id: File identifier
            for_update: Take a row lock (SELECT ... FOR UPDATE) for the
                rest of the transaction

        Returns:
            CaseFile or None
        """
        query = select(CaseFile).where(CaseFile.file_id == file_id)
        if for_update:
            query = query.with_for_update()
        return self.session.execute(query).scalar_one_or_none()

    def list_files(
        self,
        status: Optional[FileStatus] = None,
        custodian_id: Optional[str] = None
    ) -> List[CaseFile]:
        conditions = []
        if status is not None:
            conditions.append(CaseFile.status == status)
        if custodian_id is not None:
            conditions.append(CaseFile.current_custodian_id == custodian_id)

        query = select(CaseFile)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(CaseFile.file_id)
        return list(self.session.execute(query).scalars().all())

    def search(self, text: str) -> List[CaseFile]:
        """Case-insensitive substring match over id, names, area, court and notes."""
        pattern = f"%{text}%"
        query = select(CaseFile).where(or_(
            CaseFile.file_id.ilike(pattern),
            CaseFile.case_name.ilike(pattern),
            CaseFile.client_name.ilike(pattern),
            CaseFile.practice_area.ilike(pattern),
            CaseFile.court_jurisdiction.ilike(pattern),
            CaseFile.notes.ilike(pattern),
        )).order_by(CaseFile.file_id)
        return list(self.session.execute(query).scalars().all())

    def next_file_id(self, year: int) -> str:
        """
        Next CT-<year>-<seq> identifier.

        The sequence is one past the highest sequence already issued for
        that year, zero-padded to four digits.
        """
        prefix = f"CT-{year}-"
        query = select(CaseFile.file_id).where(CaseFile.file_id.like(f"{prefix}%"))
        highest = 0
        for file_id in self.session.execute(query).scalars():
            match = FILE_ID_PATTERN.match(file_id)
            if match:
                highest = max(highest, int(match.group(2)))
        return f"{prefix}{highest + 1:04d}"

    def count_by_status(self) -> Dict[str, int]:
        query = select(CaseFile.status, func.count()).group_by(CaseFile.status)
        return {
            (row[0].value if hasattr(row[0], 'value') else str(row[0])): row[1]
            for row in self.session.execute(query)
        }


# ============================================
# MOVEMENT REPOSITORY
# ============================================

class MovementRepository:
    """Repository for the append-only movement log."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, movement_data: Dict[str, Any]) -> Movement:
        movement = Movement(**movement_data)
        self.session.add(movement)
        self.session.flush()
        logger.debug(
            f"Appended movement {movement.movement_id} for {movement.file_id}: "
            f"{movement.from_custodian_id} -> {movement.to_custodian_id}"
        )
        return movement

    def get_by_id(self, movement_id: UUID, for_update: bool = False) -> Optional[Movement]:
        query = select(Movement).where(Movement.movement_id == movement_id)
        if for_update:
            query = query.with_for_update()
        return self.session.execute(query).scalar_one_or_none()

    def history(self, file_id: str) -> List[Movement]:
        """All movements for a file, oldest first."""
        query = select(Movement).where(
            Movement.file_id == file_id
        ).order_by(Movement.timestamp.asc())
        return list(self.session.execute(query).scalars().all())

    def latest_for_file(self, file_id: str) -> Optional[Movement]:
        query = select(Movement).where(
            Movement.file_id == file_id
        ).order_by(Movement.timestamp.desc()).limit(1)
        return self.session.execute(query).scalars().first()

    def latest_by_file(self) -> Dict[str, Movement]:
        """Most recent movement per file, keyed by file_id."""
        latest_ts = select(
            Movement.file_id,
            func.max(Movement.timestamp).label('latest')
        ).group_by(Movement.file_id).subquery()

        query = select(Movement).join(
            latest_ts,
            and_(
                Movement.file_id == latest_ts.c.file_id,
                Movement.timestamp == latest_ts.c.latest
            )
        )
        result: Dict[str, Movement] = {}
        for movement in self.session.execute(query).scalars():
            result[movement.file_id] = movement
        return result

    def pending_for_user(self, user_id: str) -> List[Movement]:
        """Unacknowledged movements to a user, most recent first."""
        query = select(Movement).where(
            and_(
                Movement.to_custodian_id == user_id,
                Movement.acknowledged == False
            )
        ).order_by(Movement.timestamp.desc())
        return list(self.session.execute(query).scalars().all())

    def unacknowledged(self, older_than: Optional[datetime] = None) -> List[Movement]:
        conditions = [Movement.acknowledged == False]
        if older_than is not None:
            conditions.append(Movement.timestamp <= older_than)
        query = select(Movement).where(and_(*conditions)).order_by(Movement.timestamp.asc())
        return list(self.session.execute(query).scalars().all())

    def audit_log(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        file_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[Movement]:
        """
        Movements matching every given filter, newest first.

        Args:
            start: Inclusive lower bound on timestamp
            end: Inclusive upper bound on timestamp
            file_id: Only this file
            user_id: Movements where the user is sender, recipient or logger
        """
        conditions = []
        if start is not None:
            conditions.append(Movement.timestamp >= start)
        if end is not None:
            conditions.append(Movement.timestamp <= end)
        if file_id is not None:
            conditions.append(Movement.file_id == file_id)
        if user_id is not None:
            conditions.append(or_(
                Movement.from_custodian_id == user_id,
                Movement.to_custodian_id == user_id,
                Movement.logged_by == user_id,
            ))

        query = select(Movement)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(Movement.timestamp.desc())
        return list(self.session.execute(query).scalars().all())

    def count(self, unacknowledged_only: bool = False) -> int:
        query = select(func.count()).select_from(Movement)
        if unacknowledged_only:
            query = query.where(Movement.acknowledged == False)
        return self.session.execute(query).scalar_one()


# ============================================
# DEADLINE REPOSITORY
# ============================================

class DeadlineRepository:
    """Repository for deadline operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, deadline_data: Dict[str, Any]) -> Deadline:
        deadline = Deadline(**deadline_data)
        self.session.add(deadline)
        self.session.flush()
        return deadline

    def get_by_id(self, deadline_id: UUID, for_update: bool = False) -> Optional[Deadline]:
        query = select(Deadline).where(Deadline.deadline_id == deadline_id)
        if for_update:
            query = query.with_for_update()
        return self.session.execute(query).scalar_one_or_none()

    def pending(
        self,
        due_from: Optional[datetime] = None,
        due_to: Optional[datetime] = None,
        due_before: Optional[datetime] = None
    ) -> List[Deadline]:
        """
        Pending deadlines ordered by due date.

        Args:
            due_from: Inclusive lower bound on due_date
            due_to: Inclusive upper bound on due_date
            due_before: Exclusive upper bound on due_date
        """
        conditions = [Deadline.status == DeadlineStatus.PENDING]
        if due_from is not None:
            conditions.append(Deadline.due_date >= due_from)
        if due_to is not None:
            conditions.append(Deadline.due_date <= due_to)
        if due_before is not None:
            conditions.append(Deadline.due_date < due_before)

        query = select(Deadline).where(and_(*conditions)).order_by(Deadline.due_date.asc())
        return list(self.session.execute(query).scalars().all())

    def for_file(self, file_id: str) -> List[Deadline]:
        query = select(Deadline).where(
            Deadline.file_id == file_id
        ).order_by(Deadline.due_date.asc())
        return list(self.session.execute(query).scalars().all())


# ============================================
# ALERT REPOSITORY
# ============================================

class AlertRepository:
    """Repository for alert operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, alert_data: Dict[str, Any]) -> Alert:
        """
        Insert an alert.

        Raises:
            DuplicateEntityError: If an active alert with the same
                dedup_key already exists (unique index violation)
        """
        try:
            alert = Alert(**alert_data)
            self.session.add(alert)
            self.session.flush()
            return alert
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Active alert already exists: {e}")

    def get_by_id(self, alert_id: UUID) -> Optional[Alert]:
        return self.session.get(Alert, alert_id)

    def find_active(self, dedup_key: str) -> Optional[Alert]:
        query = select(Alert).where(
            and_(Alert.dedup_key == dedup_key, Alert.dismissed == False)
        )
        return self.session.execute(query).scalars().first()

    def list_active(self, target_user_id: Optional[str] = None) -> List[Alert]:
        """
        Non-dismissed alerts, newest first.

        Args:
            target_user_id: When given, only alerts targeted at this user
                or broadcast (no target)
        """
        conditions = [Alert.dismissed == False]
        if target_user_id is not None:
            conditions.append(
                or_(Alert.target_user_id == target_user_id, Alert.target_user_id.is_(None))
            )
        query = select(Alert).where(and_(*conditions)).order_by(Alert.created_at.desc())
        return list(self.session.execute(query).scalars().all())

    def mark_read(self, alert_ids: Sequence[UUID], read_at: datetime) -> int:
        if not alert_ids:
            return 0
        result = self.session.execute(
            update(Alert)
            .where(and_(Alert.alert_id.in_(list(alert_ids)), Alert.read == False))
            .values(read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def count(self, unread_only: bool = False) -> int:
        query = select(func.count()).select_from(Alert).where(Alert.dismissed == False)
        if unread_only:
            query = query.where(Alert.read == False)
        return self.session.execute(query).scalar_one()


# ============================================
# ATTACHMENT REPOSITORY
# ============================================

class AttachmentRepository:
    """Repository for digital document link records."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, attachment_data: Dict[str, Any]) -> Attachment:
        attachment = Attachment(**attachment_data)
        self.session.add(attachment)
        self.session.flush()
        return attachment

    def file_ids_with_attachments(self) -> Set[str]:
        query = select(Attachment.file_id).distinct()
        return set(self.session.execute(query).scalars().all())
