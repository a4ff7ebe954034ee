"""
Custody Ledger for CaseTrack

Owns the append-only movement log and the File.current_custodian pointer
derived from it. A transfer appends one Movement and moves the pointer in
the same transaction; a reader never sees one without the other.

Transfers on the same file serialize on two levels:
- an in-process lock per file_id (threads in this process)
- a SELECT ... FOR UPDATE row lock on the file (other processes)

Transfers on different files never contend.

Usage:
    ledger = CustodyLedger(db_provider)
    result = ledger.transfer_custody("CT-2026-0001", "U2", "Filing", logged_by="U1")
    if result.ok:
        movement = result.value
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Sequence

from casetrack.alerts import create_alert_if_new
from casetrack.base import CoreService
from casetrack.errors import (
    InvalidStateError,
    NotFoundError,
    OperationResult,
    UnauthorizedError,
    ValidationError,
    as_uuid,
    coerce_enum,
)
from casetrack.models import (
    Alert,
    AlertSeverity,
    AlertType,
    Attachment,
    CaseFile,
    FileStatus,
    Movement,
    MovementPurpose,
    Role,
    ensure_utc,
)
from casetrack.repositories import (
    AttachmentRepository,
    DuplicateEntityError,
    FileRepository,
    MovementRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

FILE_ID_ATTEMPTS = 5

EDITABLE_FILE_FIELDS = frozenset({
    "case_name",
    "client_name",
    "practice_area",
    "court_jurisdiction",
    "assigned_advocates",
    "notes",
})


class FileLocks:
    """
    Keyed in-process locks, one per file_id.

    An entry lives only while some thread holds or waits for it, so the
    map stays as small as the number of files being moved right now.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def hold(self, file_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(file_id)
            if lock is None:
                lock = self._locks[file_id] = threading.Lock()
            self._users[file_id] = self._users.get(file_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[file_id] -= 1
                if self._users[file_id] == 0:
                    del self._users[file_id]
                    del self._locks[file_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_file_locks = FileLocks()


class CustodyLedger(CoreService):
    """Custody transfers, acknowledgments and file registration."""

    # ============================================
    # FILE REGISTRATION & STATUS
    # ============================================

    def register_file(
        self,
        case_name: str,
        client_name: str,
        current_custodian: str,
        practice_area: str = "General",
        assigned_advocates: Optional[Sequence[str]] = None,
        court_jurisdiction: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
        date_opened: Optional[datetime] = None
    ) -> OperationResult[CaseFile]:
        """
        Register a new case file under CT-<year>-<seq>.

        Registration records the custodian on the file itself; it does
        not append a movement.
        """
        return self._run(
            "register_file", self._register_file,
            case_name, client_name, current_custodian, practice_area,
            list(assigned_advocates or []), court_jurisdiction, notes,
            created_by, date_opened
        )

    def _register_file(
        self,
        case_name: str,
        client_name: str,
        current_custodian: str,
        practice_area: str,
        assigned_advocates: List[str],
        court_jurisdiction: Optional[str],
        notes: Optional[str],
        created_by: Optional[str],
        date_opened: Optional[datetime]
    ) -> CaseFile:
        if not (case_name or "").strip() or not (client_name or "").strip():
            raise ValidationError("Case name and client name are required", field="case_name")
        if not current_custodian:
            raise ValidationError("Initial custodian must be specified", field="current_custodian")

        opened = ensure_utc(date_opened) or self.now()

        for attempt in range(1, FILE_ID_ATTEMPTS + 1):
            with self._provider.get_unit_of_work() as uow:
                users = UserRepository(uow.session)
                custodian = users.get_by_id(current_custodian)
                if custodian is None:
                    raise NotFoundError(f"Custodian not found: {current_custodian}")
                if not custodian.active:
                    raise ValidationError(
                        f"Custodian is not active: {current_custodian}", field="current_custodian"
                    )
                for advocate_id in assigned_advocates:
                    if users.get_by_id(advocate_id) is None:
                        raise NotFoundError(f"Assigned advocate not found: {advocate_id}")

                files = FileRepository(uow.session)
                file_id = files.next_file_id(opened.year)
                try:
                    case_file = files.create({
                        'file_id': file_id,
                        'case_name': case_name.strip(),
                        'client_name': client_name.strip(),
                        'practice_area': practice_area or "General",
                        'court_jurisdiction': court_jurisdiction,
                        'status': FileStatus.ACTIVE,
                        'current_custodian_id': current_custodian,
                        'assigned_advocates': assigned_advocates,
                        'notes': notes,
                        'date_opened': opened,
                        'created_by': created_by,
                    })
                    uow.commit()
                except DuplicateEntityError:
                    # Another writer took this sequence number
                    logger.warning(f"File id {file_id} already taken (attempt {attempt}), retrying")
                    continue

            logger.info(f"Registered file {case_file.file_id} with custodian {current_custodian}")
            return case_file

        raise InvalidStateError("Could not allocate a file id, please retry")

    def get_file(self, file_id: str) -> OperationResult[CaseFile]:
        return self._run("get_file", self._get_file, file_id)

    def _get_file(self, file_id: str) -> CaseFile:
        with self._provider.get_unit_of_work() as uow:
            case_file = FileRepository(uow.session).get_by_id(file_id)
            if case_file is None:
                raise NotFoundError(f"File not found: {file_id}")
            return case_file

    def list_files(
        self,
        status: Optional[FileStatus] = None,
        custodian_id: Optional[str] = None
    ) -> OperationResult[List[CaseFile]]:
        def _list() -> List[CaseFile]:
            parsed = coerce_enum(FileStatus, status, "file status") if status is not None else None
            with self._provider.get_unit_of_work() as uow:
                return FileRepository(uow.session).list_files(status=parsed, custodian_id=custodian_id)
        return self._run("list_files", _list)

    def change_status(self, file_id: str, status) -> OperationResult[CaseFile]:
        """
        Move a file between Active, Dormant and Closed.

        Closing stamps date_closed. A Closed file stays Closed.
        """
        return self._run("change_status", self._change_status, file_id, status)

    def _change_status(self, file_id: str, status) -> CaseFile:
        new_status = coerce_enum(FileStatus, status, "status")
        with self._provider.get_unit_of_work() as uow:
            case_file = FileRepository(uow.session).get_by_id(file_id, for_update=True)
            if case_file is None:
                raise NotFoundError(f"File not found: {file_id}")
            if case_file.status == FileStatus.CLOSED and new_status != FileStatus.CLOSED:
                raise InvalidStateError(f"File {file_id} is closed")

            if new_status == FileStatus.CLOSED and case_file.status != FileStatus.CLOSED:
                case_file.date_closed = self.now()
            case_file.status = new_status
            uow.session.flush()
            uow.commit()

        logger.info(f"File {file_id} status -> {new_status.value}")
        return case_file

    def search_files(self, text: str) -> OperationResult[List[CaseFile]]:
        """Files whose id, case, client, area, court or notes contain text."""
        def _search() -> List[CaseFile]:
            needle = (text or "").strip()
            if not needle:
                raise ValidationError("Search text is required", field="q")
            with self._provider.get_unit_of_work() as uow:
                return FileRepository(uow.session).search(needle)
        return self._run("search_files", _search)

    def update_file(self, file_id: str, updates: Dict[str, Any]) -> OperationResult[CaseFile]:
        """
        Edit a file's descriptive fields.

        Only EDITABLE_FILE_FIELDS may change here; status has its own
        operation and the custodian moves only by transfer.
        """
        return self._run("update_file", self._update_file, file_id, dict(updates or {}))

    def _update_file(self, file_id: str, updates: Dict[str, Any]) -> CaseFile:
        if not updates:
            raise ValidationError("No changes given", field="updates")
        for key in updates:
            if key not in EDITABLE_FILE_FIELDS:
                raise ValidationError(f"Field cannot be edited: {key}", field=key)
        for key in ('case_name', 'client_name'):
            if key in updates:
                if not (updates[key] or "").strip():
                    raise ValidationError(f"{key} must not be blank", field=key)
                updates[key] = updates[key].strip()
        if 'practice_area' in updates:
            updates['practice_area'] = updates['practice_area'] or "General"

        with self._provider.get_unit_of_work() as uow:
            case_file = FileRepository(uow.session).get_by_id(file_id, for_update=True)
            if case_file is None:
                raise NotFoundError(f"File not found: {file_id}")
            if 'assigned_advocates' in updates:
                advocates = list(updates['assigned_advocates'] or [])
                users = UserRepository(uow.session)
                for advocate_id in advocates:
                    if users.get_by_id(advocate_id) is None:
                        raise NotFoundError(f"Assigned advocate not found: {advocate_id}")
                updates['assigned_advocates'] = advocates

            for key, value in updates.items():
                setattr(case_file, key, value)
            uow.session.flush()
            uow.commit()

        logger.info(f"File {file_id} updated: {', '.join(sorted(updates))}")
        return case_file

    def link_document(
        self,
        file_id: str,
        name: str,
        uploaded_by: str,
        content_type: str = "application/octet-stream",
        size_bytes: int = 0
    ) -> OperationResult[Attachment]:
        """Record that a digital document has been attached to a file."""
        def _link() -> Attachment:
            if not (name or "").strip():
                raise ValidationError("Document name is required", field="name")
            with self._provider.get_unit_of_work() as uow:
                if FileRepository(uow.session).get_by_id(file_id) is None:
                    raise NotFoundError(f"File not found: {file_id}")
                attachment = AttachmentRepository(uow.session).create({
                    'file_id': file_id,
                    'name': name.strip(),
                    'content_type': content_type,
                    'size_bytes': size_bytes,
                    'uploaded_by': uploaded_by,
                    'uploaded_at': self.now(),
                })
                uow.commit()
                return attachment
        return self._run("link_document", _link)

    # ============================================
    # CUSTODY TRANSFER
    # ============================================

    def transfer_custody(
        self,
        file_id: str,
        to_custodian: str,
        purpose,
        logged_by: Optional[str],
        notes: Optional[str] = None
    ) -> OperationResult[Movement]:
        """
        Hand a file to another custodian.

        Args:
            file_id: File being moved
            to_custodian: Receiving user (must exist and be active)
            purpose: MovementPurpose member or its value
            logged_by: User recording the transfer
            notes: Free text

        Returns:
            OperationResult with the appended Movement
        """
        return self._run(
            "transfer_custody", self._transfer,
            file_id, to_custodian, purpose, logged_by, notes
        )

    def _transfer(
        self,
        file_id: str,
        to_custodian: str,
        purpose,
        logged_by: Optional[str],
        notes: Optional[str]
    ) -> Movement:
        parsed_purpose = coerce_enum(MovementPurpose, purpose, "movement purpose")

        with _file_locks.hold(file_id):
            with self._provider.get_unit_of_work() as uow:
                files = FileRepository(uow.session)
                movements = MovementRepository(uow.session)

                case_file = files.get_by_id(file_id, for_update=True)
                if case_file is None:
                    raise NotFoundError(f"File not found: {file_id}")
                if case_file.status == FileStatus.CLOSED:
                    raise InvalidStateError(f"File {file_id} is closed and cannot be moved")

                target = UserRepository(uow.session).get_by_id(to_custodian)
                if target is None:
                    raise NotFoundError(f"Target custodian not found: {to_custodian}")
                if not target.active:
                    raise ValidationError(
                        f"Target custodian is not active: {to_custodian}", field="to_custodian"
                    )

                timestamp = self.now()
                previous = movements.latest_for_file(file_id)
                if previous is not None and timestamp <= previous.timestamp:
                    # Keep per-file history strictly ordered by timestamp
                    timestamp = previous.timestamp + timedelta(microseconds=1)

                movement = movements.create({
                    'file_id': file_id,
                    'from_custodian_id': case_file.current_custodian_id,
                    'to_custodian_id': to_custodian,
                    'purpose': parsed_purpose,
                    'notes': notes or "",
                    'logged_by': logged_by,
                    'timestamp': timestamp,
                    'acknowledged': False,
                })
                case_file.current_custodian_id = to_custodian
                uow.session.flush()
                uow.commit()

        logger.info(
            f"Transferred {file_id}: {movement.from_custodian_id} -> {to_custodian} "
            f"({parsed_purpose.value})"
        )
        return movement

    # ============================================
    # ACKNOWLEDGMENT
    # ============================================

    def acknowledge_receipt(
        self,
        movement_id,
        acting_user_id: str,
        has_override: bool = False
    ) -> OperationResult[Movement]:
        """
        Confirm receipt of a transfer.

        Only the receiving custodian may acknowledge, unless the caller
        holds the override privilege. Acknowledgment happens once.
        """
        return self._run(
            "acknowledge_receipt", self._acknowledge,
            movement_id, acting_user_id, has_override
        )

    def _acknowledge(self, movement_id, acting_user_id: str, has_override: bool) -> Movement:
        parsed_id = as_uuid(movement_id, "movement")
        with self._provider.get_unit_of_work() as uow:
            movement = MovementRepository(uow.session).get_by_id(parsed_id, for_update=True)
            if movement is None:
                raise NotFoundError("Movement record not found")

            if movement.to_custodian_id != acting_user_id and not has_override:
                self.security_log.log_unauthorized_acknowledgment(
                    movement_id=str(parsed_id),
                    acting_user_id=acting_user_id,
                    recipient_id=movement.to_custodian_id
                )
                raise UnauthorizedError("Only the recipient can acknowledge this transfer")

            if movement.acknowledged:
                raise InvalidStateError("Movement already acknowledged")

            movement.acknowledged = True
            movement.acknowledged_at = self.now()
            movement.acknowledged_by = acting_user_id
            uow.session.flush()
            uow.commit()

        logger.info(f"Movement {parsed_id} acknowledged by {acting_user_id}")
        return movement

    def get_pending_acknowledgments(self, user_id: str) -> OperationResult[List[Movement]]:
        """Unacknowledged transfers to user_id, most recent first."""
        def _pending() -> List[Movement]:
            with self._provider.get_unit_of_work() as uow:
                return MovementRepository(uow.session).pending_for_user(user_id)
        return self._run("get_pending_acknowledgments", _pending)

    def get_history(self, file_id: str) -> OperationResult[List[Movement]]:
        """Full custody chain for a file, oldest first."""
        def _history() -> List[Movement]:
            with self._provider.get_unit_of_work() as uow:
                if FileRepository(uow.session).get_by_id(file_id) is None:
                    raise NotFoundError(f"File not found: {file_id}")
                return MovementRepository(uow.session).history(file_id)
        return self._run("get_history", _history)

    # ============================================
    # REQUEST / CHECK-IN
    # ============================================

    def request_file(
        self,
        file_id: str,
        requester_id: str,
        reason: str = ""
    ) -> OperationResult[Optional[Alert]]:
        """
        Ask the current custodian for a file.

        Raises a file_request alert at the custodian. While an earlier
        request is still active, the value is None.
        """
        return self._run("request_file", self._request_file, file_id, requester_id, reason)

    def _request_file(self, file_id: str, requester_id: str, reason: str) -> Optional[Alert]:
        with self._provider.get_unit_of_work() as uow:
            case_file = FileRepository(uow.session).get_by_id(file_id)
            if case_file is None:
                raise NotFoundError(f"File not found: {file_id}")
            requester = UserRepository(uow.session).get_by_id(requester_id)
            requester_name = requester.name if requester else "A user"
            custodian_id = case_file.current_custodian_id
            case_name = case_file.case_name

        return create_alert_if_new(
            self._provider,
            AlertType.FILE_REQUEST,
            AlertSeverity.INFO,
            f'{requester_name} has requested file "{case_name}". '
            f'Reason: {reason or "Not specified"}',
            file_id=file_id,
            target_user_id=custodian_id,
            clock=self._clock
        )

    def check_in_file(
        self,
        file_id: str,
        logged_by: Optional[str],
        notes: str = ""
    ) -> OperationResult[Movement]:
        """Return a file to the registry (the first active clerk)."""
        def _check_in() -> Movement:
            with self._provider.get_unit_of_work() as uow:
                if FileRepository(uow.session).get_by_id(file_id) is None:
                    raise NotFoundError(f"File not found: {file_id}")
                clerks = UserRepository(uow.session).list_active_by_roles([Role.CLERK])
                if not clerks:
                    raise NotFoundError("No clerks available to receive file")
                clerk_id = clerks[0].user_id
            return self._transfer(file_id, clerk_id, MovementPurpose.RETURN_TO_CUSTODIAN, logged_by, notes)
        return self._run("check_in_file", _check_in)
