"""
Role capabilities and the acting-user value threaded through the core.

The capability set is closed; each role maps to a fixed frozenset.
Checks happen at the API boundary before core operations run, except
for the single-recipient acknowledgment rule enforced by the ledger.
"""

from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Dict, FrozenSet, Iterable, List

from casetrack.models import CaseFile, Role, User


class Capability(str, PyEnum):
    REGISTER_FILES = "register_files"
    LOG_MOVEMENTS = "log_movements"
    UPDATE_FILE_STATUS = "update_file_status"
    VIEW_ASSIGNED_FILES = "view_assigned_files"
    VIEW_ALL_FILES = "view_all_files"
    REQUEST_FILES = "request_files"
    UPLOAD_DOCUMENTS = "upload_documents"
    GENERATE_REPORTS = "generate_reports"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_USERS = "manage_users"
    RECEIVE_ESCALATIONS = "receive_escalations"


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.CLERK: frozenset({
        Capability.REGISTER_FILES,
        Capability.LOG_MOVEMENTS,
        Capability.UPDATE_FILE_STATUS,
        Capability.VIEW_ASSIGNED_FILES,
        Capability.REQUEST_FILES,
    }),
    Role.ADVOCATE: frozenset({
        Capability.VIEW_ASSIGNED_FILES,
        Capability.REQUEST_FILES,
        Capability.UPLOAD_DOCUMENTS,
    }),
    Role.PARTNER: frozenset(Capability),
}


def roles_with(capability: Capability) -> List[Role]:
    """All roles granting the capability."""
    return [role for role, caps in ROLE_CAPABILITIES.items() if capability in caps]


@dataclass(frozen=True)
class Actor:
    """Explicit acting user for a core call."""
    user_id: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> 'Actor':
        return cls(user_id=user.user_id, role=Role(user.role))

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return ROLE_CAPABILITIES.get(self.role, frozenset())

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def has_override(self) -> bool:
        """May force-acknowledge someone else's transfer."""
        return self.can(Capability.VIEW_ALL_FILES)

    def can_view_file(self, case_file: CaseFile) -> bool:
        if self.can(Capability.VIEW_ALL_FILES):
            return True
        return (
            case_file.current_custodian_id == self.user_id
            or self.user_id in (case_file.assigned_advocates or [])
        )

    def visible_files(self, files: Iterable[CaseFile]) -> List[CaseFile]:
        return [f for f in files if self.can_view_file(f)]
