"""
Staff directory maintenance: adding users and (de)activating them.

Users are never deleted; movements and alerts keep pointing at them.
Deactivated users stop being valid transfer recipients and lose API
access, but their history stays readable.
"""

import logging
from typing import List, Optional

from casetrack.base import CoreService
from casetrack.errors import InvalidStateError, NotFoundError, OperationResult, ValidationError, coerce_enum
from casetrack.models import Role, User
from casetrack.repositories import DuplicateEntityError, UserRepository

logger = logging.getLogger(__name__)


class UserDirectory(CoreService):

    def list_users(self, active_only: bool = False) -> OperationResult[List[User]]:
        def _list() -> List[User]:
            with self._provider.get_unit_of_work() as uow:
                return UserRepository(uow.session).list_users(active_only=active_only)
        return self._run("list_users", _list)

    def create_user(
        self,
        user_id: str,
        name: str,
        role,
        email: Optional[str] = None,
        department: Optional[str] = None
    ) -> OperationResult[User]:
        """
        Add a staff member.

        Raises (as result errors):
            ValidationError: Blank id or name, unknown role
            InvalidStateError: user_id already taken
        """
        return self._run("create_user", self._create_user, user_id, name, role, email, department)

    def _create_user(
        self,
        user_id: str,
        name: str,
        role,
        email: Optional[str],
        department: Optional[str]
    ) -> User:
        user_id = (user_id or "").strip()
        name = (name or "").strip()
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if not name:
            raise ValidationError("name is required", field="name")
        role = coerce_enum(Role, role, "role")

        with self._provider.get_unit_of_work() as uow:
            users = UserRepository(uow.session)
            if users.get_by_id(user_id) is not None:
                raise InvalidStateError(f"User already exists: {user_id}")
            try:
                user = users.create({
                    'user_id': user_id,
                    'name': name,
                    'role': role,
                    'email': email,
                    'department': department,
                    'active': True,
                })
            except DuplicateEntityError:
                raise InvalidStateError(f"User already exists: {user_id}")
            uow.commit()

        logger.info(f"User {user_id} added as {role.value}")
        return user

    def set_active(self, user_id: str, active: bool) -> OperationResult[User]:
        def _set() -> User:
            with self._provider.get_unit_of_work() as uow:
                user = UserRepository(uow.session).get_by_id(user_id)
                if user is None:
                    raise NotFoundError(f"User not found: {user_id}")
                user.active = bool(active)
                uow.commit()
            logger.info(f"User {user_id} {'activated' if active else 'deactivated'}")
            return user
        return self._run("set_user_active", _set)
