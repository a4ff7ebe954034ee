"""
Tests for staff directory maintenance.
"""

import pytest

from casetrack.errors import ErrorKind
from casetrack.models import Role
from casetrack.users import UserDirectory


@pytest.fixture
def directory(provider, clock, memory_security_logger):
    return UserDirectory(provider, clock=clock, security_log=memory_security_logger)


class TestCreateUser:

    def test_create(self, directory):
        user = directory.create_user(" C9 ", " New Clerk ", "Clerk", email="c9@firm.example").unwrap()
        assert user.user_id == "C9"
        assert user.name == "New Clerk"
        assert user.role == Role.CLERK
        assert user.active is True

    def test_duplicate_id(self, directory):
        result = directory.create_user("U1", "Someone Else", Role.CLERK)
        assert result.error_kind == ErrorKind.INVALID_STATE

    @pytest.mark.parametrize("user_id,name,role", [
        ("", "Name", "Clerk"),
        ("C9", "  ", "Clerk"),
        ("C9", "Name", "Janitor"),
    ])
    def test_invalid_input(self, directory, user_id, name, role):
        assert directory.create_user(user_id, name, role).error_kind == ErrorKind.VALIDATION_ERROR


class TestActivation:

    def test_deactivate_and_list(self, directory):
        directory.set_active("U3", False).unwrap()

        active = [u.user_id for u in directory.list_users(active_only=True).unwrap()]
        everyone = [u.user_id for u in directory.list_users().unwrap()]

        assert "U3" not in active
        assert "U3" in everyone and "X1" in everyone

    def test_deactivated_user_cannot_receive_files(self, directory, ledger, make_file):
        case_file = make_file()
        directory.set_active("U3", False).unwrap()
        result = ledger.transfer_custody(case_file.file_id, "U3", "Review", logged_by="U1")
        assert result.error_kind == ErrorKind.VALIDATION_ERROR

    def test_reactivate(self, directory):
        assert directory.set_active("X1", True).unwrap().active is True

    def test_unknown_user(self, directory):
        assert directory.set_active("GHOST", False).error_kind == ErrorKind.NOT_FOUND
