#!/usr/bin/env python3
"""
Initial Data Loading Script for CaseTrack

Loads the default staff directory and, optionally, sample case files
for development.

Usage:
    python load_initial_data.py [--with-samples]
"""

import argparse
import logging
from datetime import timedelta

from casetrack.connection import init_db, close_db
from casetrack.deadlines import DeadlineTracker
from casetrack.ledger import CustodyLedger
from casetrack.models import DeadlineType, MovementPurpose, Role, User, utcnow
from casetrack.repositories import FileRepository, UserRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

DEFAULT_USERS = [
    {"user_id": "U1", "name": "Mary Wanjiru", "role": Role.CLERK,
     "email": "mary.wanjiru@casetrack.local", "department": "Registry"},
    {"user_id": "U2", "name": "John Kamau", "role": Role.CLERK,
     "email": "john.kamau@casetrack.local", "department": "Registry"},
    {"user_id": "A1", "name": "Adv. Sarah Otieno", "role": Role.ADVOCATE,
     "email": "sarah.otieno@casetrack.local", "department": "Commercial"},
    {"user_id": "A2", "name": "Adv. Peter Mwangi", "role": Role.ADVOCATE,
     "email": "peter.mwangi@casetrack.local", "department": "Litigation"},
    {"user_id": "A3", "name": "Adv. Grace Njeri", "role": Role.ADVOCATE,
     "email": "grace.njeri@casetrack.local", "department": "Family Law"},
    {"user_id": "P1", "name": "James Odhiambo", "role": Role.PARTNER,
     "email": "james.odhiambo@casetrack.local", "department": "Managing"},
]


def load_users(session) -> int:
    """Create default users that do not exist yet."""
    repo = UserRepository(session)
    created = 0
    for user_data in DEFAULT_USERS:
        if repo.get_by_id(user_data["user_id"]) is None:
            session.add(User(active=True, **user_data))
            created += 1
            logger.info(f"Created user: {user_data['user_id']} ({user_data['role'].value})")
        else:
            logger.info(f"User already exists: {user_data['user_id']}")
    return created


def load_sample_files(provider) -> int:
    """Register a few files with movements and deadlines for development."""
    with provider.get_unit_of_work() as uow:
        if FileRepository(uow.session).list_files():
            logger.info("Files already present, skipping samples")
            return 0

    ledger = CustodyLedger(provider)
    tracker = DeadlineTracker(provider)
    now = utcnow()

    samples = [
        ("Kenya Commercial Bank v. Sunrise Enterprises Ltd", "Kenya Commercial Bank",
         "Banking & Finance", ["A1"], "A1"),
        ("Republic v. John Doe", "John Doe", "Criminal Law", ["A2"], "U1"),
        ("In re Estate of the Late Jane Wambui", "Wambui Family", "Succession", ["A3", "A1"], "U1"),
    ]

    created = 0
    for case_name, client, area, advocates, custodian in samples:
        case_file = ledger.register_file(
            case_name, client, custodian,
            practice_area=area, assigned_advocates=advocates, created_by="U1"
        ).unwrap()
        created += 1

        ledger.transfer_custody(
            case_file.file_id, advocates[0], MovementPurpose.REVIEW, logged_by="U1"
        ).unwrap()
        tracker.create_deadline(
            case_file.file_id, DeadlineType.COURT_MENTION,
            due_date=now + timedelta(days=3 * created), created_by="U1"
        ).unwrap()
        logger.info(f"Created sample file: {case_file.file_id}")

    return created


def main():
    parser = argparse.ArgumentParser(description="Load initial data into the CaseTrack database")
    parser.add_argument("--with-samples", action="store_true", help="Include sample files for development")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("CaseTrack Initial Data Loading")
    logger.info("=" * 50)

    try:
        db = init_db()
        db.create_tables()

        with db.session_scope() as session:
            logger.info("[1/2] Loading users...")
            users_created = load_users(session)
            logger.info(f"Users created: {users_created}")

        if args.with_samples:
            logger.info("[2/2] Loading sample files...")
            logger.info(f"Sample files created: {load_sample_files(db)}")
        else:
            logger.info("[2/2] Skipping sample files (use --with-samples to include)")

        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
