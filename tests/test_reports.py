"""
Tests for the report service: statistics, audit log and trail, risk,
deadline, file-status and practice-area reports.
"""

from datetime import timedelta

import pytest

from casetrack.errors import ErrorKind
from casetrack.models import DeadlineType, FileStatus, MovementPurpose
from casetrack.reports import urgency, week_label

from conftest import START


@pytest.fixture
def custody_chain(ledger, make_file, clock):
    """
    Two files and three movements:
    A: U1 -> U2 at START (acknowledged), U2 -> U3 a day later
    B: U1 -> P1 two days after START
    """
    file_a = make_file(case_name="Acme v. Widget")
    file_b = make_file(case_name="Republic v. Doe", advocates=("U3",))

    first = ledger.transfer_custody(file_a.file_id, "U2", MovementPurpose.REVIEW, logged_by="U1").unwrap()
    ledger.acknowledge_receipt(first.movement_id, "U2").unwrap()
    clock.advance(days=1)
    ledger.transfer_custody(file_a.file_id, "U3", MovementPurpose.FILING, logged_by="U2").unwrap()
    clock.advance(days=1)
    ledger.transfer_custody(file_b.file_id, "P1", MovementPurpose.PARTNER_REVIEW, logged_by="U1").unwrap()
    return file_a, file_b


class TestStatistics:

    def test_counts(self, reports, ledger, tracker, make_file, clock):
        case_file = make_file()
        closed = make_file(case_name="Old Matter")
        ledger.change_status(closed.file_id, FileStatus.CLOSED).unwrap()
        ledger.transfer_custody(case_file.file_id, "U2", "Review", logged_by="U1").unwrap()
        tracker.create_deadline(case_file.file_id, DeadlineType.OTHER, START + timedelta(days=3)).unwrap()
        tracker.create_deadline(case_file.file_id, DeadlineType.OTHER, START - timedelta(days=1)).unwrap()

        stats = reports.get_statistics().unwrap()

        assert stats["total_files"] == 2
        assert stats["active_files"] == 1
        assert stats["closed_files"] == 1
        assert stats["unacknowledged_movements"] == 1
        assert stats["upcoming_deadlines"] == 1
        assert stats["overdue_deadlines"] == 1


# ============================================
# AUDIT
# ============================================

class TestAuditLog:

    def test_newest_first_with_summary(self, reports, custody_chain):
        log = reports.get_audit_log().unwrap()

        assert [e["to_custodian"] for e in log["entries"]] == ["P1", "U3", "U2"]
        assert log["summary"] == {"total_movements": 3, "acknowledged": 1, "pending": 2}
        assert log["entries"][2]["to_name"] == "Sarah Advocate"
        assert log["entries"][2]["acknowledged_by_name"] == "Sarah Advocate"

    def test_filter_by_file(self, reports, custody_chain):
        _, file_b = custody_chain
        entries = reports.get_audit_log(file_id=file_b.file_id).unwrap()["entries"]
        assert [e["file_id"] for e in entries] == [file_b.file_id]

    def test_user_matches_sender_recipient_or_logger(self, reports, custody_chain):
        assert len(reports.get_audit_log(user_id="U3").unwrap()["entries"]) == 1
        assert len(reports.get_audit_log(user_id="U1").unwrap()["entries"]) == 2
        assert len(reports.get_audit_log(user_id="U2").unwrap()["entries"]) == 2

    def test_date_range_is_inclusive(self, reports, custody_chain):
        day_one = START + timedelta(days=1)
        entries = reports.get_audit_log(start=day_one, end=day_one).unwrap()["entries"]
        assert [e["to_custodian"] for e in entries] == ["U3"]

    def test_naive_bounds_are_utc(self, reports, custody_chain):
        entries = reports.get_audit_log(start=(START + timedelta(days=2)).replace(tzinfo=None)).unwrap()["entries"]
        assert [e["to_custodian"] for e in entries] == ["P1"]

    def test_inverted_range(self, reports):
        result = reports.get_audit_log(start=START, end=START - timedelta(days=1))
        assert result.error_kind == ErrorKind.VALIDATION_ERROR


class TestAuditTrail:

    def test_trail_is_chronological(self, reports, custody_chain):
        file_a, _ = custody_chain
        trail = reports.get_audit_trail(file_a.file_id).unwrap()

        assert [(e["from_name"], e["to_name"]) for e in trail] == [
            ("Mary Clerk", "Sarah Advocate"),
            ("Sarah Advocate", "Peter Advocate"),
        ]
        assert trail[1]["logged_by_name"] == "Sarah Advocate"

    def test_unknown_file(self, reports):
        assert reports.get_audit_trail("CT-2026-9999").error_kind == ErrorKind.NOT_FOUND

    def test_export(self, reports, custody_chain, clock):
        file_a, _ = custody_chain
        export = reports.export_audit_trail(file_a.file_id, "P1").unwrap()

        assert export["file"]["file_id"] == file_a.file_id
        assert export["file"]["status"] == "Active"
        assert export["exported_by"] == "James Partner"
        assert export["export_date"] == clock().isoformat()
        assert [row["acknowledged"] for row in export["trail"]] == ["Yes", "Pending"]
        assert export["trail"][0]["from"] == "Mary Clerk"
        assert export["trail"][0]["purpose"] == "Review"

    def test_export_by_unknown_user(self, reports, custody_chain):
        file_a, _ = custody_chain
        assert reports.export_audit_trail(file_a.file_id, "GHOST").unwrap()["exported_by"] == "Unknown"


# ============================================
# RISK
# ============================================

class TestRiskReport:

    def test_all_categories_sorted_by_severity(self, reports, ledger, tracker, make_file, clock):
        case_file = make_file()
        ledger.transfer_custody(case_file.file_id, "U2", "Review", logged_by="U1").unwrap()
        tracker.create_deadline(
            case_file.file_id, DeadlineType.FILING_DEADLINE, START + timedelta(days=1), "Submit defence"
        ).unwrap()
        clock.advance(days=15)

        report = reports.get_risk_report().unwrap()
        risks = report["risks"]

        assert [r["category"] for r in risks] == [
            "overdue_deadline", "bottleneck", "unacknowledged_transfer", "missing_documents"
        ]
        assert [r["severity"] for r in risks] == ["high", "high", "medium", "low"]
        assert risks[0]["description"] == "Filing Deadline: Submit defence"
        assert risks[1]["description"] == "File held by Sarah Advocate for 15 days"
        assert risks[2]["description"] == "Transfer to Sarah Advocate not acknowledged"
        assert report["summary"] == {"total": 4, "high": 2, "medium": 1, "low": 1}

    def test_recent_transfer_is_not_a_risk(self, reports, ledger, make_file, clock):
        case_file = make_file()
        ledger.link_document(case_file.file_id, "plaint.pdf", "U2").unwrap()
        ledger.transfer_custody(case_file.file_id, "U2", "Review", logged_by="U1").unwrap()
        clock.advance(hours=47)

        assert reports.get_risk_report().unwrap()["risks"] == []

    def test_missing_documents_capped(self, reports, make_file):
        for i in range(7):
            make_file(case_name=f"Matter {i}")
        risks = reports.get_risk_report().unwrap()["risks"]
        assert len(risks) == 5
        assert {r["severity"] for r in risks} == {"low"}

    def test_closed_files_need_no_documents(self, reports, ledger, make_file):
        case_file = make_file()
        ledger.change_status(case_file.file_id, FileStatus.CLOSED).unwrap()
        assert reports.get_risk_report().unwrap()["summary"]["total"] == 0


# ============================================
# DEADLINES
# ============================================

class TestDeadlineReport:

    @pytest.mark.parametrize("days,band", [(-1, "overdue"), (0, "urgent"), (3, "urgent"), (7, "soon"), (8, "normal")])
    def test_urgency_bands(self, days, band):
        assert urgency(days) == band

    @pytest.mark.parametrize("offset,label", [
        (timedelta(days=0), "This Week"),
        (timedelta(days=7), "This Week"),
        (timedelta(days=7, hours=1), "Next Week"),
        (timedelta(days=14), "Next Week"),
        (timedelta(days=20), "Week 3"),
    ])
    def test_week_labels(self, offset, label):
        assert week_label(START + offset, START) == label

    def test_grouped_by_week(self, reports, tracker, make_file):
        case_file = make_file()
        for days in (2, 5, 10, 20, 45):
            tracker.create_deadline(case_file.file_id, DeadlineType.OTHER, START + timedelta(days=days)).unwrap()
        tracker.create_deadline(case_file.file_id, DeadlineType.OTHER, START - timedelta(days=2)).unwrap()

        report = reports.get_deadline_report().unwrap()

        assert [i["days_until"] for i in report["overdue"]] == [-2]
        assert [i["days_until"] for i in report["upcoming"]] == [2, 5, 10, 20]
        assert list(report["by_week"]) == ["This Week", "Next Week", "Week 3"]
        assert len(report["by_week"]["This Week"]) == 2
        assert report["upcoming"][0]["urgency"] == "urgent"
        assert report["summary"] == {"overdue_count": 1, "upcoming_count": 4, "this_week": 2}

    def test_visibility_filter(self, reports, tracker, make_file):
        mine = make_file()
        other = make_file(case_name="Other")
        tracker.create_deadline(mine.file_id, DeadlineType.OTHER, START + timedelta(days=1)).unwrap()
        tracker.create_deadline(other.file_id, DeadlineType.OTHER, START + timedelta(days=1)).unwrap()

        report = reports.get_deadline_report(file_ids={mine.file_id}).unwrap()
        assert [i["file_id"] for i in report["upcoming"]] == [mine.file_id]

    def test_negative_window(self, reports):
        assert reports.get_deadline_report(days=-1).error_kind == ErrorKind.VALIDATION_ERROR


# ============================================
# FILE BREAKDOWNS
# ============================================

class TestFileBreakdowns:

    def test_file_status_report(self, reports, ledger, make_file):
        make_file(case_name="Open One")
        dormant = make_file(case_name="Sleepy")
        ledger.change_status(dormant.file_id, FileStatus.DORMANT).unwrap()

        report = reports.get_file_status_report().unwrap()

        assert report["total"] == 2
        assert report["by_status"]["Active"]["count"] == 1
        assert report["by_status"]["Dormant"]["files"] == [{"file_id": dormant.file_id, "case_name": "Sleepy"}]
        assert report["by_status"]["Closed"]["count"] == 0

    def test_file_status_report_respects_visibility(self, reports, make_file):
        mine = make_file()
        make_file(case_name="Other")
        assert reports.get_file_status_report(file_ids={mine.file_id}).unwrap()["total"] == 1

    def test_practice_areas_busiest_first(self, reports, ledger, make_file):
        make_file(practice_area="Litigation")
        closed = make_file(practice_area="Litigation")
        make_file(practice_area="Conveyancing")
        ledger.change_status(closed.file_id, FileStatus.CLOSED).unwrap()

        rows = reports.get_practice_area_report().unwrap()

        assert rows == [
            {"practice_area": "Litigation", "count": 2, "active": 1},
            {"practice_area": "Conveyancing", "count": 1, "active": 1},
        ]
