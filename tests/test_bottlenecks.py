"""
Tests for bottleneck detection and custodian workload.
"""

from datetime import timedelta

import pytest

from casetrack.bottlenecks import BottleneckAnalyzer, RiskLevel, days_held
from casetrack.errors import ErrorKind
from casetrack.models import FileStatus, MovementPurpose

from conftest import START


def _moved(ledger, make_file, to="U2", **kwargs):
    case_file = make_file(**kwargs)
    movement = ledger.transfer_custody(
        case_file.file_id, to, MovementPurpose.REVIEW, logged_by="U1"
    ).unwrap()
    return case_file, movement


class TestDaysHeld:

    def test_rounds_half_up(self):
        assert days_held(START, START + timedelta(days=2, hours=11)) == 2
        assert days_held(START, START + timedelta(days=2, hours=12)) == 3


# ============================================
# ANALYZE
# ============================================

class TestAnalyze:
    """Files held past the threshold, derived from the latest movement."""

    def test_threshold_is_inclusive(self, analyzer, ledger, make_file, clock):
        case_file, _ = _moved(ledger, make_file)
        clock.advance(days=7)

        items = analyzer.analyze(7).unwrap()
        assert [i.file.file_id for i in items] == [case_file.file_id]
        assert items[0].days_held == 7

        assert analyzer.analyze(8).unwrap() == []

    @pytest.mark.parametrize("days,risk", [(13, RiskLevel.MEDIUM), (14, RiskLevel.HIGH), (30, RiskLevel.HIGH)])
    def test_risk_level(self, analyzer, ledger, make_file, clock, days, risk):
        _moved(ledger, make_file)
        clock.advance(days=days)
        assert analyzer.analyze(7).unwrap()[0].risk_level == risk

    def test_never_moved_files_are_excluded(self, analyzer, make_file, clock):
        make_file()
        clock.advance(days=30)
        assert analyzer.analyze(7).unwrap() == []

    def test_date_opened_fallback(self, provider, make_file, clock):
        case_file = make_file()
        clock.advance(days=9)
        analyzer = BottleneckAnalyzer(provider, clock=clock, use_date_opened_fallback=True)

        items = analyzer.analyze(7).unwrap()
        assert [i.file.file_id for i in items] == [case_file.file_id]
        assert items[0].last_movement is None
        assert items[0].to_dict()["last_movement_id"] is None

    def test_only_active_files(self, analyzer, ledger, make_file, clock):
        dormant, _ = _moved(ledger, make_file, case_name="Dormant v. Matter")
        ledger.change_status(dormant.file_id, FileStatus.DORMANT).unwrap()
        clock.advance(days=20)
        assert analyzer.analyze(7).unwrap() == []

    def test_latest_movement_resets_the_clock(self, analyzer, ledger, make_file, clock):
        case_file, _ = _moved(ledger, make_file)
        clock.advance(days=10)
        ledger.transfer_custody(case_file.file_id, "U3", MovementPurpose.DRAFTING, logged_by="U2").unwrap()
        clock.advance(days=2)
        assert analyzer.analyze(7).unwrap() == []

    def test_longest_held_first(self, analyzer, ledger, make_file, clock):
        older, _ = _moved(ledger, make_file, case_name="Older v. Matter")
        clock.advance(days=5)
        newer, _ = _moved(ledger, make_file, to="U3", case_name="Newer v. Matter")
        clock.advance(days=5)

        items = analyzer.analyze(3).unwrap()
        assert [i.file.file_id for i in items] == [older.file_id, newer.file_id]
        assert [i.days_held for i in items] == [10, 5]

    def test_item_serialization(self, analyzer, ledger, make_file, clock):
        case_file, movement = _moved(ledger, make_file)
        clock.advance(days=15)

        data = analyzer.analyze(7).unwrap()[0].to_dict()
        assert data == {
            'file_id': case_file.file_id,
            'case_name': "Acme v. Widget",
            'current_custodian': "U2",
            'last_movement_id': str(movement.movement_id),
            'last_movement_at': START.isoformat(),
            'days_held': 15,
            'risk_level': "high",
        }

    def test_negative_threshold(self, analyzer):
        assert analyzer.analyze(-1).error_kind == ErrorKind.VALIDATION_ERROR


# ============================================
# CUSTODIAN REPORT
# ============================================

class TestCustodianReport:

    def test_workload_per_holder(self, analyzer, ledger, make_file, clock):
        _moved(ledger, make_file, case_name="First v. Matter")
        make_file(case_name="Second v. Matter")
        make_file(case_name="Third v. Matter")
        clock.advance(days=4)

        report = {row.user.user_id: row for row in analyzer.custodian_report().unwrap()}

        assert set(report) == {"U1", "U2"}
        assert report["U1"].file_count == 2
        assert report["U1"].unacknowledged == 0
        assert report["U2"].file_count == 1
        assert report["U2"].unacknowledged == 1
        assert report["U2"].avg_days_in_possession == 4

    def test_sorted_by_file_count(self, analyzer, ledger, make_file):
        _moved(ledger, make_file, case_name="First v. Matter")
        make_file(case_name="Second v. Matter")
        make_file(case_name="Third v. Matter")

        rows = analyzer.custodian_report().unwrap()
        assert [r.file_count for r in rows] == [2, 1]

    def test_acknowledged_transfers_are_not_pending(self, analyzer, ledger, make_file):
        _, movement = _moved(ledger, make_file)
        ledger.acknowledge_receipt(movement.movement_id, "U2").unwrap()

        row = analyzer.custodian_report().unwrap()[0]
        assert row.to_dict()["unacknowledged"] == 0
        assert row.to_dict()["role"] == "Advocate"

    def test_empty_when_no_files(self, analyzer):
        assert analyzer.custodian_report().unwrap() == []
