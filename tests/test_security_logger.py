"""
Tests for security event logging and operation metrics.
"""

import json
import logging
import time

import pytest

from casetrack.models import MovementPurpose
from casetrack.monitoring import configure_monitoring, get_operation_metrics, operation_timer
from security_logger import SecurityLogger, get_security_logger, sanitize_for_logging


def _events(caplog):
    return [
        json.loads(r.getMessage())
        for r in caplog.records
        if r.name == "casetrack.security"
    ]


@pytest.fixture
def security_caplog(caplog):
    caplog.set_level(logging.WARNING, logger="casetrack.security")
    return caplog


# ============================================
# SANITIZATION
# ============================================

class TestSanitization:

    def test_strips_newlines(self):
        assert sanitize_for_logging("line1\nFAKE ENTRY\r\nline3") == "line1 FAKE ENTRY line3"

    def test_strips_control_characters(self):
        assert sanitize_for_logging("a\x00b\x1bc") == "a b c"

    def test_empty(self):
        assert sanitize_for_logging("") == ""
        assert sanitize_for_logging(None) == ""

    def test_caps_length(self):
        assert len(sanitize_for_logging("x" * 1000)) == 500

    def test_input_truncation_marker(self):
        logger = SecurityLogger(enable_file=False)
        assert logger._sanitize_input("y" * 80).endswith("...(truncated)")


# ============================================
# EVENTS
# ============================================

class TestSecurityEvents:

    def test_validation_failure_event(self, memory_security_logger, security_caplog):
        memory_security_logger.set_request_context(request_id="REQ-1", user_id="U1", source_ip="10.0.0.5")
        memory_security_logger.log_validation_failure(
            field="due_date", error_code="ValidationError",
            input_value="not a date\nINJECTED", source="create_deadline"
        )

        event = _events(security_caplog)[0]
        assert event["event_type"] == "VALIDATION_FAILED"
        assert event["field"] == "due_date"
        assert event["sanitized_input"] == "not a date INJECTED"
        assert event["request_id"] == "REQ-1"
        assert event["source_ip"] == "10.0.0.5"

    def test_context_cleared(self, memory_security_logger, security_caplog):
        memory_security_logger.set_request_context(request_id="REQ-2", user_id="U1")
        memory_security_logger.clear_request_context()
        memory_security_logger.log_access_denied("U2", "register_files", "POST /api/files")

        event = _events(security_caplog)[0]
        assert event["event_type"] == "ACCESS_DENIED"
        assert event["request_id"] == ""
        assert event["context"] == {"capability": "register_files"}

    def test_generated_request_id(self, memory_security_logger):
        assert memory_security_logger.set_request_context().startswith("REQ-")

    def test_ledger_logs_validation_failures(self, ledger, security_caplog):
        ledger.register_file("", "Client", "U1")
        event = _events(security_caplog)[0]
        assert event["source"] == "register_file"
        assert event["field"] == "case_name"

    def test_ledger_logs_foreign_acknowledgment(self, ledger, make_file, security_caplog):
        case_file = make_file()
        movement = ledger.transfer_custody(
            case_file.file_id, "U2", MovementPurpose.REVIEW, logged_by="U1"
        ).unwrap()
        ledger.acknowledge_receipt(movement.movement_id, "U3")

        event = _events(security_caplog)[-1]
        assert event["event_type"] == "UNAUTHORIZED_ACKNOWLEDGMENT"
        assert event["severity"] == "ERROR"
        assert event["user_id"] == "U3"
        assert event["context"]["recipient"] == "U2"

    def test_global_instance(self, memory_security_logger):
        assert get_security_logger() is memory_security_logger

    def test_file_output(self, tmp_path):
        logger = SecurityLogger(log_dir=str(tmp_path), enable_file=True)
        logger.log_access_denied("U2", "generate_reports")
        for handler in logger.logger.handlers:
            handler.flush()
        lines = (tmp_path / "security.log").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        assert "ACCESS_DENIED" in lines[0]
        for handler in list(logger.logger.handlers):
            handler.close()
            logger.logger.removeHandler(handler)


# ============================================
# OPERATION METRICS
# ============================================

class TestOperationMetrics:

    def test_timer_records_success(self):
        with operation_timer("sample_op"):
            pass
        stats = get_operation_metrics()["sample_op"]
        assert stats["count"] == 1
        assert stats["errors"] == 0

    def test_timer_records_error_and_reraises(self):
        with pytest.raises(RuntimeError):
            with operation_timer("failing_op"):
                raise RuntimeError("boom")
        assert get_operation_metrics()["failing_op"]["errors"] == 1

    def test_core_operations_are_timed(self, ledger, make_file):
        make_file()
        make_file(case_name="Second v. Matter")
        assert get_operation_metrics()["register_file"]["count"] == 2

    def test_configured_threshold_flags_slow_operations(self, caplog):
        configure_monitoring(slow_operation_threshold_ms=0, warning_threshold_ms=0)
        with caplog.at_level(logging.WARNING, logger="casetrack.monitoring"):
            with operation_timer("scan_pass"):
                time.sleep(0.002)
        assert get_operation_metrics()["scan_pass"]["slow"] == 1
        assert any("SLOW OPERATION: scan_pass" in r.getMessage() for r in caplog.records)

    def test_logging_can_be_switched_off(self, caplog):
        configure_monitoring(slow_operation_threshold_ms=0, warning_threshold_ms=0, enable_logging=False)
        with caplog.at_level(logging.DEBUG, logger="casetrack.monitoring"):
            with operation_timer("quiet_op"):
                time.sleep(0.002)
        assert get_operation_metrics()["quiet_op"]["slow"] == 1
        assert not [r for r in caplog.records if r.name == "casetrack.monitoring"]
