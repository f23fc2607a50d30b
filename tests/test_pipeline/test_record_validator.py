"""
Tests for per-record validation and the persistence gate.
"""

from decimal import Decimal

import pytest

from residuals.models.enums import IssueKind, Severity
from residuals.pipeline.orchestrator import rejection_reason
from residuals.pipeline.record_validator import RecordValidator


@pytest.fixture
def validator():
    return RecordValidator(critical_multiplier=10, max_revenue_per_transaction=50, min_mid_length=5)


class TestRecordValidator:

    def test_clean_record(self, validator, trx, make_record):
        record = make_record(mid="M00002", revenue="45.50", transactions=300, processor="TRX")
        assert validator.validate(record, trx) == []

    def test_volume_as_revenue_is_critical(self, validator, trx, make_record):
        record = make_record(mid="M00002", revenue="600000", transactions=300, processor="TRX")
        issues = validator.validate(record, trx)
        assert issues[0].kind == IssueKind.OUT_OF_RANGE
        assert issues[0].severity == Severity.CRITICAL
        assert issues[0].value == Decimal("600000")
        assert RecordValidator.is_rejected(issues)

    def test_moderately_out_of_range_is_high(self, validator, trx, make_record):
        record = make_record(revenue="2000", transactions=1000, processor="TRX")
        issues = validator.validate(record, trx)
        assert [(i.kind, i.severity) for i in issues] == [(IssueKind.OUT_OF_RANGE, Severity.HIGH)]
        assert not RecordValidator.is_rejected(issues)

    def test_negative_revenue_out_of_range(self, validator, clearent, make_record):
        issues = validator.validate(make_record(revenue="-5"), clearent)
        assert issues[0].kind == IssueKind.OUT_OF_RANGE
        assert issues[0].severity == Severity.HIGH

    def test_rules_run_in_order(self, validator, trx, make_record):
        record = make_record(mid="12", revenue="2000", transactions=0, processor="TRX")
        kinds = [i.kind for i in validator.validate(record, trx)]
        assert kinds == [
            IssueKind.OUT_OF_RANGE,
            IssueKind.REVENUE_WITHOUT_TRANSACTIONS,
            IssueKind.INVALID_MID,
        ]

    def test_revenue_per_transaction(self, validator, clearent, make_record):
        issues = validator.validate(make_record(revenue="500", transactions=5), clearent)
        assert len(issues) == 1
        assert issues[0].kind == IssueKind.REVENUE_PER_TXN_ANOMALY
        assert issues[0].severity == Severity.MEDIUM
        assert issues[0].value == Decimal("100")

    def test_zero_revenue_no_transactions_is_fine(self, validator, clearent, make_record):
        assert validator.validate(make_record(revenue="0", transactions=0), clearent) == []

    def test_missing_mid(self, validator, clearent, make_record):
        issues = validator.validate(make_record(mid=None), clearent)
        assert [(i.kind, i.severity) for i in issues] == [(IssueKind.INVALID_MID, Severity.LOW)]

    def test_negative_volume_and_count_are_critical(self, validator, clearent, make_record):
        issues = validator.validate(make_record(revenue="10", transactions=-3, volume="-5000"), clearent)
        assert [(i.kind, i.severity) for i in issues] == [
            (IssueKind.NEGATIVE_VOLUME_OR_COUNT, Severity.CRITICAL),
        ]
        assert issues[0].value == Decimal("-5000")
        assert RecordValidator.is_rejected(issues)

    def test_negative_count_alone_is_critical(self, validator, clearent, make_record):
        issues = validator.validate(make_record(transactions=-1), clearent)
        assert [i.kind for i in issues] == [IssueKind.NEGATIVE_VOLUME_OR_COUNT]
        assert rejection_reason(issues, trusted=True) == "critical"

    def test_issue_carries_context(self, validator, clearent, make_record):
        issue = validator.validate(make_record(mid="M1", row_number=9), clearent)[0]
        assert issue.processor == "Clearent"
        assert issue.row_number == 9
        assert issue.subject == "Acme Co"


class TestRejectionReason:

    def test_critical_always_rejects(self, validator, trx, make_record):
        issues = validator.validate(make_record(revenue="600000", processor="TRX"), trx)
        assert rejection_reason(issues, trusted=True) == "critical"
        assert rejection_reason(issues, trusted=False) == "critical"

    def test_out_of_range_rejected_unless_trusted(self, validator, trx, make_record):
        issues = validator.validate(make_record(revenue="2000", transactions=1000, processor="TRX"), trx)
        assert rejection_reason(issues, trusted=False) == "out_of_range"
        assert rejection_reason(issues, trusted=True) is None

    def test_minor_issues_persist(self, validator, clearent, make_record):
        issues = validator.validate(make_record(mid="12"), clearent)
        assert rejection_reason(issues, trusted=False) is None
