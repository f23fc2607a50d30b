"""
Per-record validation against the processor schema.

Rules run in a fixed order and never short-circuit:
1. revenue outside the schema range       -> HIGH, CRITICAL beyond max * multiplier
2. revenue with zero transactions         -> HIGH
3. revenue per transaction above the cap  -> MEDIUM
4. missing or short MID                   -> LOW
5. negative volume or transaction count   -> CRITICAL
Only CRITICAL issues exclude a record from persistence.
"""

from decimal import Decimal
from typing import Optional

import structlog

from residuals.config import settings
from residuals.models.enums import IssueKind, Severity
from residuals.observability.metrics import validation_issues_total
from residuals.schemas.processors import ProcessorSchema
from residuals.schemas.records import MerchantRevenueRecord, ValidationIssue

logger = structlog.get_logger(__name__)


class RecordValidator:

    def __init__(
        self,
        critical_multiplier: Optional[float] = None,
        max_revenue_per_transaction: Optional[float] = None,
        min_mid_length: Optional[int] = None,
    ):
        self.critical_multiplier = Decimal(str(
            settings.CRITICAL_RANGE_MULTIPLIER if critical_multiplier is None else critical_multiplier
        ))
        self.max_revenue_per_transaction = Decimal(str(
            settings.MAX_REVENUE_PER_TRANSACTION if max_revenue_per_transaction is None
            else max_revenue_per_transaction
        ))
        self.min_mid_length = settings.MIN_MID_LENGTH if min_mid_length is None else min_mid_length

    def validate(self, record: MerchantRevenueRecord, schema: ProcessorSchema) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        revenue = record.revenue

        # ── 1. Range ──
        if revenue < schema.revenue_min or revenue > schema.revenue_max:
            critical = revenue > schema.revenue_max * self.critical_multiplier
            issues.append(self._issue(
                record,
                IssueKind.OUT_OF_RANGE,
                Severity.CRITICAL if critical else Severity.HIGH,
                f"Revenue ${revenue} outside expected range "
                f"${schema.revenue_min}-${schema.revenue_max} for {schema.name}",
                suggested_fix=(
                    "Check that the revenue column is the net residual, not sales volume"
                    if critical else "Verify revenue amount with processor statement"
                ),
                value=revenue,
            ))

        # ── 2. Revenue without transactions ──
        if revenue > 0 and record.transactions == 0:
            issues.append(self._issue(
                record,
                IssueKind.REVENUE_WITHOUT_TRANSACTIONS,
                Severity.HIGH,
                f"Merchant has ${revenue} revenue but 0 transactions",
                suggested_fix="Check transaction count column mapping",
                value=revenue,
            ))

        # ── 3. Revenue per transaction ──
        if record.transactions > 0:
            per_txn = revenue / Decimal(record.transactions)
            if per_txn > self.max_revenue_per_transaction:
                issues.append(self._issue(
                    record,
                    IssueKind.REVENUE_PER_TXN_ANOMALY,
                    Severity.MEDIUM,
                    f"Revenue per transaction ${per_txn.quantize(Decimal('0.01'))} "
                    f"exceeds ${self.max_revenue_per_transaction}",
                    suggested_fix="Verify transaction count and revenue columns",
                    value=per_txn,
                ))

        # ── 4. MID ──
        if not record.mid or len(record.mid) < self.min_mid_length:
            issues.append(self._issue(
                record,
                IssueKind.INVALID_MID,
                Severity.LOW,
                f"Invalid or missing MID: {record.mid or '<blank>'}",
                suggested_fix="Check MID column mapping",
            ))

        # ── 5. Negative counts ──
        if record.volume < 0 or record.transactions < 0:
            issues.append(self._issue(
                record,
                IssueKind.NEGATIVE_VOLUME_OR_COUNT,
                Severity.CRITICAL,
                f"Negative volume or transaction count "
                f"(volume ${record.volume}, transactions {record.transactions})",
                suggested_fix="Check volume and transaction columns for reversed or misplaced values",
                value=min(record.volume, Decimal(record.transactions)),
            ))

        for issue in issues:
            validation_issues_total.labels(kind=issue.kind.value, severity=issue.severity.value).inc()
        if issues:
            logger.debug("record_issues", processor=schema.name, mid=record.mid,
                         row=record.row_number, kinds=[i.kind.value for i in issues])
        return issues

    @staticmethod
    def is_rejected(issues: list[ValidationIssue]) -> bool:
        return any(i.severity == Severity.CRITICAL for i in issues)

    @staticmethod
    def _issue(
        record: MerchantRevenueRecord,
        kind: IssueKind,
        severity: Severity,
        detail: str,
        suggested_fix: Optional[str] = None,
        value: Optional[Decimal] = None,
    ) -> ValidationIssue:
        return ValidationIssue(
            kind=kind,
            severity=severity,
            subject=record.subject,
            detail=detail,
            suggested_fix=suggested_fix,
            processor=record.processor,
            mid=record.mid,
            row_number=record.row_number,
            value=value,
        )
