"""
Batch-level anomaly detection and audit report assembly.

Runs over a fully assembled batch, possibly spanning processors, and for
variance checks a second (previous) month. Findings share the
ValidationIssue shape with per-record validation so both feed one report.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from residuals.config import settings
from residuals.models.enums import IssueKind, Severity
from residuals.observability.metrics import validation_issues_total
from residuals.schemas.audit import (
    AuditReport,
    AuditSummary,
    DuplicateMid,
    ProcessorAuditSummary,
    ProcessorBatch,
)
from residuals.schemas.records import MerchantRevenueRecord, ValidationIssue

logger = structlog.get_logger(__name__)

_CENTS = Decimal("0.01")


class AnomalyDetector:

    def __init__(
        self,
        outlier_multiplier: Optional[float] = None,
        variance_threshold: Optional[float] = None,
    ):
        self.outlier_multiplier = Decimal(str(
            settings.OUTLIER_MEAN_MULTIPLIER if outlier_multiplier is None else outlier_multiplier
        ))
        self.variance_threshold = Decimal(str(
            settings.MONTH_VARIANCE_THRESHOLD if variance_threshold is None else variance_threshold
        ))

    # ─── Duplicate MIDs ───────────────────────────────────────

    def detect_duplicate_mids(self, merchants: list[MerchantRevenueRecord]) -> list[DuplicateMid]:
        """
        First occurrence of a MID wins; every later occurrence under a
        different processor is reported against it. Same-processor repeats
        are left to the revenue upsert.
        """
        first_seen: dict[str, MerchantRevenueRecord] = {}
        duplicates: list[DuplicateMid] = []

        for merchant in merchants:
            if not merchant.mid:
                continue
            key = merchant.mid.strip()
            original = first_seen.get(key)
            if original is None:
                first_seen[key] = merchant
                continue
            if original.processor == merchant.processor:
                continue
            issue = ValidationIssue(
                kind=IssueKind.DUPLICATE_MID,
                severity=Severity.MEDIUM,
                subject=merchant.subject,
                detail=f"Same MID {key} reported by {original.processor} and {merchant.processor}",
                suggested_fix="Confirm which processor owns this merchant account",
                processor=merchant.processor,
                mid=key,
                row_number=merchant.row_number,
            )
            duplicates.append(DuplicateMid(mid=key, merchants=(original, merchant), issue=issue))

        return duplicates

    # ─── Revenue Anomalies ────────────────────────────────────

    def detect_revenue_anomalies(
        self,
        merchants: list[MerchantRevenueRecord],
        processor: str,
    ) -> list[ValidationIssue]:
        anomalies: list[ValidationIssue] = []
        revenues = [m.revenue for m in merchants if m.revenue > 0]
        if not revenues:
            return anomalies

        mean = sum(revenues, Decimal("0")) / len(revenues)
        ceiling = mean * self.outlier_multiplier

        for merchant in merchants:
            if merchant.revenue > ceiling:
                anomalies.append(ValidationIssue(
                    kind=IssueKind.EXTREME_OUTLIER,
                    severity=Severity.CRITICAL,
                    subject=merchant.subject,
                    detail=(
                        f"Revenue ${merchant.revenue} exceeds {self.outlier_multiplier}x "
                        f"the {processor} average of ${mean.quantize(_CENTS)}"
                    ),
                    suggested_fix="Check for a volume figure imported as revenue",
                    processor=processor,
                    mid=merchant.mid,
                    row_number=merchant.row_number,
                    value=merchant.revenue,
                ))

            if merchant.revenue > 0 and merchant.transactions == 0:
                anomalies.append(ValidationIssue(
                    kind=IssueKind.REVENUE_WITHOUT_TRANSACTIONS,
                    severity=Severity.HIGH,
                    subject=merchant.subject,
                    detail=f"Merchant has ${merchant.revenue} revenue but 0 transactions",
                    suggested_fix="Check transaction count column mapping",
                    processor=processor,
                    mid=merchant.mid,
                    row_number=merchant.row_number,
                    value=merchant.revenue,
                ))

        return anomalies

    # ─── Month-over-Month ─────────────────────────────────────

    def validate_monthly_consistency(
        self,
        current_month: list[MerchantRevenueRecord],
        previous_month: list[MerchantRevenueRecord],
    ) -> list[ValidationIssue]:
        """
        Flag merchants whose revenue moved by more than the variance
        threshold (5.0 = 500%). Revenue is totalled per MID across
        processors; both months must be positive.
        """
        current = _totals_by_mid(current_month)
        previous = _totals_by_mid(previous_month)
        issues: list[ValidationIssue] = []

        for mid, (cur, subject) in current.items():
            if mid not in previous:
                continue
            prev, _ = previous[mid]
            if prev <= 0 or cur <= 0:
                continue
            variance = abs(cur - prev) / prev
            if variance > self.variance_threshold:
                issues.append(ValidationIssue(
                    kind=IssueKind.EXTREME_MONTH_VARIANCE,
                    severity=Severity.HIGH,
                    subject=subject,
                    detail=(
                        f"Revenue changed {(variance * 100).quantize(Decimal('0.1'))}% "
                        f"from ${prev} to ${cur}"
                    ),
                    suggested_fix="Confirm the month and processor of both files",
                    mid=mid,
                    value=variance,
                ))

        return issues

    # ─── Report ───────────────────────────────────────────────

    def generate_audit_report(
        self,
        batches: dict[str, ProcessorBatch],
        previous_month: Optional[list[MerchantRevenueRecord]] = None,
        month: Optional[str] = None,
    ) -> AuditReport:
        processors: dict[str, ProcessorAuditSummary] = {}
        all_merchants: list[MerchantRevenueRecord] = []
        total_merchants = 0
        total_revenue = Decimal("0")

        for processor, batch in batches.items():
            anomalies = self.detect_revenue_anomalies(batch.merchants, processor)
            proc_revenue = sum((m.revenue for m in batch.merchants), Decimal("0"))
            count = len(batch.merchants)
            processors[processor] = ProcessorAuditSummary(
                merchant_count=count,
                total_revenue=proc_revenue,
                avg_revenue=(proc_revenue / count).quantize(_CENTS) if count else Decimal("0"),
                anomalies=anomalies,
                validation_errors=list(batch.validation_errors),
            )
            total_merchants += count
            total_revenue += proc_revenue
            all_merchants.extend(batch.merchants)

        duplicates = self.detect_duplicate_mids(all_merchants)
        global_issues = [d.issue for d in duplicates]
        if previous_month:
            global_issues.extend(self.validate_monthly_consistency(all_merchants, previous_month))

        counts: dict[Severity, int] = defaultdict(int)
        for summary in processors.values():
            for issue in [*summary.anomalies, *summary.validation_errors]:
                counts[issue.severity] += 1
        for issue in global_issues:
            counts[issue.severity] += 1

        for summary in processors.values():
            for issue in summary.anomalies:
                validation_issues_total.labels(kind=issue.kind.value, severity=issue.severity.value).inc()
        for issue in global_issues:
            validation_issues_total.labels(kind=issue.kind.value, severity=issue.severity.value).inc()

        report = AuditReport(
            generated_at=datetime.now(timezone.utc),
            month=month,
            processors=processors,
            global_issues=global_issues,
            duplicates=duplicates,
            summary=AuditSummary(
                total_processors=len(batches),
                total_merchants=total_merchants,
                total_revenue=total_revenue.quantize(_CENTS),
                avg_revenue_per_merchant=(
                    (total_revenue / total_merchants).quantize(_CENTS) if total_merchants else Decimal("0")
                ),
                critical_issues=counts[Severity.CRITICAL],
                high_issues=counts[Severity.HIGH],
                medium_issues=counts[Severity.MEDIUM],
                low_issues=counts[Severity.LOW],
            ),
        )

        logger.info("audit_report_generated",
                    month=month,
                    processors=len(batches),
                    merchants=total_merchants,
                    critical=report.summary.critical_issues,
                    high=report.summary.high_issues,
                    medium=report.summary.medium_issues)
        return report


def _totals_by_mid(records: list[MerchantRevenueRecord]) -> dict[str, tuple[Decimal, str]]:
    totals: dict[str, tuple[Decimal, str]] = {}
    for record in records:
        if not record.mid:
            continue
        key = record.mid.strip()
        revenue, subject = totals.get(key, (Decimal("0"), record.subject))
        totals[key] = (revenue + record.revenue, subject)
    return totals


def previous_month(month: str) -> str:
    """The YYYY-MM month before the given one."""
    year, mon = (int(part) for part in month.split("-"))
    if mon == 1:
        return f"{year - 1}-12"
    return f"{year}-{mon - 1:02d}"
