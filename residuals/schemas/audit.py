"""
Audit report schemas.
An AuditReport is generated once per run and never mutated afterwards.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from residuals.schemas.records import MerchantRevenueRecord, ValidationIssue


class ProcessorBatch(BaseModel):
    """Records for one processor plus the issues raised while loading them."""
    merchants: list[MerchantRevenueRecord] = []
    validation_errors: list[ValidationIssue] = []


class DuplicateMid(BaseModel):
    model_config = ConfigDict(frozen=True)

    mid: str
    merchants: tuple[MerchantRevenueRecord, MerchantRevenueRecord]
    issue: ValidationIssue


class ProcessorAuditSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    merchant_count: int
    total_revenue: Decimal
    avg_revenue: Decimal
    anomalies: list[ValidationIssue] = []
    validation_errors: list[ValidationIssue] = []


class AuditSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_processors: int
    total_merchants: int
    total_revenue: Decimal
    avg_revenue_per_merchant: Decimal
    critical_issues: int
    high_issues: int
    medium_issues: int
    low_issues: int


class AuditReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    month: Optional[str] = None
    processors: dict[str, ProcessorAuditSummary]
    global_issues: list[ValidationIssue] = []
    duplicates: list[DuplicateMid] = []
    summary: AuditSummary

    def iter_issues(self):
        for proc in self.processors.values():
            yield from proc.anomalies
            yield from proc.validation_errors
        yield from self.global_issues


class AuditReportRequest(BaseModel):
    """Body for generating a report from caller-supplied batches."""
    batches: dict[str, ProcessorBatch]
    previous_month: list[MerchantRevenueRecord] = []
    month: Optional[str] = None
