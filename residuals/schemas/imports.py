"""
Request/response schemas for processor file imports.
"""

from typing import Optional

from pydantic import BaseModel, Field

from residuals.models.enums import DetectionSource
from residuals.schemas.audit import AuditReport, ProcessorBatch
from residuals.schemas.records import MONTH_PATTERN, MerchantRevenueRecord, ValidationIssue


class ImportConfig(BaseModel):
    file_path: str
    month: str = Field(pattern=MONTH_PATTERN)
    processor_name: Optional[str] = None
    agency_id: Optional[int] = None
    # Original upload name when file_path is a stored copy
    file_name: Optional[str] = None


class ImportResult(BaseModel):
    success: bool
    file_name: str
    month: str
    processor: Optional[str] = None
    detection_source: Optional[DetectionSource] = None
    detection_confidence: Optional[float] = None
    total_records: int = 0
    valid_merchants: int = 0
    records_imported: int = 0
    records_rejected: int = 0
    issues: list[ValidationIssue] = []
    errors: list[str] = []
    error_code: Optional[str] = None
    # Persisted records, kept for batch auditing but not serialised
    records: list[MerchantRevenueRecord] = Field(default_factory=list, exclude=True)

    def to_batch(self) -> ProcessorBatch:
        return ProcessorBatch(
            merchants=[r for r in self.records if r.revenue > 0],
            validation_errors=list(self.issues),
        )


class ImportMultipleResult(BaseModel):
    total_imported: int
    results: list[ImportResult]
    audit_report: Optional[AuditReport] = None


class ImportQueuedResponse(BaseModel):
    job_id: str
    file_name: str
    month: str
    status: str = "queued"
