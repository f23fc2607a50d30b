"""
Canonical merchant revenue record and validation issue contracts.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from residuals.models.enums import IssueKind, Severity

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class MerchantRevenueRecord(BaseModel):
    """One raw row normalised into canonical fields. Transient until upserted."""
    mid: Optional[str] = None
    name: str = ""
    revenue: Decimal = Decimal("0")
    volume: Decimal = Decimal("0")
    transactions: int = 0
    processor: str
    month: str = Field(pattern=MONTH_PATTERN)
    row_number: Optional[int] = None
    # canonical field -> column actually used, only for non-exact matches
    fuzzy_fields: dict[str, str] = {}

    @property
    def subject(self) -> str:
        if self.name:
            return self.name
        if self.mid:
            return self.mid
        return f"row {self.row_number}" if self.row_number is not None else "unknown merchant"


class ValidationIssue(BaseModel):
    """A single finding from record validation or batch anomaly detection."""
    model_config = ConfigDict(frozen=True)

    kind: IssueKind
    severity: Severity
    subject: str
    detail: str
    suggested_fix: Optional[str] = None
    processor: Optional[str] = None
    mid: Optional[str] = None
    row_number: Optional[int] = None
    value: Optional[Decimal] = None
