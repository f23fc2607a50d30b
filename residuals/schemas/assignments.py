"""
Request/response schemas for commission split assignment.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from residuals.schemas.records import MONTH_PATTERN


class RoleSplit(BaseModel):
    role_id: int
    percentage: Decimal = Field(ge=0, le=100, decimal_places=2)


class BulkAssignmentRule(BaseModel):
    merchant_ids: list[int] = Field(min_length=1)
    assignments: list[RoleSplit] = Field(min_length=1)
    month: str = Field(pattern=MONTH_PATTERN)


class RevenueRange(BaseModel):
    min: Decimal
    max: Decimal

    @model_validator(mode="after")
    def _ordered(self) -> "RevenueRange":
        if self.min > self.max:
            raise ValueError("revenue range min exceeds max")
        return self


class SmartAssignmentRule(BaseModel):
    processor_id: Optional[int] = None
    revenue_range: Optional[RevenueRange] = None
    default_assignments: list[RoleSplit] = Field(min_length=1)
    month: str = Field(pattern=MONTH_PATTERN)


class ProcessorAssignmentRequest(BaseModel):
    processor_id: int
    month: str = Field(pattern=MONTH_PATTERN)
    default_assignments: list[RoleSplit] = Field(min_length=1)


class CopyAssignmentsRequest(BaseModel):
    from_month: str = Field(pattern=MONTH_PATTERN)
    to_month: str = Field(pattern=MONTH_PATTERN)
    merchant_ids: Optional[list[int]] = None


# ── Results ──────────────────────────────────────────────────

class BulkAssignResult(BaseModel):
    success: bool
    assigned_count: int
    errors: list[str] = []


class SmartAssignResult(BaseModel):
    success: bool
    assigned_count: int
    merchants_processed: int
    errors: list[str] = []


class CopyAssignmentsResult(BaseModel):
    success: bool
    copied_count: int
    errors: list[str] = []


class ProcessorUnassigned(BaseModel):
    processor_name: str
    count: int
    revenue: Decimal


class UnassignedSummary(BaseModel):
    month: str
    total_unassigned: int
    unassigned_revenue: Decimal
    by_processor: list[ProcessorUnassigned] = []


class AssignmentView(BaseModel):
    merchant_id: int
    role_id: int
    role_name: Optional[str] = None
    role_type: Optional[str] = None
    percentage: Decimal
    month: str


class TemplateSplit(BaseModel):
    role_type: str
    percentage: Decimal


class AssignmentTemplate(BaseModel):
    name: str
    splits: list[TemplateSplit]


class TemplateAssignmentRequest(BaseModel):
    """Apply a named template split to explicit merchants."""
    template_name: str
    merchant_ids: list[int] = Field(min_length=1)
    month: str = Field(pattern=MONTH_PATTERN)
    # role type -> role id; missing types fall back to the first active role of that type
    role_ids_by_type: dict[str, int] = {}
