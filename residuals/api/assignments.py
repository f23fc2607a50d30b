"""
/api/v1/assignments endpoints.
Commission split assignment: bulk, smart, by processor, template and copy-forward.
"""

import re

from fastapi import APIRouter, Depends

from residuals.assignments.engine import AssignmentEngine
from residuals.assignments.templates import list_templates, resolve_template
from residuals.dependencies import get_assignment_engine, verify_api_key
from residuals.errors import InvalidRequestError
from residuals.schemas.assignments import (
    AssignmentTemplate,
    AssignmentView,
    BulkAssignmentRule,
    BulkAssignResult,
    CopyAssignmentsRequest,
    CopyAssignmentsResult,
    ProcessorAssignmentRequest,
    SmartAssignmentRule,
    SmartAssignResult,
    TemplateAssignmentRequest,
    UnassignedSummary,
)
from residuals.schemas.records import MONTH_PATTERN

router = APIRouter(prefix="/api/v1/assignments", tags=["assignments"], dependencies=[Depends(verify_api_key)])


def _check_month(month: str) -> None:
    if not re.fullmatch(MONTH_PATTERN, month):
        raise InvalidRequestError(f"Month must be YYYY-MM, got '{month}'")


@router.post("/bulk", response_model=BulkAssignResult)
async def bulk_assign(
    rules: list[BulkAssignmentRule],
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    """Each rule is applied in full or rejected; rejections are listed in errors."""
    return await engine.bulk_assign(rules)


@router.post("/smart", response_model=SmartAssignResult)
async def smart_assign(
    rules: list[SmartAssignmentRule],
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    return await engine.smart_assign(rules)


@router.post("/by-processor", response_model=SmartAssignResult)
async def assign_by_processor(
    body: ProcessorAssignmentRequest,
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    return await engine.assign_by_processor(body.processor_id, body.month, body.default_assignments)


@router.post("/template", response_model=BulkAssignResult)
async def assign_template(
    body: TemplateAssignmentRequest,
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    """Apply a named template, resolving role types to role ids."""
    role_ids = {**await engine.role_ids_by_type(), **body.role_ids_by_type}
    splits = resolve_template(body.template_name, role_ids)
    return await engine.bulk_assign([
        BulkAssignmentRule(merchant_ids=body.merchant_ids, assignments=splits, month=body.month)
    ])


@router.post("/copy", response_model=CopyAssignmentsResult)
async def copy_assignments(
    body: CopyAssignmentsRequest,
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    return await engine.copy_assignments(body.from_month, body.to_month, body.merchant_ids)


@router.get("/templates", response_model=list[AssignmentTemplate])
async def get_templates():
    return list_templates()


@router.get("/unassigned/{month}", response_model=UnassignedSummary)
async def unassigned_summary(
    month: str,
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    _check_month(month)
    return await engine.get_unassigned_summary(month)


@router.get("/{merchant_id}/{month}", response_model=list[AssignmentView])
async def get_assignments(
    merchant_id: int,
    month: str,
    engine: AssignmentEngine = Depends(get_assignment_engine),
):
    _check_month(month)
    return await engine.get_assignments(merchant_id, month)
