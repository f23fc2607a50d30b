"""
/api/v1/audit endpoints.
Audit reports from caller-supplied batches or from persisted monthly data.
"""

import re

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from residuals.dependencies import get_anomaly_detector, get_db, verify_api_key
from residuals.errors import InvalidRequestError
from residuals.pipeline.anomaly_detector import AnomalyDetector, previous_month
from residuals.schemas.audit import AuditReport, AuditReportRequest
from residuals.schemas.records import MONTH_PATTERN
from residuals.storage.revenue_store import load_month_batches, load_month_records

router = APIRouter(prefix="/api/v1/audit", tags=["audit"], dependencies=[Depends(verify_api_key)])


@router.post("/report", response_model=AuditReport)
async def generate_report(
    body: AuditReportRequest,
    detector: AnomalyDetector = Depends(get_anomaly_detector),
):
    return detector.generate_audit_report(
        body.batches,
        previous_month=body.previous_month or None,
        month=body.month,
    )


@router.get("/{month}", response_model=AuditReport)
async def audit_month(
    month: str,
    session: AsyncSession = Depends(get_db),
    detector: AnomalyDetector = Depends(get_anomaly_detector),
):
    """Audit everything persisted for a month, with variance against the month before."""
    if not re.fullmatch(MONTH_PATTERN, month):
        raise InvalidRequestError(f"Month must be YYYY-MM, got '{month}'")

    batches = await load_month_batches(session, month)
    prior = await load_month_records(session, previous_month(month))
    prior_records = [record for records in prior.values() for record in records]
    return detector.generate_audit_report(batches, previous_month=prior_records, month=month)
