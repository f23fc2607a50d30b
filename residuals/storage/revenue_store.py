"""
Session-level persistence for imported revenue.

Every write here is an insert-on-conflict so that repeated imports and
concurrent imports of the same (month, merchant, processor) key resolve
inside the database: the last committed write wins.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from residuals.errors import ConfigurationError
from residuals.models.enums import (
    AuditStatus,
    CompilationStatus,
    ImportStatus,
    UploadStatus,
)
from residuals.models.tables import (
    ImportAudit,
    Merchant,
    MonthlyRevenue,
    Processor,
    UploadProgress,
)
from residuals.schemas.audit import ProcessorBatch
from residuals.schemas.imports import ImportResult
from residuals.schemas.records import MerchantRevenueRecord, ValidationIssue

logger = structlog.get_logger(__name__)


def _insert(session: AsyncSession, table):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise ConfigurationError(f"Upserts are not supported on '{dialect}' databases")


# ─── Find-or-create ───────────────────────────────────────────

async def find_or_create_processor(session: AsyncSession, name: str) -> int:
    """Processor id by case-insensitive name, creating the processor on first sight."""
    name = name.strip()
    lookup = select(Processor.id).where(func.lower(Processor.name) == name.lower())
    processor_id = (await session.execute(lookup)).scalar_one_or_none()
    if processor_id is not None:
        return processor_id

    stmt = _insert(session, Processor).values(name=name, is_active=True)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=["name"]))
    processor_id = (await session.execute(lookup)).scalar_one()
    logger.info("processor_created", processor=name, processor_id=processor_id)
    return processor_id


async def find_or_create_merchant(
    session: AsyncSession,
    mid: str,
    dba: Optional[str] = None,
    agency_id: Optional[int] = None,
) -> int:
    """Merchant id by MID. An existing merchant keeps its name and agency."""
    lookup = select(Merchant.id).where(Merchant.mid == mid)
    merchant_id = (await session.execute(lookup)).scalar_one_or_none()
    if merchant_id is not None:
        return merchant_id

    stmt = _insert(session, Merchant).values(
        mid=mid,
        dba=dba or None,
        legal_name=dba or None,
        agency_id=agency_id,
        is_active=True,
    )
    await session.execute(stmt.on_conflict_do_nothing(index_elements=["mid"]))
    return (await session.execute(lookup)).scalar_one()


# ─── Upserts ──────────────────────────────────────────────────

async def upsert_monthly_revenue(
    session: AsyncSession,
    record: MerchantRevenueRecord,
    merchant_id: int,
    processor_id: int,
    agency_id: Optional[int] = None,
) -> None:
    stmt = _insert(session, MonthlyRevenue).values(
        month=record.month,
        merchant_id=merchant_id,
        processor_id=processor_id,
        income=record.revenue,
        sales_amount=record.volume,
        transactions=record.transactions,
        dba=record.name or None,
        agency_id=agency_id,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["month", "merchant_id", "processor_id"],
        set_={
            "income": stmt.excluded.income,
            "sales_amount": stmt.excluded.sales_amount,
            "transactions": stmt.excluded.transactions,
            "dba": stmt.excluded.dba,
            "agency_id": stmt.excluded.agency_id,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)


async def upsert_upload_progress(
    session: AsyncSession,
    month: str,
    processor_id: int,
    processor_name: str,
    record_count: int,
    file_name: Optional[str] = None,
    file_size: Optional[int] = None,
) -> None:
    """Mark a processor's month as uploaded, validated and compiled."""
    stmt = _insert(session, UploadProgress).values(
        month=month,
        processor_id=processor_id,
        processor_name=processor_name,
        upload_status=UploadStatus.VALIDATED.value,
        lead_sheet_status=UploadStatus.VALIDATED.value,
        compilation_status=CompilationStatus.COMPILED.value,
        audit_status=AuditStatus.PENDING.value,
        record_count=record_count,
        file_name=file_name,
        file_size=file_size,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["month", "processor_id"],
        set_={
            "processor_name": stmt.excluded.processor_name,
            "upload_status": stmt.excluded.upload_status,
            "lead_sheet_status": stmt.excluded.lead_sheet_status,
            "compilation_status": stmt.excluded.compilation_status,
            "audit_status": stmt.excluded.audit_status,
            "record_count": stmt.excluded.record_count,
            "file_name": stmt.excluded.file_name,
            "file_size": stmt.excluded.file_size,
            "last_updated": func.now(),
        },
    )
    await session.execute(stmt)


async def set_audit_status(session: AsyncSession, month: str, statuses: dict[str, AuditStatus]) -> None:
    """Record the batch audit outcome on each processor's upload progress row."""
    for processor_name, status in statuses.items():
        await session.execute(
            update(UploadProgress)
            .where(UploadProgress.month == month, UploadProgress.processor_name == processor_name)
            .values(audit_status=status.value, last_updated=func.now())
        )


async def record_import_audit(
    session: AsyncSession,
    result: ImportResult,
    content_hash: Optional[str] = None,
) -> int:
    audit = ImportAudit(
        file_name=result.file_name,
        file_hash=content_hash,
        processor=result.processor,
        month=result.month,
        detection_source=result.detection_source.value if result.detection_source else None,
        detection_confidence=(
            Decimal(str(round(result.detection_confidence, 4)))
            if result.detection_confidence is not None else None
        ),
        total_records=result.total_records,
        valid_records=result.valid_merchants,
        records_imported=result.records_imported,
        validation_errors=[issue.model_dump(mode="json") for issue in result.issues],
        row_errors=list(result.errors),
        status=(ImportStatus.PROCESSED_WITH_ERRORS if result.errors else ImportStatus.PROCESSED).value,
    )
    session.add(audit)
    await session.flush()
    return audit.id


# ─── Reads for auditing ───────────────────────────────────────

async def load_month_records(session: AsyncSession, month: str) -> dict[str, list[MerchantRevenueRecord]]:
    """Persisted revenue for a month, rebuilt as records and grouped by processor."""
    stmt = (
        select(
            Processor.name,
            Merchant.mid,
            Merchant.dba,
            MonthlyRevenue.dba,
            MonthlyRevenue.income,
            MonthlyRevenue.sales_amount,
            MonthlyRevenue.transactions,
        )
        .join(Merchant, Merchant.id == MonthlyRevenue.merchant_id)
        .join(Processor, Processor.id == MonthlyRevenue.processor_id)
        .where(MonthlyRevenue.month == month)
        .order_by(Processor.name, MonthlyRevenue.id)
    )
    grouped: dict[str, list[MerchantRevenueRecord]] = defaultdict(list)
    for processor, mid, merchant_dba, row_dba, income, sales, transactions in (await session.execute(stmt)).all():
        grouped[processor].append(MerchantRevenueRecord(
            mid=mid,
            name=row_dba or merchant_dba or "",
            revenue=Decimal(income or 0),
            volume=Decimal(sales or 0),
            transactions=transactions or 0,
            processor=processor,
            month=month,
        ))
    return dict(grouped)


async def load_month_batches(session: AsyncSession, month: str) -> dict[str, ProcessorBatch]:
    """
    ProcessorBatch per processor for a month: persisted merchants with
    revenue, plus the issues recorded by that processor's latest import.
    """
    records = await load_month_records(session, month)

    latest = (
        select(ImportAudit.processor, func.max(ImportAudit.id).label("audit_id"))
        .where(ImportAudit.month == month)
        .group_by(ImportAudit.processor)
        .subquery()
    )
    audits = (await session.execute(
        select(ImportAudit.processor, ImportAudit.validation_errors)
        .join(latest, ImportAudit.id == latest.c.audit_id)
    )).all()
    issues_by_processor = {
        processor: [ValidationIssue.model_validate(issue) for issue in (errors or [])]
        for processor, errors in audits
    }

    batches: dict[str, ProcessorBatch] = {}
    for processor, merchants in records.items():
        batches[processor] = ProcessorBatch(
            merchants=[m for m in merchants if m.revenue > 0],
            validation_errors=issues_by_processor.get(processor, []),
        )
    return batches
