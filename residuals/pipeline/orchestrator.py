"""
Import orchestrator: one processor file in, upserted monthly revenue out.

Stages: READ → RESOLVE PROCESSOR → EXTRACT → VALIDATE → PERSIST → PROGRESS

File-level failures (unreadable file, unknown processor, bad request) abort
before anything is written and come back as a failed ImportResult. Row-level
failures are collected as "Row N: ..." strings and never stop the file.
"""

import asyncio
import re
import time
from pathlib import Path
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from residuals.config import settings
from residuals.errors import InvalidRequestError, ResidualsError
from residuals.models.database import async_session_factory
from residuals.models.enums import AuditStatus, DetectionSource, IssueKind, Severity
from residuals.observability.metrics import (
    files_imported_total,
    import_duration_seconds,
    rows_imported_total,
    rows_rejected_total,
)
from residuals.pipeline.anomaly_detector import AnomalyDetector, previous_month
from residuals.pipeline.field_extractor import FieldExtractor
from residuals.pipeline.file_reader import RawTable, read_processor_file
from residuals.pipeline.format_detector import FormatDetector
from residuals.pipeline.record_validator import RecordValidator
from residuals.pipeline.schema_registry import SchemaRegistry, default_registry
from residuals.schemas.audit import AuditReport, ProcessorAuditSummary, ProcessorBatch
from residuals.schemas.imports import ImportConfig, ImportMultipleResult, ImportResult
from residuals.schemas.processors import DetectionResult, ProcessorSchema
from residuals.schemas.records import MONTH_PATTERN, MerchantRevenueRecord, ValidationIssue
from residuals.storage.paths import file_hash
from residuals.storage.revenue_store import (
    find_or_create_merchant,
    find_or_create_processor,
    load_month_records,
    record_import_audit,
    set_audit_status,
    upsert_monthly_revenue,
    upsert_upload_progress,
)

logger = structlog.get_logger(__name__)


def rejection_reason(issues: list[ValidationIssue], trusted: bool) -> Optional[str]:
    """
    Why a validated record must not be persisted, or None to persist it.
    CRITICAL always rejects. Without a trusted caller override, any
    out-of-range revenue rejects too, so persisted revenue stays in range.
    """
    if any(i.severity == Severity.CRITICAL for i in issues):
        return "critical"
    if not trusted and any(i.kind == IssueKind.OUT_OF_RANGE for i in issues):
        return "out_of_range"
    return None


def audit_status(summary: ProcessorAuditSummary) -> AuditStatus:
    """A processor fails the batch audit when any of its issues is CRITICAL."""
    issues = summary.anomalies + summary.validation_errors
    return AuditStatus.FAILED if any(i.severity == Severity.CRITICAL for i in issues) else AuditStatus.PASSED


class ImportOrchestrator:
    """
    Imports processor residual files.
    Each file runs sequentially row by row; import_multiple runs files
    concurrently up to IMPORT_CONCURRENCY.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        registry: Optional[SchemaRegistry] = None,
        validator: Optional[RecordValidator] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session_factory
        self.registry = registry or default_registry()
        self.detector = FormatDetector(self.registry)
        self.extractor = FieldExtractor()
        self.validator = validator or RecordValidator()
        self.anomaly_detector = anomaly_detector or AnomalyDetector()
        self.concurrency = max(1, concurrency or settings.IMPORT_CONCURRENCY)

    async def import_file(
        self,
        file_path: str,
        month: str,
        processor_name: Optional[str] = None,
        agency_id: Optional[int] = None,
        file_name: Optional[str] = None,
    ) -> ImportResult:
        """
        Import one file for one month. A processor_name from the caller is a
        trusted override of detection; otherwise headers and file name decide.
        """
        started_at = time.time()
        file_name = file_name or Path(file_path).name
        log = logger.bind(file_name=file_name, month=month)
        log.info("import_started", processor_hint=processor_name)

        # ── Stage 1-2: READ + RESOLVE ──
        try:
            if not month or not re.fullmatch(MONTH_PATTERN, month):
                raise InvalidRequestError(f"Month must be YYYY-MM, got '{month}'")
            table = read_processor_file(file_path)
            detection = self.detector.resolve(table.headers, file_name, processor_name)
            schema = self.registry.get_schema(detection.processor_name)
            content = Path(file_path).read_bytes()
        except ResidualsError as e:
            log.warning("import_rejected", error=e.message, error_code=e.error_code)
            files_imported_total.labels(processor=processor_name or "unknown", outcome="rejected").inc()
            return ImportResult(
                success=False,
                file_name=file_name,
                month=month or "",
                processor=processor_name,
                errors=[e.message],
                error_code=e.error_code,
            )

        # ── Stage 3-6: EXTRACT → VALIDATE → PERSIST → PROGRESS ──
        try:
            result = await self._import_rows(
                table, schema, detection, month, agency_id, file_name, content, log,
            )
        except Exception as e:
            log.error("import_failed", processor=schema.name, error=str(e), exc_info=True)
            files_imported_total.labels(processor=schema.name, outcome="failed").inc()
            return ImportResult(
                success=False,
                file_name=file_name,
                month=month,
                processor=schema.name,
                detection_source=detection.source,
                detection_confidence=detection.confidence,
                errors=[f"Import failed: {e}"],
                error_code="ERR_IMPORT_FAILED",
            )

        duration = time.time() - started_at
        import_duration_seconds.labels(processor=schema.name).observe(duration)
        files_imported_total.labels(processor=schema.name, outcome="imported").inc()
        log.info(
            "import_complete",
            processor=schema.name,
            detection_source=detection.source.value,
            total_records=result.total_records,
            records_imported=result.records_imported,
            records_rejected=result.records_rejected,
            valid_merchants=result.valid_merchants,
            issues=len(result.issues),
            row_errors=len(result.errors),
            duration_ms=int(duration * 1000),
        )
        return result

    async def _import_rows(
        self,
        table: RawTable,
        schema: ProcessorSchema,
        detection: DetectionResult,
        month: str,
        agency_id: Optional[int],
        file_name: str,
        content: bytes,
        log,
    ) -> ImportResult:
        trusted = detection.source == DetectionSource.CALLER
        agency_id = agency_id if agency_id is not None else settings.DEFAULT_AGENCY_ID

        issues: list[ValidationIssue] = []
        errors: list[str] = []
        # a MID repeated within the file keeps its last row, matching the upsert
        persisted: dict[str, MerchantRevenueRecord] = {}
        rejected = 0

        async with self.session_factory() as session:
            processor_id = await find_or_create_processor(session, schema.name)
            await session.commit()

            for idx, raw in enumerate(table.rows):
                row_number = table.row_numbers[idx] if idx < len(table.row_numbers) else idx + 2
                try:
                    record = self.extractor.extract(raw, schema, month, row_number)
                    record_issues = self.validator.validate(record, schema)
                    issues.extend(record_issues)

                    if not record.mid:
                        errors.append(f"Row {row_number}: Missing MID")
                        rows_rejected_total.labels(processor=schema.name, reason="missing_mid").inc()
                        rejected += 1
                        continue

                    reason = rejection_reason(record_issues, trusted)
                    if reason:
                        log.info("record_rejected", processor=schema.name, mid=record.mid,
                                 row=row_number, reason=reason, revenue=str(record.revenue))
                        rows_rejected_total.labels(processor=schema.name, reason=reason).inc()
                        rejected += 1
                        continue

                    merchant_id = await find_or_create_merchant(
                        session, record.mid, dba=record.name, agency_id=agency_id,
                    )
                    await upsert_monthly_revenue(session, record, merchant_id, processor_id, agency_id)
                    await session.commit()
                    persisted[record.mid] = record
                    rows_imported_total.labels(processor=schema.name).inc()
                except Exception as e:
                    await session.rollback()
                    errors.append(f"Row {row_number}: {e}")
                    rows_rejected_total.labels(processor=schema.name, reason="error").inc()
                    rejected += 1
                    log.warning("row_failed", processor=schema.name, row=row_number, error=str(e))

            records = list(persisted.values())
            result = ImportResult(
                success=True,
                file_name=file_name,
                month=month,
                processor=schema.name,
                detection_source=detection.source,
                detection_confidence=detection.confidence,
                total_records=len(table.rows),
                valid_merchants=sum(1 for r in records if r.revenue > 0),
                records_imported=len(records),
                records_rejected=rejected,
                issues=issues,
                errors=errors,
                records=records,
            )

            await upsert_upload_progress(
                session,
                month=month,
                processor_id=processor_id,
                processor_name=schema.name,
                record_count=len(records),
                file_name=file_name,
                file_size=len(content),
            )
            await record_import_audit(session, result, file_hash(content))
            await session.commit()

        return result

    async def import_multiple(self, configs: list[ImportConfig]) -> ImportMultipleResult:
        """
        Import several files concurrently and audit the combined batch.
        When every file targets the same month, the previous month's
        persisted revenue is loaded for the variance check, and each
        processor's upload progress row records whether it passed the audit.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(config: ImportConfig) -> ImportResult:
            async with semaphore:
                return await self.import_file(
                    config.file_path,
                    config.month,
                    processor_name=config.processor_name,
                    agency_id=config.agency_id,
                    file_name=config.file_name,
                )

        results = list(await asyncio.gather(*(run(c) for c in configs)))
        report = await self._audit(results)

        total = sum(r.records_imported for r in results)
        logger.info("import_multiple_complete",
                    files=len(configs),
                    succeeded=sum(1 for r in results if r.success),
                    total_imported=total)
        return ImportMultipleResult(total_imported=total, results=results, audit_report=report)

    async def _audit(self, results: list[ImportResult]) -> Optional[AuditReport]:
        batches: dict[str, ProcessorBatch] = {}
        for result in results:
            if not result.success or not result.processor:
                continue
            batch = result.to_batch()
            existing = batches.get(result.processor)
            if existing is None:
                batches[result.processor] = batch
            else:
                batches[result.processor] = ProcessorBatch(
                    merchants=existing.merchants + batch.merchants,
                    validation_errors=existing.validation_errors + batch.validation_errors,
                )
        if not batches:
            return None

        months = {r.month for r in results if r.success}
        month = months.pop() if len(months) == 1 else None
        prior: list[MerchantRevenueRecord] = []
        if month:
            async with self.session_factory() as session:
                by_processor = await load_month_records(session, previous_month(month))
            prior = [record for records in by_processor.values() for record in records]

        report = self.anomaly_detector.generate_audit_report(batches, previous_month=prior, month=month)

        if month:
            statuses = {name: audit_status(summary) for name, summary in report.processors.items()}
            async with self.session_factory() as session:
                await set_audit_status(session, month, statuses)
                await session.commit()
        return report
