"""
Commission split assignment.

Every mode writes with replace-set semantics: delete the targeted
(merchant, month) rows, then insert the new set. Both statements run in one
transaction per rule, so a failure between them leaves the previous set in
place. A rule that fails is reported and rolled back; sibling rules in the
same request still apply.

Overlapping scopes must not run concurrently: two rules racing on the same
merchant/month can both delete before either inserts.
"""

from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import delete, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from residuals.config import settings
from residuals.errors import InvalidRequestError, ResidualsError
from residuals.models.database import async_session_factory
from residuals.models.tables import Assignment, Merchant, MonthlyRevenue, Processor, Role
from residuals.observability.metrics import assignment_rows_written_total, assignment_rules_total
from residuals.schemas.assignments import (
    AssignmentView,
    BulkAssignmentRule,
    BulkAssignResult,
    CopyAssignmentsResult,
    ProcessorUnassigned,
    RoleSplit,
    SmartAssignmentRule,
    SmartAssignResult,
    UnassignedSummary,
)

logger = structlog.get_logger(__name__)


class AssignmentEngine:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        tolerance: Optional[float] = None,
    ):
        self.session_factory = session_factory or async_session_factory
        self.tolerance = Decimal(str(settings.SPLIT_TOLERANCE if tolerance is None else tolerance))

    # ─── Modes ────────────────────────────────────────────────

    async def bulk_assign(self, rules: list[BulkAssignmentRule]) -> BulkAssignResult:
        """Explicit merchants, explicit split. Each rule applies fully or not at all."""
        assigned = 0
        errors: list[str] = []

        for rule in rules:
            merchant_ids = list(dict.fromkeys(rule.merchant_ids))
            label = f"merchants {','.join(str(m) for m in merchant_ids)}"
            try:
                self._check_splits(rule.assignments)
                async with self.session_factory() as session:
                    async with session.begin():
                        await self._require_merchants(session, merchant_ids)
                        await self._require_roles(session, rule.assignments)
                        await self._replace(session, merchant_ids, rule.month, rule.assignments)
            except ResidualsError as e:
                errors.append(f"Rule for {label}: {e.message}")
                self._rejected("bulk", rule.month, e.message)
                continue
            except SQLAlchemyError as e:
                errors.append(f"Error processing {label}: {e}")
                self._rejected("bulk", rule.month, str(e), level="error")
                continue

            assigned += len(merchant_ids)
            self._applied("bulk", rule.month, len(merchant_ids), len(merchant_ids) * len(rule.assignments))

        return BulkAssignResult(success=not errors, assigned_count=assigned, errors=errors)

    async def smart_assign(self, rules: list[SmartAssignmentRule]) -> SmartAssignResult:
        """
        Same split for every merchant with a revenue row in the month, optionally
        filtered by processor and by revenue range (inclusive).
        """
        assigned = 0
        processed = 0
        errors: list[str] = []

        for rule in rules:
            try:
                self._check_splits(rule.default_assignments)
                async with self.session_factory() as session:
                    async with session.begin():
                        await self._require_roles(session, rule.default_assignments)
                        merchant_ids = await self._select_merchants(session, rule)
                        if merchant_ids:
                            await self._replace(session, merchant_ids, rule.month, rule.default_assignments)
            except ResidualsError as e:
                errors.append(f"Smart assignment rule: {e.message}")
                self._rejected("smart", rule.month, e.message)
                continue
            except SQLAlchemyError as e:
                errors.append(f"Error processing smart assignment rule: {e}")
                self._rejected("smart", rule.month, str(e), level="error")
                continue

            if not merchant_ids:
                logger.info("smart_rule_matched_nothing", month=rule.month,
                            processor_id=rule.processor_id)
                continue
            processed += len(merchant_ids)
            assigned += len(merchant_ids)
            self._applied("smart", rule.month, len(merchant_ids),
                          len(merchant_ids) * len(rule.default_assignments))

        return SmartAssignResult(
            success=not errors,
            assigned_count=assigned,
            merchants_processed=processed,
            errors=errors,
        )

    async def assign_by_processor(
        self,
        processor_id: int,
        month: str,
        default_assignments: list[RoleSplit],
    ) -> SmartAssignResult:
        return await self.smart_assign([SmartAssignmentRule(
            processor_id=processor_id,
            month=month,
            default_assignments=default_assignments,
        )])

    async def copy_assignments(
        self,
        from_month: str,
        to_month: str,
        merchant_ids: Optional[list[int]] = None,
    ) -> CopyAssignmentsResult:
        """
        Copy assignment sets verbatim from one month to another. Percentages
        are not re-validated. The target scope is the given merchants, or
        every merchant assigned in the source month.
        """
        if from_month == to_month:
            return CopyAssignmentsResult(
                success=False, copied_count=0,
                errors=["Source and target month must differ"],
            )

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    stmt = select(Assignment.merchant_id, Assignment.role_id, Assignment.percentage).where(
                        Assignment.month == from_month
                    )
                    if merchant_ids:
                        stmt = stmt.where(Assignment.merchant_id.in_(merchant_ids))
                    source = (await session.execute(stmt.order_by(Assignment.id))).all()

                    if not source:
                        return CopyAssignmentsResult(
                            success=True, copied_count=0,
                            errors=["No assignments found in previous month"],
                        )

                    scope = list(merchant_ids) if merchant_ids else sorted({row.merchant_id for row in source})
                    await session.execute(
                        delete(Assignment).where(
                            Assignment.merchant_id.in_(scope),
                            Assignment.month == to_month,
                        )
                    )
                    session.add_all([
                        Assignment(
                            merchant_id=row.merchant_id,
                            role_id=row.role_id,
                            percentage=row.percentage,
                            month=to_month,
                        )
                        for row in source
                    ])
                    await session.flush()
        except SQLAlchemyError as e:
            logger.error("copy_assignments_failed", from_month=from_month, to_month=to_month, error=str(e))
            assignment_rules_total.labels(mode="copy", outcome="failed").inc()
            return CopyAssignmentsResult(success=False, copied_count=0, errors=[str(e)])

        assignment_rules_total.labels(mode="copy", outcome="applied").inc()
        assignment_rows_written_total.labels(mode="copy").inc(len(source))
        logger.info("assignments_copied", from_month=from_month, to_month=to_month,
                    merchants=len(scope), rows=len(source))
        return CopyAssignmentsResult(success=True, copied_count=len(source), errors=[])

    # ─── Reads ────────────────────────────────────────────────

    async def get_unassigned_summary(self, month: str) -> UnassignedSummary:
        """Merchants with positive revenue in the month and no assignment rows."""
        assigned = exists().where(
            Assignment.merchant_id == MonthlyRevenue.merchant_id,
            Assignment.month == month,
        )
        stmt = (
            select(MonthlyRevenue.merchant_id, MonthlyRevenue.income, Processor.name)
            .join(Processor, Processor.id == MonthlyRevenue.processor_id)
            .where(MonthlyRevenue.month == month, MonthlyRevenue.income > 0, ~assigned)
            .order_by(Processor.name)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        merchants: set[int] = set()
        total_revenue = Decimal("0")
        by_processor: dict[str, ProcessorUnassigned] = {}
        for merchant_id, income, processor_name in rows:
            income = Decimal(income or 0)
            merchants.add(merchant_id)
            total_revenue += income
            current = by_processor.get(processor_name)
            if current is None:
                by_processor[processor_name] = ProcessorUnassigned(
                    processor_name=processor_name, count=1, revenue=income,
                )
            else:
                by_processor[processor_name] = ProcessorUnassigned(
                    processor_name=processor_name,
                    count=current.count + 1,
                    revenue=current.revenue + income,
                )

        return UnassignedSummary(
            month=month,
            total_unassigned=len(merchants),
            unassigned_revenue=total_revenue,
            by_processor=list(by_processor.values()),
        )

    async def get_assignments(self, merchant_id: int, month: str) -> list[AssignmentView]:
        stmt = (
            select(Assignment, Role.name, Role.type)
            .join(Role, Role.id == Assignment.role_id)
            .where(Assignment.merchant_id == merchant_id, Assignment.month == month)
            .order_by(Assignment.percentage.desc(), Assignment.role_id)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            AssignmentView(
                merchant_id=a.merchant_id,
                role_id=a.role_id,
                role_name=role_name,
                role_type=role_type,
                percentage=Decimal(a.percentage),
                month=a.month,
            )
            for a, role_name, role_type in rows
        ]

    async def role_ids_by_type(self) -> dict[str, int]:
        """First active role per role type, for resolving templates."""
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(Role.type, Role.id).where(Role.is_active.is_(True)).order_by(Role.id)
            )).all()
        resolved: dict[str, int] = {}
        for role_type, role_id in rows:
            resolved.setdefault(role_type, role_id)
        return resolved

    # ─── Internals ────────────────────────────────────────────

    def _check_splits(self, splits: list[RoleSplit]) -> None:
        total = sum((s.percentage for s in splits), Decimal("0"))
        if abs(total - Decimal("100")) > self.tolerance:
            raise InvalidRequestError(f"Invalid percentage total: {total}%")
        role_ids = [s.role_id for s in splits]
        if len(set(role_ids)) != len(role_ids):
            raise InvalidRequestError("Each role may appear only once per split")

    async def _require_merchants(self, session: AsyncSession, merchant_ids: list[int]) -> None:
        found = set((await session.execute(
            select(Merchant.id).where(Merchant.id.in_(merchant_ids))
        )).scalars().all())
        missing = [m for m in merchant_ids if m not in found]
        if missing:
            raise InvalidRequestError(f"Merchants not found: {', '.join(str(m) for m in missing)}")

    async def _require_roles(self, session: AsyncSession, splits: list[RoleSplit]) -> None:
        role_ids = [s.role_id for s in splits]
        found = set((await session.execute(
            select(Role.id).where(Role.id.in_(role_ids))
        )).scalars().all())
        missing = [r for r in role_ids if r not in found]
        if missing:
            raise InvalidRequestError(f"Roles not found: {', '.join(str(r) for r in missing)}")

    async def _select_merchants(self, session: AsyncSession, rule: SmartAssignmentRule) -> list[int]:
        stmt = select(MonthlyRevenue.merchant_id).where(MonthlyRevenue.month == rule.month)
        if rule.processor_id is not None:
            stmt = stmt.where(MonthlyRevenue.processor_id == rule.processor_id)
        if rule.revenue_range is not None:
            stmt = stmt.where(
                MonthlyRevenue.income >= rule.revenue_range.min,
                MonthlyRevenue.income <= rule.revenue_range.max,
            )
        merchant_ids = (await session.execute(stmt.order_by(MonthlyRevenue.merchant_id))).scalars().all()
        return list(dict.fromkeys(merchant_ids))

    async def _replace(
        self,
        session: AsyncSession,
        merchant_ids: list[int],
        month: str,
        splits: list[RoleSplit],
    ) -> None:
        await session.execute(
            delete(Assignment).where(
                Assignment.merchant_id.in_(merchant_ids),
                Assignment.month == month,
            )
        )
        session.add_all([
            Assignment(merchant_id=merchant_id, role_id=s.role_id, percentage=s.percentage, month=month)
            for merchant_id in merchant_ids
            for s in splits
        ])
        await session.flush()

    def _applied(self, mode: str, month: str, merchants: int, rows: int) -> None:
        assignment_rules_total.labels(mode=mode, outcome="applied").inc()
        assignment_rows_written_total.labels(mode=mode).inc(rows)
        logger.info("assignment_rule_applied", mode=mode, month=month, merchants=merchants, rows=rows)

    def _rejected(self, mode: str, month: str, reason: str, level: str = "warning") -> None:
        assignment_rules_total.labels(mode=mode, outcome="rejected").inc()
        getattr(logger, level)("assignment_rule_rejected", mode=mode, month=month, reason=reason)
