"""
Tests for commission split assignment against an in-memory SQLite database.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from residuals.assignments.engine import AssignmentEngine
from residuals.assignments.templates import ASSIGNMENT_TEMPLATES, list_templates, resolve_template
from residuals.errors import InvalidRequestError
from residuals.models.tables import Assignment
from residuals.schemas.assignments import BulkAssignmentRule, RevenueRange, RoleSplit, SmartAssignmentRule


@pytest.fixture
def engine(session_factory):
    return AssignmentEngine(session_factory=session_factory, tolerance=0.01)


def _split(roles, **pcts):
    return [RoleSplit(role_id=roles[role_type], percentage=Decimal(pct)) for role_type, pct in pcts.items()]


async def _rows(session_factory, month="2025-04"):
    async with session_factory() as session:
        result = await session.execute(
            select(Assignment.merchant_id, Assignment.role_id, Assignment.percentage)
            .where(Assignment.month == month)
            .order_by(Assignment.merchant_id, Assignment.role_id)
        )
        return [(m, r, Decimal(p)) for m, r, p in result.all()]


class TestBulkAssign:

    async def test_assigns_split(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        m1, m2, _ = seeded["merchants"]
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1, m2, m1],
            assignments=_split(roles, agent="60", sales_manager="40"),
            month="2025-04",
        )])

        assert result.success
        assert result.assigned_count == 2
        rows = await _rows(session_factory)
        assert len(rows) == 4
        assert {(m, p) for m, _, p in rows} == {
            (m1, Decimal("60")), (m1, Decimal("40")), (m2, Decimal("60")), (m2, Decimal("40")),
        }

    async def test_split_must_sum_to_100(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        m1 = seeded["merchants"][0]
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1],
            assignments=_split(roles, agent="60", sales_manager="30"),
            month="2025-04",
        )])

        assert not result.success
        assert result.assigned_count == 0
        assert "Invalid percentage total: 90" in result.errors[0]
        assert await _rows(session_factory) == []

    async def test_tolerance(self, engine, seeded):
        roles = seeded["roles"]
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[seeded["merchants"][0]],
            assignments=_split(roles, agent="33.3", sales_manager="33.3", partner="33.3"),
            month="2025-04",
        )])
        assert not result.success

        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[seeded["merchants"][0]],
            assignments=_split(roles, agent="33.33", sales_manager="33.33", partner="33.33"),
            month="2025-04",
        )])
        assert result.success

    def test_percentages_limited_to_cents(self):
        assert RoleSplit(role_id=1, percentage=Decimal("33.34")).percentage == Decimal("33.34")
        with pytest.raises(ValidationError):
            RoleSplit(role_id=1, percentage=Decimal("20.004"))

    async def test_stored_split_sums_to_100(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        m1 = seeded["merchants"][0]
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1],
            assignments=_split(roles, agent="20.01", sales_manager="20.01", partner="20.01",
                               company="20.01", association="19.96"),
            month="2025-04",
        )])
        assert result.success
        assert sum(p for _, _, p in await _rows(session_factory)) == Decimal("100")

    async def test_replaces_previous_set(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        m1 = seeded["merchants"][0]
        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1], assignments=_split(roles, agent="50", partner="50"), month="2025-04",
        )])
        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1], assignments=_split(roles, company="100"), month="2025-04",
        )])

        assert await _rows(session_factory) == [(m1, roles["company"], Decimal("100"))]

    async def test_failed_rule_does_not_affect_siblings(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        m1, m2, _ = seeded["merchants"]
        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m2], assignments=_split(roles, agent="100"), month="2025-04",
        )])

        result = await engine.bulk_assign([
            BulkAssignmentRule(merchant_ids=[m1], assignments=_split(roles, agent="100"), month="2025-04"),
            BulkAssignmentRule(merchant_ids=[m2], assignments=_split(roles, agent="70"), month="2025-04"),
        ])

        assert not result.success
        assert result.assigned_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Rule for merchants {m2}:")
        # m2 keeps its earlier set
        assert await _rows(session_factory) == [
            (m1, roles["agent"], Decimal("100")),
            (m2, roles["agent"], Decimal("100")),
        ]

    async def test_insert_failure_after_delete_keeps_previous_set(
        self, engine, seeded, session_factory, monkeypatch
    ):
        roles = seeded["roles"]
        m1 = seeded["merchants"][0]
        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1], assignments=_split(roles, agent="50", partner="50"), month="2025-04",
        )])
        before = await _rows(session_factory)

        seen_inside = {}

        async def failing_flush(self, objects=None):
            with self.no_autoflush:
                seen_inside["rows"] = (await self.execute(
                    select(Assignment.role_id).where(Assignment.merchant_id == m1)
                )).scalars().all()
            raise OperationalError("INSERT INTO assignments", {}, Exception("database is locked"))

        monkeypatch.setattr(AsyncSession, "flush", failing_flush)
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1], assignments=_split(roles, company="100"), month="2025-04",
        )])
        monkeypatch.undo()

        # the delete had already run when the insert failed
        assert seen_inside["rows"] == []
        assert not result.success
        assert result.assigned_count == 0
        assert result.errors[0].startswith(f"Error processing merchants {m1}:")
        assert await _rows(session_factory) == before

    async def test_unknown_merchant_rejected(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        m1 = seeded["merchants"][0]
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1, 9999], assignments=_split(roles, agent="100"), month="2025-04",
        )])
        assert not result.success
        assert "Merchants not found: 9999" in result.errors[0]
        assert await _rows(session_factory) == []

    async def test_unknown_role_rejected(self, engine, seeded):
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[seeded["merchants"][0]],
            assignments=[RoleSplit(role_id=9999, percentage=Decimal("100"))],
            month="2025-04",
        )])
        assert not result.success
        assert "Roles not found: 9999" in result.errors[0]

    async def test_duplicate_role_rejected(self, engine, seeded):
        agent = seeded["roles"]["agent"]
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[seeded["merchants"][0]],
            assignments=[RoleSplit(role_id=agent, percentage=Decimal("50"))] * 2,
            month="2025-04",
        )])
        assert not result.success


class TestSmartAssign:

    async def test_processor_filter(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        result = await engine.smart_assign([SmartAssignmentRule(
            processor_id=seeded["processors"]["Clearent"],
            default_assignments=_split(roles, agent="80", company="20"),
            month="2025-04",
        )])

        m1, _, m3 = seeded["merchants"]
        assert result.success
        assert result.assigned_count == 2
        assert result.merchants_processed == 2
        assert {m for m, _, _ in await _rows(session_factory)} == {m1, m3}

    async def test_revenue_range_is_inclusive(self, engine, seeded, session_factory):
        roles = seeded["roles"]
        result = await engine.smart_assign([SmartAssignmentRule(
            revenue_range=RevenueRange(min=Decimal("45.50"), max=Decimal("2178.82")),
            default_assignments=_split(roles, agent="100"),
            month="2025-04",
        )])

        m1, m2, _ = seeded["merchants"]
        assert result.assigned_count == 2
        assert {m for m, _, _ in await _rows(session_factory)} == {m1, m2}

    async def test_no_matches(self, engine, seeded):
        result = await engine.smart_assign([SmartAssignmentRule(
            default_assignments=_split(seeded["roles"], agent="100"),
            month="2024-01",
        )])
        assert result.success
        assert result.assigned_count == 0

    async def test_bad_split_reported(self, engine, seeded):
        result = await engine.smart_assign([SmartAssignmentRule(
            default_assignments=_split(seeded["roles"], agent="50"),
            month="2025-04",
        )])
        assert not result.success
        assert result.errors[0].startswith("Smart assignment rule: Invalid percentage total")

    async def test_assign_by_processor(self, engine, seeded, session_factory):
        result = await engine.assign_by_processor(
            seeded["processors"]["TRX"], "2025-04", _split(seeded["roles"], agent="100"),
        )
        assert result.assigned_count == 1
        assert [m for m, _, _ in await _rows(session_factory)] == [seeded["merchants"][1]]


class TestCopyAssignments:

    async def _assign_april(self, engine, seeded):
        roles = seeded["roles"]
        m1, m2, _ = seeded["merchants"]
        await engine.bulk_assign([
            BulkAssignmentRule(merchant_ids=[m1], assignments=_split(roles, agent="60", partner="40"),
                               month="2025-04"),
            BulkAssignmentRule(merchant_ids=[m2], assignments=_split(roles, company="100"), month="2025-04"),
        ])

    async def test_copy_all(self, engine, seeded, session_factory):
        await self._assign_april(engine, seeded)
        result = await engine.copy_assignments("2025-04", "2025-05")

        assert result.success
        assert result.copied_count == 3
        assert await _rows(session_factory, "2025-05") == await _rows(session_factory, "2025-04")

    async def test_copy_replaces_target(self, engine, seeded, session_factory):
        await self._assign_april(engine, seeded)
        m1 = seeded["merchants"][0]
        roles = seeded["roles"]
        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1], assignments=_split(roles, association="100"), month="2025-05",
        )])

        result = await engine.copy_assignments("2025-04", "2025-05", merchant_ids=[m1])

        assert result.copied_count == 2
        assert await _rows(session_factory, "2025-05") == [
            (m1, roles["agent"], Decimal("60")),
            (m1, roles["partner"], Decimal("40")),
        ]

    async def test_nothing_to_copy(self, engine, seeded):
        result = await engine.copy_assignments("2025-01", "2025-02")
        assert result.success
        assert result.copied_count == 0
        assert result.errors == ["No assignments found in previous month"]

    async def test_same_month(self, engine, seeded):
        result = await engine.copy_assignments("2025-04", "2025-04")
        assert not result.success


class TestReads:

    async def test_unassigned_summary(self, engine, seeded):
        summary = await engine.get_unassigned_summary("2025-04")
        assert summary.total_unassigned == 2
        assert summary.unassigned_revenue == Decimal("2224.32")
        assert [(p.processor_name, p.count) for p in summary.by_processor] == [("Clearent", 1), ("TRX", 1)]

        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[seeded["merchants"][0]],
            assignments=_split(seeded["roles"], agent="100"),
            month="2025-04",
        )])
        summary = await engine.get_unassigned_summary("2025-04")
        assert summary.total_unassigned == 1
        assert summary.by_processor[0].processor_name == "TRX"

    async def test_get_assignments(self, engine, seeded):
        roles = seeded["roles"]
        m1 = seeded["merchants"][0]
        await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[m1], assignments=_split(roles, partner="30", agent="70"), month="2025-04",
        )])
        views = await engine.get_assignments(m1, "2025-04")
        assert [(v.role_type, v.percentage) for v in views] == [
            ("agent", Decimal("70")), ("partner", Decimal("30")),
        ]
        assert views[0].role_name == "Alice Agent"

    async def test_role_ids_by_type(self, engine, seeded):
        assert await engine.role_ids_by_type() == seeded["roles"]


class TestTemplates:

    def test_templates_sum_to_100(self):
        for name, splits in ASSIGNMENT_TEMPLATES.items():
            assert sum(pct for _, pct in splits) == Decimal("100"), name

    def test_list_templates(self):
        names = [t.name for t in list_templates()]
        assert "Standard Sales Split" in names
        assert len(names) == 4

    def test_resolve(self):
        splits = resolve_template("Standard Sales Split", {"agent": 1, "sales_manager": 2, "partner": 3})
        assert [(s.role_id, s.percentage) for s in splits] == [
            (1, Decimal("60")), (2, Decimal("25")), (3, Decimal("15")),
        ]

    def test_unknown_template(self):
        with pytest.raises(InvalidRequestError):
            resolve_template("Nope", {})

    def test_missing_role_type(self):
        with pytest.raises(InvalidRequestError) as exc:
            resolve_template("High Performer Split", {"agent": 1, "sales_manager": 2})
        assert "company" in exc.value.message

    async def test_template_applied_through_bulk(self, engine, seeded, session_factory):
        splits = resolve_template("New Agent Split", seeded["roles"])
        result = await engine.bulk_assign([BulkAssignmentRule(
            merchant_ids=[seeded["merchants"][1]], assignments=splits, month="2025-04",
        )])
        assert result.success
        assert len(await _rows(session_factory)) == 3
