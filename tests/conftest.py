"""
Shared test fixtures.
"""

import csv
import os
import tempfile
from decimal import Decimal
from pathlib import Path

# Point the app at throwaway storage before anything imports residuals.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["UPLOAD_ROOT"] = tempfile.mkdtemp(prefix="residuals-uploads-")
os.environ.pop("API_KEY", None)
os.environ.pop("SCHEMA_REGISTRY_PATH", None)

import pytest
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from residuals.models.database import Base
from residuals.models import tables  # noqa: F401
from residuals.models.tables import Merchant, MonthlyRevenue, Processor, Role
from residuals.pipeline.orchestrator import ImportOrchestrator
from residuals.pipeline.schema_registry import DEFAULT_SCHEMAS, SchemaRegistry
from residuals.schemas.records import MerchantRevenueRecord


@pytest.fixture
def registry():
    return SchemaRegistry(DEFAULT_SCHEMAS)


@pytest.fixture
def clearent(registry):
    return registry.get_schema("Clearent")


@pytest.fixture
def trx(registry):
    return registry.get_schema("TRX")


@pytest.fixture
def make_record():
    """Build a MerchantRevenueRecord with sensible defaults."""
    def _make(mid="M00012", name="Acme Co", revenue="250", transactions=100,
              volume="5000", processor="Clearent", month="2025-04", row_number=2):
        return MerchantRevenueRecord(
            mid=mid,
            name=name,
            revenue=Decimal(str(revenue)),
            volume=Decimal(str(volume)),
            transactions=transactions,
            processor=processor,
            month=month,
            row_number=row_number,
        )
    return _make


# ── Files ────────────────────────────────────────────────────

@pytest.fixture
def write_csv(tmp_path):
    def _write(name: str, rows: list[list], title: str = None) -> Path:
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            if title:
                writer.writerow([title])
            writer.writerows(rows)
        return path
    return _write


@pytest.fixture
def write_xlsx(tmp_path):
    def _write(name: str, rows: list[list]) -> Path:
        path = tmp_path / name
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(row)
        wb.save(path)
        return path
    return _write


# ── Database ─────────────────────────────────────────────────

@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def orchestrator(session_factory, registry):
    return ImportOrchestrator(session_factory=session_factory, registry=registry, concurrency=1)


@pytest.fixture
async def seeded(session_factory):
    """
    Two processors, three merchants with April revenue (one at zero),
    and one role of each type.
    """
    async with session_factory() as session:
        clearent = Processor(name="Clearent")
        trx = Processor(name="TRX")
        merchants = [
            Merchant(mid="M00001", dba="Blu Sushi"),
            Merchant(mid="M00002", dba="Low Key Fisheries"),
            Merchant(mid="M00003", dba="Quiet Month Cafe"),
        ]
        roles = [
            Role(name="Alice Agent", type="agent"),
            Role(name="Sam Manager", type="sales_manager"),
            Role(name="Pat Partner", type="partner"),
            Role(name="House", type="company"),
            Role(name="Merchant Assoc", type="association"),
        ]
        session.add_all([clearent, trx, *merchants, *roles])
        await session.flush()

        session.add_all([
            MonthlyRevenue(month="2025-04", merchant_id=merchants[0].id, processor_id=clearent.id,
                           income=Decimal("2178.82"), sales_amount=Decimal("90000"), transactions=2521),
            MonthlyRevenue(month="2025-04", merchant_id=merchants[1].id, processor_id=trx.id,
                           income=Decimal("45.50"), sales_amount=Decimal("12000"), transactions=300),
            MonthlyRevenue(month="2025-04", merchant_id=merchants[2].id, processor_id=clearent.id,
                           income=Decimal("0"), sales_amount=Decimal("0"), transactions=0),
        ])
        await session.commit()

        return {
            "processors": {"Clearent": clearent.id, "TRX": trx.id},
            "merchants": [m.id for m in merchants],
            "roles": {r.type: r.id for r in roles},
        }
