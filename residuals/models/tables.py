"""
SQLAlchemy ORM models.
Table and column names follow the residuals back-office schema so both
services can share one database.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from residuals.models.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ────────────────────────────────────────────────────────────
# PROCESSORS
# ────────────────────────────────────────────────────────────
class Processor(Base):
    __tablename__ = "processors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    monthly_data = relationship("MonthlyRevenue", back_populates="processor")


# ────────────────────────────────────────────────────────────
# MERCHANTS
# ────────────────────────────────────────────────────────────
class Merchant(Base):
    __tablename__ = "merchants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mid: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    dba: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    legal_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    agency_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    monthly_data = relationship("MonthlyRevenue", back_populates="merchant")
    assignments = relationship("Assignment", back_populates="merchant")


# ────────────────────────────────────────────────────────────
# MONTHLY REVENUE
# ────────────────────────────────────────────────────────────
class MonthlyRevenue(Base):
    """One merchant's residual from one processor for one month."""
    __tablename__ = "monthly_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    merchant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("merchants.id"), nullable=False
    )
    processor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("processors.id"), nullable=False
    )
    income: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    sales_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dba: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    agency_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    merchant = relationship("Merchant", back_populates="monthly_data")
    processor = relationship("Processor", back_populates="monthly_data")

    __table_args__ = (
        UniqueConstraint("month", "merchant_id", "processor_id", name="uq_monthly_data_key"),
        Index("idx_monthly_data_month", "month"),
        Index("idx_monthly_data_processor", "processor_id", "month"),
    )


# ────────────────────────────────────────────────────────────
# ROLES
# ────────────────────────────────────────────────────────────
class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)  # RoleType value
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# ────────────────────────────────────────────────────────────
# ASSIGNMENTS
# ────────────────────────────────────────────────────────────
class Assignment(Base):
    """
    A role's share of a merchant's net revenue for one month.
    Per (merchant, month) the percentages sum to 100 or there are no rows.
    """
    __tablename__ = "assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    merchant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("merchants.id"), nullable=False
    )
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id"), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    merchant = relationship("Merchant", back_populates="assignments")
    role = relationship("Role")

    __table_args__ = (
        UniqueConstraint("merchant_id", "role_id", "month", name="uq_assignment_key"),
        Index("idx_assignments_month", "month", "merchant_id"),
    )


# ────────────────────────────────────────────────────────────
# UPLOAD PROGRESS
# ────────────────────────────────────────────────────────────
class UploadProgress(Base):
    __tablename__ = "upload_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    processor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("processors.id"), nullable=False
    )
    processor_name: Mapped[str] = mapped_column(Text, nullable=False)
    upload_status: Mapped[str] = mapped_column(Text, nullable=False, default="needs_upload")
    lead_sheet_status: Mapped[str] = mapped_column(Text, nullable=False, default="needs_upload")
    compilation_status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    assignment_status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    audit_status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("month", "processor_id", name="uq_upload_progress_key"),
    )


# ────────────────────────────────────────────────────────────
# IMPORT AUDITS
# ────────────────────────────────────────────────────────────
class ImportAudit(Base):
    """Write-once trail of every import attempt and the issues it raised."""
    __tablename__ = "import_audits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processor: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    detection_source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detection_confidence: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4), nullable=True)
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_imported: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    validation_errors: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    row_errors: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="processed")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_import_audits_month", "month", "processor"),
    )
