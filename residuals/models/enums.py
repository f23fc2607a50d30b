"""
Python enums shared by the ORM, the pipeline and the API schemas.
String values are what gets stored and serialised.
"""

from enum import Enum


class FileFormat(str, Enum):
    CSV = "CSV"
    XLSX = "XLSX"


class Severity(str, Enum):
    """Issue severity. Only CRITICAL causes a record to be rejected."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class IssueKind(str, Enum):
    OUT_OF_RANGE = "OUT_OF_RANGE"
    REVENUE_WITHOUT_TRANSACTIONS = "REVENUE_WITHOUT_TRANSACTIONS"
    REVENUE_PER_TXN_ANOMALY = "REVENUE_PER_TXN_ANOMALY"
    INVALID_MID = "INVALID_MID"
    NEGATIVE_VOLUME_OR_COUNT = "NEGATIVE_VOLUME_OR_COUNT"
    DUPLICATE_MID = "DUPLICATE_MID"
    EXTREME_OUTLIER = "EXTREME_OUTLIER"
    EXTREME_MONTH_VARIANCE = "EXTREME_MONTH_VARIANCE"


class CanonicalField(str, Enum):
    MID = "mid"
    NAME = "name"
    REVENUE = "revenue"
    VOLUME = "volume"
    TRANSACTIONS = "transactions"


class DetectionSource(str, Enum):
    CALLER = "CALLER"
    FILENAME = "FILENAME"
    HEADERS = "HEADERS"


class RoleType(str, Enum):
    AGENT = "agent"
    PARTNER = "partner"
    SALES_MANAGER = "sales_manager"
    COMPANY = "company"
    ASSOCIATION = "association"


class UploadStatus(str, Enum):
    NEEDS_UPLOAD = "needs_upload"
    UPLOADED = "uploaded"
    VALIDATED = "validated"
    ERROR = "error"


class CompilationStatus(str, Enum):
    PENDING = "pending"
    COMPILED = "compiled"
    ERROR = "error"


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    VALIDATED = "validated"


class AuditStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class ImportStatus(str, Enum):
    PROCESSED = "processed"
    PROCESSED_WITH_ERRORS = "processed_with_errors"
