"""
Prometheus metrics for the residuals ingestion engine.
"""

from prometheus_client import Counter, Histogram


# ── File Imports ─────────────────────────────────────────────
files_imported_total = Counter(
    "residual_files_imported_total",
    "Processor files run through the import pipeline",
    ["processor", "outcome"],
)

import_duration_seconds = Histogram(
    "residual_import_duration_seconds",
    "Time to import a single processor file",
    ["processor"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120],
)

processor_detections_total = Counter(
    "processor_detections_total",
    "Processor schema resolutions by how the schema was chosen",
    ["processor", "source"],
)

# ── Rows ─────────────────────────────────────────────────────
rows_imported_total = Counter(
    "residual_rows_imported_total",
    "Merchant revenue rows upserted",
    ["processor"],
)

rows_rejected_total = Counter(
    "residual_rows_rejected_total",
    "Merchant revenue rows excluded from persistence",
    ["processor", "reason"],
)

# ── Validation ───────────────────────────────────────────────
validation_issues_total = Counter(
    "validation_issues_total",
    "Validation and anomaly issues raised",
    ["kind", "severity"],
)

fuzzy_field_matches_total = Counter(
    "fuzzy_field_matches_total",
    "Canonical fields resolved through an alias rather than the exact column",
    ["processor", "field"],
)

# ── Assignments ──────────────────────────────────────────────
assignment_rules_total = Counter(
    "assignment_rules_total",
    "Assignment rules processed",
    ["mode", "outcome"],
)

assignment_rows_written_total = Counter(
    "assignment_rows_written_total",
    "Role assignment rows inserted",
    ["mode"],
)
