"""
Field extraction: raw processor row -> MerchantRevenueRecord.

Each canonical field is looked up by the schema's exact column name first.
When that column is absent (header drift: trailing spaces, case, plurals,
underscores), an ordered list of normalized alias candidates is tried:
the schema column itself, then generic aliases for the field. The first
candidate present in the row wins. Every non-exact match is logged and
recorded on the record so it shows up in audits.
"""

import re
from typing import Optional

import structlog

from residuals.models.enums import CanonicalField
from residuals.observability.metrics import fuzzy_field_matches_total
from residuals.pipeline.amount_parser import parse_count, parse_decimal
from residuals.schemas.processors import ProcessorSchema
from residuals.schemas.records import MerchantRevenueRecord

logger = structlog.get_logger(__name__)


# ─── Header Normalization ─────────────────────────────────────

def normalize_header(header: object) -> str:
    """
    Reduce a column header to a comparison key.
    "Merchant_IDs " -> "merchant id", "Sales-Amount" -> "sale amount"
    """
    h = "" if header is None else str(header)
    h = h.replace("\ufeff", "").lower().strip()
    h = re.sub(r"[_\-/]+", " ", h)
    h = re.sub(r"[^a-z0-9 ]", "", h)
    tokens = []
    for token in h.split():
        # Plural drift: "Transactions" vs "Transaction"
        if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
            token = token[:-1]
        tokens.append(token)
    return " ".join(tokens)


# ─── Generic Aliases ──────────────────────────────────────────

# Tried after the schema's own column, in this order.
FIELD_ALIASES = {
    CanonicalField.MID: ["mid", "merchant id", "merchantid", "merchant number", "account number", "dba number"],
    CanonicalField.NAME: ["dba", "merchant name", "business name", "merchant", "legal name", "name"],
    CanonicalField.REVENUE: ["net", "net income", "residual", "agent residual", "payout amount", "commission", "income", "revenue"],
    CanonicalField.VOLUME: ["sales amount", "net sales amount", "processing volume", "monthly volume", "volume", "gross sales"],
    CanonicalField.TRANSACTIONS: ["transaction", "transaction count", "net sales count", "txn count", "count"],
}


def candidate_keys(schema: ProcessorSchema, field: CanonicalField) -> list[str]:
    """Ordered, de-duplicated normalized candidates for one canonical field."""
    keys: list[str] = []
    for candidate in [schema.field_map.column_for(field), *FIELD_ALIASES[field]]:
        key = normalize_header(candidate)
        if key and key not in keys:
            keys.append(key)
    return keys


class FieldExtractor:
    """Maps raw rows onto canonical fields for one schema at a time."""

    def __init__(self):
        self._candidates: dict[tuple[str, CanonicalField], list[str]] = {}

    def _candidates_for(self, schema: ProcessorSchema, field: CanonicalField) -> list[str]:
        cache_key = (schema.name, field)
        if cache_key not in self._candidates:
            self._candidates[cache_key] = candidate_keys(schema, field)
        return self._candidates[cache_key]

    def resolve_column(
        self,
        raw: dict[str, object],
        schema: ProcessorSchema,
        field: CanonicalField,
    ) -> tuple[Optional[str], bool]:
        """
        Find the raw column holding a canonical field.
        Returns (column, is_fuzzy); column is None when nothing matches.
        """
        exact = schema.field_map.column_for(field)
        if exact in raw:
            return exact, False

        normalized: dict[str, str] = {}
        for column in raw:
            normalized.setdefault(normalize_header(column), column)

        for key in self._candidates_for(schema, field):
            if key in normalized:
                return normalized[key], True
        return None, False

    def extract(
        self,
        raw: dict[str, object],
        schema: ProcessorSchema,
        month: str,
        row_number: Optional[int] = None,
    ) -> MerchantRevenueRecord:
        values: dict[CanonicalField, object] = {}
        fuzzy: dict[str, str] = {}

        for field in CanonicalField:
            column, is_fuzzy = self.resolve_column(raw, schema, field)
            if column is None:
                values[field] = None
                continue
            values[field] = raw.get(column)
            if is_fuzzy:
                fuzzy[field.value] = column
                fuzzy_field_matches_total.labels(processor=schema.name, field=field.value).inc()
                logger.info(
                    "fuzzy_field_match",
                    processor=schema.name,
                    field=field.value,
                    expected=schema.field_map.column_for(field),
                    matched=column,
                    row=row_number,
                )

        mid = _clean_text(values[CanonicalField.MID])
        return MerchantRevenueRecord(
            mid=mid or None,
            name=_clean_text(values[CanonicalField.NAME]),
            revenue=parse_decimal(values[CanonicalField.REVENUE]),
            volume=parse_decimal(values[CanonicalField.VOLUME]),
            transactions=parse_count(values[CanonicalField.TRANSACTIONS]),
            processor=schema.name,
            month=month,
            row_number=row_number,
            fuzzy_fields=fuzzy,
        )


def _clean_text(value: object) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    # Spreadsheet MIDs read as floats: "123456.0"
    if re.fullmatch(r"\d+\.0+", text):
        text = text.split(".")[0]
    return text
