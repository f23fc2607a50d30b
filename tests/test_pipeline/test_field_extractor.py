"""
Tests for mapping raw rows onto canonical fields.
"""

from decimal import Decimal

import pytest

from residuals.models.enums import CanonicalField
from residuals.pipeline.field_extractor import FieldExtractor, candidate_keys, normalize_header


@pytest.fixture
def extractor():
    return FieldExtractor()


class TestNormalizeHeader:

    def test_case_and_whitespace(self):
        assert normalize_header("  Merchant ID ") == "merchant id"

    def test_separators(self):
        assert normalize_header("merchant_id") == "merchant id"
        assert normalize_header("Sales-Amount") == "sale amount"

    def test_plurals(self):
        assert normalize_header("Transactions") == normalize_header("Transaction")
        assert normalize_header("Gross") == "gross"

    def test_byte_order_mark(self):
        assert normalize_header("\ufeffMerchant ID") == "merchant id"

    def test_none(self):
        assert normalize_header(None) == ""


class TestCandidates:

    def test_schema_column_comes_first(self, trx):
        keys = candidate_keys(trx, CanonicalField.REVENUE)
        assert keys[0] == "agent residual"
        assert keys.count("agent residual") == 1


class TestExtract:

    def test_exact_columns(self, extractor, clearent):
        raw = {
            "Merchant ID": "M00001",
            "Merchant": "Blu Sushi",
            "Transactions": "2,521",
            "Sales Amount": "$90,000.00",
            "Net": "2178.82",
        }
        record = extractor.extract(raw, clearent, "2025-04", row_number=2)
        assert record.mid == "M00001"
        assert record.name == "Blu Sushi"
        assert record.revenue == Decimal("2178.82")
        assert record.volume == Decimal("90000.00")
        assert record.transactions == 2521
        assert record.processor == "Clearent"
        assert record.row_number == 2
        assert record.fuzzy_fields == {}

    def test_fuzzy_columns_recorded(self, extractor, clearent):
        raw = {
            "Merchant ID": "M00001",
            "Merchant": "Blu Sushi",
            "Transaction": "10",
            "Sales Amount": "500",
            "Net ": "25.00",
        }
        record = extractor.extract(raw, clearent, "2025-04")
        assert record.revenue == Decimal("25.00")
        assert record.transactions == 10
        assert record.fuzzy_fields == {"revenue": "Net ", "transactions": "Transaction"}

    def test_trx_volume_never_read_as_revenue(self, extractor, trx):
        raw = {
            "Client": "M00002",
            "Dba": "Low Key Fisheries",
            "Net Sales Amount": "600000",
            "Net Sales Count": "300",
        }
        record = extractor.extract(raw, trx, "2025-04")
        assert record.revenue == Decimal("0")
        assert record.volume == Decimal("600000")

    def test_spreadsheet_float_mid(self, extractor, trx):
        raw = {"Client": "123456.0", "Dba": "X", "Agent Residual": "1", "Net Sales Amount": "1",
               "Net Sales Count": "1"}
        assert extractor.extract(raw, trx, "2025-04").mid == "123456"

    def test_missing_values_default(self, extractor, clearent):
        record = extractor.extract({"Merchant": "No Id"}, clearent, "2025-04", row_number=7)
        assert record.mid is None
        assert record.revenue == Decimal("0")
        assert record.transactions == 0
        assert record.subject == "No Id"
