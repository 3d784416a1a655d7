"""
Tests for StatementRow.from_mapping.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from trust_kernel.domain.statement import StatementRow
from trust_kernel.exceptions import ValidationFailedError


class TestFromMapping:

    def test_full_row(self):
        row = StatementRow.from_mapping(
            {
                "date": "2024-03-01",
                "amount": "$1,250.00",
                "description": "  Wire in ",
                "reference": "",
                "payee": None,
                "type": "DEPOSIT",
            },
            row_number=4,
        )
        assert row.row_number == 4
        assert row.transaction_date == date(2024, 3, 1)
        assert row.amount == Decimal("1250.00")
        assert row.description == "Wire in"
        assert row.reference is None
        assert row.payee is None
        assert row.raw_type == "DEPOSIT"
        assert "payee" not in row.raw

    def test_alternate_keys(self):
        row = StatementRow.from_mapping(
            {"transaction_date": date(2024, 3, 2), "amount": -5, "reference_number": 1001},
            row_number=1,
        )
        assert row.transaction_date == date(2024, 3, 2)
        assert row.amount == Decimal("-5")
        assert row.reference == "1001"

    def test_datetime_is_truncated(self):
        row = StatementRow.from_mapping(
            {"date": datetime(2024, 3, 3, 17, 45), "amount": "1"}, row_number=1,
        )
        assert row.transaction_date == date(2024, 3, 3)

    @pytest.mark.parametrize(
        "data",
        [
            {"amount": "1.00"},
            {"date": "03/04/2024", "amount": "1.00"},
            {"date": "2024-03-04"},
            {"date": "2024-03-04", "amount": "twelve"},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ValidationFailedError):
            StatementRow.from_mapping(data, row_number=1)
