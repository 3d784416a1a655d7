"""
Normalized bank statement rows -- the shape the staging queue consumes.

``trust_ingestion`` turns heterogeneous CSV exports into ``StatementRow``
values; the staging queue also accepts plain mappings with the same keys
(``date``, ``amount``, ``description``, ``reference``, ``payee``, ``type``)
and normalizes them with ``StatementRow.from_mapping``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from trust_kernel.domain.money import to_money
from trust_kernel.exceptions import ValidationFailedError


@dataclass(frozen=True)
class StatementRow:
    row_number: int
    transaction_date: date
    amount: Decimal
    description: str | None = None
    reference: str | None = None
    payee: str | None = None
    raw_type: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], row_number: int) -> "StatementRow":
        """
        Build a row from a mapping.

        Raises:
            ValidationFailedError: missing/invalid date or amount.
        """
        raw_date = data.get("date", data.get("transaction_date"))
        if isinstance(raw_date, datetime):
            txn_date = raw_date.date()
        elif isinstance(raw_date, date):
            txn_date = raw_date
        elif raw_date:
            try:
                txn_date = date.fromisoformat(str(raw_date).strip())
            except ValueError:
                raise ValidationFailedError("date", f"invalid date {raw_date!r}") from None
        else:
            raise ValidationFailedError("date", "missing date")

        return cls(
            row_number=row_number,
            transaction_date=txn_date,
            amount=to_money(data.get("amount")),
            description=_clean(data.get("description")),
            reference=_clean(data.get("reference", data.get("reference_number"))),
            payee=_clean(data.get("payee")),
            raw_type=_clean(data.get("type")),
            raw={k: str(v) for k, v in data.items() if v is not None},
        )


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
