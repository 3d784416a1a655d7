"""
Bank CSV adapter.

Uses csv.reader.  Detects the header row among the first few lines (banks
often prepend account banners), maps its columns through known aliases,
and normalizes each data row into a ``StatementRow``.

Header handling:
    - BOM stripped via utf-8-sig when the encoding is utf-8.
    - Headers are lower-cased and whitespace-collapsed before lookup.
    - A statement needs a date column plus either an amount column or
      separate debit/credit columns.  Debit values are negated, credit
      values kept positive.

Rows that fail to parse become ``RowError`` values; the rest of the file
still parses.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any

from trust_kernel.domain.dtos import RowError
from trust_kernel.domain.money import ZERO, to_money
from trust_kernel.domain.statement import StatementRow
from trust_kernel.exceptions import ValidationFailedError
from trust_kernel.logging_config import get_logger

from trust_ingestion.domain.types import ColumnMap, ParseResult

logger = get_logger("ingestion.csv_adapter")

HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": (
        "date", "transaction_date", "transaction date", "trans_date", "trans date",
        "posting date", "post date", "posted date", "effective date", "value date",
        "settlement date", "trade date", "process date", "processed date",
    ),
    "amount": (
        "amount", "amt", "transaction amount", "trans amount", "net amount",
        "total", "sum",
    ),
    "debit": ("debit", "withdrawal", "withdrawals", "debit amount", "money out"),
    "credit": ("credit", "deposit", "deposits", "credit amount", "money in"),
    "description": (
        "description", "desc", "memo", "details", "transaction description",
        "narrative", "particulars", "remarks", "note", "notes", "name",
    ),
    "type": ("type", "transaction_type", "transaction type", "trans_type", "category",
             "transaction category"),
    "reference": (
        "reference", "reference_number", "reference number", "ref", "check_number",
        "check #", "check#", "check number", "check no", "confirmation",
        "confirmation number", "transaction id", "trans id",
    ),
    "payee": ("payee", "vendor", "recipient", "merchant", "merchant name"),
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%d-%b-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%m.%d.%Y",
)

_HEADER_SCAN_ROWS = 10


def normalize_header(header: str | None) -> str:
    return " ".join((header or "").replace("\ufeff", "").lower().split())


def detect_columns(headers: Sequence[str]) -> ColumnMap | None:
    """Map source headers to statement fields; None if date or amount is missing."""
    normalized = [(normalize_header(h), h) for h in headers]
    found: dict[str, str] = {}
    for field, aliases in HEADER_ALIASES.items():
        for norm, original in normalized:
            if norm in aliases and original not in found.values():
                found[field] = original
                break

    if "date" not in found:
        return None
    column_map = ColumnMap(**found)
    return column_map if column_map.has_amount else None


def parse_date(value: str) -> date:
    text = (value or "").strip()
    if not text:
        raise ValidationFailedError("date", "missing date")
    # Some banks append a time to the posting date
    candidates = (text, text.split(" ")[0], text.split("T")[0])
    for candidate in candidates:
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    raise ValidationFailedError("date", f"invalid date {value!r}")


def _cell(record: dict[str, str], column: str | None) -> str | None:
    if column is None:
        return None
    text = (record.get(column) or "").strip()
    return text or None


def _amount(record: dict[str, str], column_map: ColumnMap):
    amount = _cell(record, column_map.amount)
    if amount is not None:
        return to_money(amount)
    debit = _cell(record, column_map.debit)
    credit = _cell(record, column_map.credit)
    if debit is None and credit is None:
        raise ValidationFailedError("amount", "missing amount")
    value = ZERO
    if credit is not None:
        value += abs(to_money(credit, "credit"))
    if debit is not None:
        value -= abs(to_money(debit, "debit"))
    return value


class BankCsvAdapter:
    """Parse bank CSV exports into normalized statement rows."""

    def read(self, source_path: Path, options: dict[str, Any] | None = None) -> ParseResult:
        options = options or {}
        encoding = options.get("encoding", "utf-8")
        if encoding.lower() == "utf-8":
            encoding = "utf-8-sig"  # Strip BOM if present
        with Path(source_path).open("r", encoding=encoding, newline="") as f:
            result = self.parse_lines(f, options)
        logger.info(
            "statement_file_parsed",
            extra={
                "source": str(source_path),
                "rows": len(result.rows),
                "errors": len(result.errors),
            },
        )
        return result

    def parse_text(self, text: str, options: dict[str, Any] | None = None) -> ParseResult:
        return self.parse_lines(io.StringIO(text.lstrip("\ufeff")), options)

    def parse_lines(
        self,
        lines: Iterable[str],
        options: dict[str, Any] | None = None,
    ) -> ParseResult:
        """
        Parse CSV lines.

        Raises:
            ValidationFailedError: no header row with a date and an amount
                column was found.
        """
        options = options or {}
        reader = csv.reader(lines, delimiter=options.get("delimiter", ","))
        scan_rows = int(options.get("header_scan_rows", _HEADER_SCAN_ROWS))

        column_map: ColumnMap | None = None
        headers: list[str] = []
        header_row = 0
        for line_number, cells in enumerate(reader, start=1):
            if line_number > scan_rows:
                break
            column_map = detect_columns(cells)
            if column_map is not None:
                headers, header_row = cells, line_number
                break
        if column_map is None:
            raise ValidationFailedError(
                "header", "no header row with date and amount columns found",
            )

        rows: list[StatementRow] = []
        errors: list[RowError] = []
        for line_number, cells in enumerate(reader, start=header_row + 1):
            if not any(c.strip() for c in cells):
                continue
            record = dict(zip(headers, cells))
            try:
                rows.append(StatementRow(
                    row_number=line_number,
                    transaction_date=parse_date(record.get(column_map.date, "")),
                    amount=_amount(record, column_map),
                    description=_cell(record, column_map.description),
                    reference=_cell(record, column_map.reference),
                    payee=_cell(record, column_map.payee),
                    raw_type=_cell(record, column_map.type),
                    raw={k: v for k, v in record.items() if k},
                ))
            except ValidationFailedError as exc:
                errors.append(RowError(row_number=line_number, message=str(exc)))

        if errors:
            logger.warning(
                "statement_rows_rejected",
                extra={"errors": len(errors), "first_row": errors[0].row_number},
            )
        return ParseResult(
            rows=tuple(rows),
            errors=tuple(errors),
            column_map=column_map,
            header_row=header_row,
        )
