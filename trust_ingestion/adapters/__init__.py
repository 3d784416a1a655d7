"""Statement source adapters (file I/O only, no DB)."""

from trust_ingestion.adapters.base import StatementAdapter
from trust_ingestion.adapters.csv_adapter import BankCsvAdapter

__all__ = [
    "BankCsvAdapter",
    "StatementAdapter",
]
