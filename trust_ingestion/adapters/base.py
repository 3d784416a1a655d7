"""
Statement adapter protocol.

Contract:
    StatementAdapter.read() parses one source file into a ParseResult.
    Adapters never touch the database.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from trust_ingestion.domain.types import ParseResult


@runtime_checkable
class StatementAdapter(Protocol):
    """Protocol for reading a bank statement into normalized rows."""

    def read(self, source_path: Path, options: dict[str, Any] | None = None) -> ParseResult:
        ...
