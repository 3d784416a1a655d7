"""Pure types for statement ingestion."""

from trust_ingestion.domain.types import ColumnMap, ParseResult

__all__ = ["ColumnMap", "ParseResult"]
