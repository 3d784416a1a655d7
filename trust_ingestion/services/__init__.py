"""Ingestion services: parse a statement and stage it."""

from trust_ingestion.services.statement_import import StatementImportService

__all__ = ["StatementImportService"]
