"""
Statement import: parse -> stage.

Parses a bank file with a StatementAdapter and hands the rows to
``StagingService.import_batch``.  Parse errors and staging errors are
reported together, keyed by source line.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any
from uuid import UUID

from trust_kernel.domain.context import RequestContext
from trust_kernel.domain.dtos import ImportResult
from trust_kernel.logging_config import LogContext, get_logger
from trust_kernel.services.staging_service import StagingService

from trust_ingestion.adapters.base import StatementAdapter
from trust_ingestion.adapters.csv_adapter import BankCsvAdapter

logger = get_logger("ingestion.statement_import")


class StatementImportService:

    def __init__(self, staging: StagingService, adapter: StatementAdapter | None = None):
        self._staging = staging
        self._adapter = adapter or BankCsvAdapter()

    def import_file(
        self,
        account_id: UUID,
        source_path: Path,
        ctx: RequestContext,
        options: dict[str, Any] | None = None,
    ) -> ImportResult:
        """
        Parse ``source_path`` and stage its rows on ``account_id``.

        Raises:
            ValidationFailedError: the file has no recognizable header.
            AccountNotFoundError, NotTrustAccountError
        """
        with LogContext.bind(**ctx.log_fields()):
            parsed = self._adapter.read(Path(source_path), options)
            result = self._staging.import_batch(account_id, parsed.rows, ctx)
            errors = tuple(sorted(
                parsed.errors + result.errors, key=lambda e: e.row_number,
            ))
            logger.info(
                "statement_imported",
                extra={
                    "source": str(source_path),
                    "batch_id": result.batch_id,
                    "imported": result.imported,
                    "duplicates": result.duplicates,
                    "errors": len(errors),
                },
            )
        return replace(result, errors=errors)
