"""
Tests for StatementImportService: parse a bank file and stage it.
"""

from decimal import Decimal

import pytest

from trust_ingestion.services.statement_import import StatementImportService
from trust_kernel.exceptions import ValidationFailedError
from trust_kernel.models.staging import StagingRecord, StagingStatus

STATEMENT = (
    "Chase Business Checking\n"
    "Date,Description,Amount,Check #\n"
    "01/02/2024,Retainer - Alpha,5000.00,\n"
    "01/05/2024,Check 1001,-250.00,1001\n"
    "01/06/2024,garbage,abc,\n"
    "01/07/2024,Zero line,0.00,\n"
    "01/08/2024,Check 1001 again,-250.00,1001\n"
)


@pytest.fixture
def importer(services):
    return StatementImportService(services.staging)


class TestImportFile:

    def test_stages_rows(self, importer, session, ctx, iolta_account, tmp_path, captured_logs):
        path = tmp_path / "jan.csv"
        path.write_text(STATEMENT, encoding="utf-8")

        result = importer.import_file(iolta_account.id, path, ctx)

        assert result.imported == 2
        assert result.duplicates == 1
        assert result.skipped == 1
        assert [e.row_number for e in result.errors] == [5]

        records = [session.get(StagingRecord, sid) for sid in result.staging_ids]
        assert all(r.status == StagingStatus.UNASSIGNED for r in records)
        assert all(r.import_batch_id == result.batch_id for r in records)
        assert records[1].reference_number == "1001"
        assert records[1].amount == Decimal("-250.00")
        assert records[1].source_row == 4

        messages = [r["message"] for r in captured_logs()]
        assert "statement_imported" in messages
        assert "staging_batch_imported" in messages

    def test_unrecognized_file(self, importer, ctx, iolta_account, tmp_path):
        path = tmp_path / "junk.csv"
        path.write_text("a,b\n1,2\n", encoding="utf-8")
        with pytest.raises(ValidationFailedError):
            importer.import_file(iolta_account.id, path, ctx)

    def test_reimport_is_all_duplicates_for_referenced_rows(
        self, importer, ctx, iolta_account, tmp_path,
    ):
        path = tmp_path / "jan.csv"
        path.write_text(STATEMENT, encoding="utf-8")
        importer.import_file(iolta_account.id, path, ctx)

        second = importer.import_file(iolta_account.id, path, ctx)

        # The unreferenced deposit has no dedup key and is staged again
        assert second.imported == 1
        assert second.duplicates == 2
