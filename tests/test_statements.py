"""Tests for statement intake - choosing text vs. media input per file type."""

from __future__ import annotations

from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import Workbook

from ledger_service.errors import UnsupportedInputError
from ledger_service.extraction import StatementMedia, StatementText
from ledger_service.ingestion import prepare_statement_input
from ledger_service.ingestion.statements import looks_like_html, workbook_to_csv

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
HTML_TABLE = b"<html><body><table><tr><th>Date</th><th>Description</th><th>Debit</th></tr></table></body></html>"


def make_workbook_bytes() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Meezan Bank Statement"])
    sheet.append([])
    sheet.append(["Date", "Description", "Debit", "Credit", "Balance"])
    sheet.append([datetime(2024, 1, 5), "PTCL BILL", 2200, None, 47800])
    sheet.append([datetime(2024, 1, 6), "SALARY", None, 150000, 197800])
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestPrepareStatementInput:
    def test_csv_is_passed_as_text(self):
        prepared = prepare_statement_input("statement.csv", "text/csv", b"Date,Description,Debit\n2024-01-05,PTCL,2200\n")

        assert isinstance(prepared, StatementText)
        assert "PTCL" in prepared.text

    def test_csv_with_bom_is_decoded(self):
        prepared = prepare_statement_input("statement.csv", None, b"\xef\xbb\xbfDate,Description\n")

        assert isinstance(prepared, StatementText)
        assert prepared.text.startswith("Date")

    def test_legacy_encoded_csv_is_decoded_as_latin1(self):
        prepared = prepare_statement_input("statement.csv", "text/csv", b"Date,Description,Debit\n2024-01-05,CAF\xc9 BARISTA,450\n")

        assert isinstance(prepared, StatementText)
        assert "CAF\u00c9 BARISTA" in prepared.text

    def test_html_is_passed_as_text(self):
        prepared = prepare_statement_input("statement.html", "text/html", HTML_TABLE)

        assert isinstance(prepared, StatementText)
        assert "<table>" in prepared.text

    def test_html_disguised_as_xls_is_passed_as_text(self):
        prepared = prepare_statement_input("statement.xls", "application/vnd.ms-excel", HTML_TABLE)

        assert isinstance(prepared, StatementText)
        assert "<table>" in prepared.text

    def test_xlsx_is_converted_to_csv_text(self):
        prepared = prepare_statement_input("statement.xlsx", XLSX_TYPE, make_workbook_bytes())

        assert isinstance(prepared, StatementText)
        lines = prepared.text.splitlines()
        assert lines[0].startswith("Meezan Bank Statement")
        assert "Date,Description,Debit,Credit,Balance" in lines
        assert "2024-01-05,PTCL BILL,2200,,47800" in lines

    def test_unreadable_spreadsheet_is_rejected(self):
        with pytest.raises(UnsupportedInputError):
            prepare_statement_input("statement.xlsx", XLSX_TYPE, b"definitely not a workbook")

    def test_image_becomes_media(self):
        prepared = prepare_statement_input("scan.png", "image/png", b"\x89PNG")

        assert isinstance(prepared, StatementMedia)
        assert prepared.data_uri.startswith("data:image/png;base64,")

    def test_image_type_is_inferred_from_extension(self):
        prepared = prepare_statement_input("scan.jpg", "", b"\xff\xd8")

        assert isinstance(prepared, StatementMedia)
        assert prepared.data_uri.startswith("data:image/jpeg;base64,")

    def test_pdf_becomes_media(self):
        prepared = prepare_statement_input("statement.pdf", "application/pdf", b"%PDF-1.4 ...")

        assert isinstance(prepared, StatementMedia)
        assert prepared.data_uri.startswith("data:application/pdf;base64,")

    def test_pdf_containing_html_is_passed_as_text(self):
        prepared = prepare_statement_input("statement.pdf", "application/pdf", b"  <!DOCTYPE html>" + HTML_TABLE)

        assert isinstance(prepared, StatementText)

    def test_unsupported_type_is_rejected(self):
        with pytest.raises(UnsupportedInputError):
            prepare_statement_input("statement.docx", "application/msword", b"...")


def test_workbook_to_csv_skips_blank_rows():
    text = workbook_to_csv(make_workbook_bytes())

    assert "" not in text.splitlines()


def test_looks_like_html_ignores_leading_whitespace():
    assert looks_like_html(b"\n  <HTML>")
    assert not looks_like_html(b"%PDF-1.7")
