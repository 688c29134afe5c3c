from __future__ import annotations

import csv
import logging
import zipfile
from datetime import date, datetime
from io import BytesIO, StringIO
from pathlib import PurePosixPath

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import UnsupportedInputError
from ..extraction import StatementInput, StatementMedia, StatementText
from .media import to_data_uri

logger = logging.getLogger(__name__)

HTML_PREFIXES = ("<!doctype html", "<html")
SPREADSHEET_MARKERS = ("sheet", "excel")


def _decode_bytes(file_bytes: bytes) -> str:
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        # latin-1 maps every byte, so legacy bank exports always decode.
        return file_bytes.decode("latin-1")


def looks_like_html(file_bytes: bytes) -> bool:
    head = _decode_bytes(file_bytes[:1024]).lstrip().lower()
    return head.startswith(HTML_PREFIXES)


def workbook_to_csv(file_bytes: bytes) -> str:
    """Render the active worksheet of an XLSX workbook as CSV text."""

    try:
        workbook = load_workbook(BytesIO(file_bytes), data_only=True, read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise UnsupportedInputError("Spreadsheet could not be read; export it as XLSX or CSV") from exc

    try:
        sheet = workbook.active
        buffer = StringIO()
        writer = csv.writer(buffer)
        for row in sheet.iter_rows(values_only=True):
            if row is None or all(value is None or str(value).strip() == "" for value in row):
                continue
            writer.writerow([_cell_text(value) for value in row])
    finally:
        workbook.close()
    return buffer.getvalue()


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def prepare_statement_input(name: str, content_type: str | None, file_bytes: bytes) -> StatementInput:
    """
    Choose the extraction input shape for a statement file.

    HTML and CSV are passed as text and spreadsheets are converted to CSV text.
    Images and PDFs become data URIs, except PDFs whose content is actually
    an HTML export.
    """

    file_type = (content_type or "").split(";", 1)[0].strip().lower()
    extension = PurePosixPath(name.lower()).suffix

    if file_type == "text/html" or extension in (".html", ".htm"):
        prepared: StatementInput = StatementText(_decode_bytes(file_bytes))
    elif file_type == "text/csv" or extension == ".csv":
        prepared = StatementText(_decode_bytes(file_bytes))
    elif any(marker in file_type for marker in SPREADSHEET_MARKERS) or extension in (".xls", ".xlsx"):
        # Many banks export an HTML table with an .xls extension.
        if looks_like_html(file_bytes):
            prepared = StatementText(_decode_bytes(file_bytes))
        else:
            prepared = StatementText(workbook_to_csv(file_bytes))
    elif file_type.startswith("image/") or extension in (".jpg", ".jpeg", ".png"):
        image_type = file_type if file_type.startswith("image/") else ("image/png" if extension == ".png" else "image/jpeg")
        prepared = StatementMedia(to_data_uri(file_bytes, image_type))
    elif file_type == "application/pdf" or extension == ".pdf":
        if looks_like_html(file_bytes):
            prepared = StatementText(_decode_bytes(file_bytes))
        else:
            prepared = StatementMedia(to_data_uri(file_bytes, "application/pdf"))
    else:
        raise UnsupportedInputError(f"Statement type for '{name}' is not supported. Upload PDF, CSV, Excel, HTML, or image files.")

    logger.info(
        {
            "event": "statement_input_prepared",
            "input_kind": "media" if isinstance(prepared, StatementMedia) else "text",
            "extension": extension or None,
            "byte_count": len(file_bytes),
        }
    )
    return prepared
