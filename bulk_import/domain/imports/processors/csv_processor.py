import csv
import io
import logging
from datetime import datetime
from io import StringIO
from typing import Any, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

# Checked in order; ties go to the earlier one
DELIMITER_CANDIDATES = (",", ";", "\t", "|")


def decode_text(file_content: bytes) -> str:
    """
    Decode uploaded text, stripping a UTF-8 BOM if present.

    Raises:
        ValueError: If the bytes are not valid UTF-8 (e.g. a binary file
            uploaded with a .csv name).
    """
    try:
        return file_content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValueError(f"File is not valid UTF-8 text: {exc}") from exc


def detect_delimiter(text_content: str) -> str:
    """
    Pick the delimiter from the header line: the candidate that occurs most
    often outside double quotes, comma when none occurs.

    Only the header is inspected; data cells often hold quoted list literals
    whose commas and single quotes would mislead a whole-file sniffer.
    """
    header = next((line for line in text_content.splitlines() if line.strip()), "")
    counts = dict.fromkeys(DELIMITER_CANDIDATES, 0)
    in_quotes = False
    for ch in header:
        if ch == '"':
            in_quotes = not in_quotes
        elif not in_quotes and ch in counts:
            counts[ch] += 1
    best = max(DELIMITER_CANDIDATES, key=lambda candidate: counts[candidate])
    return best if counts[best] else ","


def read_csv_rows(file_content: bytes) -> List[List[str]]:
    """
    Read delimited text into raw rows without assuming anything about width.

    Positional parsing is kept deliberately: short and long rows are
    reconciled against the header by the file parser, which needs to see
    them as-is. Blank lines stay in as empty rows so positions match the file.

    Raises:
        ValueError: If the content cannot be decoded or tokenised.
    """
    text_content = decode_text(file_content)
    if "\x00" in text_content:
        raise ValueError("File contains NUL bytes; it does not look like delimited text")

    delimiter = detect_delimiter(text_content)
    try:
        raw_rows = list(csv.reader(StringIO(text_content), delimiter=delimiter))
    except csv.Error as exc:
        raise ValueError(f"Could not tokenise delimited text: {exc}") from exc

    logger.info("Read %d raw delimited rows", len(raw_rows))
    return raw_rows


def _excel_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, pd.Timestamp):
        return "" if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        # Spreadsheets store whole numbers as floats; 840.0 should read as 840
        if value.is_integer():
            return int(value)
    return value


def read_excel_rows(file_content: bytes, sheet_name: Optional[Union[str, int]] = 0) -> List[List[Any]]:
    """
    Read one worksheet (the first by default) into raw rows.

    Cells keep their native types (numbers, datetimes, booleans) and empty
    cells become empty strings. Empty rows are kept so positions match the
    sheet.

    Raises:
        ValueError: If the workbook cannot be opened.
    """
    try:
        df = pd.read_excel(
            io.BytesIO(file_content),
            sheet_name=sheet_name,
            header=None,
            dtype=object,
            engine="openpyxl",
        )
    except Exception as exc:
        # openpyxl raises zipfile/KeyError/InvalidFileException variants for corrupt files
        raise ValueError(f"Could not read Excel file: {exc}") from exc

    rows = [[_excel_cell(value) for value in record] for record in df.itertuples(index=False, name=None)]

    logger.info("Read %d raw spreadsheet rows", len(rows))
    return rows
