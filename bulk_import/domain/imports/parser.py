"""
File parser: turns an uploaded byte buffer into canonical parsed rows.

Delimited text, spreadsheets and JSON exports all come out as the same
shape: one ``ParsedRow`` per record with column -> raw value mappings, the
header list the row was read against, and any per-row anomalies. A file that
cannot be read at all yields ``success=False`` and no rows; nothing
downstream runs on it.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from bulk_import.core.config import settings
from bulk_import.domain.imports.literals import normalize_literal
from bulk_import.domain.imports.processors.csv_processor import read_csv_rows, read_excel_rows
from bulk_import.domain.imports.processors.json_processor import process_json

logger = logging.getLogger(__name__)

_INDEXED_COLUMN = re.compile(r"^(?P<name>.+)\[(?P<index>\d+)\]$")
_EXTENSION_TYPES = {
    ".csv": "csv",
    ".tsv": "csv",
    ".txt": "csv",
    ".xlsx": "excel",
    ".xlsm": "excel",
    ".json": "json",
}
# Legacy BIFF workbooks; openpyxl only reads the XML formats
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"


@dataclass(frozen=True)
class ParsedRow:
    row_index: int
    raw_values: Dict[str, Any]
    source_headers: Tuple[str, ...]
    warnings: Tuple[str, ...] = ()
    low_confidence_fields: FrozenSet[str] = frozenset()


@dataclass
class ParseResult:
    success: bool
    file_name: str
    file_type: str
    rows: List[ParsedRow] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


class FileParseError(ValueError):
    """Fatal parse failure; carries the failed ParseResult for reporting."""

    def __init__(self, result: ParseResult):
        self.result = result
        super().__init__("; ".join(result.errors) or "Failed to parse file")


def clean_header(header: Any, position: int) -> str:
    """
    Clean a header cell while preserving ``[n]`` and dotted notation.

    "  First Name " -> "First_Name", "goals.calories" stays, "tags[0]" stays,
    blank headers become ``column_<position>``.
    """
    text = "" if header is None else str(header).strip()
    text = re.sub(r"\s+", "_", text)
    text = re.sub(r"[^A-Za-z0-9_\[\]\.]", "", text)
    return text or f"column_{position}"


def _dedupe_headers(headers: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    result = []
    for header in headers:
        count = seen.get(header, 0) + 1
        seen[header] = count
        result.append(header if count == 1 else f"{header}_{count}")
    return result


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _set_nested(target: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = target
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def fold_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fold flattened export columns back into structure.

    ``tags[0]``, ``tags[1]`` become one ``tags`` list (empty slots dropped,
    index order kept); ``goals.calories``, ``goals.protein`` become a
    ``goals`` mapping.
    """
    result: Dict[str, Any] = {}
    indexed: Dict[str, Dict[int, Any]] = {}

    for key, value in values.items():
        match = _INDEXED_COLUMN.match(key)
        if match:
            indexed.setdefault(match.group("name"), {})[int(match.group("index"))] = value
            continue
        if "." in key:
            root, rest = key.split(".", 1)
            target = result.get(root)
            if target is None:
                target = result[root] = {}
            if isinstance(target, dict):
                _set_nested(target, rest, value)
            else:
                result[key] = value
            continue
        if isinstance(result.get(key), dict) and _is_empty(value):
            continue
        result[key] = value

    for name, items in indexed.items():
        result[name] = [items[i] for i in sorted(items) if not _is_empty(items[i])]

    return result


def _normalize_cell(value: Any) -> Tuple[Any, bool]:
    """Trim strings and repair container literals; return (value, low_confidence)."""
    if not isinstance(value, str):
        return value, False
    literal = normalize_literal(value.strip())
    return literal.value, literal.low_confidence


class FileParser:
    """Format-neutral reader for uploaded import files."""

    def __init__(self, max_file_size_mb: Optional[int] = None, skip_empty_rows: bool = True):
        self.max_file_size_mb = max_file_size_mb if max_file_size_mb is not None else settings.upload_max_file_size_mb
        self.skip_empty_rows = skip_empty_rows

    def detect_file_type(self, file_name: str, file_content: bytes) -> str:
        extension = PurePath(file_name or "").suffix.lower()
        if extension in _EXTENSION_TYPES:
            return _EXTENSION_TYPES[extension]
        # Unknown extension: sniff the content
        if file_content[:4] == b"PK\x03\x04" or file_content[:4] == _OLE_MAGIC:
            return "excel"
        head = file_content.lstrip()[:1]
        if head in (b"[", b"{"):
            return "json"
        return "csv"

    def parse(self, file_content: bytes, file_name: str) -> ParseResult:
        """
        Parse an uploaded file into rows.

        Returns:
            ParseResult; ``success`` is False for fatal problems (empty,
            oversize, unreadable or headerless input) and ``rows`` is then empty.
        """
        file_type = self.detect_file_type(file_name, file_content or b"")
        result = ParseResult(success=False, file_name=file_name, file_type=file_type)

        if not file_content or not file_content.strip():
            result.errors.append("File is empty")
            return result

        if PurePath(file_name or "").suffix.lower() == ".xls" or file_content[:4] == _OLE_MAGIC:
            result.errors.append("Legacy .xls workbooks are not supported; save the sheet as .xlsx and upload it again")
            return result

        max_bytes = self.max_file_size_mb * 1024 * 1024
        if len(file_content) > max_bytes:
            result.errors.append(f"File exceeds the {self.max_file_size_mb} MB upload limit")
            return result

        try:
            if file_type == "json":
                self._parse_json(file_content, result)
            else:
                raw_rows = read_excel_rows(file_content) if file_type == "excel" else read_csv_rows(file_content)
                self._parse_tabular(raw_rows, result)
        except ValueError as exc:
            logger.warning("Failed to parse '%s' as %s: %s", file_name, file_type, exc)
            result.rows = []
            result.errors.append(f"Failed to parse file: {exc}")
            return result

        if result.errors:
            result.rows = []
            return result

        result.success = True
        logger.info(
            "Parsed '%s' (%s): %d rows, %d headers, %d warnings",
            file_name,
            file_type,
            result.total_rows,
            len(result.headers),
            len(result.warnings),
        )
        return result

    def _build_row(
        self,
        row_index: int,
        values: Dict[str, Any],
        headers: Tuple[str, ...],
        warnings: List[str],
    ) -> Optional[ParsedRow]:
        normalized: Dict[str, Any] = {}
        low_confidence = set()
        for column, value in values.items():
            normalized[column], flagged = _normalize_cell(value)
            if flagged:
                low_confidence.add(column)

        if self.skip_empty_rows and all(_is_empty(v) for v in normalized.values()):
            return None

        return ParsedRow(
            row_index=row_index,
            raw_values=fold_columns(normalized),
            source_headers=headers,
            warnings=tuple(warnings),
            low_confidence_fields=frozenset(low_confidence),
        )

    def _parse_tabular(self, raw_rows: List[List[Any]], result: ParseResult) -> None:
        # Row numbers follow the file, counting blank lines and the header
        numbered = [
            (row_number, cells)
            for row_number, cells in enumerate(raw_rows, start=1)
            if cells and not (self.skip_empty_rows and all(_is_empty(v) for v in cells))
        ]
        header_position = next(
            (i for i, (_, cells) in enumerate(numbered) if any(not _is_empty(v) for v in cells)), None
        )
        if header_position is None:
            result.errors.append("No header row found in the file")
            return

        header_cells = list(numbered[header_position][1])
        # Spreadsheets pad rows with empty cells past the last real column
        while header_cells and _is_empty(header_cells[-1]):
            header_cells.pop()
        headers = _dedupe_headers([clean_header(h, i) for i, h in enumerate(header_cells)])
        header_tuple = tuple(headers)
        result.headers = headers
        width = len(headers)

        for row_number, cells in numbered[header_position + 1 :]:
            row_warnings: List[str] = []
            if len(cells) > width:
                overflow = cells[width:]
                if any(not _is_empty(v) for v in overflow):
                    row_warnings.append(
                        f"Row {row_number} has {len(overflow)} value(s) beyond the {width} header columns; "
                        "extra values were dropped"
                    )
                cells = cells[:width]
            elif len(cells) < width:
                row_warnings.append(
                    f"Row {row_number} has {len(cells)} of {width} columns; missing values were treated as empty"
                )
                cells = list(cells) + [""] * (width - len(cells))

            values = dict(zip(headers, cells))
            row = self._build_row(row_number, values, header_tuple, row_warnings)
            if row is not None:
                result.rows.append(row)
                result.warnings.extend(row_warnings)

    def _parse_json(self, file_content: bytes, result: ParseResult) -> None:
        records = process_json(file_content)
        headers: Dict[str, None] = {}

        for position, item in enumerate(records, start=1):
            if not isinstance(item, dict):
                result.warnings.append(f"Record {position} is not an object and was skipped")
                continue
            values = {str(key): value for key, value in item.items()}
            headers.update(dict.fromkeys(values))
            row = self._build_row(position, values, tuple(values), [])
            if row is not None:
                result.rows.append(row)

        result.headers = list(headers)
