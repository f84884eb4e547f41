"""
Export files and import templates.

Exports flatten documents back into the column notation the parser reads
(``goals.calories`` for nested values, ``tags[0]`` for scalar lists), so an
exported file can be corrected and uploaded again as-is.
"""

import csv
import json
from dataclasses import dataclass
from datetime import date
from io import StringIO
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bulk_import.domain.imports.catalog import FieldType, RecordTypeDescriptor
from bulk_import.domain.imports.validation import ValidationResult
from bulk_import.utils.serialization import make_json_safe

SAMPLE_OBJECT_ID = "507f1f77bcf86cd799439011"
UNMATCHED_EXPORT = "Unmatched"

# Template example values that pass the matching format preset
FORMAT_EXAMPLES = {
    "email": "user@example.com",
    "phone": "+1 555 010 0000",
    "phone_international": "+15550100000",
    "object_id": SAMPLE_OBJECT_ID,
    "uuid": "123e4567-e89b-12d3-a456-426614174000",
    "url": "https://example.com",
    "domain": "example.com",
    "slug": "example-slug",
    "date_iso": "2024-01-31",
    "time_24h": "09:30",
    "hex_color": "#336699",
}


@dataclass
class ExportFile:
    model_name: str
    file_name: str
    csv_content: str
    json_content: str
    row_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "file_name": self.file_name,
            "row_count": self.row_count,
            "csv_content": self.csv_content,
            "json_content": self.json_content,
        }


@dataclass
class ImportTemplate:
    model_name: str
    headers: List[str]
    example_row: Dict[str, Any]
    csv_template: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "headers": self.headers,
            "example_row": self.example_row,
            "csv_template": self.csv_template,
        }


def flatten_document(document: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in document.items():
        column = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(flatten_document(value, prefix=f"{column}."))
        elif isinstance(value, list) and all(not isinstance(item, (Mapping, list)) for item in value):
            for position, item in enumerate(value):
                flat[f"{column}[{position}]"] = item
        elif isinstance(value, list):
            flat[column] = json.dumps(make_json_safe(value), ensure_ascii=False)
        else:
            flat[column] = value
    return flat


def _csv_cell(value: Any) -> Any:
    value = make_json_safe(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def generate_csv(records: Iterable[Mapping[str, Any]], headers: Optional[List[str]] = None) -> str:
    flat_records = [flatten_document(record) for record in records]
    if headers is None:
        headers = []
        for record in flat_records:
            headers.extend(column for column in record if column not in headers)

    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for record in flat_records:
        writer.writerow([_csv_cell(record.get(column)) for column in headers])
    return buffer.getvalue()


def generate_json(records: Iterable[Mapping[str, Any]]) -> str:
    return json.dumps([make_json_safe(dict(record)) for record in records], indent=2, ensure_ascii=False)


def generate_export_files(validation: ValidationResult) -> List[ExportFile]:
    """
    One export per model group (coerced values for valid rows, raw values for
    invalid ones so they can be fixed) plus one for unmatched rows.
    """
    exports = []
    for group in validation.model_groups:
        records = [row.coerced_value if row.is_valid else row.raw_values for row in group.rows]
        exports.append(
            ExportFile(
                model_name=group.model_name,
                file_name=f"{group.model_name}_export",
                csv_content=generate_csv(records),
                json_content=generate_json(records),
                row_count=len(records),
            )
        )

    if validation.unmatched_data:
        records = [row.raw_values for row in validation.unmatched_data]
        exports.append(
            ExportFile(
                model_name=UNMATCHED_EXPORT,
                file_name="unmatched_rows",
                csv_content=generate_csv(records),
                json_content=generate_json(records),
                row_count=len(records),
            )
        )
    return exports


def _example_value(field_type: FieldType, descriptor) -> Any:
    if field_type is FieldType.ENUM:
        return sorted(descriptor.enum_values)[0]
    if field_type is FieldType.NUMBER:
        if descriptor.min_value is None:
            return 0
        return int(descriptor.min_value) if float(descriptor.min_value).is_integer() else descriptor.min_value
    if field_type is FieldType.BOOLEAN:
        return False
    if field_type is FieldType.DATE:
        return date.today().isoformat()
    if field_type is FieldType.REFERENCE:
        return SAMPLE_OBJECT_ID
    if field_type is FieldType.STRING:
        return FORMAT_EXAMPLES.get(descriptor.format, "example")
    return ""


def build_import_template(record_type: RecordTypeDescriptor) -> ImportTemplate:
    headers: List[str] = []
    example: Dict[str, Any] = {}
    for descriptor in record_type.fields:
        # Whole nested objects are covered by their dotted sub-field columns
        if descriptor.type is FieldType.NESTED and any(
            other.path.startswith(descriptor.path + ".") for other in record_type.fields
        ):
            continue
        if descriptor.type is FieldType.ARRAY and descriptor.item_type is not None:
            column = f"{descriptor.path}[0]"
            value = _example_value(descriptor.item_type, descriptor)
        else:
            column = descriptor.path
            value = _example_value(descriptor.type, descriptor)
        headers.append(column)
        example[column] = value

    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerow([_csv_cell(example[column]) for column in headers])
    return ImportTemplate(
        model_name=record_type.name,
        headers=headers,
        example_row=example,
        csv_template=buffer.getvalue(),
    )
