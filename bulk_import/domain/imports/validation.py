"""
Validation engine: match, coerce and group every parsed row.

Row errors are data, never exceptions: each matched row is checked field by
field and every problem is collected on the row. Rows are validated in
parallel chunks; results are re-joined by ``row_index`` so the output order
never depends on which worker finished first.
"""

import copy
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from bulk_import.core.config import settings
from bulk_import.domain.imports.catalog import RecordTypeDescriptor, SchemaCatalog
from bulk_import.domain.imports.coercion import FieldError, coerce_field
from bulk_import.domain.imports.matcher import ModelMatcher, ModelMatchResult
from bulk_import.domain.imports.parser import ParsedRow
from bulk_import.domain.imports.schema_mapper import FieldIndex, resolve_field_value, unmapped_columns
from bulk_import.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)


@dataclass
class RowValidationResult:
    row_index: int
    record_type: str
    raw_values: Dict[str, Any]
    coerced_value: Dict[str, Any]
    is_valid: bool
    confidence: float = 1.0
    errors: List[FieldError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    unmapped_fields: List[str] = field(default_factory=list)
    empty_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_index": self.row_index,
            "record_type": self.record_type,
            "confidence": self.confidence,
            "is_valid": self.is_valid,
            "data": make_json_safe(self.raw_values),
            "coerced": make_json_safe(self.coerced_value),
            "errors": [error.to_dict() for error in self.errors],
            "warnings": list(self.warnings),
            "unmapped_fields": list(self.unmapped_fields),
            "empty_fields": list(self.empty_fields),
        }


@dataclass
class UnmatchedRow:
    row_index: int
    raw_values: Dict[str, Any]
    reason: str
    match: ModelMatchResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_index": self.row_index,
            "data": make_json_safe(self.raw_values),
            "reason": self.reason,
            "best_attempt": self.match.best_attempt,
            "confidence": self.match.confidence,
            "required_coverage": self.match.required_coverage,
        }


@dataclass
class ModelGroup:
    model_name: str
    display_name: str
    rows: List[RowValidationResult] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(1 for row in self.rows if row.is_valid)

    @property
    def invalid_count(self) -> int:
        return len(self.rows) - self.valid_count

    @property
    def total_count(self) -> int:
        return len(self.rows)

    def valid_rows(self) -> List[RowValidationResult]:
        return [row for row in self.rows if row.is_valid]

    def find_row(self, row_index: int) -> Optional[RowValidationResult]:
        for row in self.rows:
            if row.row_index == row_index:
                return row
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "display_name": self.display_name,
            "valid_count": self.valid_count,
            "invalid_count": self.invalid_count,
            "total_count": self.total_count,
            "rows": [row.to_dict() for row in self.rows],
        }


@dataclass
class ValidationResult:
    """
    Snapshot of one file's validation.

    Counts are derived from the rows so they stay consistent when a session
    edits or removes rows later.
    """

    model_groups: List[ModelGroup] = field(default_factory=list)
    unmatched_data: List[UnmatchedRow] = field(default_factory=list)

    @property
    def valid_rows(self) -> int:
        return sum(group.valid_count for group in self.model_groups)

    @property
    def invalid_rows(self) -> int:
        return sum(group.invalid_count for group in self.model_groups)

    @property
    def unmatched_rows(self) -> int:
        return len(self.unmatched_data)

    @property
    def total_rows(self) -> int:
        return sum(group.total_count for group in self.model_groups) + self.unmatched_rows

    @property
    def can_save(self) -> bool:
        return self.valid_rows > 0

    @property
    def success(self) -> bool:
        return self.invalid_rows == 0 and self.unmatched_rows == 0 and self.total_rows > 0

    @property
    def all_errors(self) -> List[FieldError]:
        errors: List[FieldError] = []
        for group in self.model_groups:
            for row in group.rows:
                errors.extend(error.at(row.row_index, group.model_name) for error in row.errors)
        for unmatched in self.unmatched_data:
            errors.append(
                FieldError(
                    field="_model",
                    message=unmatched.reason,
                    error_type="unknown",
                    row_index=unmatched.row_index,
                )
            )
        return sorted(errors, key=lambda e: (e.row_index, e.field))

    def get_group(self, model_name: str) -> Optional[ModelGroup]:
        for group in self.model_groups:
            if group.model_name == model_name:
                return group
        return None

    def summary(self) -> Dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "unmatched_rows": self.unmatched_rows,
            "can_save": self.can_save,
        }


def _assign(document: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    leaf = parts[-1]
    existing = target.get(leaf)
    if isinstance(existing, dict) and isinstance(value, dict):
        # Sub-field values coerced earlier take precedence over the raw object
        merged = dict(value)
        merged.update(existing)
        target[leaf] = merged
    elif isinstance(value, dict):
        target[leaf] = copy.deepcopy(value)
    else:
        target[leaf] = value


class ValidationEngine:
    def __init__(
        self,
        catalog: SchemaCatalog,
        matcher: Optional[ModelMatcher] = None,
        max_workers: Optional[int] = None,
        chunk_size: Optional[int] = None,
    ):
        self.catalog = catalog
        self.matcher = matcher or ModelMatcher(catalog)
        self.max_workers = max_workers or settings.validation_max_workers or os.cpu_count() or 1
        self.chunk_size = max(1, chunk_size or settings.validation_chunk_size)
        self._indexes: Dict[str, FieldIndex] = {rt.name: FieldIndex.build(rt) for rt in catalog}

    @property
    def unmatched_reason(self) -> str:
        return f"no record type matched ≥{self.matcher.threshold:.0%} of required fields"

    def validate_record(
        self,
        record_type: RecordTypeDescriptor,
        row: ParsedRow,
        confidence: float = 1.0,
    ) -> RowValidationResult:
        """Check every declared field of ``record_type`` against one row."""
        values = row.raw_values
        coerced: Dict[str, Any] = {}
        errors: List[FieldError] = []
        empty_fields: List[str] = []

        for descriptor in record_type.fields:
            found, raw, _ = resolve_field_value(values, descriptor)
            has_value, value, error = coerce_field(descriptor, found, raw)
            if error is not None:
                errors.append(error)
            elif has_value:
                _assign(coerced, descriptor.path, value)
            else:
                empty_fields.append(descriptor.path)

        warnings = list(row.warnings)
        for column in sorted(row.low_confidence_fields):
            warnings.append(f"Column '{column}' looks like structured data but could not be parsed; kept as text")

        return RowValidationResult(
            row_index=row.row_index,
            record_type=record_type.name,
            raw_values=values,
            coerced_value=coerced,
            is_valid=not errors,
            confidence=confidence,
            errors=errors,
            warnings=warnings,
            unmapped_fields=unmapped_columns(values, self._indexes[record_type.name]),
            empty_fields=empty_fields,
        )

    def validate_row(
        self, row: ParsedRow, forced_type: Optional[str] = None
    ) -> Union[RowValidationResult, UnmatchedRow]:
        match = self.matcher.detect_model(row, forced_type)
        if not match.is_matched:
            return UnmatchedRow(
                row_index=row.row_index,
                raw_values=row.raw_values,
                reason=self.unmatched_reason,
                match=match,
            )
        record_type = self.catalog.require(match.candidate_type)
        return self.validate_record(record_type, row, confidence=match.confidence)

    def _validate_chunk(
        self, rows: Sequence[ParsedRow], forced_type: Optional[str]
    ) -> List[Union[RowValidationResult, UnmatchedRow]]:
        return [self.validate_row(row, forced_type) for row in rows]

    def validate_all(self, rows: Sequence[ParsedRow], forced_type: Optional[str] = None) -> ValidationResult:
        """
        Validate every row and group the results by record type.

        Raises:
            UnknownRecordTypeError: If ``forced_type`` is not in the catalog.
        """
        if forced_type:
            forced_type = self.catalog.require(forced_type).name

        chunks = [rows[i:i + self.chunk_size] for i in range(0, len(rows), self.chunk_size)]
        outcomes: List[Union[RowValidationResult, UnmatchedRow]] = []

        if len(chunks) <= 1 or self.max_workers == 1:
            for chunk in chunks:
                outcomes.extend(self._validate_chunk(chunk, forced_type))
        else:
            workers = min(self.max_workers, len(chunks))
            logger.info("Validating %d rows in %d chunks with %d workers", len(rows), len(chunks), workers)
            with ThreadPoolExecutor(max_workers=workers) as executor:
                future_to_chunk = {
                    executor.submit(self._validate_chunk, chunk, forced_type): number
                    for number, chunk in enumerate(chunks, start=1)
                }
                for future in as_completed(future_to_chunk):
                    outcomes.extend(future.result())

        outcomes.sort(key=lambda outcome: outcome.row_index)

        groups: Dict[str, ModelGroup] = {}
        unmatched: List[UnmatchedRow] = []
        for outcome in outcomes:
            if isinstance(outcome, UnmatchedRow):
                unmatched.append(outcome)
                continue
            group = groups.get(outcome.record_type)
            if group is None:
                record_type = self.catalog.require(outcome.record_type)
                group = groups[outcome.record_type] = ModelGroup(
                    model_name=record_type.name, display_name=record_type.display_name
                )
            group.rows.append(outcome)

        # Groups follow catalog registration order
        ordered = [groups[name] for name in self.catalog.names if name in groups]
        result = ValidationResult(model_groups=ordered, unmatched_data=unmatched)
        logger.info(
            "Validated %d rows: %d valid, %d invalid, %d unmatched across %d groups",
            result.total_rows,
            result.valid_rows,
            result.invalid_rows,
            result.unmatched_rows,
            len(ordered),
        )
        return result
