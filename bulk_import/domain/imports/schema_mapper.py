"""
Column-to-field mapping for imported rows.

Source files name their columns however the exporting tool liked
(``first-name``, ``First Name``, ``first_name``). This module reduces column
names and field paths to a comparable form and resolves each column of a row
to the record-type field it feeds.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from bulk_import.domain.imports.catalog import FieldDescriptor, RecordTypeDescriptor

_EMPTY = object()


def normalize_column_name(name: str) -> str:
    """
    Normalize a column name for comparison.

    - Convert to lowercase
    - Remove spaces, hyphens, underscores
    - Remove remaining special characters

    Examples:
        "First Name" -> "firstname"
        "first_name" -> "firstname"
        "first-name" -> "firstname"
    """
    if not name:
        return ""
    normalized = str(name).lower()
    normalized = re.sub(r"[\s\-_]+", "", normalized)
    return re.sub(r"[^a-z0-9]", "", normalized)


def normalize_path(path: str) -> str:
    """Normalize each dotted segment so ``Goals.Daily-Calories`` == ``goals.dailyCalories``."""
    return ".".join(normalize_column_name(segment) for segment in str(path).split("."))


def row_key_paths(values: Mapping[str, Any]) -> Set[str]:
    """
    Every normalized path a row offers: its top-level columns plus the keys of
    any nested mappings beneath them (after dotted-column folding).
    """
    paths: Set[str] = set()

    def _walk(prefix: str, value: Any) -> None:
        if isinstance(value, Mapping):
            for key, nested in value.items():
                child = f"{prefix}.{normalize_column_name(key)}"
                paths.add(child)
                _walk(child, nested)

    for column, value in values.items():
        key = normalize_path(column)
        if not key:
            continue
        paths.add(key)
        _walk(key, value)
    return paths


@dataclass(frozen=True)
class FieldIndex:
    """Precomputed normalized lookups for one record type."""

    record_type: RecordTypeDescriptor
    by_path: Dict[str, FieldDescriptor]
    by_alias: Dict[str, FieldDescriptor]
    roots: Set[str]

    @classmethod
    def build(cls, record_type: RecordTypeDescriptor) -> "FieldIndex":
        by_path: Dict[str, FieldDescriptor] = {}
        by_alias: Dict[str, FieldDescriptor] = {}
        for descriptor in record_type.fields:
            by_path.setdefault(normalize_path(descriptor.path), descriptor)
            for alias in descriptor.aliases:
                by_alias.setdefault(normalize_path(alias), descriptor)
        roots = {key.split(".", 1)[0] for key in by_path}
        return cls(record_type=record_type, by_path=by_path, by_alias=by_alias, roots=roots)

    def column_matches(self, column: str) -> bool:
        """True when a column names a declared field, an alias, or the root of a nested field."""
        key = normalize_path(column)
        if not key:
            return False
        return key in self.by_path or key in self.by_alias or key in self.roots

    def present_required(self, available_paths: Set[str]) -> Set[str]:
        """Required field paths the row provides, directly or through an alias."""
        present = set()
        for path in self.record_type.required_fields:
            descriptor = self.record_type.get_field(path)
            candidates = [normalize_path(path)]
            if descriptor is not None:
                candidates.extend(normalize_path(alias) for alias in descriptor.aliases)
            if any(candidate in available_paths for candidate in candidates):
                present.add(path)
        return present


def _lookup_nested(values: Mapping[str, Any], segments: List[str]) -> Any:
    current: Any = values
    for segment in segments:
        if not isinstance(current, Mapping):
            return _EMPTY
        match = _EMPTY
        for key, value in current.items():
            if normalize_column_name(key) == segment:
                match = value
                break
        if match is _EMPTY:
            return _EMPTY
        current = match
    return current


def resolve_field_value(
    values: Mapping[str, Any], descriptor: FieldDescriptor
) -> Tuple[bool, Any, Optional[str]]:
    """
    Find the raw value feeding ``descriptor`` in a row.

    Tries, in order: a flat column whose normalized name equals the field
    path, a column named by one of the field's aliases, then a walk through
    nested mappings (``{"goals": {"calories": 2000}}`` feeds ``goals.calories``).

    Returns:
        Tuple of (found, value, source_column)
    """
    candidates = [normalize_path(descriptor.path)]
    candidates.extend(normalize_path(alias) for alias in descriptor.aliases)

    normalized_columns = {normalize_path(column): column for column in values}
    for candidate in candidates:
        column = normalized_columns.get(candidate)
        if column is not None:
            return True, values[column], column

    for candidate in candidates:
        segments = candidate.split(".")
        if len(segments) < 2:
            continue
        value = _lookup_nested(values, segments)
        if value is not _EMPTY:
            root_column = normalized_columns.get(segments[0], segments[0])
            return True, value, f"{root_column}.{'.'.join(segments[1:])}"

    return False, None, None


def unmapped_columns(values: Mapping[str, Any], index: FieldIndex) -> List[str]:
    """Columns that feed no declared field; they are ignored, not rejected."""
    return [column for column in values if not index.column_matches(column)]
