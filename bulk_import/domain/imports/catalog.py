"""
Schema catalog: the static registry of importable record types.

The host application builds a ``SchemaCatalog`` once (in code or from a JSON
catalog file) and hands it to the matcher and validator. Descriptors are
immutable; nothing in the pipeline mutates the catalog after construction.
"""

import json
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class CatalogError(ValueError):
    """Raised when record-type definitions cannot form a valid catalog."""


class UnknownRecordTypeError(LookupError):
    """Raised when a caller names a record type the catalog does not hold."""

    def __init__(self, name: str, available: Iterable[str] = ()):
        self.name = name
        self.available = list(available)
        message = f"Unknown record type '{name}'"
        if self.available:
            message += f"; available: {', '.join(self.available)}"
        super().__init__(message)


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    REFERENCE = "reference"
    ENUM = "enum"
    ARRAY = "array"
    NESTED = "nested"


# Spellings seen in exported schemas (including mongoose instance names)
_TYPE_ALIASES = {
    "str": FieldType.STRING,
    "text": FieldType.STRING,
    "int": FieldType.NUMBER,
    "integer": FieldType.NUMBER,
    "float": FieldType.NUMBER,
    "decimal": FieldType.NUMBER,
    "bool": FieldType.BOOLEAN,
    "datetime": FieldType.DATE,
    "objectid": FieldType.REFERENCE,
    "objectid-reference": FieldType.REFERENCE,
    "ref": FieldType.REFERENCE,
    "list": FieldType.ARRAY,
    "object": FieldType.NESTED,
    "nested-object": FieldType.NESTED,
    "embedded": FieldType.NESTED,
    "mixed": FieldType.NESTED,
}

_SCALAR_TYPES = frozenset(
    {FieldType.STRING, FieldType.NUMBER, FieldType.BOOLEAN, FieldType.DATE, FieldType.REFERENCE}
)


def parse_field_type(value: Union[str, FieldType]) -> FieldType:
    if isinstance(value, FieldType):
        return value
    key = str(value).strip().lower()
    try:
        return FieldType(key)
    except ValueError:
        pass
    if key in _TYPE_ALIASES:
        return _TYPE_ALIASES[key]
    raise CatalogError(f"Unsupported field type '{value}'")


@dataclass(frozen=True)
class FieldDescriptor:
    path: str
    type: FieldType
    required: bool = False
    is_nested: bool = False
    enum_values: FrozenSet[str] = frozenset()
    aliases: Tuple[str, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    format: Optional[str] = None
    item_type: Optional[FieldType] = None
    default: Any = None

    @property
    def root(self) -> str:
        return self.path.split(".", 1)[0]


@dataclass(frozen=True)
class RecordTypeDescriptor:
    name: str
    display_name: str
    fields: Tuple[FieldDescriptor, ...]
    required_fields: FrozenSet[str]
    description: str = ""
    unique_fields: Tuple[str, ...] = ()
    collection: str = ""

    def get_field(self, path: str) -> Optional[FieldDescriptor]:
        for descriptor in self.fields:
            if descriptor.path == path:
                return descriptor
        return None

    @property
    def field_paths(self) -> List[str]:
        return [descriptor.path for descriptor in self.fields]


# ---------------------------------------------------------------------------
# Definition input (catalog files and dicts supplied by the host application)
# ---------------------------------------------------------------------------


class FieldDefinition(BaseModel):
    path: str
    type: str = "string"
    required: bool = False
    is_nested: Optional[bool] = None
    enum_values: List[str] = Field(default_factory=list, alias="enum")
    aliases: List[str] = Field(default_factory=list)
    min_value: Optional[float] = Field(default=None, alias="min")
    max_value: Optional[float] = Field(default=None, alias="max")
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    format: Optional[str] = None
    item_type: Optional[str] = None
    default: Any = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("path")
    def validate_path(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or normalized.startswith(".") or normalized.endswith("."):
            raise ValueError(f"invalid field path '{value}'")
        return normalized


class RecordTypeDefinition(BaseModel):
    name: str
    display_name: Optional[str] = None
    description: str = ""
    fields: List[FieldDefinition]
    required_fields: Optional[List[str]] = None
    unique_fields: List[str] = Field(default_factory=list)
    collection: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}


def _snake_case(name: str) -> str:
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name.strip()).lower()
    return re.sub(r"[^a-z0-9_]+", "_", snake).strip("_")


def _build_field(definition: FieldDefinition) -> FieldDescriptor:
    field_type = parse_field_type(definition.type)
    enum_values = frozenset(str(v) for v in definition.enum_values)
    if field_type is FieldType.ENUM and not enum_values:
        raise CatalogError(f"Enum field '{definition.path}' declares no enum values")

    item_type = parse_field_type(definition.item_type) if definition.item_type else None
    if item_type is not None and item_type not in _SCALAR_TYPES:
        raise CatalogError(f"Array field '{definition.path}' item_type must be a scalar type")

    is_nested = definition.is_nested
    if is_nested is None:
        is_nested = field_type is FieldType.NESTED or "." in definition.path

    return FieldDescriptor(
        path=definition.path,
        type=field_type,
        required=definition.required,
        is_nested=is_nested,
        enum_values=enum_values,
        aliases=tuple(definition.aliases),
        min_value=definition.min_value,
        max_value=definition.max_value,
        min_length=definition.min_length,
        max_length=definition.max_length,
        format=definition.format,
        item_type=item_type,
        default=definition.default,
    )


def build_record_type(definition: Union[RecordTypeDefinition, Dict[str, Any]]) -> RecordTypeDescriptor:
    """Turn one definition into an immutable descriptor, checking internal consistency."""
    if isinstance(definition, dict):
        try:
            definition = RecordTypeDefinition.model_validate(definition)
        except ValidationError as exc:
            raise CatalogError(f"Invalid record type definition: {exc}") from exc

    if not definition.fields:
        raise CatalogError(f"Record type '{definition.name}' declares no fields")

    fields = tuple(_build_field(item) for item in definition.fields)
    paths = [descriptor.path for descriptor in fields]
    duplicates = sorted({p for p in paths if paths.count(p) > 1})
    if duplicates:
        raise CatalogError(f"Record type '{definition.name}' repeats field paths: {duplicates}")

    if definition.required_fields is not None:
        required = frozenset(definition.required_fields)
        unknown = sorted(required.difference(paths))
        if unknown:
            raise CatalogError(f"Record type '{definition.name}' requires undeclared fields: {unknown}")
        # Keep the per-field flag consistent with the explicit required set
        fields = tuple(
            replace(descriptor, required=descriptor.path in required)
            for descriptor in fields
        )
    else:
        required = frozenset(d.path for d in fields if d.required)

    unknown_unique = sorted(set(definition.unique_fields).difference(paths))
    if unknown_unique:
        raise CatalogError(f"Record type '{definition.name}' has undeclared unique fields: {unknown_unique}")

    return RecordTypeDescriptor(
        name=definition.name,
        display_name=definition.display_name or definition.name,
        fields=fields,
        required_fields=required,
        description=definition.description,
        unique_fields=tuple(definition.unique_fields),
        collection=definition.collection or _snake_case(definition.name),
    )


@dataclass(frozen=True)
class SchemaCatalog:
    """Ordered, read-only collection of record-type descriptors."""

    record_types: Tuple[RecordTypeDescriptor, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [rt.name for rt in self.record_types]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise CatalogError(f"Duplicate record type names: {duplicates}")

    @classmethod
    def from_definitions(
        cls, definitions: Iterable[Union[RecordTypeDefinition, Dict[str, Any]]]
    ) -> "SchemaCatalog":
        catalog = cls(tuple(build_record_type(d) for d in definitions))
        logger.info("Built schema catalog with %d record types: %s", len(catalog), catalog.names)
        return catalog

    def __iter__(self) -> Iterator[RecordTypeDescriptor]:
        return iter(self.record_types)

    def __len__(self) -> int:
        return len(self.record_types)

    def __contains__(self, name: object) -> bool:
        return any(rt.name == name for rt in self.record_types)

    @property
    def names(self) -> List[str]:
        return [rt.name for rt in self.record_types]

    def get(self, name: str) -> Optional[RecordTypeDescriptor]:
        for record_type in self.record_types:
            if record_type.name == name:
                return record_type
        return None

    def get_by_name(self, name: str) -> Optional[RecordTypeDescriptor]:
        """Case-insensitive lookup, used for caller-supplied hints."""
        exact = self.get(name)
        if exact is not None:
            return exact
        lowered = name.strip().lower()
        for record_type in self.record_types:
            if record_type.name.lower() == lowered:
                return record_type
        return None

    def require(self, name: str) -> RecordTypeDescriptor:
        record_type = self.get_by_name(name)
        if record_type is None:
            raise UnknownRecordTypeError(name, self.names)
        return record_type


def load_catalog(path: Union[str, Path]) -> SchemaCatalog:
    """
    Load a catalog file: a JSON array of record-type definitions, or an
    object holding that array under ``record_types``.
    """
    catalog_path = Path(path)
    try:
        payload = json.loads(catalog_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"Could not read catalog file '{catalog_path}': {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("record_types", [])
    if not isinstance(payload, list):
        raise CatalogError("Catalog file must contain a list of record type definitions")

    return SchemaCatalog.from_definitions(payload)
