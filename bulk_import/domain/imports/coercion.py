"""
Type coercion for field values.

Each ``FieldType`` has exactly one coercer in ``COERCERS``; the table is
checked for completeness at import time so a new field type cannot be added
without teaching the engine how to coerce it. Coercers raise
``CoercionError``; ``coerce_field`` turns that into a ``FieldError`` so the
engine can keep checking the rest of the row.
"""

import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from bulk_import.domain.imports.catalog import FieldDescriptor, FieldType
from bulk_import.domain.imports.validators import is_object_id, validate_with_preset
from bulk_import.utils.date import parse_flexible_date
from bulk_import.utils.serialization import make_json_safe

# Decimal exponents past this overflow a float and make int() conversion unbounded
_MAX_DECIMAL_EXPONENT = 308

_BOOLEAN_WORDS = {"true": True, "1": True, "false": False, "0": False}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    raw_value: Any = None
    error_type: str = "unknown"
    row_index: Optional[int] = None
    model_name: Optional[str] = None

    def at(self, row_index: int, model_name: Optional[str]) -> "FieldError":
        return replace(self, row_index=row_index, model_name=model_name)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "field": self.field,
            "message": self.message,
            "value": make_json_safe(self.raw_value),
            "error_type": self.error_type,
        }
        if self.row_index is not None:
            payload["row_index"] = self.row_index
        if self.model_name is not None:
            payload["model_name"] = self.model_name
        return payload


class CoercionError(ValueError):
    def __init__(self, message: str, error_type: str = "type"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _describe(value: Any) -> str:
    text = repr(value)
    return text if len(text) <= 60 else text[:57] + "..."


def _check_length(descriptor: FieldDescriptor, size: int, unit: str) -> None:
    if descriptor.min_length is not None and size < descriptor.min_length:
        raise CoercionError(f"must have at least {descriptor.min_length} {unit}", "range")
    if descriptor.max_length is not None and size > descriptor.max_length:
        raise CoercionError(f"must have at most {descriptor.max_length} {unit}", "range")


def _coerce_string(descriptor: FieldDescriptor, value: Any) -> str:
    if isinstance(value, (list, dict)):
        raise CoercionError(f"expected text, got structured data {_describe(value)}")
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (datetime, date)):
        text = value.isoformat()
    elif isinstance(value, float) and value.is_integer():
        text = str(int(value))
    else:
        text = str(value).strip()

    _check_length(descriptor, len(text), "characters")
    if descriptor.format:
        ok, message = validate_with_preset(text, descriptor.format)
        if not ok:
            raise CoercionError(message, "format")
    return text


def _coerce_number(descriptor: FieldDescriptor, value: Any) -> Any:
    if isinstance(value, bool):
        raise CoercionError(f"expected a number, got boolean {value}")

    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise CoercionError(f"expected a finite number, got {value}")
        number = Decimal(str(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, str):
        normalized = value.strip().replace(",", "")
        try:
            number = Decimal(normalized)
        except InvalidOperation as exc:
            raise CoercionError(f"expected a number, got {_describe(value)}") from exc
    else:
        raise CoercionError(f"expected a number, got {_describe(value)}")

    if isinstance(number, Decimal):
        if not number.is_finite():
            raise CoercionError(f"expected a finite number, got {_describe(value)}")
        if number.adjusted() > _MAX_DECIMAL_EXPONENT:
            raise CoercionError(f"number out of range: {_describe(value)}", "range")
        number = int(number) if number == number.to_integral_value() else float(number)

    if descriptor.min_value is not None and number < descriptor.min_value:
        raise CoercionError(f"must be at least {descriptor.min_value:g}", "range")
    if descriptor.max_value is not None and number > descriptor.max_value:
        raise CoercionError(f"must be at most {descriptor.max_value:g}", "range")
    return number


def _coerce_boolean(descriptor: FieldDescriptor, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _BOOLEAN_WORDS:
        return _BOOLEAN_WORDS[value.strip().lower()]
    raise CoercionError(f"expected true/false/1/0, got {_describe(value)}")


def _coerce_date(descriptor: FieldDescriptor, value: Any) -> datetime:
    parsed = parse_flexible_date(value, log_context=descriptor.path)
    if parsed is None:
        raise CoercionError(f"expected a date, got {_describe(value)}")
    return parsed


def _coerce_enum(descriptor: FieldDescriptor, value: Any) -> str:
    text = str(value).strip()
    if text in descriptor.enum_values:
        return text
    folded = {allowed.casefold(): allowed for allowed in descriptor.enum_values}
    if text.casefold() in folded:
        return folded[text.casefold()]
    allowed = ", ".join(sorted(descriptor.enum_values))
    raise CoercionError(f"{_describe(value)} is not one of: {allowed}", "enum")


def _coerce_reference(descriptor: FieldDescriptor, value: Any) -> str:
    if not is_object_id(value):
        raise CoercionError(f"expected a 24-character hexadecimal identifier, got {_describe(value)}", "format")
    return value.strip()


def _coerce_array(descriptor: FieldDescriptor, value: Any) -> list:
    if isinstance(value, tuple):
        value = list(value)
    if not isinstance(value, list):
        raise CoercionError(f"expected a list, got {_describe(value)}")
    _check_length(descriptor, len(value), "items")

    if descriptor.item_type is None:
        return value

    item_descriptor = FieldDescriptor(
        path=descriptor.path,
        type=descriptor.item_type,
        enum_values=descriptor.enum_values,
        format=descriptor.format,
    )
    coerce_item = COERCERS[descriptor.item_type]
    items = []
    for position, item in enumerate(value):
        try:
            items.append(coerce_item(item_descriptor, item))
        except CoercionError as exc:
            raise CoercionError(f"item {position}: {exc.message}", exc.error_type) from exc
    return items


def _coerce_nested(descriptor: FieldDescriptor, value: Any) -> dict:
    if not isinstance(value, dict):
        raise CoercionError(f"expected an object, got {_describe(value)}")
    return value


COERCERS: Dict[FieldType, Callable[[FieldDescriptor, Any], Any]] = {
    FieldType.STRING: _coerce_string,
    FieldType.NUMBER: _coerce_number,
    FieldType.BOOLEAN: _coerce_boolean,
    FieldType.DATE: _coerce_date,
    FieldType.ENUM: _coerce_enum,
    FieldType.REFERENCE: _coerce_reference,
    FieldType.ARRAY: _coerce_array,
    FieldType.NESTED: _coerce_nested,
}

_UNHANDLED = set(FieldType).difference(COERCERS)
if _UNHANDLED:
    raise RuntimeError(f"No coercer registered for field types: {sorted(t.value for t in _UNHANDLED)}")


def coerce_field(descriptor: FieldDescriptor, found: bool, raw: Any) -> Tuple[bool, Any, Optional[FieldError]]:
    """
    Coerce one raw value for ``descriptor``.

    Returns:
        Tuple of (has_value, coerced_value, error). ``has_value`` is False for
        empty optional fields without a default, which are left out of the
        coerced document.
    """
    if not found or is_empty_value(raw):
        if descriptor.required:
            return False, None, FieldError(
                field=descriptor.path,
                message=f"missing required field: {descriptor.path}",
                raw_value=raw,
                error_type="required",
            )
        if descriptor.default is not None:
            return True, descriptor.default, None
        return False, None, None

    try:
        return True, COERCERS[descriptor.type](descriptor, raw), None
    except CoercionError as exc:
        return False, None, FieldError(
            field=descriptor.path,
            message=f"{descriptor.path}: {exc.message}",
            raw_value=raw,
            error_type=exc.error_type,
        )
