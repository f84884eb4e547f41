"""
Preset format validators for string fields.

A field descriptor may name one of these presets in its ``format`` attribute
(``"email"``, ``"phone"``, ``"url"`` ...). The validation engine checks the
coerced string against the preset's pattern and reports a ``format`` error
when it does not match.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Pattern, Tuple


@dataclass(frozen=True)
class Preset:
    pattern: Pattern
    description: str


def _preset(pattern: str, description: str, flags: int = 0) -> Preset:
    return Preset(pattern=re.compile(pattern, flags), description=description)


PRESETS: Dict[str, Preset] = {
    # Contact
    "email": _preset(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$", "email address"),
    "phone": _preset(r"^\+?[\d\s\-\.\(\)]{7,20}$", "phone number (7-20 digits with separators)"),
    "phone_international": _preset(r"^\+[1-9]\d{6,14}$", "E.164 phone number (+country code)"),
    # Identifiers
    "object_id": _preset(r"^[0-9a-fA-F]{24}$", "24-character hexadecimal identifier"),
    "uuid": _preset(
        r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
        "UUID",
    ),
    "postal_code": _preset(r"^[A-Za-z0-9\s-]{3,10}$", "postal code"),
    "slug": _preset(r"^[a-z0-9]+(?:-[a-z0-9]+)*$", "lowercase slug"),
    "alphanumeric_id": _preset(r"^[A-Za-z0-9]+$", "alphanumeric identifier"),
    # Web
    "url": _preset(r"^https?://[^\s/$.?#].[^\s]*$", "HTTP/HTTPS URL", re.IGNORECASE),
    "domain": _preset(r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$", "domain name"),
    # Formats
    "date_iso": _preset(r"^\d{4}-\d{2}-\d{2}$", "ISO date (YYYY-MM-DD)"),
    "time_24h": _preset(r"^([01]\d|2[0-3]):([0-5]\d)(:([0-5]\d))?$", "24-hour time (HH:MM[:SS])"),
    "hex_color": _preset(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$", "hex colour (#RGB or #RRGGBB)"),
}


def get_preset(name: str) -> Optional[Preset]:
    return PRESETS.get(name)


def is_object_id(value: Any) -> bool:
    """True when ``value`` has the lexical shape of a document identifier."""
    return isinstance(value, str) and bool(PRESETS["object_id"].pattern.match(value.strip()))


def validate_with_preset(value: Any, preset_name: str, allow_null: bool = True) -> Tuple[bool, Optional[str]]:
    """
    Validate a value against a preset pattern.

    Args:
        value: Value to validate (non-strings are stringified)
        preset_name: Key of ``PRESETS``
        allow_null: Whether None / blank passes

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_null:
            return True, None
        return False, "Value is required"

    preset = get_preset(preset_name)
    if preset is None:
        return False, f"Unknown preset validator: {preset_name}"

    text = str(value).strip()
    if not preset.pattern.match(text):
        return False, f"Value '{text}' is not a valid {preset.description}"
    return True, None


def list_available_presets() -> Dict[str, str]:
    return {name: preset.description for name, preset in PRESETS.items()}
