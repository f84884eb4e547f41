"""
Tests for preset format validators.

Covers the presets a field descriptor can name in its ``format`` attribute:
- Contact (email, phone)
- Identifiers (object id, UUID, postal codes, slugs)
- Web (URLs, domains)
- Data formats (dates, times, colours)
"""

import pytest

from bulk_import.domain.imports.validators import (
    PRESETS,
    get_preset,
    is_object_id,
    list_available_presets,
    validate_with_preset,
)


class TestPresetLookup:
    """Test helper functions for presets."""

    def test_get_preset_exists(self):
        preset = get_preset("email")
        assert preset is not None
        assert "email" in preset.description.lower()

    def test_get_preset_missing(self):
        assert get_preset("nonexistent") is None

    def test_list_available_presets(self):
        presets = list_available_presets()
        assert len(presets) == len(PRESETS)
        assert "email" in presets
        assert "object_id" in presets

    def test_unknown_preset_fails_validation(self):
        is_valid, error = validate_with_preset("anything", "nonexistent")
        assert not is_valid
        assert error == "Unknown preset validator: nonexistent"


class TestEmailValidators:
    @pytest.mark.parametrize("email", [
        "user@example.com",
        "test.user@example.com",
        "user+tag@example.co.uk",
        "user_name@example-domain.com",
        "123@example.com",
    ])
    def test_email_valid(self, email):
        is_valid, error = validate_with_preset(email, "email")
        assert is_valid, f"Email '{email}' should be valid: {error}"

    @pytest.mark.parametrize("invalid_email", [
        "notanemail",
        "@example.com",
        "user@",
        "user @example.com",
        "user@example",
        "Researching...",
    ])
    def test_email_invalid(self, invalid_email):
        is_valid, error = validate_with_preset(invalid_email, "email")
        assert not is_valid
        assert error == f"Value '{invalid_email}' is not a valid email address"


class TestPhoneValidators:
    @pytest.mark.parametrize("phone", [
        "+14155551234",
        "415-555-1234",
        "(415) 555-1234",
        "415.555.1234",
        "4155551234",
        "+1 (415) 555-1234",
    ])
    def test_phone_loose_valid(self, phone):
        is_valid, error = validate_with_preset(phone, "phone")
        assert is_valid, f"Phone '{phone}' should be valid: {error}"

    @pytest.mark.parametrize("phone", ["+14155551234", "+442071234567", "+33123456789"])
    def test_phone_international_valid(self, phone):
        is_valid, error = validate_with_preset(phone, "phone_international")
        assert is_valid, f"International phone '{phone}' should be valid: {error}"

    @pytest.mark.parametrize("invalid_phone", ["123", "abc", "TBD"])
    def test_phone_invalid(self, invalid_phone):
        is_valid, _ = validate_with_preset(invalid_phone, "phone")
        assert not is_valid


class TestIdentifierValidators:
    @pytest.mark.parametrize("value", ["507f1f77bcf86cd799439011", "507F1F77BCF86CD799439011"])
    def test_object_id_valid(self, value):
        assert is_object_id(value)
        assert validate_with_preset(value, "object_id")[0]

    @pytest.mark.parametrize("value", ["507f1f77bcf86cd79943901", "507f1f77bcf86cd79943901z", "", 12345, None])
    def test_object_id_invalid(self, value):
        assert not is_object_id(value)

    @pytest.mark.parametrize("uuid", [
        "550e8400-e29b-41d4-a716-446655440000",
        "6ba7b810-9dad-11d1-80b4-00c04fd430c8",
    ])
    def test_uuid_valid(self, uuid):
        is_valid, error = validate_with_preset(uuid, "uuid")
        assert is_valid, f"UUID '{uuid}' should be valid: {error}"

    def test_uuid_invalid(self):
        assert not validate_with_preset("550e8400e29b41d4a716446655440000", "uuid")[0]

    @pytest.mark.parametrize("code", ["94105", "SW1A 1AA", "K1A-0B1"])
    def test_postal_code_valid(self, code):
        assert validate_with_preset(code, "postal_code")[0]

    @pytest.mark.parametrize("slug,expected", [
        ("high-protein-oats", True),
        ("oats", True),
        ("High-Protein", False),
        ("double--dash", False),
    ])
    def test_slug(self, slug, expected):
        assert validate_with_preset(slug, "slug")[0] is expected


class TestWebValidators:
    @pytest.mark.parametrize("url", ["https://example.com", "http://example.com/path?q=1", "HTTPS://EXAMPLE.COM"])
    def test_url_valid(self, url):
        assert validate_with_preset(url, "url")[0]

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com", "https://"])
    def test_url_invalid(self, url):
        assert not validate_with_preset(url, "url")[0]

    @pytest.mark.parametrize("domain,expected", [
        ("example.com", True),
        ("sub.example.co.uk", True),
        ("-bad.com", False),
        ("localhost", False),
    ])
    def test_domain(self, domain, expected):
        assert validate_with_preset(domain, "domain")[0] is expected


class TestFormatValidators:
    @pytest.mark.parametrize("value,preset,expected", [
        ("2024-05-01", "date_iso", True),
        ("05/01/2024", "date_iso", False),
        ("23:59", "time_24h", True),
        ("07:30:15", "time_24h", True),
        ("24:00", "time_24h", False),
        ("#fff", "hex_color", True),
        ("#A1B2C3", "hex_color", True),
        ("A1B2C3", "hex_color", False),
    ])
    def test_formats(self, value, preset, expected):
        assert validate_with_preset(value, preset)[0] is expected


class TestNullHandling:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_passes_when_allowed(self, value):
        assert validate_with_preset(value, "email") == (True, None)

    @pytest.mark.parametrize("value", [None, ""])
    def test_blank_fails_when_required(self, value):
        assert validate_with_preset(value, "email", allow_null=False) == (False, "Value is required")

    def test_surrounding_whitespace_is_ignored(self):
        assert validate_with_preset("  user@example.com  ", "email")[0]
