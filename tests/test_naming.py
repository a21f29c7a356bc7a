# ============================================================================
# NAMING TESTS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Tests - Identifier derivation and validation
# PURPOSE: Verify schema/table/column/constraint names and SafeIdentifier
# CREATED: 17 OCT 2026
# ============================================================================
"""
Naming Tests

Run with:
    pytest tests/test_naming.py -v
"""

import pytest

from core.contracts import EntityKind
from core.schema.naming import (
    MAX_IDENTIFIER_LENGTH,
    SafeIdentifier,
    build_fk_constraint_name,
    fit_identifier,
    generate_column_name,
    generate_schema_name,
    generate_table_name,
    is_valid_schema_name,
)


class TestDerivedNames:

    def test_schema_name_strips_hyphens_and_lowercases(self):
        assert generate_schema_name("0192AB-CD34-ef") == "app_0192abcd34ef"

    def test_table_name_is_deterministic(self):
        first = generate_table_name("0192-AB", EntityKind.CATALOG)
        assert first == "cat_0192ab"
        for _ in range(5):
            assert generate_table_name("0192-AB", EntityKind.CATALOG) == first

    @pytest.mark.parametrize("kind,prefix", [
        (EntityKind.CATALOG, "cat_"),
        (EntityKind.HUB, "hub_"),
        (EntityKind.DOCUMENT, "doc_"),
        (EntityKind.LINK, "lnk_"),
    ])
    def test_table_prefix_follows_kind(self, kind, prefix):
        assert generate_table_name("e1", kind).startswith(prefix)

    def test_table_name_accepts_kind_string(self):
        assert generate_table_name("e1", "hub") == "hub_e1"

    def test_column_name(self):
        assert generate_column_name("Field-01") == "attr_field01"

    def test_fk_constraint_name_short(self):
        assert build_fk_constraint_name("cat_a", "attr_b") == "fk_cat_a_attr_b"

    def test_fk_constraint_name_long_is_hash_truncated(self):
        table = "doc_" + "a" * 40
        column = "attr_" + "b" * 40
        name = build_fk_constraint_name(table, column)
        assert len(name) == MAX_IDENTIFIER_LENGTH
        assert name.startswith("fk_doc_aaaa")
        assert name[-9] == "_"
        int(name[-8:], 16)

    def test_long_names_sharing_prefix_stay_distinct(self):
        base = "x" * 70
        assert fit_identifier(base + "1") != fit_identifier(base + "2")

    def test_long_entity_ids_fit(self):
        name = generate_table_name("f" * 80, EntityKind.DOCUMENT)
        assert len(name) <= MAX_IDENTIFIER_LENGTH
        assert is_valid_schema_name(name)


class TestSchemaNameValidation:

    @pytest.mark.parametrize("name", ["app_abc", "_private", "A1_b2"])
    def test_valid(self, name):
        assert is_valid_schema_name(name)

    @pytest.mark.parametrize("name", [
        "1bad-name; DROP",
        "1starts_with_digit",
        "has-hyphen",
        "semi;colon",
        "",
        "a" * 64,
        None,
    ])
    def test_invalid(self, name):
        assert not is_valid_schema_name(name)


class TestSafeIdentifier:

    def test_of_validates_and_wraps(self):
        ident = SafeIdentifier.of("cat_product")
        assert isinstance(ident, SafeIdentifier)
        assert ident == "cat_product"

    def test_of_is_idempotent(self):
        ident = SafeIdentifier.of("cat_product")
        assert SafeIdentifier.of(ident) is ident

    def test_of_rejects_injection(self):
        with pytest.raises(ValueError):
            SafeIdentifier.of('x"; DROP TABLE y; --')

    def test_direct_construction_is_blocked(self):
        with pytest.raises(TypeError):
            SafeIdentifier("cat_product")
