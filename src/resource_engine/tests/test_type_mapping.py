"""
Tests for the type mapping table.

Every field type must have exactly one entry with a physical type per
backend, a value check and a DEFAULT literal renderer.
"""

from datetime import date, datetime

import pytest

from resource_engine.specs.field_types import (
    POSTGRES,
    SQLITE,
    INTEGER_MAX,
    INTEGER_MIN,
    TYPE_MAPPING,
    FieldType,
    convert_stored,
    get_mapping,
    quote_literal,
)


class TestTableCompleteness:
    def test_every_type_is_mapped(self):
        assert set(TYPE_MAPPING) == set(FieldType)

    @pytest.mark.parametrize(
        ("field_type", "postgres", "sqlite"),
        [
            (FieldType.STRING, "VARCHAR(255)", "TEXT"),
            (FieldType.INTEGER, "INTEGER", "INTEGER"),
            (FieldType.FLOAT, "DOUBLE PRECISION", "REAL"),
            (FieldType.BOOLEAN, "BOOLEAN", "INTEGER"),
            (FieldType.DATE, "DATE", "TEXT"),
            (FieldType.DATETIME, "TIMESTAMP", "TEXT"),
            (FieldType.TEXT, "TEXT", "TEXT"),
            (FieldType.JSON, "JSONB", "TEXT"),
        ],
    )
    def test_physical_types(self, field_type, postgres, sqlite):
        mapping = get_mapping(field_type)
        assert mapping.column_type(POSTGRES) == postgres
        assert mapping.column_type(SQLITE) == sqlite


class TestChecks:
    def test_integer_rejects_fractions_and_bools(self):
        check = get_mapping(FieldType.INTEGER).check
        assert check(3) == 3
        assert check(3.0) == 3
        for bad in (3.5, True, "3", None):
            with pytest.raises(ValueError, match="integer"):
                check(bad)

    def test_integer_stays_within_32_bits(self):
        check = get_mapping(FieldType.INTEGER).check
        assert check(INTEGER_MAX) == INTEGER_MAX
        assert check(INTEGER_MIN) == INTEGER_MIN
        for bad in (INTEGER_MAX + 1, INTEGER_MIN - 1, 10**20, 1e20):
            with pytest.raises(ValueError, match="between"):
                check(bad)

    def test_float_accepts_ints(self):
        check = get_mapping(FieldType.FLOAT).check
        assert check(2) == 2.0
        with pytest.raises(ValueError):
            check(float("nan"))
        with pytest.raises(ValueError):
            check(False)

    def test_boolean_is_strict(self):
        check = get_mapping(FieldType.BOOLEAN).check
        assert check(False) is False
        with pytest.raises(ValueError, match="boolean"):
            check(0)

    def test_string_is_strict(self):
        with pytest.raises(ValueError, match="string"):
            get_mapping(FieldType.STRING).check(12)

    def test_date_normalizes(self):
        check = get_mapping(FieldType.DATE).check
        assert check("2024-02-29") == "2024-02-29"
        assert check(date(2024, 1, 2)) == "2024-01-02"
        with pytest.raises(ValueError, match="valid date"):
            check("2024-02-30")
        with pytest.raises(ValueError, match="valid date"):
            check("yesterday")

    def test_datetime_normalizes(self):
        check = get_mapping(FieldType.DATETIME).check
        assert check("2024-05-01T12:30:00") == "2024-05-01T12:30:00"
        assert check(datetime(2024, 5, 1, 8)) == "2024-05-01T08:00:00"

    def test_json_accepts_structures_and_json_text(self):
        check = get_mapping(FieldType.JSON).check
        assert check({"a": 1}) == {"a": 1}
        assert check([1, 2]) == [1, 2]
        assert check('{"a": [1]}') == {"a": [1]}
        with pytest.raises(ValueError, match="valid JSON"):
            check("{not json")
        with pytest.raises(ValueError):
            check(5)
        for scalar in ("5", "null", '"text"'):
            with pytest.raises(ValueError, match="valid JSON"):
                check(scalar)


class TestLiterals:
    def test_quote_literal_escapes(self):
        assert quote_literal("O'Reilly") == "'O''Reilly'"

    def test_render_per_type(self):
        assert get_mapping(FieldType.STRING).render_literal("hi", SQLITE) == "'hi'"
        assert get_mapping(FieldType.INTEGER).render_literal(-5, POSTGRES) == "-5"
        assert get_mapping(FieldType.BOOLEAN).render_literal(True, SQLITE) == "TRUE"
        assert get_mapping(FieldType.JSON).render_literal({"a": 1}, SQLITE) == "'{\"a\": 1}'"
        assert get_mapping(FieldType.JSON).render_literal([], POSTGRES) == "'[]'::jsonb"


class TestConversions:
    def test_filter_coercion(self):
        assert get_mapping(FieldType.INTEGER).coerce("42") == 42
        assert get_mapping(FieldType.FLOAT).coerce("1.5") == 1.5
        assert get_mapping(FieldType.BOOLEAN).coerce("true") is True
        assert get_mapping(FieldType.BOOLEAN).coerce("0") is False
        with pytest.raises(ValueError):
            get_mapping(FieldType.INTEGER).coerce("forty")

    def test_store_round_trip_for_sqlite_storage_classes(self):
        assert get_mapping(FieldType.BOOLEAN).from_db(1) is True
        assert get_mapping(FieldType.JSON).from_db('{"a": 1}') == {"a": 1}
        assert get_mapping(FieldType.JSON).to_db({"a": 1}) == '{"a": 1}'
        assert get_mapping(FieldType.DATE).from_db(date(2024, 1, 2)) == "2024-01-02"


class TestConvertStored:
    @pytest.mark.parametrize(
        ("value", "source", "target", "expected"),
        [
            ("7", FieldType.STRING, FieldType.INTEGER, 7),
            (" 42 ", FieldType.TEXT, FieldType.INTEGER, 42),
            (7.0, FieldType.FLOAT, FieldType.INTEGER, 7),
            (7, FieldType.INTEGER, FieldType.FLOAT, 7.0),
            ("1.5", FieldType.STRING, FieldType.FLOAT, 1.5),
            ("yes", FieldType.STRING, FieldType.BOOLEAN, True),
            (12, FieldType.INTEGER, FieldType.STRING, "12"),
            (1, FieldType.BOOLEAN, FieldType.TEXT, "true"),
            ('{"a": 1}', FieldType.JSON, FieldType.TEXT, '{"a": 1}'),
            ('{"a": 1}', FieldType.STRING, FieldType.JSON, '{"a": 1}'),
            ("2024-03-01T10:00:00", FieldType.DATETIME, FieldType.DATE, "2024-03-01"),
        ],
    )
    def test_convertible_values(self, value, source, target, expected):
        assert convert_stored(value, source, target) == expected

    @pytest.mark.parametrize(
        ("value", "source", "target"),
        [
            ("abc", FieldType.STRING, FieldType.INTEGER),
            (7.5, FieldType.FLOAT, FieldType.INTEGER),
            ("maybe", FieldType.STRING, FieldType.BOOLEAN),
            ("plain words", FieldType.TEXT, FieldType.JSON),
            ("soon", FieldType.STRING, FieldType.DATE),
            ("99999999999", FieldType.STRING, FieldType.INTEGER),
        ],
    )
    def test_unconvertible_values(self, value, source, target):
        with pytest.raises(ValueError):
            convert_stored(value, source, target)
