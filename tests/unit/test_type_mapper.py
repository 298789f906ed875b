"""Tests for column type mapping and input coercion."""

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from tabulary.runtime import type_mapper
from tabulary.runtime.type_mapper import (
    PASSWORD_MIN_LENGTH,
    coerce_boolean,
    coerce_integer,
    coerce_real,
    encode_blob,
    is_iso_timestamp,
    map_column,
    normalise_timestamp,
)
from tabulary.specs.table import ColumnDefinition, ScalarType


class TestCoerceInteger:
    def test_numeric_strings(self):
        assert coerce_integer("42") == 42
        assert coerce_integer(" 7 ") == 7
        assert coerce_integer("4.0") == 4

    def test_fractional_string_stays_float(self):
        assert coerce_integer("4.5") == 4.5

    def test_blank_is_missing(self):
        assert coerce_integer("") is None
        assert coerce_integer("   ") is None

    def test_unparsable_passes_through(self):
        assert coerce_integer("forty-two") == "forty-two"

    @pytest.mark.parametrize("value", ["inf", "-Infinity", "nan", "1e999"])
    def test_non_finite_passes_through(self, value):
        assert coerce_integer(value) == value

    def test_non_strings_untouched(self):
        assert coerce_integer(3) == 3
        assert coerce_integer(True) is True


class TestCoerceReal:
    def test_numeric_strings(self):
        assert coerce_real("19.99") == 19.99
        assert coerce_real("3") == 3.0

    def test_int_widens(self):
        result = coerce_real(5)
        assert result == 5.0
        assert isinstance(result, float)

    def test_bool_not_a_number(self):
        assert coerce_real(True) is True

    def test_unparsable_passes_through(self):
        assert coerce_real("cheap") == "cheap"

    @pytest.mark.parametrize("value", ["inf", "Infinity", "-inf", "nan", "NaN", "1e999"])
    def test_non_finite_passes_through(self, value):
        assert coerce_real(value) == value


class TestRealValue:
    @pytest.fixture
    def adapter(self):
        return TypeAdapter(type_mapper.RealValue)

    @pytest.mark.parametrize("value", ["inf", "nan", "Infinity", float("inf"), float("nan")])
    def test_non_finite_rejected(self, adapter, value):
        with pytest.raises(PydanticValidationError):
            adapter.validate_python(value)

    def test_finite_accepted(self, adapter):
        assert adapter.validate_python("2.5") == 2.5

    def test_json_infinity_rejected(self, adapter):
        with pytest.raises(PydanticValidationError):
            adapter.validate_json("Infinity")


class TestCoerceBoolean:
    @pytest.mark.parametrize("value", ["true", "TRUE", "1", 1, True])
    def test_truthy(self, value):
        assert coerce_boolean(value) is True

    @pytest.mark.parametrize("value", ["false", "0", 0, False])
    def test_falsy(self, value):
        assert coerce_boolean(value) is False

    @pytest.mark.parametrize("value", ["yes", "no", 2, None])
    def test_other_values_pass_through(self, value):
        assert coerce_boolean(value) == value


class TestIsIsoTimestamp:
    def test_offset_aware(self):
        assert is_iso_timestamp("2024-05-01T10:00:00Z")
        assert is_iso_timestamp("2024-05-01T10:00:00+02:00")

    def test_naive_or_garbage(self):
        assert not is_iso_timestamp("2024-05-01T10:00:00")
        assert not is_iso_timestamp("yesterday")


class TestNormaliseTimestamp:
    def test_offset_rewritten_in_utc(self):
        assert normalise_timestamp("2024-05-01T12:00:00+02:00") == "2024-05-01T10:00:00+00:00"
        assert normalise_timestamp("2024-05-01T10:00:00Z") == "2024-05-01T10:00:00+00:00"

    @pytest.mark.parametrize("value", ["2024-05-01 10:00:00", "2024-05-01", "yesterday"])
    def test_other_strings_unchanged(self, value):
        assert normalise_timestamp(value) == value

    def test_datetime_annotation_normalises(self):
        annotation, _ = map_column(ColumnDefinition(name="shipped_at", scalar_type="DATETIME"))
        adapter = TypeAdapter(annotation)
        assert adapter.validate_python("2024-05-01T12:00:00+02:00") == "2024-05-01T10:00:00+00:00"


class TestEncodeBlob:
    def test_objects_become_json_text(self):
        assert encode_blob({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'
        assert encode_blob([1, "x"]) == '[1,"x"]'

    @pytest.mark.parametrize("value", ["abc", 3, 1.5, True])
    def test_scalars_untouched(self, value):
        assert encode_blob(value) == value


class TestMapColumn:
    def test_every_scalar_type_has_a_builder(self):
        assert set(type_mapper._BUILDERS) == set(ScalarType)

    def test_password_min_length(self):
        annotation, constraints = map_column(ColumnDefinition(name="password_hash"))
        assert annotation is str
        assert constraints == {"min_length": PASSWORD_MIN_LENGTH}

    def test_email_columns(self):
        annotation, constraints = map_column(ColumnDefinition(name="contactEmail"))
        assert annotation is type_mapper.EmailStr
        assert constraints == {}

    def test_plain_text(self):
        assert map_column(ColumnDefinition(name="title")) == (str, {})

    def test_blob_accepts_scalars_and_encodes_objects(self):
        annotation, _ = map_column(ColumnDefinition(name="payload", scalar_type="BLOB"))
        assert annotation is type_mapper.BlobValue
        adapter = TypeAdapter(annotation)
        assert adapter.validate_python("raw") == "raw"
        assert adapter.validate_python({"k": "v"}) == '{"k":"v"}'

    def test_blob_rejects_unbindable_values(self):
        adapter = TypeAdapter(type_mapper.BlobValue)
        with pytest.raises(PydanticValidationError):
            adapter.validate_python(object())

    def test_integer_uses_coercing_annotation(self):
        annotation, _ = map_column(ColumnDefinition(name="qty", scalar_type="INTEGER"))
        assert annotation is type_mapper.IntegerValue
