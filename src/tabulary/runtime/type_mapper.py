"""
Column type mapping.

Maps a ColumnDefinition onto a Pydantic annotation plus ``Field`` constraints.
Each ScalarType has exactly one builder in ``_BUILDERS``; the table is checked
for completeness when this module is imported.
"""

import json
import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    AllowInfNan,
    BeforeValidator,
    EmailStr,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
)

from tabulary.specs.table import ColumnDefinition, ScalarType

PASSWORD_MIN_LENGTH = 8

_TRUE_VALUES = frozenset({"true", "1"})
_FALSE_VALUES = frozenset({"false", "0"})


# =============================================================================
# Coercion
# =============================================================================


def coerce_integer(value: Any) -> Any:
    """
    Parse numeric strings into ints.

    Blank strings become None (treated as missing). Strings that do not parse
    to a finite number are returned unchanged so the error names the original
    input.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return value
    if not math.isfinite(number):
        return value
    return int(number) if number.is_integer() else number


def coerce_real(value: Any) -> Any:
    """
    Parse numeric strings into floats; ints widen to float. Bools are left alone.

    ``"inf"`` and ``"nan"`` are returned unchanged and fail validation.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        try:
            return float(value)
        except OverflowError:
            return value
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return value
    return number if math.isfinite(number) else value


def coerce_boolean(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
    return value


def is_iso_timestamp(value: str) -> bool:
    """True for offset-aware ISO-8601 timestamps such as ``2024-05-01T10:00:00Z``."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return parsed.tzinfo is not None


def normalise_timestamp(value: str) -> str:
    """Offset-aware ISO-8601 timestamps are rewritten in UTC; other strings pass unchanged."""
    if not is_iso_timestamp(value):
        return value
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.astimezone(UTC).isoformat()


def encode_blob(value: Any) -> Any:
    """JSON objects and arrays are stored as compact JSON text."""
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return value


# =============================================================================
# Builders
# =============================================================================

IntegerValue = Annotated[StrictInt, BeforeValidator(coerce_integer)]
RealValue = Annotated[StrictFloat, AllowInfNan(False), BeforeValidator(coerce_real)]
BooleanValue = Annotated[StrictBool, BeforeValidator(coerce_boolean)]
# Offset-aware ISO-8601 is the expected form; other strings are accepted as-is
DateTimeValue = Annotated[StrictStr, AfterValidator(normalise_timestamp)]
# BLOB accepts any JSON scalar; bytes are not representable in a JSON body
BlobValue = Annotated[
    StrictBool | StrictInt | StrictFloat | StrictStr, BeforeValidator(encode_blob)
]

ColumnType = tuple[Any, dict[str, Any]]


def _integer(column: ColumnDefinition) -> ColumnType:
    return IntegerValue, {}


def _real(column: ColumnDefinition) -> ColumnType:
    return RealValue, {}


def _text(column: ColumnDefinition) -> ColumnType:
    name = column.name.lower()
    if "email" in name:
        return EmailStr, {}
    if "password" in name:
        return str, {"min_length": PASSWORD_MIN_LENGTH}
    return str, {}


def _boolean(column: ColumnDefinition) -> ColumnType:
    return BooleanValue, {}


def _datetime(column: ColumnDefinition) -> ColumnType:
    return DateTimeValue, {}


def _blob(column: ColumnDefinition) -> ColumnType:
    return BlobValue, {}


_BUILDERS: dict[ScalarType, Callable[[ColumnDefinition], ColumnType]] = {
    ScalarType.INTEGER: _integer,
    ScalarType.REAL: _real,
    ScalarType.TEXT: _text,
    ScalarType.BOOLEAN: _boolean,
    ScalarType.DATETIME: _datetime,
    ScalarType.BLOB: _blob,
}

_unmapped = set(ScalarType) - set(_BUILDERS)
if _unmapped:
    raise RuntimeError(f"No type builder for scalar types: {sorted(_unmapped)}")


def map_column(column: ColumnDefinition) -> ColumnType:
    """
    Map a column to ``(annotation, field_constraints)``.

    ``field_constraints`` are keyword arguments for ``pydantic.Field``.

    Example:
        >>> map_column(ColumnDefinition(name="password", scalar_type="TEXT"))
        (<class 'str'>, {'min_length': 8})
    """
    return _BUILDERS[column.scalar_type](column)
