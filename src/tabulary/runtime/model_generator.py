"""
Validator synthesizer - generates Pydantic models from TableSchema.

Each table gets three dynamically created models:

- ``create``: generated columns are dropped; columns with a default or that
  accept NULL are optional, the rest are required
- ``update``: every non-generated column is optional (partial updates)
- ``read``: every column is present; NULL only where the column allows it

Models ignore unknown keys, so a caller-supplied generated id is discarded.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from tabulary.runtime.errors import ValidationError, validation_details
from tabulary.runtime.type_mapper import map_column
from tabulary.specs.table import ColumnDefinition, ScalarType, TableSchema

# Insert-time default expressions evaluated by the store
_TIME_SENTINELS = ("CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME")
_NOW_EXPRESSION = re.compile(r"\b(datetime|date|time|strftime|julianday)\s*\(.*'now'", re.I)
_ID_EXPRESSIONS = ("randomblob", "gen_random_uuid", "uuid")
_NUMERIC_TYPES = (ScalarType.INTEGER, ScalarType.REAL)


def is_generated_default(default: Any) -> bool:
    """True when a default value is computed by the store at insert time."""
    if not isinstance(default, str):
        return False
    text = default.strip().strip("()").strip()
    if text.upper() in _TIME_SENTINELS:
        return True
    if _NOW_EXPRESSION.search(text):
        return True
    lowered = text.lower()
    return any(expr in lowered for expr in _ID_EXPRESSIONS)


def is_generated_column(column: ColumnDefinition) -> bool:
    """Generated columns are never supplied by callers on create/update."""
    if column.is_primary_key and column.is_auto_increment:
        return True
    return is_generated_default(column.default_value)


def _model_name(table_name: str, suffix: str) -> str:
    base = "".join(part.capitalize() for part in table_name.split("_") if part)
    return f"{base or 'Table'}{suffix}"


_MODEL_CONFIG = ConfigDict(extra="ignore")


def _build(table: TableSchema, suffix: str, fields: dict[str, Any]) -> type[BaseModel]:
    return create_model(
        _model_name(table.table_name, suffix),
        __config__=_MODEL_CONFIG,
        __doc__=f"{suffix} schema for {table.table_name}",
        **fields,
    )


# =============================================================================
# Model Generation
# =============================================================================


def generate_create_schema(table: TableSchema) -> type[BaseModel]:
    """Create model: generated columns skipped, required unless nullable or defaulted."""
    fields: dict[str, Any] = {}
    for column in table.columns:
        if is_generated_column(column):
            continue
        annotation, constraints = map_column(column)
        if column.nullable:
            fields[column.name] = (annotation | None, Field(default=None, **constraints))
        elif column.has_default:
            # Omitted values are left to the store's default
            fields[column.name] = (annotation, Field(default=None, **constraints))
        else:
            fields[column.name] = (annotation, Field(..., **constraints))
    return _build(table, "Create", fields)


def generate_update_schema(table: TableSchema) -> type[BaseModel]:
    """Update model: every non-generated column optional."""
    fields: dict[str, Any] = {}
    for column in table.columns:
        if is_generated_column(column):
            continue
        annotation, constraints = map_column(column)
        if column.nullable:
            annotation = annotation | None
        fields[column.name] = (annotation, Field(default=None, **constraints))
    return _build(table, "Update", fields)


def generate_read_schema(table: TableSchema) -> type[BaseModel]:
    """Read model: every column required, nullable columns accept None."""
    fields: dict[str, Any] = {}
    for column in table.columns:
        annotation, constraints = map_column(column)
        if column.nullable:
            annotation = annotation | None
        fields[column.name] = (annotation, Field(..., **constraints))
    return _build(table, "Read", fields)


@dataclass(frozen=True)
class ValidatorSet:
    """The create/update/read models for one table."""

    table_name: str
    create: type[BaseModel]
    update: type[BaseModel]
    read: type[BaseModel]
    # Blank strings sent for these columns count as omitted
    numeric_columns: frozenset[str] = frozenset()

    def validate_create(self, payload: Any) -> dict[str, Any]:
        """Validate a create payload; returns only the fields the caller set."""
        return _validate(self.create, self._drop_blank_numbers(payload))

    def validate_update(self, payload: Any) -> dict[str, Any]:
        return _validate(self.update, self._drop_blank_numbers(payload))

    def validate_read(self, record: Any) -> dict[str, Any]:
        return _validate(self.read, record, exclude_unset=False)

    def _drop_blank_numbers(self, payload: Any) -> Any:
        if not isinstance(payload, dict) or not self.numeric_columns:
            return payload
        return {
            key: value
            for key, value in payload.items()
            if not (key in self.numeric_columns and isinstance(value, str) and not value.strip())
        }


def _validate(model: type[BaseModel], payload: Any, exclude_unset: bool = True) -> dict[str, Any]:
    try:
        instance = model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(details=validation_details(e.errors())) from e
    return instance.model_dump(exclude_unset=exclude_unset)


def synthesize(table: TableSchema) -> ValidatorSet:
    """
    Build the ValidatorSet for a table.

    A pure function of the schema: equal schemas give models with equal
    acceptance behaviour.
    """
    return ValidatorSet(
        table_name=table.table_name,
        create=generate_create_schema(table),
        update=generate_update_schema(table),
        read=generate_read_schema(table),
        numeric_columns=frozenset(
            c.name for c in table.columns if c.scalar_type in _NUMERIC_TYPES
        ),
    )


class ValidatorRegistry:
    """
    ValidatorSets for every table, built once at application start.

    There is no invalidation; a schema change requires a restart.
    """

    def __init__(self, validators: dict[str, ValidatorSet]):
        self._validators = dict(validators)

    @classmethod
    def build(cls, tables: Iterable[TableSchema]) -> "ValidatorRegistry":
        return cls({table.table_name: synthesize(table) for table in tables})

    def get(self, table_name: str) -> ValidatorSet | None:
        return self._validators.get(table_name)

    def __getitem__(self, table_name: str) -> ValidatorSet:
        return self._validators[table_name]

    def __contains__(self, table_name: object) -> bool:
        return table_name in self._validators

    def __len__(self) -> int:
        return len(self._validators)

    @property
    def table_names(self) -> list[str]:
        return list(self._validators)
