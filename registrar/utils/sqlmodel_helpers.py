"""Partial-update helpers for SQLModel rows.

Request payloads arrive as JSON-friendly values; they are cast back to the
types declared on the table model (datetimes, enums, ints) before touching
the row so SQLite never receives ISO strings for datetime columns.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Type, TypeVar

from pydantic import TypeAdapter, ValidationError
from sqlmodel import SQLModel

from ..errors import ValidationFailed


TModel = TypeVar("TModel", bound=SQLModel)

# Columnas que ningún payload puede sobrescribir
ALWAYS_PROTECTED = frozenset({"id", "created_at", "updated_at"})


def _coerce_field_value(model: Type[TModel], field_name: str, value: Any) -> Any:
    if value is None:
        return None
    field = model.model_fields.get(field_name)
    if field is None:
        raise ValidationFailed(f"Unknown field: {field_name}", details={"field": field_name})
    try:
        return TypeAdapter(field.annotation).validate_python(value)
    except ValidationError as exc:
        raise ValidationFailed(
            f"Invalid value for {field_name}",
            details={"field": field_name, "errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def normalize_payload_for_model(
    model: Type[TModel], data: Dict[str, Any], protected: Iterable[str] = ()
) -> Dict[str, Any]:
    """Return a copy of *data* with values coerced to ``model`` field types.

    Protected keys are dropped silently; unknown keys are rejected.
    """
    skip = ALWAYS_PROTECTED | set(protected)
    return {
        key: _coerce_field_value(model, key, value)
        for key, value in data.items()
        if key not in skip
    }


def apply_partial_update(instance: TModel, data: Dict[str, Any], protected: Iterable[str] = ()) -> Dict[str, Any]:
    """Assign the coerced *data* into *instance* and return the fields that changed."""
    coerced = normalize_payload_for_model(type(instance), data, protected)
    changed: Dict[str, Any] = {}
    for key, value in coerced.items():
        if getattr(instance, key) != value:
            changed[key] = value
        setattr(instance, key, value)
    return changed
