"""JSON <-> ORM value conversion for the resource API."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import inspect

from projectgate.core.timeutil import as_naive_utc
from projectgate.mutations.audit import snapshot, to_jsonable


def row_to_dict(row: Any) -> dict[str, Any]:
    return to_jsonable(snapshot(row))


def _python_type(column) -> type | None:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def coerce_payload(model: type, payload: dict[str, Any]) -> dict[str, Any]:
    """Convert JSON scalars to the Python types the model's columns expect.

    Unknown keys are passed through untouched so the writer can reject them.

    Raises:
        ValueError: If a value cannot be converted
    """
    columns = {attr.key: attr.columns[0] for attr in inspect(model).column_attrs}
    coerced: dict[str, Any] = {}
    for key, value in payload.items():
        column = columns.get(key)
        if column is None or value is None:
            coerced[key] = value
            continue

        target = _python_type(column)
        try:
            if target is UUID and not isinstance(value, UUID):
                value = UUID(str(value))
            elif target is datetime and isinstance(value, str):
                value = as_naive_utc(datetime.fromisoformat(value))
            elif target is date and isinstance(value, str):
                value = date.fromisoformat(value)
            elif target is Decimal and not isinstance(value, Decimal):
                value = Decimal(str(value))
        except (ValueError, InvalidOperation) as e:
            raise ValueError(f"Invalid value for {key}: {value!r}") from e
        coerced[key] = value
    return coerced
