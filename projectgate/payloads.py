"""Typed JSON document payloads.

Columns such as ``tenants.workforce_details`` hold JSON documents. They are
decoded at the boundary into a typed variant (selected by ``kind``) so
business code never threads opaque dicts around. A new document type is a
new model registered in ``PAYLOAD_KINDS``.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from projectgate.errors import PayloadError


class TradeAllocation(BaseModel):
    trade: str
    headcount: int = Field(ge=0)


class WorkforceDetails(BaseModel):
    kind: Literal["workforce_details"] = "workforce_details"
    schema_version: Literal[1] = 1
    total_headcount: int = Field(default=0, ge=0)
    trades: list[TradeAllocation] = Field(default_factory=list)
    notes: str | None = None


PAYLOAD_KINDS: dict[str, type[BaseModel]] = {
    "workforce_details": WorkforceDetails,
}


def decode_payload(raw: Any) -> BaseModel | None:
    """Decode a stored JSON document into its typed variant.

    Accepts a dict, a JSON string, an already-decoded variant or None.

    Raises:
        PayloadError: If the document has an unknown kind or invalid fields
    """
    if raw is None:
        return None
    if isinstance(raw, tuple(PAYLOAD_KINDS.values())):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise PayloadError(f"Payload must be a JSON object, got {type(raw).__name__}")

    model = PAYLOAD_KINDS.get(raw.get("kind"))
    if model is None:
        raise PayloadError(f"Unknown payload kind: {raw.get('kind')!r}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise PayloadError(f"Invalid {raw['kind']} payload: {e.error_count()} error(s)") from e


def encode_payload(payload: BaseModel | None) -> dict | None:
    """Serialise a typed payload for a JSON column."""
    if payload is None:
        return None
    return payload.model_dump(mode="json")
