"""Principal-aware resource routes.

Routes:
- GET    /resources/{resource}           - Rows visible to the caller
- GET    /resources/{resource}/{row_id}  - One row
- POST   /resources/{resource}           - Create through the write pipeline
- PATCH  /resources/{resource}/{row_id}  - Update through the write pipeline
- DELETE /resources/{resource}/{row_id}  - Delete through the write pipeline

Denied reads look like empty results; denied writes look like missing rows
(404), so callers cannot test for the existence of data they can't see.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.authz.engine import AuthorizationEngine
from projectgate.authz.scope import SCOPES
from projectgate.db.connection import get_db
from projectgate.errors import InvariantViolation
from projectgate.models import Principal
from projectgate.mutations.writer import EntityWriter
from projectgate.web.dependencies import get_authz_engine, get_entity_writer, get_principal
from projectgate.web.serialization import coerce_payload, row_to_dict

router = APIRouter(prefix="/resources", tags=["resources"])


def _known(resource: str) -> None:
    if resource not in SCOPES:
        raise HTTPException(status_code=404, detail=f"Unknown resource: {resource}")


def _payload(resource: str, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        return coerce_payload(SCOPES[resource].model, payload)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("/{resource}")
async def list_rows(
    resource: str,
    limit: int = Query(default=200, ge=1, le=1000),
    session: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    engine: AuthorizationEngine = Depends(get_authz_engine),
) -> list[dict[str, Any]]:
    _known(resource)
    rows = await engine.select(session, principal, resource, limit=limit)
    return [row_to_dict(row) for row in rows]


@router.get("/{resource}/{row_id}")
async def get_row(
    resource: str,
    row_id: UUID,
    session: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    engine: AuthorizationEngine = Depends(get_authz_engine),
) -> dict[str, Any]:
    _known(resource)
    row = await engine.get(session, principal, resource, row_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Not found")
    return row_to_dict(row)


@router.post("/{resource}", status_code=status.HTTP_201_CREATED)
async def create_row(
    resource: str,
    payload: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    writer: EntityWriter = Depends(get_entity_writer),
) -> dict[str, Any]:
    _known(resource)
    values = _payload(resource, payload)
    try:
        row = await writer.create(session, principal, resource, values)
    except InvariantViolation as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if row is None:
        raise HTTPException(status_code=404, detail="Not found")
    return row_to_dict(row)


@router.patch("/{resource}/{row_id}")
async def update_row(
    resource: str,
    row_id: UUID,
    payload: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    writer: EntityWriter = Depends(get_entity_writer),
) -> dict[str, Any]:
    _known(resource)
    values = _payload(resource, payload)
    try:
        row = await writer.update(session, principal, resource, row_id, values)
    except InvariantViolation as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if row is None:
        raise HTTPException(status_code=404, detail="Not found")
    return row_to_dict(row)


@router.delete("/{resource}/{row_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_row(
    resource: str,
    row_id: UUID,
    session: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
    writer: EntityWriter = Depends(get_entity_writer),
) -> Response:
    _known(resource)
    if not await writer.delete(session, principal, resource, row_id):
        raise HTTPException(status_code=404, detail="Not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
