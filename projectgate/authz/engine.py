"""Per-row authorization engine.

Turns the active policy for (resource, operation) into either a SQL filter
(reads, updates, deletes) or a boolean (creates, and the row an update
will leave behind), evaluated for one principal. Denial is silent
everywhere: reads return fewer rows, writes return None/False and change
nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, false, inspect, or_, true
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.authz import predicates
from projectgate.authz.policies import Clause, Grant, PolicyRegistry, default_registry
from projectgate.authz.scope import ResourceScope, get_scope
from projectgate.core.timeutil import utcnow
from projectgate.db.models import Base, PortalTokenModel
from projectgate.models import Operation, Principal, TokenClass

logger = logging.getLogger(__name__)

_PORTAL_CLASS = {
    Clause.CONTRACTOR_PORTAL: TokenClass.CONTRACTOR,
    Clause.CLIENT_PORTAL: TokenClass.CLIENT,
}


def column_names(model: type[Base]) -> set[str]:
    return {column.key for column in inspect(model).column_attrs}


def row_values(row: Base) -> dict[str, Any]:
    return {key: getattr(row, key) for key in column_names(type(row))}


def check_fields(model: type[Base], values: Mapping[str, Any]) -> None:
    """Reject payload keys that are not columns of ``model``."""
    unknown = set(values) - column_names(model)
    if unknown:
        raise ValueError(f"Unknown field(s) for {model.__tablename__}: {', '.join(sorted(unknown))}")


class AuthorizationEngine:
    """Evaluates resource policies for a principal.

    Args:
        registry: Policy registry (defaults to the built-in version 1 set)
        clock: Source of "now" for portal token expiry checks
    """

    def __init__(
        self,
        registry: PolicyRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry or default_registry()
        self.clock = clock

    def scope(self, resource: str) -> ResourceScope:
        return get_scope(resource)

    async def portal_token(
        self, session: AsyncSession, principal: Principal
    ) -> PortalTokenModel | None:
        """The live token behind an anonymous principal, if any."""
        return await predicates.presented_token(session, principal, self.clock())

    # ------------------------------------------------------------------
    # SQL path
    # ------------------------------------------------------------------

    async def where_clause(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        operation: Operation,
        fields: Iterable[str] | None = None,
    ) -> ColumnElement[bool]:
        """Row filter granting ``operation`` on ``resource`` to ``principal``.

        The expression applies to ``scope.scoped_select()``.
        """
        scope = self.scope(resource)
        operation = Operation(operation)
        fields = list(fields) if fields is not None else None

        if scope.immutable and operation != Operation.READ:
            return false()
        if principal.is_service:
            return true()

        clauses: list[ColumnElement[bool]] = []
        token: PortalTokenModel | None = None
        token_loaded = False

        for grant in self.registry.rule(resource, operation):
            if not grant.permits_fields(fields):
                continue

            if grant.clause == Clause.ADMIN:
                if await predicates.is_admin(session, principal):
                    return true()

            elif grant.clause == Clause.AUTHENTICATED:
                if principal.is_authenticated:
                    return true()

            elif grant.clause == Clause.PROJECT_ACCESS:
                if principal.is_authenticated and scope.is_project_scoped:
                    clauses.append(
                        predicates.project_access_clause(
                            scope.project_column(),
                            principal.user_id,
                            roles=grant.roles,
                            positions=grant.positions,
                        )
                    )

            elif grant.clause == Clause.OWN_ROWS:
                if principal.is_authenticated and scope.owner_column:
                    clauses.append(getattr(scope.model, scope.owner_column) == principal.user_id)

            elif grant.clause in _PORTAL_CLASS:
                if not token_loaded:
                    token = await self.portal_token(session, principal)
                    token_loaded = True
                clause = self._portal_clause(scope, grant, token)
                if clause is not None:
                    clauses.append(clause)

        if not clauses:
            return false()
        return or_(*clauses)

    def _portal_clause(
        self,
        scope: ResourceScope,
        grant: Grant,
        token: PortalTokenModel | None,
    ) -> ColumnElement[bool] | None:
        if token is None or not scope.is_project_scoped:
            return None
        if token.token_class != _PORTAL_CLASS[grant.clause].value:
            return None

        clause = scope.project_column() == token.project_id
        if grant.filter_by_document_tabs and scope.document_category_field:
            tabs = list(token.document_tabs or [])
            if not tabs:
                return None
            clause = clause & getattr(scope.model, scope.document_category_field).in_(tabs)
        return clause

    async def select(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        *criteria: ColumnElement[bool],
        operation: Operation = Operation.READ,
        limit: int | None = None,
    ) -> list[Any]:
        """Rows of ``resource`` visible to ``principal`` (empty when denied)."""
        scope = self.scope(resource)
        clause = await self.where_clause(session, principal, resource, operation)
        stmt = scope.scoped_select().where(clause)
        if criteria:
            stmt = stmt.where(*criteria)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        row_id: UUID,
        operation: Operation = Operation.READ,
        fields: Iterable[str] | None = None,
    ) -> Any | None:
        """One row by id if ``principal`` may perform ``operation`` on it."""
        scope = self.scope(resource)
        clause = await self.where_clause(session, principal, resource, operation, fields)
        stmt = scope.scoped_select().where(scope.model.id == row_id, clause)
        return (await session.execute(stmt)).scalars().first()

    # ------------------------------------------------------------------
    # Row-state path (no stored row to filter, evaluated in Python)
    # ------------------------------------------------------------------

    async def can_create(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        values: Mapping[str, Any],
    ) -> bool:
        return await self.permits_values(session, principal, resource, Operation.CREATE, values)

    async def can_update_to(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        merged: Mapping[str, Any],
        fields: Iterable[str],
    ) -> bool:
        """UPDATE grants evaluated against the row as it will be after the change.

        ``where_clause`` only vets the stored row. A change to a parent key
        (``project_id``, ``schedule_id``, ``section_id``...) or an owner column
        must also land somewhere the caller may write.
        """
        return await self.permits_values(
            session, principal, resource, Operation.UPDATE, merged, fields=fields
        )

    async def permits_values(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        operation: Operation,
        values: Mapping[str, Any],
        fields: Iterable[str] | None = None,
    ) -> bool:
        """Evaluate the grants for ``operation`` against a mapping of column values.

        Args:
            values: Full row state to check (payload for creates, merged row for updates)
            fields: Fields being written; defaults to every key of ``values``
        """
        scope = self.scope(resource)
        if scope.immutable:
            return False
        if principal.is_service:
            return True

        fields = list(values.keys() if fields is None else fields)
        project_id = await scope.resolve_project_id(session, values)
        now = self.clock()

        for grant in self.registry.rule(resource, Operation(operation)):
            if not grant.permits_fields(fields):
                continue

            if grant.clause == Clause.ADMIN:
                if await predicates.is_admin(session, principal):
                    return True

            elif grant.clause == Clause.AUTHENTICATED:
                if principal.is_authenticated:
                    return True

            elif grant.clause == Clause.PROJECT_ACCESS:
                if project_id is None:
                    continue
                if grant.is_narrowed:
                    allowed = await predicates.has_membership(
                        session, principal, project_id, grant.roles, grant.positions
                    )
                else:
                    allowed = await predicates.has_project_access(session, principal, project_id)
                if allowed:
                    return True

            elif grant.clause == Clause.OWN_ROWS:
                if (
                    principal.is_authenticated
                    and scope.owner_column
                    and values.get(scope.owner_column) == principal.user_id
                ):
                    return True

            elif grant.clause in _PORTAL_CLASS:
                if project_id is None:
                    continue
                if not await predicates.has_valid_portal_token(
                    session, principal, project_id, _PORTAL_CLASS[grant.clause], now
                ):
                    continue
                if grant.filter_by_document_tabs and scope.document_category_field:
                    token = await self.portal_token(session, principal)
                    if values.get(scope.document_category_field) not in (token.document_tabs or []):
                        continue
                return True

        return False

    async def can(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        operation: Operation,
        row_id: UUID | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> bool:
        """Convenience boolean check for any operation."""
        if Operation(operation) == Operation.CREATE:
            return await self.can_create(session, principal, resource, values or {})
        fields = values.keys() if values is not None else None
        return await self.get(session, principal, resource, row_id, operation, fields) is not None

    # ------------------------------------------------------------------
    # Plain authorized writes (no derived values, audit or propagation)
    # ------------------------------------------------------------------

    async def insert(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        values: Mapping[str, Any],
    ) -> Any | None:
        scope = self.scope(resource)
        check_fields(scope.model, values)
        if not await self.can_create(session, principal, resource, values):
            logger.info("Create on %s denied to %s", resource, principal.actor_label)
            return None
        row = scope.model(**values)
        session.add(row)
        await session.flush()
        return row

    async def update(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        row_id: UUID,
        values: Mapping[str, Any],
    ) -> Any | None:
        scope = self.scope(resource)
        check_fields(scope.model, values)
        row = await self.get(session, principal, resource, row_id, Operation.UPDATE, values.keys())
        if row is None:
            return None
        merged = {**row_values(row), **values}
        if not await self.can_update_to(session, principal, resource, merged, values.keys()):
            logger.info("Update moving %s %s denied to %s", resource, row_id, principal.actor_label)
            return None
        for key, value in values.items():
            setattr(row, key, value)
        await session.flush()
        return row

    async def delete(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        row_id: UUID,
    ) -> bool:
        row = await self.get(session, principal, resource, row_id, Operation.DELETE)
        if row is None:
            return False
        await session.delete(row)
        await session.flush()
        return True


_engine: AuthorizationEngine | None = None


def get_authorization_engine() -> AuthorizationEngine:
    global _engine
    if _engine is None:
        _engine = AuthorizationEngine()
    return _engine
