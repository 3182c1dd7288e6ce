"""Single write path for scoped resources.

Every create/update/delete runs the same ordered pipeline:

    authorize -> validate -> derive -> persist -> audit -> propagate -> notify

Authorization is delegated to the AuthorizationEngine and fails silently
(None/False). Validation failures that reflect broken invariants raise and
abort the caller's transaction. Audit failures are logged and swallowed by
the AuditTrail so they never block the write itself.

Resource-specific behaviour (BOQ amounts, tenant fan-out, procurement status
history, position checks) is attached as injectable hooks.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.authz.engine import AuthorizationEngine, check_fields, get_authorization_engine
from projectgate.db.models import BOQItemModel, ProjectMemberModel
from projectgate.errors import PositionConflictError
from projectgate.models import ChangeType, MembershipRole, Operation, Principal
from projectgate.mutations import derived
from projectgate.mutations.audit import AUDIT_SPECS, AuditTrail, snapshot
from projectgate.mutations.derived import as_decimal
from projectgate.mutations.notifications import fan_out_tenant_change
from projectgate.mutations.positions import is_position_conflict, validate_membership_position
from projectgate.mutations.propagation import propagate_procurement_status
from projectgate.payloads import decode_payload, encode_payload

logger = logging.getLogger(__name__)


@dataclass
class WriteContext:
    """State threaded through the pipeline for one write."""

    resource: str
    operation: Operation
    principal: Principal
    actor: str
    values: dict[str, Any] = field(default_factory=dict)
    row: Any | None = None
    old: dict[str, Any] | None = None
    project_id: UUID | None = None
    token_id: UUID | None = None
    extra: dict[str, Any] = field(default_factory=dict)  # scratch space shared by hooks

    @property
    def merged(self) -> dict[str, Any]:
        """Row state as it will be after the write (before derivation)."""
        return {**(self.old or {}), **self.values}


Step = Callable[[AsyncSession, WriteContext], Awaitable[None]]


@dataclass
class EntityHooks:
    validate: list[Step] = field(default_factory=list)
    derive: list[Step] = field(default_factory=list)
    propagate: list[Step] = field(default_factory=list)
    notify: list[Step] = field(default_factory=list)
    translate_error: Callable[[WriteContext, IntegrityError], Exception | None] | None = None


# ----------------------------------------------------------------------------
# Built-in hooks
# ----------------------------------------------------------------------------


async def stamp_project_creator(session: AsyncSession, ctx: WriteContext) -> None:
    if ctx.operation == Operation.CREATE and ctx.principal.user_id is not None:
        ctx.values.setdefault("created_by", ctx.principal.user_id)


async def add_creator_as_owner(session: AsyncSession, ctx: WriteContext) -> None:
    """The creator of a project becomes its owner."""
    if ctx.operation != Operation.CREATE or ctx.row.created_by is None:
        return
    session.add(
        ProjectMemberModel(
            project_id=ctx.row.id,
            user_id=ctx.row.created_by,
            role=MembershipRole.OWNER.value,
            invited_by=ctx.row.created_by,
        )
    )
    await session.flush()


async def check_position(session: AsyncSession, ctx: WriteContext) -> None:
    if ctx.operation == Operation.DELETE:
        return
    await validate_membership_position(session, ctx.values, ctx.row)


def translate_position_conflict(ctx: WriteContext, error: IntegrityError) -> Exception | None:
    if not is_position_conflict(error):
        return None
    project_id = ctx.merged.get("project_id")
    return PositionConflictError(project_id, ctx.merged.get("position"))


async def normalise_workforce_details(session: AsyncSession, ctx: WriteContext) -> None:
    """Decode the JSON document at the boundary; malformed payloads raise PayloadError."""
    if "workforce_details" in ctx.values:
        ctx.values["workforce_details"] = encode_payload(
            decode_payload(ctx.values["workforce_details"])
        )


async def derive_boq_amounts(session: AsyncSession, ctx: WriteContext) -> None:
    if ctx.operation == Operation.DELETE:
        # Dependents lose their reference when the row goes
        ctx.extra["cascaded"] = await derived.cascade_percentage_items(
            session, ctx.old["id"], Decimal("0")
        )
        return
    merged = ctx.merged
    item_id = (ctx.old or {}).get("id")
    boq_id = await derived.boq_of_section(session, merged.get("section_id"))
    reference_amount = await derived.reference_total(
        session, merged.get("reference_item_id"), boq_id, item_id
    )
    if item_id is not None and "section_id" in ctx.values:
        await derived.check_dependents_in_boq(session, item_id, boq_id)

    # A stored lump sum stands until a write supplies a new total
    if "total_amount" in ctx.values:
        explicit_total = ctx.values["total_amount"]
    elif merged.get("total_is_explicit"):
        explicit_total = merged.get("total_amount")
    else:
        explicit_total = None
    ctx.values.update(
        derived.compute_boq_item_amounts(
            merged,
            reference_amount=reference_amount,
            explicit_total=explicit_total,
        )
    )
    ctx.values["total_is_explicit"] = derived.is_explicit_total(explicit_total)


async def cascade_and_roll_up_boq(session: AsyncSession, ctx: WriteContext) -> None:
    """Recompute dependent percentage lines and section/bill/BOQ totals."""
    touched: list[UUID] = []
    if ctx.operation == Operation.DELETE:
        section_id = ctx.old["section_id"]
        touched = ctx.extra.get("cascaded", [])
    else:
        section_id = ctx.row.section_id
        old_total = (ctx.old or {}).get("total_amount")
        new_total = ctx.row.total_amount
        if ctx.operation == Operation.UPDATE and as_decimal(old_total) != as_decimal(new_total):
            touched = await derived.cascade_percentage_items(session, ctx.row.id, new_total)

    sections = {section_id}
    for dependent_id in touched:
        dependent = await session.get(BOQItemModel, dependent_id)
        if dependent is not None:
            sections.add(dependent.section_id)
    if ctx.old and ctx.old.get("section_id") not in (None, section_id):
        sections.add(ctx.old["section_id"])

    for sid in sections:
        await derived.roll_up_boq_totals(session, sid)


async def propagate_procurement(session: AsyncSession, ctx: WriteContext) -> None:
    if ctx.operation == Operation.DELETE:
        return
    from_status = (ctx.old or {}).get("status")
    await propagate_procurement_status(session, ctx.row, from_status, ctx.actor)


async def notify_tenant_change(session: AsyncSession, ctx: WriteContext) -> None:
    if ctx.project_id is None:
        return
    state = ctx.old if ctx.operation == Operation.DELETE else snapshot(ctx.row)
    await fan_out_tenant_change(
        session,
        ctx.project_id,
        state["id"],
        _CHANGE_TYPES[ctx.operation],
        actor_id=ctx.principal.user_id,
        shop_number=state.get("shop_number"),
    )


async def stamp_confirming_token(session: AsyncSession, ctx: WriteContext) -> None:
    if ctx.operation == Operation.CREATE and ctx.token_id is not None:
        ctx.values["token_id"] = ctx.token_id


def default_hooks() -> dict[str, EntityHooks]:
    return {
        "projects": EntityHooks(
            derive=[stamp_project_creator],
            propagate=[add_creator_as_owner],
        ),
        "project_members": EntityHooks(
            validate=[check_position],
            translate_error=translate_position_conflict,
        ),
        "tenants": EntityHooks(
            validate=[normalise_workforce_details],
            notify=[notify_tenant_change],
        ),
        "boq_items": EntityHooks(
            derive=[derive_boq_amounts],
            propagate=[cascade_and_roll_up_boq],
        ),
        "procurement_items": EntityHooks(propagate=[propagate_procurement]),
        "delivery_confirmations": EntityHooks(derive=[stamp_confirming_token]),
    }


_CHANGE_TYPES = {
    Operation.CREATE: ChangeType.CREATED,
    Operation.UPDATE: ChangeType.UPDATED,
    Operation.DELETE: ChangeType.DELETED,
}


# ----------------------------------------------------------------------------
# Writer
# ----------------------------------------------------------------------------


class EntityWriter:
    """Authorized, audited writes for every scoped resource.

    Example:
        >>> writer = EntityWriter()
        >>> tenant = await writer.create(session, principal, "tenants", {...})
        >>> tenant is None  # denied
    """

    def __init__(
        self,
        engine: AuthorizationEngine | None = None,
        hooks: Mapping[str, EntityHooks] | None = None,
    ):
        self.engine = engine or get_authorization_engine()
        self.hooks: dict[str, EntityHooks] = dict(default_hooks() if hooks is None else hooks)

    def hooks_for(self, resource: str) -> EntityHooks:
        return self.hooks.get(resource) or EntityHooks()

    async def _context(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        operation: Operation,
        values: Mapping[str, Any] | None,
    ) -> WriteContext:
        token_id = None
        actor = principal.actor_label
        if principal.is_anonymous:
            token = await self.engine.portal_token(session, principal)
            if token is not None:
                token_id = token.id
                actor = f"portal:{token.id}"
        return WriteContext(
            resource=resource,
            operation=operation,
            principal=principal,
            actor=actor,
            values=dict(values or {}),
            token_id=token_id,
        )

    async def _run(self, steps: list[Step], session: AsyncSession, ctx: WriteContext) -> None:
        for step in steps:
            await step(session, ctx)

    async def _flush(self, session: AsyncSession, ctx: WriteContext) -> None:
        try:
            await session.flush()
        except IntegrityError as e:
            translate = self.hooks_for(ctx.resource).translate_error
            translated = translate(ctx, e) if translate else None
            if translated is not None:
                raise translated from e
            raise

    async def _audit(self, session: AsyncSession, ctx: WriteContext, new: dict | None) -> None:
        if ctx.resource not in AUDIT_SPECS:
            return
        subject = (ctx.old or new or {}).get("id")
        await AuditTrail(ctx.resource).record(
            session,
            _CHANGE_TYPES[ctx.operation],
            subject_id=subject,
            project_id=ctx.project_id,
            old=ctx.old,
            new=new,
            actor=ctx.actor,
        )

    async def create(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        values: Mapping[str, Any],
    ) -> Any | None:
        scope = self.engine.scope(resource)
        check_fields(scope.model, values)
        hooks = self.hooks_for(resource)

        if not await self.engine.can_create(session, principal, resource, values):
            logger.info("Create on %s denied to %s", resource, principal.actor_label)
            return None

        ctx = await self._context(session, principal, resource, Operation.CREATE, values)
        await self._run(hooks.validate, session, ctx)
        await self._run(hooks.derive, session, ctx)

        ctx.row = scope.model(**ctx.values)
        session.add(ctx.row)
        await self._flush(session, ctx)
        ctx.project_id = await scope.resolve_project_id(session, ctx.row)

        await self._audit(session, ctx, snapshot(ctx.row))
        await self._run(hooks.propagate, session, ctx)
        await self._run(hooks.notify, session, ctx)
        return ctx.row

    async def update(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        row_id: UUID,
        values: Mapping[str, Any],
    ) -> Any | None:
        scope = self.engine.scope(resource)
        check_fields(scope.model, values)
        hooks = self.hooks_for(resource)

        row = await self.engine.get(
            session, principal, resource, row_id, Operation.UPDATE, fields=values.keys()
        )
        if row is None:
            logger.info("Update on %s %s denied to %s", resource, row_id, principal.actor_label)
            return None

        ctx = await self._context(session, principal, resource, Operation.UPDATE, values)
        ctx.row = row
        ctx.old = snapshot(row)
        if not await self.engine.can_update_to(
            session, principal, resource, ctx.merged, values.keys()
        ):
            logger.info("Update moving %s %s denied to %s", resource, row_id, principal.actor_label)
            return None

        await self._run(hooks.validate, session, ctx)
        await self._run(hooks.derive, session, ctx)

        for key, value in ctx.values.items():
            setattr(row, key, value)
        await self._flush(session, ctx)
        ctx.project_id = await scope.resolve_project_id(session, row)

        await self._audit(session, ctx, snapshot(row))
        await self._run(hooks.propagate, session, ctx)
        await self._run(hooks.notify, session, ctx)
        return row

    async def delete(
        self,
        session: AsyncSession,
        principal: Principal,
        resource: str,
        row_id: UUID,
    ) -> bool:
        scope = self.engine.scope(resource)
        hooks = self.hooks_for(resource)

        row = await self.engine.get(session, principal, resource, row_id, Operation.DELETE)
        if row is None:
            logger.info("Delete on %s %s denied to %s", resource, row_id, principal.actor_label)
            return False

        ctx = await self._context(session, principal, resource, Operation.DELETE, None)
        ctx.row = row
        ctx.old = snapshot(row)
        ctx.project_id = await scope.resolve_project_id(session, row)
        await self._run(hooks.validate, session, ctx)
        await self._run(hooks.derive, session, ctx)

        await session.delete(row)
        await self._flush(session, ctx)

        await self._audit(session, ctx, None)
        await self._run(hooks.propagate, session, ctx)
        await self._run(hooks.notify, session, ctx)
        return True
