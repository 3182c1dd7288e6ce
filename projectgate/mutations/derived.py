"""Derived BOQ amounts and roll-ups.

Line amounts branch on ``item_type``:

- quantity (and anything unrecognised): total_rate = supply + install,
  costs = quantity x rate, total = supply_cost + install_cost
- prime_cost: total = prime_cost_amount
- percentage: total = referenced item's total x percentage / 100
- sub_header: everything zero

A non-null, non-zero ``total_amount`` supplied by the writer is kept verbatim
and flagged ``total_is_explicit`` so imported lump sums survive later edits
and cascades. A percentage line may only reference a line in its own BOQ.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.models import (
    BOQBillModel,
    BOQItemModel,
    BOQSectionModel,
    ProjectBOQModel,
)
from projectgate.errors import CrossBOQReferenceError
from projectgate.models import BOQItemType

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


def as_decimal(value: Any) -> Decimal:
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def is_explicit_total(value: Any) -> bool:
    """True when a caller-supplied total must be preserved."""
    return value is not None and as_decimal(value) != _ZERO


def compute_boq_item_amounts(
    values: Mapping[str, Any],
    reference_amount: Decimal | None = None,
    explicit_total: Any = None,
) -> dict[str, Decimal]:
    """Derived columns for one BOQ line.

    Args:
        values: Current (merged) row values
        reference_amount: Total of the referenced item, for percentage lines
        explicit_total: ``total_amount`` as supplied in this write, if any

    Returns:
        total_rate, supply_cost, install_cost and total_amount
    """
    item_type = values.get("item_type") or BOQItemType.QUANTITY.value
    quantity = as_decimal(values.get("quantity"))
    supply_rate = as_decimal(values.get("supply_rate"))
    install_rate = as_decimal(values.get("install_rate"))

    if item_type == BOQItemType.PRIME_COST.value:
        prime = as_decimal(values.get("prime_cost_amount"))
        derived = {
            "total_rate": _ZERO,
            "supply_cost": prime,
            "install_cost": _ZERO,
            "total_amount": prime,
        }
    elif item_type == BOQItemType.PERCENTAGE.value:
        total = _ZERO
        if values.get("reference_item_id") is not None:
            percentage = as_decimal(values.get("percentage_value"))
            total = as_decimal(reference_amount) * percentage / Decimal(100)
        derived = {
            "total_rate": _ZERO,
            "supply_cost": _ZERO,
            "install_cost": _ZERO,
            "total_amount": total,
        }
    elif item_type == BOQItemType.SUB_HEADER.value:
        derived = dict.fromkeys(("total_rate", "supply_cost", "install_cost", "total_amount"), _ZERO)
    else:
        supply_cost = quantity * supply_rate
        install_cost = quantity * install_rate
        derived = {
            "total_rate": supply_rate + install_rate,
            "supply_cost": supply_cost,
            "install_cost": install_cost,
            "total_amount": supply_cost + install_cost,
        }

    derived = {key: _money(value) for key, value in derived.items()}
    if is_explicit_total(explicit_total):
        derived["total_amount"] = as_decimal(explicit_total)
    return derived


async def boq_of_section(session: AsyncSession, section_id: UUID | None) -> UUID | None:
    if section_id is None:
        return None
    return await session.scalar(
        select(BOQBillModel.boq_id)
        .join(BOQSectionModel, BOQSectionModel.bill_id == BOQBillModel.id)
        .where(BOQSectionModel.id == section_id)
    )


def _item_boq_id():
    return (
        select(BOQBillModel.boq_id)
        .join(BOQSectionModel, BOQSectionModel.bill_id == BOQBillModel.id)
        .where(BOQSectionModel.id == BOQItemModel.section_id)
        .scalar_subquery()
    )


async def reference_total(
    session: AsyncSession,
    reference_item_id: UUID | None,
    boq_id: UUID | None,
    item_id: UUID | None = None,
) -> Decimal | None:
    """Total of the referenced line, which must sit in BOQ ``boq_id``.

    Raises:
        CrossBOQReferenceError: If the referenced line belongs to another BOQ
    """
    if reference_item_id is None:
        return None
    found = (
        await session.execute(
            select(BOQItemModel.total_amount, _item_boq_id()).where(
                BOQItemModel.id == reference_item_id
            )
        )
    ).first()
    if found is None:
        return None
    total, reference_boq_id = found
    if reference_boq_id != boq_id:
        raise CrossBOQReferenceError(item_id, reference_item_id)
    return total


async def check_dependents_in_boq(session: AsyncSession, item_id: UUID, boq_id: UUID | None) -> None:
    """Percentage lines that reference ``item_id`` must stay in BOQ ``boq_id``.

    Raises:
        CrossBOQReferenceError: If moving ``item_id`` would strand a dependent
    """
    stranded = await session.scalar(
        select(BOQItemModel.id)
        .where(BOQItemModel.reference_item_id == item_id, _item_boq_id() != boq_id)
        .limit(1)
    )
    if stranded is not None:
        raise CrossBOQReferenceError(stranded, item_id)


async def cascade_percentage_items(
    session: AsyncSession,
    item_id: UUID,
    new_total: Decimal,
    _seen: set[UUID] | None = None,
) -> list[UUID]:
    """Recompute percentage lines that reference ``item_id``.

    Follows chains (a percentage of a percentage) and stops on cycles.
    Returns the ids of the lines that were recomputed.
    """
    seen = _seen if _seen is not None else {item_id}
    result = await session.execute(
        select(BOQItemModel).where(
            BOQItemModel.reference_item_id == item_id,
            BOQItemModel.item_type == BOQItemType.PERCENTAGE.value,
        )
    )
    touched: list[UUID] = []
    for dependent in result.scalars().all():
        if dependent.id in seen:
            logger.warning("Percentage reference cycle at BOQ item %s", dependent.id)
            continue
        seen.add(dependent.id)
        if dependent.total_is_explicit:
            continue
        amounts = compute_boq_item_amounts(
            {
                "item_type": dependent.item_type,
                "reference_item_id": dependent.reference_item_id,
                "percentage_value": dependent.percentage_value,
            },
            reference_amount=new_total,
        )
        if as_decimal(dependent.total_amount) == amounts["total_amount"]:
            continue
        for key, value in amounts.items():
            setattr(dependent, key, value)
        touched.append(dependent.id)
        touched.extend(
            await cascade_percentage_items(session, dependent.id, amounts["total_amount"], seen)
        )

    if touched:
        await session.flush()
    return touched


async def roll_up_boq_totals(session: AsyncSession, section_id: UUID) -> None:
    """Recompute section, bill and BOQ totals above ``section_id``."""
    await session.flush()

    section_total = await session.scalar(
        select(func.coalesce(func.sum(BOQItemModel.total_amount), 0)).where(
            BOQItemModel.section_id == section_id
        )
    )
    bill_id = await session.scalar(
        select(BOQSectionModel.bill_id).where(BOQSectionModel.id == section_id)
    )
    await session.execute(
        update(BOQSectionModel)
        .where(BOQSectionModel.id == section_id)
        .values(total_amount=_money(as_decimal(section_total)))
    )
    if bill_id is None:
        return

    bill_total = await session.scalar(
        select(func.coalesce(func.sum(BOQSectionModel.total_amount), 0)).where(
            BOQSectionModel.bill_id == bill_id
        )
    )
    boq_id = await session.scalar(select(BOQBillModel.boq_id).where(BOQBillModel.id == bill_id))
    await session.execute(
        update(BOQBillModel)
        .where(BOQBillModel.id == bill_id)
        .values(total_amount=_money(as_decimal(bill_total)))
    )
    if boq_id is None:
        return

    boq_total = await session.scalar(
        select(func.coalesce(func.sum(BOQBillModel.total_amount), 0)).where(
            BOQBillModel.boq_id == boq_id
        )
    )
    await session.execute(
        update(ProjectBOQModel)
        .where(ProjectBOQModel.id == boq_id)
        .values(total_amount=_money(as_decimal(boq_total)))
    )
