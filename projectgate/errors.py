"""Errors that must surface to the caller.

Authorization denials and invalid portal tokens are never raised; they come
back as empty results or ``is_valid=False``. Only broken business invariants
raise, and they abort the enclosing transaction.
"""

from __future__ import annotations


class InvariantViolation(Exception):
    """A write would leave the data in a state the domain forbids."""

    pass


class PositionConflictError(InvariantViolation):
    """A project already has someone in a single-holder position."""

    def __init__(self, project_id, position: str):
        self.project_id = project_id
        self.position = position
        super().__init__(
            f"Project {project_id} already has a '{position}' position holder"
        )


class PayloadError(ValueError):
    """A typed JSON payload could not be decoded."""

    pass


class CrossBOQReferenceError(InvariantViolation):
    """A percentage line would reference an item in a different BOQ."""

    def __init__(self, item_id, reference_item_id):
        self.item_id = item_id
        self.reference_item_id = reference_item_id
        super().__init__(
            f"BOQ item {reference_item_id} is not in the same BOQ as {item_id or 'the new item'}"
        )
