"""ProjectGate Pydantic models for type-safe data validation.

Principals, request context, portal validation results and audit entries.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PrincipalKind(str, Enum):
    """Who is making the request."""

    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"  # Portal bearer, no account
    SERVICE = "service"  # Trusted backend job, bypasses predicates


class GlobalRole(str, Enum):
    """Account-wide role stored in user_roles."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"
    CLIENT = "client"


# Most privileged first; used when an account holds several role rows
ROLE_PRECEDENCE: tuple[GlobalRole, ...] = (
    GlobalRole.ADMIN,
    GlobalRole.MODERATOR,
    GlobalRole.USER,
    GlobalRole.CLIENT,
)


class MembershipRole(str, Enum):
    OWNER = "owner"
    EDITOR = "editor"
    MEMBER = "member"


class ProjectPosition(str, Enum):
    """Per-project engineering position."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    ADMIN = "admin"
    OVERSIGHT = "oversight"


# Positions that at most one member of a project may hold
SINGLE_HOLDER_POSITIONS = frozenset({ProjectPosition.PRIMARY, ProjectPosition.SECONDARY})


class TokenClass(str, Enum):
    CONTRACTOR = "contractor"  # Read + narrow field-level writes
    CLIENT = "client"  # Read-only, filtered by document tabs


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class BOQItemType(str, Enum):
    QUANTITY = "quantity"
    PRIME_COST = "prime_cost"
    PERCENTAGE = "percentage"
    SUB_HEADER = "sub_header"


class ProcurementStatus(str, Enum):
    PENDING = "pending"
    QUOTED = "quoted"
    ORDERED = "ordered"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RequestContext(BaseModel):
    """Raw identity claims extracted from an incoming request or job."""

    user_id: UUID | None = None  # Verified session identity
    is_service: bool = False
    portal_credential: str | None = None  # Token or short code
    ip_address: str | None = None
    user_agent: str | None = None


class Principal(BaseModel):
    """Resolved caller. Built fresh per request, never cached."""

    model_config = ConfigDict(frozen=True)

    kind: PrincipalKind
    user_id: UUID | None = None
    role: GlobalRole | None = None
    portal_credential: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def service(cls) -> Principal:
        return cls(kind=PrincipalKind.SERVICE)

    @classmethod
    def user(cls, user_id: UUID, role: GlobalRole = GlobalRole.USER) -> Principal:
        return cls(kind=PrincipalKind.AUTHENTICATED, user_id=user_id, role=role)

    @classmethod
    def anonymous(
        cls,
        portal_credential: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Principal:
        return cls(
            kind=PrincipalKind.ANONYMOUS,
            portal_credential=portal_credential,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    @property
    def is_service(self) -> bool:
        return self.kind == PrincipalKind.SERVICE

    @property
    def is_authenticated(self) -> bool:
        return self.kind == PrincipalKind.AUTHENTICATED and self.user_id is not None

    @property
    def is_anonymous(self) -> bool:
        return self.kind == PrincipalKind.ANONYMOUS

    @property
    def actor_label(self) -> str:
        """Identifier used in logs and audit rows."""
        if self.is_service:
            return "service"
        if self.user_id is not None:
            return str(self.user_id)
        return "portal"


class PortalValidation(BaseModel):
    """Outcome of presenting a portal token or short code.

    ``is_valid=False`` is the only signal for missing, revoked, expired or
    throttled credentials; validation never raises.
    """

    is_valid: bool
    token_id: UUID | None = None
    project_id: UUID | None = None
    token_class: TokenClass | None = None
    expires_at: datetime | None = None
    document_tabs: list[str] = Field(default_factory=list)
    holder_name: str | None = None
    holder_email: str | None = None
    reason: str | None = None  # not_found, inactive, expired, rate_limited

    @classmethod
    def invalid(cls, reason: str) -> PortalValidation:
        return cls(is_valid=False, reason=reason)


class AuditEntry(BaseModel):
    """Read model for an audit row, stable for reporting consumers."""

    id: UUID
    entity_type: str
    entity_id: UUID | None
    project_id: UUID | None
    change_type: ChangeType
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)
    changed_by: str | None = None
    changed_at: datetime


class RenewalReport(BaseModel):
    """Summary of one auto-renewal sweep."""

    swept_at: datetime
    renewed_token_ids: list[UUID] = Field(default_factory=list)

    @property
    def renewed(self) -> int:
        return len(self.renewed_token_ids)
