"""SQLAlchemy async database models for ProjectGate.

Every scoped resource reaches exactly one project, either through its own
``project_id`` column or through a parent chain. Audit tables reference their
subject with a nullable ``ON DELETE SET NULL`` key so delete records outlive
the deleted row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from projectgate.core.timeutil import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# ============================================================================
# Identity
# ============================================================================


class UserModel(Base):
    """Account created at signup."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class UserRoleModel(Base):
    """Global role store, kept apart from every table it protects."""

    __tablename__ = "user_roles"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(Text, nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        CheckConstraint(
            "role IN ('admin', 'moderator', 'user', 'client')",
            name="check_user_role_valid",
        ),
        Index("idx_user_roles_user", "user_id"),
    )


# ============================================================================
# Projects and membership
# ============================================================================


class ProjectModel(Base):
    """Root scoping entity."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    project_number: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default="active", nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL")
    )

    # Bumped on every tenant schedule change
    tenant_schedule_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_projects_created_by", "created_by"),
        Index("idx_projects_status", "status"),
    )


class ProjectMemberModel(Base):
    """(project, user, role) membership with an optional engineering position."""

    __tablename__ = "project_members"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(Text, default="member", nullable=False)
    position: Mapped[str | None] = mapped_column(Text)
    invited_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
        CheckConstraint(
            "role IN ('owner', 'editor', 'member')", name="check_member_role_valid"
        ),
        CheckConstraint(
            "position IS NULL OR position IN ('primary', 'secondary', 'admin', 'oversight')",
            name="check_member_position_valid",
        ),
        # Race-free guard: one primary and one secondary per project
        Index(
            "uq_project_single_holder_position",
            "project_id",
            "position",
            unique=True,
            sqlite_where=text("position IN ('primary', 'secondary')"),
            postgresql_where=text("position IN ('primary', 'secondary')"),
        ),
        Index("idx_project_members_user", "user_id"),
    )


# ============================================================================
# Portal tokens
# ============================================================================


class PortalTokenModel(Base):
    """Time-boxed, project-scoped bearer credential for contractors and clients."""

    __tablename__ = "portal_tokens"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    token_class: Mapped[str] = mapped_column(Text, nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    short_code: Mapped[str | None] = mapped_column(Text, unique=True)

    holder_name: Mapped[str | None] = mapped_column(Text)
    holder_email: Mapped[str | None] = mapped_column(Text)
    contractor_type: Mapped[str | None] = mapped_column(Text)  # main_contractor, subcontractor
    document_tabs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    access_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed_at: Mapped[datetime | None] = mapped_column(DateTime)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_renewed_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "token_class IN ('contractor', 'client')", name="check_token_class_valid"
        ),
        Index("idx_portal_tokens_project", "project_id", "token_class"),
        Index("idx_portal_tokens_renewal", "auto_renew", "is_active", "expires_at"),
    )


class PortalAccessLogModel(Base):
    """One row per successful portal validation. No principal: callers are anonymous."""

    __tablename__ = "portal_access_logs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    token_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("portal_tokens.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    accessed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(Text)
    user_agent: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("idx_portal_access_token_time", "token_id", "accessed_at"),)


# ============================================================================
# Scoped resources
# ============================================================================


class TenantModel(Base):
    """Shop/tenant schedule row."""

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    shop_number: Mapped[str] = mapped_column(Text, nullable=False)
    shop_name: Mapped[str | None] = mapped_column(Text)
    area_m2: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    db_size: Mapped[str | None] = mapped_column(Text)
    opening_date: Mapped[datetime | None] = mapped_column(DateTime)
    workforce_details: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (Index("idx_tenants_project", "project_id"),)


class CableScheduleModel(Base):
    __tablename__ = "cable_schedules"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    revision: Mapped[str] = mapped_column(Text, default="Rev 0", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class CableEntryModel(Base):
    """Cable run; reaches its project through the schedule."""

    __tablename__ = "cable_entries"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    schedule_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("cable_schedules.id", ondelete="CASCADE"), nullable=False
    )
    cable_tag: Mapped[str] = mapped_column(Text, nullable=False)
    from_location: Mapped[str | None] = mapped_column(Text)
    to_location: Mapped[str | None] = mapped_column(Text)
    cable_size: Mapped[str | None] = mapped_column(Text)
    planned_length: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    # Contractor-editable
    measured_length: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    contractor_installed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    installed_at: Mapped[datetime | None] = mapped_column(DateTime)
    contractor_notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("idx_cable_entries_schedule", "schedule_id"),)


class ProjectBOQModel(Base):
    __tablename__ = "project_boqs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)


class BOQBillModel(Base):
    __tablename__ = "boq_bills"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    boq_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("project_boqs.id", ondelete="CASCADE"), nullable=False
    )
    bill_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)


class BOQSectionModel(Base):
    __tablename__ = "boq_sections"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    bill_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("boq_bills.id", ondelete="CASCADE"), nullable=False
    )
    section_code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)


class BOQItemModel(Base):
    """BOQ line item; item -> section -> bill -> boq -> project."""

    __tablename__ = "boq_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    section_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("boq_sections.id", ondelete="CASCADE"), nullable=False
    )
    item_code: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    item_type: Mapped[str] = mapped_column(Text, default="quantity", nullable=False)

    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    supply_rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    install_rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    prime_cost_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    percentage_value: Mapped[Decimal | None] = mapped_column(Numeric(7, 3))
    reference_item_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("boq_items.id", ondelete="SET NULL")
    )

    # Derived
    total_rate: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    supply_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    install_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    total_is_explicit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "item_type IN ('quantity', 'prime_cost', 'percentage', 'sub_header')",
            name="check_boq_item_type_valid",
        ),
        Index("idx_boq_items_section", "section_id"),
        Index("idx_boq_items_reference", "reference_item_id"),
    )


class RoadmapItemModel(Base):
    __tablename__ = "roadmap_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)


class ProcurementItemModel(Base):
    __tablename__ = "procurement_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_name: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, default="pending", nullable=False)

    # Contractor-editable
    order_date: Mapped[datetime | None] = mapped_column(DateTime)
    expected_delivery: Mapped[datetime | None] = mapped_column(DateTime)

    roadmap_item_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("roadmap_items.id", ondelete="SET NULL")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'quoted', 'ordered', 'in_transit', 'delivered', 'cancelled')",
            name="check_procurement_status_valid",
        ),
        Index("idx_procurement_project_status", "project_id", "status"),
    )


class DeliveryConfirmationModel(Base):
    """Contractor-portal confirmation that a procurement item arrived."""

    __tablename__ = "delivery_confirmations"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    procurement_item_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("procurement_items.id", ondelete="CASCADE"), nullable=False
    )
    token_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("portal_tokens.id", ondelete="SET NULL")
    )
    confirmed_by_name: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    confirmed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ProjectDocumentModel(Base):
    """Document visible to clients when its category is in the token's tabs."""

    __tablename__ = "project_documents"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_project_documents_category", "project_id", "category"),)


class ContactModel(Base):
    """Global contact directory (shared reference data)."""

    __tablename__ = "contacts"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class NotificationModel(Base):
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    entity_type: Mapped[str | None] = mapped_column(Text)
    entity_key: Mapped[str | None] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_notifications_user_unread", "user_id", "is_read"),)


# ============================================================================
# Audit / history
# ============================================================================


class AuditRecordMixin:
    """Append-only change record columns shared by every audit table.

    ``subject_key`` keeps the stringified id of the subject even after the
    nullable foreign key has been cleared by a delete.
    """

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    subject_key: Mapped[str | None] = mapped_column(Text)
    project_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    change_type: Mapped[str] = mapped_column(Text, nullable=False)
    old_values: Mapped[dict | None] = mapped_column(JSON)
    new_values: Mapped[dict | None] = mapped_column(JSON)
    changed_fields: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    changed_by: Mapped[str | None] = mapped_column(Text)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class TenantChangeAuditModel(AuditRecordMixin, Base):
    __tablename__ = "tenant_change_audit_log"

    tenant_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="SET NULL")
    )

    __table_args__ = (
        CheckConstraint(
            "change_type IN ('created', 'updated', 'deleted')",
            name="check_tenant_audit_change_type",
        ),
        Index("idx_tenant_audit_project_time", "project_id", "changed_at"),
    )


class BOQItemHistoryModel(AuditRecordMixin, Base):
    __tablename__ = "boq_item_history"

    boq_item_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("boq_items.id", ondelete="SET NULL")
    )

    __table_args__ = (
        CheckConstraint(
            "change_type IN ('created', 'updated', 'deleted')",
            name="check_boq_history_change_type",
        ),
        Index("idx_boq_history_project_time", "project_id", "changed_at"),
    )


class ProcurementAuditModel(AuditRecordMixin, Base):
    __tablename__ = "procurement_audit_log"

    procurement_item_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("procurement_items.id", ondelete="SET NULL")
    )

    __table_args__ = (
        CheckConstraint(
            "change_type IN ('created', 'updated', 'deleted')",
            name="check_procurement_audit_change_type",
        ),
        Index("idx_procurement_audit_project_time", "project_id", "changed_at"),
    )


class ProcurementStatusHistoryModel(Base):
    """Status transitions of procurement items."""

    __tablename__ = "procurement_status_history"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    procurement_item_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("procurement_items.id", ondelete="SET NULL")
    )
    project_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    from_status: Mapped[str | None] = mapped_column(Text)
    to_status: Mapped[str] = mapped_column(Text, nullable=False)
    changed_by: Mapped[str | None] = mapped_column(Text)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
