"""Database layer for ProjectGate with async SQLAlchemy."""

from projectgate.db.connection import get_session, init_db
from projectgate.db.models import (
    Base,
    BOQItemHistoryModel,
    BOQItemModel,
    PortalTokenModel,
    ProcurementAuditModel,
    ProjectMemberModel,
    ProjectModel,
    TenantChangeAuditModel,
    UserModel,
    UserRoleModel,
)

__all__ = [
    "Base",
    "UserModel",
    "UserRoleModel",
    "ProjectModel",
    "ProjectMemberModel",
    "PortalTokenModel",
    "TenantChangeAuditModel",
    "BOQItemHistoryModel",
    "ProcurementAuditModel",
    "BOQItemModel",
    "get_session",
    "init_db",
]
