"""
models/__init__.py
------------------
Re-export all models so create_tables.py (and Alembic, if added) can import
Base and discover all tables via a single import:

    from propertypro.models import Base
"""

from propertypro.db.base import Base
from propertypro.models.audit_log import AuditAction, AuditLog
from propertypro.models.communication import (
    Communication,
    CommunicationCategory,
    CommunicationStatus,
)
from propertypro.models.property import Owner, OwnerUnit, Property, Tenant, Unit
from propertypro.models.user import User, UserRole, UserSession

__all__ = [
    "Base",
    "AuditAction",
    "AuditLog",
    "Communication",
    "CommunicationCategory",
    "CommunicationStatus",
    "Owner",
    "OwnerUnit",
    "Property",
    "Tenant",
    "Unit",
    "User",
    "UserRole",
    "UserSession",
]
