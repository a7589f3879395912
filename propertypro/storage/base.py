"""
storage/base.py
---------------
The storage collaborator seen by the services.

Storage is an explicit, injected dependency: the application builds one
StorageProvider at startup (app.state.storage_provider) and every request or
background task opens its own unit of work from it:

    async with provider.session() as storage:
        user = await storage.get_user(user_id)

Two implementations exist: SqlStorage (PostgreSQL via SQLAlchemy async) and
MemoryStorage (process-local, used by the test suite and local demos).

create_* methods take an unsaved ORM instance built by the service layer and
return it with its generated columns (id, created_at, row_seq) populated.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from propertypro.models.audit_log import AuditLog
from propertypro.models.communication import Communication
from propertypro.models.property import Owner, OwnerUnit, Property, Tenant, Unit
from propertypro.models.user import User, UserSession

STATS_TOP_USERS = 10
STATS_RECENT_ACTIONS = 10


def unnamed_actor(user_id: Optional[str]) -> str:
    """Display name for an audit actor with no user row."""
    return "System" if user_id is None else "Unknown"


@dataclass
class AuditLogFilters:
    user_id: Optional[str] = None
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    # Set by the scope engine for ADMIN callers: only entries whose acting
    # user belongs to this property.
    property_id: Optional[str] = None


@dataclass
class UserActionCount:
    user_id: Optional[str]
    user_name: str
    count: int


@dataclass
class AuditLogStats:
    total_actions: int
    actions_by_type: dict[str, int] = field(default_factory=dict)
    actions_by_user: list[UserActionCount] = field(default_factory=list)
    recent_actions: list[AuditLog] = field(default_factory=list)


class Storage(ABC):

    # ── Users ────────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Raises ValueError when the username is taken."""

    @abstractmethod
    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]: ...

    @abstractmethod
    async def list_users(self, property_id: Optional[str] = None) -> list[User]: ...

    @abstractmethod
    async def get_display_names(self, user_ids: list[str]) -> dict[str, str]: ...

    # ── Sessions ─────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_session(self, session: UserSession) -> UserSession: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[UserSession]: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool: ...

    # ── Property records ─────────────────────────────────────────────────────

    @abstractmethod
    async def create_property(self, prop: Property) -> Property: ...

    @abstractmethod
    async def create_unit(self, unit: Unit) -> Unit: ...

    @abstractmethod
    async def create_owner(self, owner: Owner) -> Owner: ...

    @abstractmethod
    async def create_owner_unit(self, owner_unit: OwnerUnit) -> OwnerUnit: ...

    @abstractmethod
    async def create_tenant(self, tenant: Tenant) -> Tenant: ...

    @abstractmethod
    async def get_record_property_id(self, record_id: str) -> Optional[str]:
        """
        Resolve an owner or tenant record to the property of its unit.
        Owners resolve through their primary (then most recent) owner_units
        row; tenant records through their unit. None when nothing joins.
        """

    # ── Communications ───────────────────────────────────────────────────────

    @abstractmethod
    async def create_communication(self, communication: Communication) -> Communication: ...

    @abstractmethod
    async def get_communication_by_id(self, communication_id: str) -> Optional[Communication]: ...

    @abstractmethod
    async def get_communications_by_thread_id(self, thread_id: str) -> list[Communication]:
        """All rows of a thread, oldest first."""

    @abstractmethod
    async def get_all_communication_threads(self) -> list[Communication]:
        """Every row, newest first."""

    @abstractmethod
    async def get_communications_by_property_id(self, property_id: str) -> list[Communication]:
        """Every row of every thread that has a row stamped with property_id."""

    @abstractmethod
    async def get_unstamped_communications(self) -> list[Communication]:
        """Every row of every thread that has a row without a property_id."""

    @abstractmethod
    async def get_communications_by_sender_id(self, sender_id: str) -> list[Communication]:
        """Every row of every thread sender_id has written to."""

    @abstractmethod
    async def update_communication(
        self, communication_id: str, changes: dict[str, Any]
    ) -> Optional[Communication]: ...

    @abstractmethod
    async def update_communication_status_by_thread_id(self, thread_id: str, status: str) -> int:
        """Set status on every row of the thread. Returns the number of rows touched."""

    @abstractmethod
    async def delete_communications_by_thread_id(self, thread_id: str) -> int: ...

    # ── Audit log ────────────────────────────────────────────────────────────

    @abstractmethod
    async def create_audit_log(self, entry: AuditLog) -> AuditLog: ...

    @abstractmethod
    async def get_audit_logs(
        self, filters: AuditLogFilters, skip: int = 0, limit: int = 50
    ) -> tuple[int, list[AuditLog]]:
        """(total matching, page newest first)."""

    @abstractmethod
    async def get_audit_log_stats(self, filters: AuditLogFilters) -> AuditLogStats:
        """Aggregates over exactly the rows get_audit_logs would match."""


class StorageProvider(ABC):

    @abstractmethod
    def session(self) -> AbstractAsyncContextManager[Storage]:
        """Open a unit of work: committed on clean exit, rolled back on error."""

    async def close(self) -> None:
        """Release pooled resources on shutdown."""
