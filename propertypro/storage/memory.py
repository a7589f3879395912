"""
storage/memory.py
-----------------
Process-local storage with the same contract as SqlStorage.

Used by the test suite and by STORAGE_BACKEND=memory for local demos. Rows
are the same ORM classes the SQL backend returns, held in plain dicts; there
are no transactions, so the provider's unit of work is a no-op.
"""

import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from propertypro.db.base import generate_uuid
from propertypro.models.audit_log import AuditLog
from propertypro.models.communication import Communication
from propertypro.models.property import Owner, OwnerUnit, Property, Tenant, Unit
from propertypro.models.user import User, UserSession
from propertypro.storage.base import (
    STATS_RECENT_ACTIONS,
    STATS_TOP_USERS,
    AuditLogFilters,
    AuditLogStats,
    Storage,
    StorageProvider,
    UserActionCount,
    unnamed_actor,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(rows: list[Communication]) -> list[Communication]:
    return sorted(rows, key=lambda c: (c.created_at, c.row_seq), reverse=True)


class MemoryStorage(Storage):

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.sessions: dict[str, UserSession] = {}
        self.properties: dict[str, Property] = {}
        self.units: dict[str, Unit] = {}
        self.owners: dict[str, Owner] = {}
        self.owner_units: dict[str, OwnerUnit] = {}
        self.tenants: dict[str, Tenant] = {}
        self.communications: dict[str, Communication] = {}
        self.audit_logs: list[AuditLog] = []
        self._row_seq = itertools.count(1)

    @staticmethod
    def _stamp(obj, timestamps: bool = True):
        if getattr(obj, "id", None) is None:
            obj.id = generate_uuid()
        if timestamps and getattr(obj, "created_at", None) is None:
            obj.created_at = _now()
        return obj

    # ── Users ────────────────────────────────────────────────────────────────

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.username == username), None)

    async def create_user(self, user: User) -> User:
        if await self.get_user_by_username(user.username) is not None:
            raise ValueError(f"Username '{user.username}' is already taken")
        if user.is_active is None:
            user.is_active = True
        self._stamp(user)
        self.users[user.id] = user
        return user

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        for key, value in changes.items():
            setattr(user, key, value)
        return user

    async def list_users(self, property_id: Optional[str] = None) -> list[User]:
        users = sorted(self.users.values(), key=lambda u: u.created_at)
        if property_id is not None:
            users = [u for u in users if u.property_id == property_id]
        return users

    async def get_display_names(self, user_ids: list[str]) -> dict[str, str]:
        return {
            uid: self.users[uid].display_name for uid in user_ids if uid in self.users
        }

    # ── Sessions ─────────────────────────────────────────────────────────────

    async def create_session(self, session: UserSession) -> UserSession:
        self._stamp(session)
        self.sessions[session.id] = session
        return session

    async def get_session(self, session_id: str) -> Optional[UserSession]:
        return self.sessions.get(session_id)

    async def delete_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    # ── Property records ─────────────────────────────────────────────────────

    async def create_property(self, prop: Property) -> Property:
        self.properties[self._stamp(prop).id] = prop
        return prop

    async def create_unit(self, unit: Unit) -> Unit:
        self.units[self._stamp(unit).id] = unit
        return unit

    async def create_owner(self, owner: Owner) -> Owner:
        self.owners[self._stamp(owner).id] = owner
        return owner

    async def create_owner_unit(self, owner_unit: OwnerUnit) -> OwnerUnit:
        if owner_unit.is_primary is None:
            owner_unit.is_primary = True
        if owner_unit.start_date is None:
            owner_unit.start_date = _now().date()
        self.owner_units[self._stamp(owner_unit, timestamps=False).id] = owner_unit
        return owner_unit

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        self.tenants[self._stamp(tenant).id] = tenant
        return tenant

    async def get_record_property_id(self, record_id: str) -> Optional[str]:
        links = sorted(
            (ou for ou in self.owner_units.values() if ou.owner_id == record_id),
            key=lambda ou: (ou.is_primary, ou.start_date),
            reverse=True,
        )
        for link in links:
            unit = self.units.get(link.unit_id)
            if unit is not None:
                return unit.property_id

        tenant = self.tenants.get(record_id)
        if tenant is not None and tenant.unit_id in self.units:
            return self.units[tenant.unit_id].property_id
        return None

    # ── Communications ───────────────────────────────────────────────────────

    async def create_communication(self, communication: Communication) -> Communication:
        self._stamp(communication)
        communication.row_seq = next(self._row_seq)
        if communication.attachments is None:
            communication.attachments = []
        self.communications[communication.id] = communication
        return communication

    async def get_communication_by_id(self, communication_id: str) -> Optional[Communication]:
        return self.communications.get(communication_id)

    async def get_communications_by_thread_id(self, thread_id: str) -> list[Communication]:
        rows = [c for c in self.communications.values() if c.thread_id == thread_id]
        return sorted(rows, key=lambda c: (c.created_at, c.row_seq))

    async def get_all_communication_threads(self) -> list[Communication]:
        return _newest_first(list(self.communications.values()))

    async def get_communications_by_property_id(self, property_id: str) -> list[Communication]:
        threads = {
            c.thread_id for c in self.communications.values() if c.property_id == property_id
        }
        return _newest_first(
            [c for c in self.communications.values() if c.thread_id in threads]
        )

    async def get_unstamped_communications(self) -> list[Communication]:
        threads = {c.thread_id for c in self.communications.values() if c.property_id is None}
        return _newest_first(
            [c for c in self.communications.values() if c.thread_id in threads]
        )

    async def get_communications_by_sender_id(self, sender_id: str) -> list[Communication]:
        threads = {
            c.thread_id for c in self.communications.values() if c.sender_id == sender_id
        }
        return _newest_first(
            [c for c in self.communications.values() if c.thread_id in threads]
        )

    async def update_communication(
        self, communication_id: str, changes: dict[str, Any]
    ) -> Optional[Communication]:
        communication = self.communications.get(communication_id)
        if communication is None:
            return None
        for key, value in changes.items():
            setattr(communication, key, value)
        return communication

    async def update_communication_status_by_thread_id(self, thread_id: str, status: str) -> int:
        touched = 0
        for communication in self.communications.values():
            if communication.thread_id == thread_id:
                communication.status = status
                touched += 1
        return touched

    async def delete_communications_by_thread_id(self, thread_id: str) -> int:
        doomed = [cid for cid, c in self.communications.items() if c.thread_id == thread_id]
        for cid in doomed:
            del self.communications[cid]
        return len(doomed)

    # ── Audit log ────────────────────────────────────────────────────────────

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        self.audit_logs.append(self._stamp(entry))
        return entry

    def _matching(self, filters: AuditLogFilters) -> list[AuditLog]:
        """Filter shared by the audit list and the audit stats; newest first."""

        def keep(entry: AuditLog) -> bool:
            if filters.user_id is not None and entry.user_id != filters.user_id:
                return False
            if filters.action is not None and entry.action != filters.action:
                return False
            if filters.entity_type is not None and entry.entity_type != filters.entity_type:
                return False
            if filters.entity_id is not None and entry.entity_id != filters.entity_id:
                return False
            if filters.start_date is not None and entry.created_at < filters.start_date:
                return False
            if filters.end_date is not None and entry.created_at > filters.end_date:
                return False
            if filters.property_id is not None:
                actor = self.users.get(entry.user_id) if entry.user_id else None
                if actor is None or actor.property_id != filters.property_id:
                    return False
            return True

        # audit_logs is append-only, so reversed insertion order is newest first
        return [entry for entry in reversed(self.audit_logs) if keep(entry)]

    async def get_audit_logs(
        self, filters: AuditLogFilters, skip: int = 0, limit: int = 50
    ) -> tuple[int, list[AuditLog]]:
        rows = self._matching(filters)
        return len(rows), rows[skip:skip + limit]

    async def get_audit_log_stats(self, filters: AuditLogFilters) -> AuditLogStats:
        rows = self._matching(filters)

        by_type: dict[str, int] = {}
        by_user: dict[Optional[str], int] = {}
        for entry in rows:
            by_type[entry.action] = by_type.get(entry.action, 0) + 1
            by_user[entry.user_id] = by_user.get(entry.user_id, 0) + 1

        top_users = sorted(by_user.items(), key=lambda item: item[1], reverse=True)
        names = await self.get_display_names([uid for uid, _ in top_users if uid])

        return AuditLogStats(
            total_actions=len(rows),
            actions_by_type=by_type,
            actions_by_user=[
                UserActionCount(
                    user_id=uid, user_name=names.get(uid) or unnamed_actor(uid), count=count
                )
                for uid, count in top_users[:STATS_TOP_USERS]
            ],
            recent_actions=rows[:STATS_RECENT_ACTIONS],
        )


class MemoryStorageProvider(StorageProvider):

    def __init__(self, storage: Optional[MemoryStorage] = None) -> None:
        self.storage = storage or MemoryStorage()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Storage]:
        yield self.storage
