"""
storage/sql.py
--------------
PostgreSQL storage (SQLAlchemy 2.x async ORM over asyncpg).

One SqlStorage wraps one AsyncSession. Writes flush and refresh so generated
columns (server timestamps, row_seq identity) are populated before the
object is returned; the provider commits when the unit of work ends.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from propertypro.core.logging import get_logger
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

logger = get_logger(__name__)


def _audit_conditions(filters: AuditLogFilters) -> list:
    """WHERE clause shared by the audit list and the audit stats queries."""
    conditions = []
    if filters.user_id is not None:
        conditions.append(AuditLog.user_id == filters.user_id)
    if filters.action is not None:
        conditions.append(AuditLog.action == filters.action)
    if filters.entity_type is not None:
        conditions.append(AuditLog.entity_type == filters.entity_type)
    if filters.entity_id is not None:
        conditions.append(AuditLog.entity_id == filters.entity_id)
    if filters.start_date is not None:
        conditions.append(AuditLog.created_at >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(AuditLog.created_at <= filters.end_date)
    if filters.property_id is not None:
        conditions.append(
            AuditLog.user_id.in_(
                select(User.id).where(User.property_id == filters.property_id)
            )
        )
    return conditions


class SqlStorage(Storage):

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        return obj

    # ── Users ────────────────────────────────────────────────────────────────

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def create_user(self, user: User) -> User:
        try:
            return await self._add(user)
        except IntegrityError:
            await self.db.rollback()
            raise ValueError(f"Username '{user.username}' is already taken")

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        user = await self.get_user(user_id)
        if user is None:
            return None
        for key, value in changes.items():
            setattr(user, key, value)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def list_users(self, property_id: Optional[str] = None) -> list[User]:
        query = select(User).order_by(User.created_at)
        if property_id is not None:
            query = query.where(User.property_id == property_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_display_names(self, user_ids: list[str]) -> dict[str, str]:
        if not user_ids:
            return {}
        result = await self.db.execute(
            select(User.id, User.full_name, User.username).where(User.id.in_(user_ids))
        )
        return {row.id: row.full_name or row.username for row in result}

    # ── Sessions ─────────────────────────────────────────────────────────────

    async def create_session(self, session: UserSession) -> UserSession:
        return await self._add(session)

    async def get_session(self, session_id: str) -> Optional[UserSession]:
        result = await self.db.execute(
            select(UserSession).where(UserSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def delete_session(self, session_id: str) -> bool:
        result = await self.db.execute(
            delete(UserSession).where(UserSession.id == session_id)
        )
        return (result.rowcount or 0) > 0

    # ── Property records ─────────────────────────────────────────────────────

    async def create_property(self, prop: Property) -> Property:
        return await self._add(prop)

    async def create_unit(self, unit: Unit) -> Unit:
        return await self._add(unit)

    async def create_owner(self, owner: Owner) -> Owner:
        return await self._add(owner)

    async def create_owner_unit(self, owner_unit: OwnerUnit) -> OwnerUnit:
        return await self._add(owner_unit)

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        return await self._add(tenant)

    async def get_record_property_id(self, record_id: str) -> Optional[str]:
        result = await self.db.execute(
            select(Unit.property_id)
            .join(OwnerUnit, OwnerUnit.unit_id == Unit.id)
            .where(OwnerUnit.owner_id == record_id)
            .order_by(OwnerUnit.is_primary.desc(), OwnerUnit.start_date.desc())
            .limit(1)
        )
        property_id = result.scalar_one_or_none()
        if property_id is not None:
            return property_id

        result = await self.db.execute(
            select(Unit.property_id)
            .join(Tenant, Tenant.unit_id == Unit.id)
            .where(Tenant.id == record_id)
        )
        return result.scalar_one_or_none()

    # ── Communications ───────────────────────────────────────────────────────

    async def create_communication(self, communication: Communication) -> Communication:
        return await self._add(communication)

    async def get_communication_by_id(self, communication_id: str) -> Optional[Communication]:
        result = await self.db.execute(
            select(Communication).where(Communication.id == communication_id)
        )
        return result.scalar_one_or_none()

    async def get_communications_by_thread_id(self, thread_id: str) -> list[Communication]:
        result = await self.db.execute(
            select(Communication)
            .where(Communication.thread_id == thread_id)
            .order_by(Communication.created_at, Communication.row_seq)
        )
        return list(result.scalars().all())

    async def get_all_communication_threads(self) -> list[Communication]:
        result = await self.db.execute(
            select(Communication).order_by(
                Communication.created_at.desc(), Communication.row_seq.desc()
            )
        )
        return list(result.scalars().all())

    async def get_communications_by_property_id(self, property_id: str) -> list[Communication]:
        threads = select(Communication.thread_id).where(
            Communication.property_id == property_id
        )
        result = await self.db.execute(
            select(Communication)
            .where(Communication.thread_id.in_(threads))
            .order_by(Communication.created_at.desc(), Communication.row_seq.desc())
        )
        return list(result.scalars().all())

    async def get_unstamped_communications(self) -> list[Communication]:
        threads = select(Communication.thread_id).where(Communication.property_id.is_(None))
        result = await self.db.execute(
            select(Communication)
            .where(Communication.thread_id.in_(threads))
            .order_by(Communication.created_at.desc(), Communication.row_seq.desc())
        )
        return list(result.scalars().all())

    async def get_communications_by_sender_id(self, sender_id: str) -> list[Communication]:
        threads = select(Communication.thread_id).where(
            Communication.sender_id == sender_id
        )
        result = await self.db.execute(
            select(Communication)
            .where(Communication.thread_id.in_(threads))
            .order_by(Communication.created_at.desc(), Communication.row_seq.desc())
        )
        return list(result.scalars().all())

    async def update_communication(
        self, communication_id: str, changes: dict[str, Any]
    ) -> Optional[Communication]:
        communication = await self.get_communication_by_id(communication_id)
        if communication is None:
            return None
        for key, value in changes.items():
            setattr(communication, key, value)
        await self.db.flush()
        await self.db.refresh(communication)
        return communication

    async def update_communication_status_by_thread_id(self, thread_id: str, status: str) -> int:
        result = await self.db.execute(
            update(Communication)
            .where(Communication.thread_id == thread_id)
            .values(status=status)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def delete_communications_by_thread_id(self, thread_id: str) -> int:
        result = await self.db.execute(
            delete(Communication).where(Communication.thread_id == thread_id)
        )
        return result.rowcount or 0

    # ── Audit log ────────────────────────────────────────────────────────────

    async def create_audit_log(self, entry: AuditLog) -> AuditLog:
        return await self._add(entry)

    async def get_audit_logs(
        self, filters: AuditLogFilters, skip: int = 0, limit: int = 50
    ) -> tuple[int, list[AuditLog]]:
        conditions = _audit_conditions(filters)

        count_result = await self.db.execute(
            select(func.count()).select_from(AuditLog).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return total, list(result.scalars().all())

    async def get_audit_log_stats(self, filters: AuditLogFilters) -> AuditLogStats:
        conditions = _audit_conditions(filters)

        total_result = await self.db.execute(
            select(func.count()).select_from(AuditLog).where(*conditions)
        )

        by_type_result = await self.db.execute(
            select(AuditLog.action, func.count())
            .where(*conditions)
            .group_by(AuditLog.action)
        )

        count_col = func.count().label("count")
        by_user_result = await self.db.execute(
            select(AuditLog.user_id, User.full_name, User.username, count_col)
            .outerjoin(User, User.id == AuditLog.user_id)
            .where(*conditions)
            .group_by(AuditLog.user_id, User.full_name, User.username)
            .order_by(count_col.desc())
            .limit(STATS_TOP_USERS)
        )

        recent_result = await self.db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at.desc())
            .limit(STATS_RECENT_ACTIONS)
        )

        return AuditLogStats(
            total_actions=total_result.scalar_one(),
            actions_by_type={action: count for action, count in by_type_result},
            actions_by_user=[
                UserActionCount(
                    user_id=row.user_id,
                    user_name=row.full_name or row.username or unnamed_actor(row.user_id),
                    count=row.count,
                )
                for row in by_user_result
            ],
            recent_actions=list(recent_result.scalars().all()),
        )


class SqlStorageProvider(StorageProvider):

    def __init__(self, session_factory: async_sessionmaker, engine=None) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Storage]:
        async with self._session_factory() as db:
            try:
                yield SqlStorage(db)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def close(self) -> None:
        if self._engine is not None:
            logger.info("Disposing DB engine")
            await self._engine.dispose()
