"""
services/user_service.py
------------------------
Business logic for account management.

Role rules live in services/scope_service.py; this module applies them and
makes sure a scoped caller cannot move an account out of its own reach:
an ADMIN always creates into its own property and can neither re-role nor
re-home a tenant.
"""

from typing import Any, Optional

from propertypro.core.errors import Forbidden
from propertypro.core.logging import get_logger
from propertypro.core.security import hash_password
from propertypro.models.user import User, UserRole
from propertypro.schemas.user import UserCreate, UserUpdate
from propertypro.services.identity_service import Principal
from propertypro.services.scope_service import (
    ByProperty,
    ResourceClass,
    ensure_can_create_user,
    ensure_can_mutate_user,
    scope_for,
)
from propertypro.storage.base import Storage

logger = get_logger(__name__)


async def _ensure_record_in_property(
    storage: Storage, record_id: Optional[str], property_id: str
) -> None:
    """A scoped caller may only link accounts to owner/tenant records of its property."""
    if record_id is None:
        return
    if await storage.get_record_property_id(record_id) != property_id:
        raise Forbidden("Linked record belongs to another property")


class UserService:

    @staticmethod
    async def create_user(storage: Storage, principal: Principal, data: UserCreate) -> User:
        """
        Create an account on behalf of principal.
        Raises ValueError on a duplicate username.
        """
        ensure_can_create_user(principal, data.role)
        scope = scope_for(principal, ResourceClass.users)

        property_id = data.property_id
        if isinstance(scope, ByProperty):
            property_id = scope.property_id
            await _ensure_record_in_property(storage, data.owner_id, scope.property_id)

        user = await storage.create_user(
            User(
                username=data.username,
                hashed_password=hash_password(data.password),
                role=data.role.value,
                email=data.email.lower() if data.email else None,
                full_name=data.full_name,
                property_id=property_id,
                owner_id=data.owner_id,
                is_active=True,
                created_by=principal.id,
            )
        )
        logger.info(
            "User created",
            new_user_id=user.id,
            role=user.role,
            property_id=property_id,
            created_by=principal.id,
        )
        return user

    @staticmethod
    async def list_users(storage: Storage, principal: Principal) -> list[User]:
        scope = scope_for(principal, ResourceClass.users)
        if isinstance(scope, ByProperty):
            return await storage.list_users(property_id=scope.property_id)
        return await storage.list_users()

    @staticmethod
    async def get_mutable_user(storage: Storage, principal: Principal, user_id: str) -> User:
        return ensure_can_mutate_user(principal, await storage.get_user(user_id))

    @staticmethod
    async def update_user(
        storage: Storage, principal: Principal, target: User, data: UserUpdate
    ) -> User:
        """Apply data to an already authorized target."""
        changes: dict[str, Any] = data.model_dump(exclude_unset=True)

        if "role" in changes:
            role = changes["role"]
            if role is None:
                changes.pop("role")
            elif role is UserRole.it and target.role != UserRole.it.value:
                raise Forbidden("IT accounts cannot be created via API")
            elif principal.role is not UserRole.it and role is not UserRole.tenant:
                raise Forbidden("Admins can only manage tenant accounts")
            else:
                changes["role"] = role.value

        if "property_id" in changes and principal.role is not UserRole.it:
            if changes["property_id"] != principal.property_id:
                raise Forbidden("Admins cannot move users to another property")

        scope = scope_for(principal, ResourceClass.users)
        if isinstance(scope, ByProperty) and "owner_id" in changes:
            await _ensure_record_in_property(storage, changes["owner_id"], scope.property_id)

        if changes.get("password"):
            changes["hashed_password"] = hash_password(changes.pop("password"))
        else:
            changes.pop("password", None)

        if changes.get("email"):
            changes["email"] = changes["email"].lower()

        updated = await storage.update_user(target.id, changes) or target
        logger.info(
            "User updated",
            user_id=target.id,
            fields=sorted(k for k in changes if k != "hashed_password"),
            updated_by=principal.id,
        )
        return updated

    @staticmethod
    async def deactivate_user(storage: Storage, principal: Principal, target: User) -> User:
        """
        Soft delete: the row stays (audit history references it) and every
        open session fails on its next request.
        """
        if target.id == principal.id:
            raise Forbidden("You cannot deactivate your own account")
        updated = await storage.update_user(target.id, {"is_active": False}) or target
        logger.info("User deactivated", user_id=target.id, deactivated_by=principal.id)
        return updated
