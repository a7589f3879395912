"""
services/scope_service.py
-------------------------
Authorization scope engine.

scope_for(principal, resource) turns a role into exactly one visibility
predicate:

    IT      → Unrestricted                         (every resource class)
    ADMIN   → ByProperty(principal.property_id)    (every resource class)
    TENANT  → BySender(principal.linked_record_id) (communications only)

A TENANT asking for users or audit logs gets Forbidden: no predicate exists
for those classes, not even an empty one. Predicates are total: a row the
predicate cannot place (no resolvable property) is excluded.

Capability checks for user management live here too, so every role rule is
in one file.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from propertypro.core.errors import Forbidden, MisconfiguredPrincipal, NotFound
from propertypro.models.user import User, UserRole
from propertypro.services.identity_service import Principal
from propertypro.storage.base import Storage


class ResourceClass(str, Enum):
    communications = "communications"
    users = "users"
    audit_logs = "audit_logs"


@dataclass(frozen=True)
class ScopedRef:
    """What a predicate needs to know about a row."""

    property_id: Optional[str] = None
    sender_id: Optional[str] = None


@dataclass(frozen=True)
class Unrestricted:
    def includes(self, ref: ScopedRef) -> bool:
        return True


@dataclass(frozen=True)
class ByProperty:
    property_id: str

    def includes(self, ref: ScopedRef) -> bool:
        return ref.property_id is not None and ref.property_id == self.property_id


@dataclass(frozen=True)
class BySender:
    linked_record_id: str

    def includes(self, ref: ScopedRef) -> bool:
        return ref.sender_id is not None and ref.sender_id == self.linked_record_id


ScopePredicate = Union[Unrestricted, ByProperty, BySender]


def _admin_property(principal: Principal) -> str:
    if not principal.property_id:
        raise MisconfiguredPrincipal("Admin user has no property assigned")
    return principal.property_id


def scope_for(principal: Principal, resource: ResourceClass) -> ScopePredicate:
    role = principal.role
    if role is UserRole.it:
        return Unrestricted()
    if role is UserRole.admin:
        return ByProperty(_admin_property(principal))
    if role is UserRole.tenant:
        if resource is not ResourceClass.communications:
            raise Forbidden("Insufficient permissions")
        if not principal.linked_record_id:
            raise MisconfiguredPrincipal("Tenant user has no owner/tenant record linked")
        return BySender(principal.linked_record_id)
    raise ValueError(f"Unhandled role {role!r}")


def require_role(principal: Principal, *roles: UserRole) -> None:
    if principal.role not in roles:
        raise Forbidden("Insufficient permissions")


# ── User management capabilities ──────────────────────────────────────────────

def ensure_can_create_user(principal: Principal, role: UserRole) -> None:
    """
    IT accounts are provisioned out of band only. ADMINs create TENANT
    accounts; TENANTs create nothing.
    """
    if role is UserRole.it:
        raise Forbidden("IT accounts cannot be created via API")
    scope = scope_for(principal, ResourceClass.users)
    if isinstance(scope, ByProperty) and role is not UserRole.tenant:
        raise Forbidden("Admins can only create tenant accounts")


def ensure_can_mutate_user(principal: Principal, target: Optional[User]) -> User:
    """
    Return the target when the principal may edit or deactivate it.

    ADMINs may only touch TENANT accounts of their own property. A missing
    target reads the same as an out-of-scope one for scoped callers.
    """
    scope = scope_for(principal, ResourceClass.users)
    if isinstance(scope, Unrestricted):
        if target is None:
            raise NotFound("User not found")
        return target

    if (
        target is None
        or not scope.includes(ScopedRef(property_id=target.property_id))
        or target.role != UserRole.tenant.value
    ):
        raise Forbidden()
    return target


# ── Row evaluation ────────────────────────────────────────────────────────────

class ScopeEngine:
    """
    Evaluates predicates against stored rows, resolving the property of a
    thread transitively when the row itself does not carry one.
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def thread_ref(self, thread) -> ScopedRef:
        property_id = thread.property_id
        if property_id is None:
            property_id = await self.storage.get_record_property_id(thread.root_sender_id)
        return ScopedRef(property_id=property_id, sender_id=thread.root_sender_id)

    async def includes_thread(self, predicate: ScopePredicate, thread) -> bool:
        if isinstance(predicate, Unrestricted):
            return True
        return predicate.includes(await self.thread_ref(thread))

    async def filter_threads(self, predicate: ScopePredicate, threads: list) -> list:
        return [t for t in threads if await self.includes_thread(predicate, t)]
