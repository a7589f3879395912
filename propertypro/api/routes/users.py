"""
api/routes/users.py
-------------------
Account management. IT manages every non-IT account; an ADMIN manages the
TENANT accounts of its own property; a TENANT gets 403 throughout.

POST   /api/users       — Create an account
GET    /api/users       — List visible accounts
PATCH  /api/users/{id}  — Edit an account
DELETE /api/users/{id}  — Deactivate an account (soft delete)
"""

from fastapi import APIRouter, Request, status

from propertypro.api.audit_route import AuditedRoute
from propertypro.core.errors import Conflict
from propertypro.dependencies import CurrentPrincipal, StorageDep
from propertypro.schemas.user import UserCreate, UserRead, UserUpdate
from propertypro.services import audit_service
from propertypro.services.user_service import UserService

router = APIRouter(prefix="/api/users", tags=["Users"], route_class=AuditedRoute)


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user account",
)
async def create_user(
    body: UserCreate, principal: CurrentPrincipal, storage: StorageDep
) -> UserRead:
    """
    IT may create ADMIN and TENANT accounts anywhere. An ADMIN may create
    TENANT accounts only, always inside its own property.
    """
    try:
        user = await UserService.create_user(storage, principal, body)
    except ValueError as exc:
        raise Conflict(str(exc))
    return UserRead.model_validate(user)


@router.get(
    "",
    response_model=list[UserRead],
    summary="List user accounts",
)
async def list_users(principal: CurrentPrincipal, storage: StorageDep) -> list[UserRead]:
    users = await UserService.list_users(storage, principal)
    return [UserRead.model_validate(u) for u in users]


@router.patch(
    "/{user_id}",
    response_model=UserRead,
    summary="Update a user account",
)
async def update_user(
    user_id: str,
    body: UserUpdate,
    request: Request,
    principal: CurrentPrincipal,
    storage: StorageDep,
) -> UserRead:
    target = await UserService.get_mutable_user(storage, principal, user_id)
    audit_service.record_pre_image(
        request,
        UserRead.model_validate(target).model_dump(
            mode="json", include=set(body.model_fields_set) - {"password"}
        ),
    )
    user = await UserService.update_user(storage, principal, target, body)
    return UserRead.model_validate(user)


@router.delete(
    "/{user_id}",
    response_model=UserRead,
    summary="Deactivate a user account",
)
async def deactivate_user(
    user_id: str, principal: CurrentPrincipal, storage: StorageDep
) -> UserRead:
    target = await UserService.get_mutable_user(storage, principal, user_id)
    user = await UserService.deactivate_user(storage, principal, target)
    return UserRead.model_validate(user)
