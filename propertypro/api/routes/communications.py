"""
api/routes/communications.py
----------------------------
Communication threads between tenants and property staff.

GET    /api/communications                — Threads visible to the caller
GET    /api/communications/{id}           — One thread ({id}: message or thread id)
POST   /api/communications                — Open a new thread
POST   /api/communications/{id}/messages  — Reply to a thread
PATCH  /api/communications/{id}           — Edit status/subject/category (IT, ADMIN)
DELETE /api/communications/{id}           — Delete a whole thread (IT)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from propertypro.api.audit_route import AuditedRoute
from propertypro.dependencies import CurrentPrincipal, StorageDep, require_roles
from propertypro.models.user import UserRole
from propertypro.schemas.communication import (
    CommunicationCreate,
    CommunicationRead,
    CommunicationUpdate,
    ReplyCreate,
    ThreadDetail,
    ThreadSummary,
)
from propertypro.services import audit_service
from propertypro.services.communication_service import CommunicationService
from propertypro.services.identity_service import Principal

router = APIRouter(
    prefix="/api/communications", tags=["Communications"], route_class=AuditedRoute
)

StaffPrincipal = Annotated[Principal, Depends(require_roles(UserRole.it, UserRole.admin))]
ITPrincipal = Annotated[Principal, Depends(require_roles(UserRole.it))]


@router.get(
    "",
    response_model=list[ThreadSummary],
    summary="List visible threads, most recent activity first",
)
async def list_threads(principal: CurrentPrincipal, storage: StorageDep) -> list[ThreadSummary]:
    threads = await CommunicationService.list_threads(storage, principal)
    return [ThreadSummary.from_thread(t) for t in threads]


@router.get(
    "/{communication_id}",
    response_model=ThreadDetail,
    summary="Get a thread with all of its messages",
)
async def get_thread(
    communication_id: str, principal: CurrentPrincipal, storage: StorageDep
) -> ThreadDetail:
    thread = await CommunicationService.get_thread(storage, principal, communication_id)
    return ThreadDetail.from_thread(thread)


@router.post(
    "",
    response_model=ThreadDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new thread",
)
async def create_thread(
    body: CommunicationCreate, principal: CurrentPrincipal, storage: StorageDep
) -> ThreadDetail:
    """
    The thread id is generated server-side. The property is taken from the
    caller (ADMIN, TENANT); only IT may name one in the payload.
    """
    thread = await CommunicationService.create_thread(storage, principal, body)
    return ThreadDetail.from_thread(thread)


@router.post(
    "/{communication_id}/messages",
    response_model=CommunicationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Reply to a thread",
)
async def add_reply(
    communication_id: str,
    body: ReplyCreate,
    principal: CurrentPrincipal,
    storage: StorageDep,
) -> CommunicationRead:
    reply = await CommunicationService.add_reply(storage, principal, communication_id, body)
    return CommunicationRead.model_validate(reply)


@router.patch(
    "/{communication_id}",
    response_model=ThreadDetail,
    summary="Update a thread (IT, ADMIN)",
)
async def update_thread(
    communication_id: str,
    body: CommunicationUpdate,
    request: Request,
    principal: StaffPrincipal,
    storage: StorageDep,
) -> ThreadDetail:
    """A status change is applied to every message and verified before returning."""
    thread = await CommunicationService.get_thread(storage, principal, communication_id)
    audit_service.record_pre_image(
        request,
        {field: getattr(thread, field) for field in sorted(body.model_fields_set)},
    )
    updated = await CommunicationService.update_thread(storage, thread, body)
    return ThreadDetail.from_thread(updated)


@router.delete(
    "/{communication_id}",
    response_model=ThreadDetail,
    summary="Delete a whole thread (IT)",
)
async def delete_thread(
    communication_id: str, principal: ITPrincipal, storage: StorageDep
) -> ThreadDetail:
    thread = await CommunicationService.get_thread(storage, principal, communication_id)
    # Serialised before the rows go away
    deleted = ThreadDetail.from_thread(thread)
    await CommunicationService.delete_thread(storage, thread)
    return deleted
