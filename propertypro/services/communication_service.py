"""
services/communication_service.py
---------------------------------
Business logic for communication threads.

Critical security invariants:
  - Every read goes through the scope engine; the candidate rows fetched
    from storage are only a pre-filter.
  - thread_id, sender fields and property_id are always derived from the
    authenticated principal or the thread root, never from the client.
  - For ADMIN/TENANT callers a missing id and an out-of-scope id both raise
    the same 403, so ids cannot be probed. IT gets a 404 for missing ids.
"""

import secrets
import string
import time
from typing import Optional

from propertypro.core.config import settings
from propertypro.core.errors import Forbidden, NotFound, ThreadStatusConflict
from propertypro.core.logging import get_logger
from propertypro.models.communication import Communication
from propertypro.models.user import UserRole
from propertypro.schemas.communication import (
    CommunicationCreate,
    CommunicationUpdate,
    ReplyCreate,
)
from propertypro.services.identity_service import Principal
from propertypro.services.scope_service import (
    ByProperty,
    BySender,
    ResourceClass,
    ScopeEngine,
    Unrestricted,
    scope_for,
)
from propertypro.services.thread_service import (
    Thread,
    aggregate_threads,
    build_thread,
    load_thread,
    update_thread_status,
)
from propertypro.storage.base import Storage

logger = get_logger(__name__)

_THREAD_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def new_thread_id() -> str:
    """THREAD-<epoch ms>-<9 random uppercase alphanumerics>."""
    suffix = "".join(secrets.choice(_THREAD_SUFFIX_ALPHABET) for _ in range(9))
    return f"THREAD-{int(time.time() * 1000)}-{suffix}"


def _sender_fields(principal: Principal) -> dict:
    sender_id = principal.id
    if principal.role is UserRole.tenant:
        sender_id = principal.linked_record_id
    return {
        "sender_id": sender_id,
        "sender_name": principal.display_name,
        "sender_role": principal.role.value.lower(),
    }


class CommunicationService:

    @staticmethod
    async def list_threads(storage: Storage, principal: Principal) -> list[Thread]:
        """Every thread the principal may see, most recent activity first."""
        predicate = scope_for(principal, ResourceClass.communications)

        if isinstance(predicate, Unrestricted):
            rows = await storage.get_all_communication_threads()
        elif isinstance(predicate, ByProperty):
            # Unstamped threads may still resolve to the property through their sender
            stamped = await storage.get_communications_by_property_id(predicate.property_id)
            unstamped = await storage.get_unstamped_communications()
            rows = list({row.id: row for row in stamped + unstamped}.values())
        else:
            rows = await storage.get_communications_by_sender_id(predicate.linked_record_id)

        threads = await ScopeEngine(storage).filter_threads(
            predicate, aggregate_threads(rows)
        )
        logger.info(
            "Threads listed",
            user_id=principal.id,
            role=principal.role.value,
            count=len(threads),
        )
        return threads

    @staticmethod
    async def get_thread(storage: Storage, principal: Principal, communication_id: str) -> Thread:
        """
        Load the thread containing communication_id (a message id or a
        thread id) and check that the principal may see it.
        """
        predicate = scope_for(principal, ResourceClass.communications)

        message = await storage.get_communication_by_id(communication_id)
        thread_id = message.thread_id if message is not None else communication_id
        thread = await load_thread(storage, thread_id)

        if thread is None:
            if isinstance(predicate, Unrestricted):
                raise NotFound("Communication not found")
            raise Forbidden()
        if not await ScopeEngine(storage).includes_thread(predicate, thread):
            logger.warning(
                "Out-of-scope thread access",
                user_id=principal.id,
                thread_id=thread.thread_id,
            )
            raise Forbidden()
        return thread

    @staticmethod
    async def create_thread(
        storage: Storage, principal: Principal, data: CommunicationCreate
    ) -> Thread:
        predicate = scope_for(principal, ResourceClass.communications)

        property_id: Optional[str]
        if isinstance(predicate, ByProperty):
            property_id = predicate.property_id
        elif isinstance(predicate, BySender):
            property_id = principal.property_id or await storage.get_record_property_id(
                predicate.linked_record_id
            )
        else:
            property_id = data.property_id

        root = await storage.create_communication(
            Communication(
                thread_id=new_thread_id(),
                subject=data.subject,
                message=data.message,
                category=data.category.value,
                status=data.status.value,
                property_id=property_id,
                attachments=list(data.attachments),
                **_sender_fields(principal),
            )
        )
        logger.info(
            "Thread created",
            thread_id=root.thread_id,
            property_id=property_id,
            sender_role=root.sender_role,
        )
        return build_thread(root.thread_id, [root])

    @staticmethod
    async def add_reply(
        storage: Storage, principal: Principal, communication_id: str, data: ReplyCreate
    ) -> Communication:
        """
        Append a message to a visible thread. The reply inherits subject,
        category and property from the root; a status in the reply is
        fanned out to the whole thread.
        """
        thread = await CommunicationService.get_thread(storage, principal, communication_id)
        root = thread.root
        status = data.status.value if data.status is not None else thread.status

        reply = await storage.create_communication(
            Communication(
                thread_id=thread.thread_id,
                subject=root.subject,
                message=data.message,
                category=root.category,
                status=status,
                property_id=root.property_id,
                attachments=list(data.attachments),
                **_sender_fields(principal),
            )
        )
        logger.info("Reply added", thread_id=thread.thread_id, message_id=reply.id)

        if status != thread.status:
            await CommunicationService._fan_out_status(storage, thread.thread_id, status)
            reply = await storage.get_communication_by_id(reply.id) or reply
        return reply

    @staticmethod
    async def update_thread(
        storage: Storage, thread: Thread, data: CommunicationUpdate
    ) -> Thread:
        """
        Apply an IT/ADMIN edit to an already authorized thread: subject and
        category live on the root, status is fanned out to every row.
        """
        changes = data.model_dump(mode="json", exclude_unset=True, exclude_none=True)

        root_changes = {k: v for k, v in changes.items() if k in ("subject", "category")}
        if root_changes:
            await storage.update_communication(thread.root.id, root_changes)

        if "status" in changes:
            await CommunicationService._fan_out_status(
                storage, thread.thread_id, changes["status"]
            )

        logger.info("Thread updated", thread_id=thread.thread_id, fields=sorted(changes))
        return await load_thread(storage, thread.thread_id) or thread

    @staticmethod
    async def delete_thread(storage: Storage, thread: Thread) -> Thread:
        """Delete every row of an already authorized thread; return what was deleted."""
        deleted = await storage.delete_communications_by_thread_id(thread.thread_id)
        logger.info("Thread deleted", thread_id=thread.thread_id, rows=deleted)
        return thread

    @staticmethod
    async def _fan_out_status(storage: Storage, thread_id: str, status: str) -> None:
        converged = await update_thread_status(
            storage, thread_id, status, max_attempts=settings.THREAD_STATUS_MAX_ATTEMPTS
        )
        if not converged:
            raise ThreadStatusConflict(thread_id)
