"""
services/thread_service.py
--------------------------
Thread aggregation over flat communication rows, and the thread-wide status
fan-out.

aggregate_threads is a pure grouping function. It performs no authorization;
callers hand it rows that the scope engine will filter afterwards.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from propertypro.core.logging import get_logger
from propertypro.models.communication import Communication
from propertypro.storage.base import Storage

logger = get_logger(__name__)


def _chronological(message: Communication) -> tuple:
    return (message.created_at, message.row_seq)


@dataclass(frozen=True)
class Thread:
    thread_id: str
    messages: tuple[Communication, ...]

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError(f"Thread '{self.thread_id}' has no messages")

    @property
    def root(self) -> Communication:
        return self.messages[0]

    @property
    def latest(self) -> Communication:
        return self.messages[-1]

    @property
    def subject(self) -> Optional[str]:
        return self.root.subject

    @property
    def category(self) -> Optional[str]:
        return self.root.category

    @property
    def status(self) -> str:
        return self.root.status

    @property
    def property_id(self) -> Optional[str]:
        return self.root.property_id

    @property
    def root_sender_id(self) -> str:
        return self.root.sender_id

    @property
    def last_activity_at(self) -> datetime:
        return self.latest.created_at


def build_thread(thread_id: str, messages: Iterable[Communication]) -> Thread:
    return Thread(thread_id=thread_id, messages=tuple(sorted(messages, key=_chronological)))


def aggregate_threads(messages: Iterable[Communication]) -> list[Thread]:
    """
    Group rows by thread_id, order each thread oldest first (created_at, then
    row_seq), and order threads by their latest activity, newest first.
    The input order never affects the result.
    """
    groups: dict[str, list[Communication]] = defaultdict(list)
    for message in messages:
        groups[message.thread_id].append(message)

    threads = [build_thread(thread_id, rows) for thread_id, rows in groups.items()]
    threads.sort(key=lambda t: _chronological(t.latest), reverse=True)
    return threads


async def load_thread(storage: Storage, thread_id: str) -> Optional[Thread]:
    rows = await storage.get_communications_by_thread_id(thread_id)
    if not rows:
        return None
    return build_thread(thread_id, rows)


async def update_thread_status(
    storage: Storage,
    thread_id: str,
    status: str,
    max_attempts: int = 3,
) -> bool:
    """
    Set status on every row of the thread and verify by re-reading.

    The write is repeated until all rows report the new status or attempts
    run out. Returns False when the thread never converged (or vanished).
    Applying the current status again is a no-op.
    """
    for attempt in range(1, max_attempts + 1):
        await storage.update_communication_status_by_thread_id(thread_id, status)
        rows = await storage.get_communications_by_thread_id(thread_id)
        if not rows:
            logger.warning("Status update on empty thread", thread_id=thread_id)
            return False
        if all(row.status == status for row in rows):
            logger.info(
                "Thread status updated",
                thread_id=thread_id,
                status=status,
                rows=len(rows),
                attempt=attempt,
            )
            return True
        logger.warning(
            "Thread status fan-out incomplete, retrying",
            thread_id=thread_id,
            attempt=attempt,
        )

    logger.error("Thread status did not converge", thread_id=thread_id, status=status)
    return False
