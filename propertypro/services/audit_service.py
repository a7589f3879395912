"""
services/audit_service.py
-------------------------
Audit trail: request classification, best-effort persistence, and the
scoped audit log queries.

The per-request capture itself lives in api/audit_route.py. This module
holds everything that does not need the request/response cycle, so the
decision rules can be tested as plain functions.

Decision rules:
  - Skip-list prefixes (settings.AUDIT_SKIP_ROUTES) are never audited.
  - GET requests are only audited under /api/audit-logs.
  - An entry is written when the acting user is known and the status is a
    success, 401 or 403, or when the request is a login attempt (a failed
    login carries the matched user id, or null).
"""

import copy
import dataclasses
import re
from enum import Enum
from typing import Any, Optional

from fastapi import Request

from propertypro.core.config import settings
from propertypro.core.errors import AuditWriteFailed
from propertypro.core.logging import get_logger
from propertypro.models.audit_log import AuditAction, AuditLog
from propertypro.services.identity_service import Principal
from propertypro.services.scope_service import ByProperty, ResourceClass, scope_for
from propertypro.storage.base import (
    AuditLogFilters,
    AuditLogStats,
    Storage,
    StorageProvider,
    unnamed_actor,
)

logger = get_logger(__name__)

AUDIT_LOG_PATH = "/api/audit-logs"
USER_AGENT_MAX_LENGTH = 500
REDACTED = "[REDACTED]"

# Path prefix → entity type. A following path segment is the entity id.
ENTITY_PATTERNS = [
    (re.compile(rf"^/api/{prefix}(?:/([^/]+))?(?:/|$)"), entity_type)
    for prefix, entity_type in (
        ("properties", "property"),
        ("units", "unit"),
        ("tenants", "tenant"),
        ("owners", "owner"),
        ("users", "user"),
        ("maintenance-requests", "maintenance_request"),
        ("transactions", "transaction"),
        ("announcements", "announcement"),
        ("projects", "project"),
        ("contractors", "contractor"),
        ("vendors", "vendor"),
        ("settings", "settings"),
        ("documents", "document"),
        ("communications", "communication"),
        ("audit-logs", "audit_log"),
    )
]

_AUTH_ACTIONS = {AuditAction.login, AuditAction.login_failed, AuditAction.logout}


class AuditState(str, Enum):
    """Lifecycle of one request as seen by the interceptor."""

    idle = "IDLE"
    capturing = "CAPTURING"
    dispatched = "DISPATCHED"
    response_captured = "RESPONSE_CAPTURED"
    logged = "LOGGED"
    log_skipped = "LOG_SKIPPED"


# ── Classification ────────────────────────────────────────────────────────────

def is_login_path(path: str) -> bool:
    return "/login" in path


def should_dispatch(method: str, path: str, skip_routes: Optional[list[str]] = None) -> bool:
    """Whether the request enters the interceptor at all."""
    skip_routes = settings.AUDIT_SKIP_ROUTES if skip_routes is None else skip_routes
    if any(path.startswith(route) for route in skip_routes):
        return False
    if method.upper() == "GET" and AUDIT_LOG_PATH not in path:
        return False
    return True


def should_log(user_known: bool, status_code: int, path: str) -> bool:
    if is_login_path(path):
        return True
    return user_known and (status_code < 400 or status_code in (401, 403))


def classify_action(method: str, path: str, status_code: int) -> AuditAction:
    if is_login_path(path):
        return AuditAction.login_failed if status_code >= 400 else AuditAction.login
    if "/logout" in path:
        return AuditAction.logout
    if "/export" in path:
        return AuditAction.export

    method = method.upper()
    if method == "POST":
        return AuditAction.create
    if method in ("PUT", "PATCH"):
        return AuditAction.update
    if method == "DELETE":
        return AuditAction.delete
    if method == "GET":
        return AuditAction.view
    return AuditAction.unknown


def extract_entity(path: str, response_body: Any = None) -> tuple[str, Optional[str]]:
    """
    Return (entity_type, entity_id) for a request path.

    Collection paths yield no id from the path; the id of the created or
    returned record is then taken from the response body.
    """
    entity_type, entity_id = "unknown", None
    for pattern, candidate in ENTITY_PATTERNS:
        match = pattern.match(path)
        if match:
            entity_type, entity_id = candidate, match.group(1)
            break

    if entity_id is None and isinstance(response_body, dict):
        entity_id = response_body.get("id")
        if entity_id is None and isinstance(response_body.get("data"), dict):
            entity_id = response_body["data"].get("id")

    return entity_type, str(entity_id) if entity_id is not None else None


def redact(values: Any) -> Any:
    """Deep copy of a JSON value with every password-like key masked."""
    if isinstance(values, dict):
        return {
            key: REDACTED if "password" in key.lower() else redact(value)
            for key, value in values.items()
        }
    if isinstance(values, list):
        return [redact(item) for item in values]
    return copy.deepcopy(values)


# ── Request context ───────────────────────────────────────────────────────────

def get_client_ip(request: Request) -> Optional[str]:
    """
    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind a
    reverse proxy); otherwise uses the direct peer address.
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")[:USER_AGENT_MAX_LENGTH]


def record_pre_image(request: Request, values: Any) -> None:
    """Declare the stored state a handler is about to change (UPDATE old_values)."""
    request.state.audit_pre_image = redact(values)


def attribute_to(request: Request, user_id: Optional[str]) -> None:
    """Name the acting user for requests that run without a principal (login)."""
    request.state.audit_user_id = user_id


def acting_user_id(request: Request) -> Optional[str]:
    principal: Optional[Principal] = getattr(request.state, "principal", None)
    if principal is not None:
        return principal.id
    return getattr(request.state, "audit_user_id", None)


def build_entry(
    request: Request,
    *,
    status_code: int,
    user_id: Optional[str],
    request_body: Any,
    captured_body: Any,
    response_body: Any,
) -> AuditLog:
    path = request.url.path
    action = classify_action(request.method, path, status_code)

    if action in _AUTH_ACTIONS:
        entity_type, entity_id = "user", user_id
    else:
        entity_type, entity_id = extract_entity(path, response_body)

    old_values = new_values = None
    if action is AuditAction.update:
        pre_image = getattr(request.state, "audit_pre_image", None)
        old_values = pre_image if pre_image is not None else redact(captured_body)
        new_values = redact(request_body)
    elif action is AuditAction.create:
        new_values = redact(request_body)
    elif action is AuditAction.delete:
        old_values = redact(response_body)

    metadata: dict[str, Any] = {
        "method": request.method,
        "path": path,
        "query": dict(request.query_params),
        "status_code": status_code,
    }
    if action in (AuditAction.login, AuditAction.login_failed) and isinstance(request_body, dict):
        metadata["username"] = request_body.get("username")

    return AuditLog(
        user_id=user_id,
        action=action.value,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        request_metadata=metadata,
    )


# ── Persistence ───────────────────────────────────────────────────────────────

async def persist_entry(provider: StorageProvider, entry: AuditLog) -> AuditLog:
    """Write one entry in its own unit of work. Raises AuditWriteFailed."""
    try:
        async with provider.session() as storage:
            return await storage.create_audit_log(entry)
    except Exception as exc:
        raise AuditWriteFailed(str(exc)) from exc


async def write_entry(provider: StorageProvider, entry: AuditLog) -> None:
    """Background task body: failures are logged, never raised."""
    try:
        await persist_entry(provider, entry)
    except AuditWriteFailed:
        logger.error(
            "Failed to write audit log",
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            user_id=entry.user_id,
            exc_info=True,
        )


# ── Queries ───────────────────────────────────────────────────────────────────

def scoped_filters(principal: Principal, filters: AuditLogFilters) -> AuditLogFilters:
    """Narrow the caller's filters to what the caller may see. TENANT → 403."""
    scope = scope_for(principal, ResourceClass.audit_logs)
    if isinstance(scope, ByProperty):
        return dataclasses.replace(filters, property_id=scope.property_id)
    return filters


def display_name_for(names: dict[str, str], user_id: Optional[str]) -> str:
    if user_id is not None and user_id in names:
        return names[user_id]
    return unnamed_actor(user_id)


async def list_audit_logs(
    storage: Storage,
    principal: Principal,
    filters: AuditLogFilters,
    skip: int,
    limit: int,
) -> tuple[int, list[tuple[AuditLog, str]]]:
    """Return (total, [(entry, user_name), ...]) newest first."""
    total, entries = await storage.get_audit_logs(
        scoped_filters(principal, filters), skip=skip, limit=limit
    )
    names = await storage.get_display_names(
        sorted({e.user_id for e in entries if e.user_id})
    )
    return total, [(entry, display_name_for(names, entry.user_id)) for entry in entries]


async def audit_log_stats(
    storage: Storage, principal: Principal, filters: AuditLogFilters
) -> tuple[AuditLogStats, dict[str, str]]:
    """Return the stats plus display names for the recent_actions users."""
    stats = await storage.get_audit_log_stats(scoped_filters(principal, filters))
    names = await storage.get_display_names(
        sorted({e.user_id for e in stats.recent_actions if e.user_id})
    )
    return stats, names
