"""
api/routes/audit_logs.py
------------------------
Read access to the audit trail (IT: everything; ADMIN: entries made by
users of its property; TENANT: 403).

GET /api/audit-logs        — Filtered, paginated entries, newest first
GET /api/audit-logs/stats  — Aggregates over the same filters

Viewing the audit trail is itself audited (VIEW).
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from propertypro.api.audit_route import AuditedRoute
from propertypro.core.config import settings
from propertypro.dependencies import CurrentPrincipal, StorageDep
from propertypro.schemas.audit import (
    AuditLogListResponse,
    AuditLogRead,
    AuditLogStatsResponse,
    UserActionCountRead,
)
from propertypro.services import audit_service
from propertypro.storage.base import AuditLogFilters

router = APIRouter(prefix="/api/audit-logs", tags=["Audit Logs"], route_class=AuditedRoute)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _filters(
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> AuditLogFilters:
    return AuditLogFilters(
        user_id=user_id,
        action=action.upper() if action else None,
        entity_type=entity_type,
        entity_id=entity_id,
        start_date=_as_utc(start_date),
        end_date=_as_utc(end_date),
    )


@router.get(
    "",
    response_model=AuditLogListResponse,
    summary="List audit log entries",
)
async def list_audit_logs(
    principal: CurrentPrincipal,
    storage: StorageDep,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(
        settings.AUDIT_LOG_DEFAULT_LIMIT, ge=1, le=settings.AUDIT_LOG_MAX_LIMIT
    ),
) -> AuditLogListResponse:
    filters = _filters(user_id, action, entity_type, entity_id, start_date, end_date)
    total, rows = await audit_service.list_audit_logs(storage, principal, filters, skip, limit)
    return AuditLogListResponse(
        total=total,
        items=[
            AuditLogRead.model_validate(entry).model_copy(update={"user_name": name})
            for entry, name in rows
        ],
    )


@router.get(
    "/stats",
    response_model=AuditLogStatsResponse,
    summary="Audit log statistics",
)
async def audit_log_stats(
    principal: CurrentPrincipal,
    storage: StorageDep,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> AuditLogStatsResponse:
    filters = _filters(user_id, action, entity_type, entity_id, start_date, end_date)
    stats, names = await audit_service.audit_log_stats(storage, principal, filters)
    return AuditLogStatsResponse(
        total_actions=stats.total_actions,
        actions_by_type=stats.actions_by_type,
        actions_by_user=[UserActionCountRead.model_validate(u) for u in stats.actions_by_user],
        recent_actions=[
            AuditLogRead.model_validate(entry).model_copy(
                update={"user_name": audit_service.display_name_for(names, entry.user_id)}
            )
            for entry in stats.recent_actions
        ],
    )
