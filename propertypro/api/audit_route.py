"""
api/audit_route.py
------------------
AuditedRoute: an APIRoute subclass that wraps each handler invocation and
records an audit entry for it.

Routers opt in with APIRouter(route_class=AuditedRoute). For every request
the wrapper walks the audit lifecycle:

    IDLE → CAPTURING (PUT/PATCH) → DISPATCHED → RESPONSE_CAPTURED
         → LOGGED | LOG_SKIPPED

Successful responses get the audit write attached as a background task
right here. HTTP errors raised by the handler (or its dependencies) are
re-raised, so the request's unit of work rolls back; the entry is parked on
request.state and the application's exception handlers attach it to the
error response via attach_pending_audit(). Either way the write runs after
the response has been sent, on its own storage session.
"""

import copy
import inspect
import json
from typing import Any, Callable, Optional

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.exceptions import HTTPException as StarletteHTTPException

from propertypro.core.logging import get_logger
from propertypro.models.audit_log import AuditLog
from propertypro.services import audit_service
from propertypro.services.audit_service import AuditState

logger = get_logger(__name__)


def _parse_json(raw: Optional[bytes]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def _read_json_body(request: Request) -> Any:
    if "json" not in request.headers.get("content-type", ""):
        return None
    # Starlette caches the body, so the handler can still read it
    return _parse_json(await request.body())


async def _render_exception(request: Request, exc: Exception) -> Response:
    """Render exc with the handler the application registered for its type."""
    handlers = request.app.exception_handlers
    for cls in type(exc).__mro__:
        handler = handlers.get(cls)
        if handler is not None:
            response = handler(request, exc)
            if inspect.isawaitable(response):
                response = await response
            return response
    raise exc


def _chain(existing: Optional[BackgroundTask], task: BackgroundTask) -> BackgroundTask:
    if existing is None:
        return task
    return BackgroundTasks(tasks=[existing, task])


def _write_task(request: Request, entry: AuditLog) -> BackgroundTask:
    return BackgroundTask(audit_service.write_entry, request.app.state.storage_provider, entry)


def attach_pending_audit(request: Request, response: Response) -> Response:
    """Attach an entry parked by AuditedRoute (error path) to the rendered response."""
    entry = getattr(request.state, "audit_pending", None)
    if entry is not None:
        request.state.audit_pending = None
        response.background = _chain(response.background, _write_task(request, entry))
    return response


class AuditedRoute(APIRoute):

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def audited_route_handler(request: Request) -> Response:
            path = request.url.path
            if not audit_service.should_dispatch(request.method, path):
                return await original_route_handler(request)

            request_body = await _read_json_body(request)
            captured_body = None
            if request.method in ("PUT", "PATCH"):
                captured_body = copy.deepcopy(request_body)

            def audit(response: Response) -> Optional[AuditLog]:
                status_code = response.status_code
                user_id = audit_service.acting_user_id(request)
                if not audit_service.should_log(user_id is not None, status_code, path):
                    logger.debug(
                        "Audit skipped",
                        path=path,
                        status_code=status_code,
                        state=AuditState.log_skipped.value,
                    )
                    return None
                entry = audit_service.build_entry(
                    request,
                    status_code=status_code,
                    user_id=user_id,
                    request_body=request_body,
                    captured_body=captured_body,
                    response_body=_parse_json(getattr(response, "body", None)),
                )
                logger.debug(
                    "Audit entry scheduled",
                    action=entry.action,
                    entity_type=entry.entity_type,
                    status_code=status_code,
                    state=AuditState.logged.value,
                )
                return entry

            try:
                response = await original_route_handler(request)
            except (StarletteHTTPException, RequestValidationError) as exc:
                # Rendered only to learn status and body; the app renders it again
                request.state.audit_pending = audit(await _render_exception(request, exc))
                raise

            entry = audit(response)
            if entry is not None:
                response.background = _chain(response.background, _write_task(request, entry))
            return response

        return audited_route_handler
