"""
api/routes/auth.py
------------------
Authentication endpoints.

POST /api/auth/login   — Exchange credentials for a session-bound bearer token.
POST /api/auth/logout  — Revoke the caller's session.
GET  /api/auth/me      — Return the authenticated user's profile.

Accounts are created by IT/ADMIN (api/routes/users.py) or provisioned out of
band (create_tables.py); there is no self-registration.
"""

from fastapi import APIRouter, Request, status

from propertypro.api.audit_route import AuditedRoute
from propertypro.core.errors import Unauthenticated
from propertypro.core.logging import get_logger
from propertypro.dependencies import CurrentPrincipal, StorageDep
from propertypro.schemas.user import LoginRequest, TokenResponse, UserRead
from propertypro.services import audit_service
from propertypro.services.identity_service import IdentityResolver

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"], route_class=AuditedRoute)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login and receive a bearer token",
)
async def login(body: LoginRequest, request: Request, storage: StorageDep) -> TokenResponse:
    """
    Authenticate with username + password. Every attempt is audited; a
    failed attempt is attributed to the matched account when one exists.
    """
    resolver = IdentityResolver(storage)
    user = await resolver.authenticate(body.username, body.password)
    if user is None:
        known = await storage.get_user_by_username(body.username)
        audit_service.attribute_to(request, known.id if known is not None else None)
        logger.warning("Login failed", username=body.username)
        raise Unauthenticated("Invalid username or password")

    audit_service.attribute_to(request, user.id)
    issued = await resolver.open_session(user)
    return TokenResponse(
        access_token=issued.token,
        token_type="bearer",
        expires_in=issued.expires_in,
        user=UserRead.model_validate(issued.user),
    )


@router.post(
    "/logout",
    status_code=status.HTTP_200_OK,
    summary="Revoke the current session",
)
async def logout(principal: CurrentPrincipal, storage: StorageDep) -> dict:
    await IdentityResolver(storage).close_session(principal)
    return {"message": "Logged out"}


@router.get(
    "/me",
    response_model=UserRead,
    summary="Get the currently authenticated user",
)
async def get_me(principal: CurrentPrincipal, storage: StorageDep) -> UserRead:
    user = await storage.get_user(principal.id)
    return UserRead.model_validate(user)
