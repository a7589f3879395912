"""
dependencies.py
---------------
FastAPI dependency injection functions for storage and authentication.

Flow:
  1. get_storage opens a unit of work on the app's StorageProvider
     (committed when the request handler returns, rolled back on error).
  2. HTTPBearer extracts the Bearer token from the Authorization header.
  3. get_current_principal resolves the token through IdentityResolver,
     which re-reads the session and user rows on every request, and
     stashes the Principal on request.state for the audit interceptor.
  4. require_roles layers a role check on top of get_current_principal.

Role checks here are coarse gates only. Row visibility is decided by the
scope engine (services/scope_service.py).
"""

from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from propertypro.models.user import UserRole
from propertypro.services.identity_service import IdentityResolver, Principal
from propertypro.services.scope_service import require_role
from propertypro.storage.base import Storage

# auto_error=False so a missing header yields our 401, not FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


async def get_storage(request: Request) -> AsyncIterator[Storage]:
    async with request.app.state.storage_provider.session() as storage:
        yield storage


StorageDep = Annotated[Storage, Depends(get_storage)]


async def get_current_principal(
    request: Request,
    storage: StorageDep,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> Principal:
    """
    Resolve the bearer token to a Principal.
    Raises 401 if the token is missing or invalid, the session is gone, or
    the account is deactivated.
    """
    token = credentials.credentials if credentials is not None else None
    principal = await IdentityResolver(storage).resolve(token)
    request.state.principal = principal
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def require_roles(*roles: UserRole):
    """Dependency factory: 403 unless the principal holds one of roles."""

    async def checker(principal: CurrentPrincipal) -> Principal:
        require_role(principal, *roles)
        return principal

    return checker
