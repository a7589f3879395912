"""
core/errors.py
--------------
Error taxonomy shared by the services and the route layer.

Every client-facing error is an HTTPException subclass, so services can raise
them directly and FastAPI renders them as {"detail": ...} with the right
status code. AuditWriteFailed is internal only and never reaches a client.
"""

from fastapi import HTTPException, status


class Unauthenticated(HTTPException):
    """No session, an invalid/expired session, or a deactivated account."""

    def __init__(self, detail: str = "Not authenticated") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class PrincipalNotFound(HTTPException):
    """The session references a user that no longer exists."""

    def __init__(self, detail: str = "Not authenticated") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Access denied") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class Conflict(HTTPException):
    def __init__(self, detail: str) -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class MisconfiguredPrincipal(HTTPException):
    """An ADMIN without a property, or a TENANT without a linked record."""

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ThreadStatusConflict(HTTPException):
    def __init__(self, thread_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Status update for thread '{thread_id}' did not converge",
        )


class AuditWriteFailed(Exception):
    """Persisting an audit entry failed. Logged and swallowed by the interceptor."""
