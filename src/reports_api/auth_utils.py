from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.reports_api.errors import Forbidden, Unauthorized
from src.reports_api.logging_config import get_logger
from src.reports_api.tokens import InvalidToken, get_token_service

logger = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)

# Identity attached to report requests that are served without a login.
SYSTEM_IDENTITY: Dict[str, Any] = {"userId": 1, "username": "system", "role": "admin"}


def _attach(request: Request, user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    request.state.user = user
    return user


# PUBLIC_INTERFACE
def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """Dependency that requires a valid access token and returns its claims."""
    if credentials is None:
        raise Unauthorized("Access token required")
    try:
        claims = get_token_service().verify(credentials.credentials)
    except InvalidToken:
        raise Forbidden("Invalid or expired token")
    return _attach(request, claims)


# PUBLIC_INTERFACE
def optional_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[Dict[str, Any]]:
    """Dependency that returns claims when a valid token is present, else None. Never blocks."""
    if credentials is None:
        return _attach(request, None)
    try:
        claims = get_token_service().verify(credentials.credentials)
    except InvalidToken:
        logger.warning("Invalid token provided; continuing unauthenticated")
        return _attach(request, None)
    return _attach(request, claims)


# PUBLIC_INTERFACE
def report_bypass_auth(request: Request) -> Dict[str, Any]:
    """
    Dependency for report endpoints that must stay callable without a login.

    Any credential is ignored and the fixed system identity is attached.
    """
    logger.debug("Report request served under the system identity")
    return _attach(request, dict(SYSTEM_IDENTITY))


# PUBLIC_INTERFACE
def require_role(*roles: str) -> Callable[..., Dict[str, Any]]:
    """Dependency factory that requires an authenticated user with one of `roles`."""
    allowed = {r.lower() for r in roles}

    def _check(user: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
        if str(user.get("role") or "").lower() not in allowed:
            raise Forbidden("Insufficient permissions")
        return user

    return _check
