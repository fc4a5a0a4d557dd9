"""
verify.py
---------
Purpose:
    Session-token authentication for protected routes.

Notes:
    - Clients send `Authorization: Bearer <user token>`.
    - The token is the opaque random token stored on the User document.
    - Provides `auth_dependency` (required) and `optional_user` (for routes
      that behave differently when a token is present, such as OAuth login).
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.dependencies import Clients, get_clients
from app.errors import UnauthorizedError
from app.models.domain.user_domain import User
from app.services import user_service

_security = HTTPBearer(auto_error=False)


async def resolve_token(clients: Clients, token: str) -> User | None:
    if not token:
        return None
    return await user_service.get_user_by_token(clients.store, token)


async def optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
    clients: Clients = Depends(get_clients),
) -> User | None:
    if credentials is None:
        return None
    return await resolve_token(clients, credentials.credentials)


async def auth_dependency(user: User | None = Depends(optional_user)) -> User:
    if user is None:
        raise UnauthorizedError("Unauthorized", op="auth.auth_dependency")
    return user
