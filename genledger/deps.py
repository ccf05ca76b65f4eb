"""Shared FastAPI dependencies."""

from dataclasses import dataclass

from fastapi import Depends, Request

from genledger.core.config import Settings, get_settings
from genledger.core.exceptions import ForbiddenError, UnauthorizedError
from genledger.core.logging import bind_user_id
from genledger.core.security import load_access_token, parse_bearer
from genledger.services.generation_api import GenerationApiClient

_generation_client: GenerationApiClient | None = None


@dataclass(frozen=True)
class CurrentUser:
    id: str


async def get_current_user(request: Request, settings: Settings = Depends(get_settings)) -> CurrentUser:
    """Dependency: resolve the bearer token to a user identity."""
    header = request.headers.get("Authorization")
    if not header:
        raise UnauthorizedError("Missing authorization header")
    token = parse_bearer(header)
    if not token:
        raise UnauthorizedError("Invalid authorization header")
    payload = load_access_token(token, settings)
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    user_id = payload.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise UnauthorizedError("Invalid token")
    bind_user_id(user_id)
    return CurrentUser(id=user_id)


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """Dependency: require current user to be listed in ADMIN_USER_IDS."""
    if user.id not in settings.admin_user_ids:
        raise ForbiddenError("Admin only")
    return user


def get_generation_client(settings: Settings = Depends(get_settings)) -> GenerationApiClient:
    """Shared client for connection pooling / keep-alive."""
    global _generation_client
    if _generation_client is None or _generation_client.http.is_closed:
        _generation_client = GenerationApiClient(settings)
    return _generation_client


async def close_generation_client() -> None:
    global _generation_client
    if _generation_client is not None:
        await _generation_client.aclose()
        _generation_client = None
