# besty/api/deps.py
from typing import Optional
from fastapi import Depends, Request, Response

from besty.schemas.user import User
from besty.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_id(request: Request, services: Services = Depends(get_services)) -> Optional[str]:
    return request.cookies.get(services.settings.SESSION_COOKIE_NAME)


async def get_current_user(
    session_id: Optional[str] = Depends(get_session_id),
    services: Services = Depends(get_services),
) -> User:
    """
    Dependency resolving the signed-in user from the session cookie.
    Raises Unauthenticated (401) when the cookie is missing or the session is gone.
    """
    return await services.auth.current_user(session_id)


def set_session_cookie(response: Response, services: Services, session_id: str) -> None:
    settings = services.settings
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session_id,
        max_age=settings.SESSION_TTL_SECONDS,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def clear_session_cookie(response: Response, services: Services) -> None:
    response.delete_cookie(services.settings.SESSION_COOKIE_NAME)
