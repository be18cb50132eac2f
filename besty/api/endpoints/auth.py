# besty/api/endpoints/auth.py
from typing import Optional
from fastapi import APIRouter, Depends, Response
from loguru import logger

from besty.api.deps import (
    clear_session_cookie,
    get_current_user,
    get_services,
    get_session_id,
    set_session_cookie,
)
from besty.schemas.auth import LoginRequest, LoginResponse, LogoutResponse, VerifyRequest, VerifyResponse
from besty.schemas.user import User
from besty.services.container import Services

router = APIRouter()


@router.post("/login", response_model=LoginResponse, summary="Request a magic link")
async def login(
    login_data: LoginRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    outcome = await services.auth.login(login_data.email)
    if outcome.session_id is None:
        return LoginResponse(message="Magic link sent to your email", user=outcome.user)

    set_session_cookie(response, services, outcome.session_id)
    return LoginResponse(message="Logged in successfully", token=outcome.token, user=outcome.user)


@router.post("/verify", response_model=VerifyResponse, summary="Redeem a magic link token")
async def verify(
    verify_data: VerifyRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    outcome = await services.auth.verify(verify_data.token)
    set_session_cookie(response, services, outcome.session_id)
    return VerifyResponse(user=outcome.user)


@router.get("/me", response_model=User, summary="Current user")
async def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout", response_model=LogoutResponse, summary="End the session")
async def logout(
    response: Response,
    session_id: Optional[str] = Depends(get_session_id),
    services: Services = Depends(get_services),
):
    await services.auth.logout(session_id)
    clear_session_cookie(response, services)
    logger.info("Session ended")
    return LogoutResponse()
