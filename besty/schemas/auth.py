from typing import Optional
from pydantic import BaseModel, Field

from besty.schemas.common import CamelModel
from besty.schemas.user import User


class LoginRequest(BaseModel):
    email: str = Field(..., description="Address the magic link is sent to")


class LoginResponse(CamelModel):
    success: bool = True
    message: str
    # Only populated when token verification is switched off (development auto-login)
    token: Optional[str] = None
    user: User


class VerifyRequest(BaseModel):
    token: str = Field(..., min_length=1)


class VerifyResponse(CamelModel):
    success: bool = True
    user: User


class LogoutResponse(CamelModel):
    success: bool = True
