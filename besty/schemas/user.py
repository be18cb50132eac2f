from pydantic import Field

from besty.schemas.common import CamelModel, UTCDateTime


class User(CamelModel):
    id: int
    email: str
    email_verified: bool = False
    created_at: UTCDateTime


class AuthToken(CamelModel):
    id: int
    email: str
    token: str = Field(..., min_length=32, description="Single-use magic link token")
    expires_at: UTCDateTime
    used: bool = False
    created_at: UTCDateTime
