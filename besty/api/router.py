# besty/api/router.py
from fastapi import APIRouter, Depends
from besty.api.endpoints import auth, chat, conversation, message, persona, speech
from besty.api.endpoints import health as health_endpoint
from besty.api.deps import get_current_user


api_router = APIRouter()

protected_dependencies = [Depends(get_current_user)]

api_router.include_router(
    persona.router,
    prefix="/personas",
    tags=["Persona"],
    dependencies=protected_dependencies,
)
api_router.include_router(
    conversation.router,
    prefix="/conversations",
    tags=["Conversations"],
    dependencies=protected_dependencies,
)
api_router.include_router(
    message.router,
    prefix="/messages",
    tags=["Messages"],
    dependencies=protected_dependencies,
)
api_router.include_router(
    chat.router,
    prefix="/chat",
    tags=["AI Chat"],
    dependencies=protected_dependencies,
)
api_router.include_router(
    speech.router,
    tags=["Speech"],
    dependencies=protected_dependencies,
)

# --- Public Routes ---
# /auth/me and /auth/logout resolve the session themselves
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(health_endpoint.router, prefix="/health", tags=["Health"])
