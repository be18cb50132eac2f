# besty/api/endpoints/chat.py
from fastapi import APIRouter, Depends
from loguru import logger

from besty.api.deps import get_current_user, get_services
from besty.core.errors import ValidationError
from besty.schemas.chat import ChatRequest, ChatResponse
from besty.schemas.user import User
from besty.services.container import Services

router = APIRouter()


@router.post("", response_model=ChatResponse, summary="Generate the AI reply to a stored user message")
async def chat(
    request: ChatRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if not (request.message or "").strip() or request.conversation_id is None:
        raise ValidationError("Message and conversation ID are required")

    outcome = await services.orchestrator.generate_reply(
        current_user, request.conversation_id, request.message, mood=request.persona_mood
    )
    if outcome.fallback:
        logger.info(f"Served fallback reply in conversation {request.conversation_id}")
    return ChatResponse(text=outcome.message.content, fallback=outcome.fallback)
