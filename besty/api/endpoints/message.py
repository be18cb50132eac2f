# besty/api/endpoints/message.py
from fastapi import APIRouter, Depends, status

from besty.api.deps import get_current_user, get_services
from besty.core.errors import ValidationError
from besty.schemas.conversation import Message, MessageCreate
from besty.schemas.user import User
from besty.services.container import Services

router = APIRouter()


@router.post(
    "",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    summary="Post a message",
)
async def create_message(
    message_data: MessageCreate,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """
    A user message starts a full turn: the AI reply and its audio are generated
    and stored before this returns. Any other message is simply appended.
    """
    if message_data.conversation_id is None or not (message_data.content or "").strip():
        raise ValidationError("Conversation ID and content are required")

    if message_data.is_user_message:
        turn = await services.orchestrator.submit_text(
            current_user,
            message_data.conversation_id,
            message_data.content,
            audio_url=message_data.audio_url,
        )
        return turn.user_message

    return await services.conversations.append_message(
        current_user,
        message_data.conversation_id,
        message_data.content,
        is_user_message=False,
        audio_url=message_data.audio_url,
    )
