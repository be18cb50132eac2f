# besty/api/endpoints/conversation.py
from typing import List
from fastapi import APIRouter, Depends, status

from besty.api.deps import get_current_user, get_services
from besty.schemas.chat import TurnRequest, TurnResult
from besty.schemas.conversation import (
    Conversation,
    ConversationCreate,
    ConversationUpdate,
    Message,
    RecentConversation,
)
from besty.schemas.user import User
from besty.services.container import Services

router = APIRouter()


@router.post(
    "",
    response_model=Conversation,
    status_code=status.HTTP_201_CREATED,
    summary="Start a conversation",
)
async def create_conversation(
    conversation_data: ConversationCreate,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.conversations.create(
        current_user,
        persona_id=conversation_data.persona_id,
        title=conversation_data.title,
    )


@router.get("", response_model=List[Conversation], summary="All conversations, most recent first")
async def list_conversations(
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.conversations.list(current_user)


# Declared before /{conversation_id} so "recent" is not parsed as an id
@router.get("/recent", response_model=RecentConversation, summary="Most recently active conversation")
async def get_recent_conversation(
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    recent = await services.conversations.most_recent(current_user)
    if recent is None:
        return RecentConversation()
    conversation, messages = recent
    return RecentConversation(conversation=conversation, messages=messages)


@router.get("/{conversation_id}", response_model=Conversation, summary="Retrieve a conversation")
async def get_conversation(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.conversations.get_owned(current_user, conversation_id)


@router.patch("/{conversation_id}", response_model=Conversation, summary="Rename a conversation")
async def rename_conversation(
    conversation_id: int,
    conversation_update: ConversationUpdate,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.conversations.rename(current_user, conversation_id, conversation_update.title)


@router.get("/{conversation_id}/messages", response_model=List[Message], summary="Messages in order")
async def list_messages(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.conversations.list_messages(current_user, conversation_id)


@router.post("/{conversation_id}/turns", response_model=TurnResult, summary="Run a full text turn")
async def submit_turn(
    conversation_id: int,
    turn: TurnRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """
    Stores the user's text, generates the AI reply and synthesizes it.
    The reply and audio degrade to fallbacks instead of failing the turn.
    """
    return await services.orchestrator.submit_text(
        current_user, conversation_id, turn.text, mood=turn.mood, voice=turn.voice
    )
