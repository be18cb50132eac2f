# besty/services/conversation_service.py
from typing import List, Optional, Tuple
from loguru import logger

from besty.core.errors import Forbidden, NotFound, ValidationError
from besty.schemas.conversation import Conversation, Message
from besty.schemas.user import User
from besty.services.storage import Storage


class ConversationService:
    """Conversation and message access with ownership checks applied."""

    def __init__(self, storage: Storage, default_title: str = "New Conversation"):
        self.storage = storage
        self.default_title = default_title

    async def get_owned(self, user: User, conversation_id: Optional[int]) -> Conversation:
        if conversation_id is None:
            raise ValidationError("Conversation ID is required")
        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        if conversation.user_id != user.id:
            logger.warning(f"User {user.id} denied access to conversation {conversation_id}")
            raise Forbidden()
        return conversation

    async def create(self, user: User, persona_id: Optional[int] = None, title: Optional[str] = None) -> Conversation:
        if persona_id is not None:
            persona = await self.storage.get_persona(persona_id)
            if persona is None:
                raise NotFound("Persona not found")
            if persona.user_id != user.id:
                raise Forbidden()
        conversation = await self.storage.create_conversation(
            user_id=user.id,
            persona_id=persona_id,
            title=(title or "").strip() or self.default_title,
        )
        logger.info(f"Created conversation {conversation.id} for user {user.id}")
        return conversation

    async def list(self, user: User) -> List[Conversation]:
        return await self.storage.list_conversations(user.id)

    async def most_recent(self, user: User) -> Optional[Tuple[Conversation, List[Message]]]:
        conversation = await self.storage.most_recent_conversation(user.id)
        if conversation is None:
            return None
        return conversation, await self.storage.list_messages(conversation.id)

    async def rename(self, user: User, conversation_id: int, title: str) -> Conversation:
        await self.get_owned(user, conversation_id)
        return await self.storage.update_conversation_title(conversation_id, title.strip())

    async def list_messages(self, user: User, conversation_id: int) -> List[Message]:
        await self.get_owned(user, conversation_id)
        return await self.storage.list_messages(conversation_id)

    async def append_message(
        self,
        user: User,
        conversation_id: Optional[int],
        content: Optional[str],
        is_user_message: bool,
        audio_url: Optional[str] = None,
    ) -> Message:
        if not content or not content.strip():
            raise ValidationError("Conversation ID and content are required")
        await self.get_owned(user, conversation_id)
        return await self.storage.create_message(
            conversation_id=conversation_id,
            content=content,
            is_user_message=is_user_message,
            audio_url=audio_url,
        )
