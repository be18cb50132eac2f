# besty/services/sql_storage.py
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select

from besty.core.errors import NotFound
from besty.models.auth_token import AuthToken as DBAuthToken
from besty.models.conversation import Conversation as DBConversation
from besty.models.message import Message as DBMessage
from besty.models.persona import Persona as DBPersona
from besty.models.user import User as DBUser
from besty.schemas.conversation import Conversation, Message
from besty.schemas.persona import Persona
from besty.schemas.user import AuthToken, User
from besty.services.storage import MonotonicClock, Storage

PERSONA_FIELDS = ("voice", "mood", "custom_voice_id", "custom_mood_settings")


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class SQLStorage(Storage):
    """Storage backed by SQLAlchemy's async ORM. Each call runs in its own session."""

    def __init__(self, sessionmaker: async_sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self.sessionmaker = sessionmaker
        self.clock = clock or MonotonicClock()

    # --- Users ---
    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.sessionmaker() as db:
            db_user = await db.get(DBUser, user_id)
            return User.model_validate(db_user) if db_user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self.sessionmaker() as db:
            result = await db.execute(select(DBUser).where(DBUser.email == email))
            db_user = result.scalar_one_or_none()
            return User.model_validate(db_user) if db_user else None

    async def create_user(self, email: str) -> User:
        async with self.sessionmaker() as db:
            db_user = DBUser(email=email, email_verified=False, created_at=self.clock())
            db.add(db_user)
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent login created the same email first
                await db.rollback()
                existing = await self.get_user_by_email(email)
                if existing is None:
                    raise
                logger.info(f"Reusing user {existing.id} created by a concurrent request")
                return existing
            await db.refresh(db_user)  # Refresh to get auto-generated ID
            logger.debug(f"Created user {db_user.id}")
            return User.model_validate(db_user)

    async def mark_email_verified(self, user_id: int) -> User:
        async with self.sessionmaker() as db:
            db_user = await db.get(DBUser, user_id)
            if db_user is None:
                raise NotFound("User not found")
            db_user.email_verified = True
            await db.commit()
            await db.refresh(db_user)
            return User.model_validate(db_user)

    # --- Auth tokens ---
    async def create_auth_token(self, email: str, token: str, expires_at: datetime) -> AuthToken:
        async with self.sessionmaker() as db:
            db_token = DBAuthToken(
                email=email, token=token, expires_at=expires_at, used=False, created_at=self.clock()
            )
            db.add(db_token)
            await db.commit()
            await db.refresh(db_token)
            return AuthToken.model_validate(db_token)

    async def get_auth_token(self, token: str) -> Optional[AuthToken]:
        async with self.sessionmaker() as db:
            result = await db.execute(select(DBAuthToken).where(DBAuthToken.token == token))
            db_token = result.scalar_one_or_none()
            return AuthToken.model_validate(db_token) if db_token else None

    async def mark_auth_token_used(self, token_id: int) -> bool:
        async with self.sessionmaker() as db:
            # Conditional update so two concurrent redemptions cannot both succeed
            result = await db.execute(
                update(DBAuthToken)
                .where(DBAuthToken.id == token_id, DBAuthToken.used.is_(False))
                .values(used=True)
            )
            await db.commit()
            return result.rowcount == 1

    # --- Personas ---
    async def get_persona(self, persona_id: int) -> Optional[Persona]:
        async with self.sessionmaker() as db:
            db_persona = await db.get(DBPersona, persona_id)
            return Persona.model_validate(db_persona) if db_persona else None

    async def get_persona_by_user(self, user_id: int) -> Optional[Persona]:
        async with self.sessionmaker() as db:
            result = await db.execute(select(DBPersona).where(DBPersona.user_id == user_id))
            db_persona = result.scalar_one_or_none()
            return Persona.model_validate(db_persona) if db_persona else None

    async def create_persona(
        self,
        user_id: int,
        voice: str,
        mood: str,
        custom_voice_id: Optional[str] = None,
        custom_mood_settings: Optional[Dict[str, Any]] = None,
    ) -> Persona:
        now = self.clock()
        async with self.sessionmaker() as db:
            db_persona = DBPersona(
                user_id=user_id,
                voice=_enum_value(voice),
                mood=_enum_value(mood),
                custom_voice_id=custom_voice_id,
                custom_mood_settings=custom_mood_settings,
                created_at=now,
                updated_at=now,
            )
            db.add(db_persona)
            try:
                await db.commit()
            except IntegrityError:
                # Another request created this user's persona first
                await db.rollback()
                existing = await self.get_persona_by_user(user_id)
                if existing is None:
                    raise
                logger.info(f"Persona for user {user_id} already exists; updating persona {existing.id}")
                return await self.update_persona(
                    existing.id,
                    voice=voice,
                    mood=mood,
                    custom_voice_id=custom_voice_id,
                    custom_mood_settings=custom_mood_settings,
                )
            await db.refresh(db_persona)
            return Persona.model_validate(db_persona)

    async def update_persona(self, persona_id: int, **fields: Any) -> Persona:
        async with self.sessionmaker() as db:
            db_persona = await db.get(DBPersona, persona_id)
            if db_persona is None:
                raise NotFound("Persona not found")
            for key, value in fields.items():
                if key in PERSONA_FIELDS:
                    setattr(db_persona, key, _enum_value(value))
            db_persona.updated_at = self.clock()
            await db.commit()
            await db.refresh(db_persona)
            return Persona.model_validate(db_persona)

    # --- Conversations ---
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        async with self.sessionmaker() as db:
            db_conversation = await db.get(DBConversation, conversation_id)
            return Conversation.model_validate(db_conversation) if db_conversation else None

    async def list_conversations(self, user_id: int) -> List[Conversation]:
        async with self.sessionmaker() as db:
            result = await db.execute(
                select(DBConversation)
                .where(DBConversation.user_id == user_id)
                .order_by(DBConversation.updated_at.desc(), DBConversation.id.desc())
            )
            return [Conversation.model_validate(c) for c in result.scalars().all()]

    async def create_conversation(
        self, user_id: int, persona_id: Optional[int], title: str
    ) -> Conversation:
        now = self.clock()
        async with self.sessionmaker() as db:
            db_conversation = DBConversation(
                user_id=user_id, persona_id=persona_id, title=title, created_at=now, updated_at=now
            )
            db.add(db_conversation)
            await db.commit()
            await db.refresh(db_conversation)
            return Conversation.model_validate(db_conversation)

    async def update_conversation_title(self, conversation_id: int, title: str) -> Conversation:
        async with self.sessionmaker() as db:
            db_conversation = await db.get(DBConversation, conversation_id)
            if db_conversation is None:
                raise NotFound("Conversation not found")
            db_conversation.title = title
            db_conversation.updated_at = self.clock()
            await db.commit()
            await db.refresh(db_conversation)
            return Conversation.model_validate(db_conversation)

    # --- Messages ---
    async def create_message(
        self,
        conversation_id: int,
        content: str,
        is_user_message: bool,
        audio_url: Optional[str] = None,
    ) -> Message:
        async with self.sessionmaker() as db:
            db_conversation = await db.get(DBConversation, conversation_id)
            if db_conversation is None:
                raise NotFound("Conversation not found")
            db_message = DBMessage(
                conversation_id=conversation_id,
                content=content,
                audio_url=audio_url,
                is_user_message=is_user_message,
                created_at=self.clock(),
            )
            # Message first, then the parent bump, committed together
            db.add(db_message)
            await db.flush()
            db_conversation.updated_at = db_message.created_at
            await db.commit()
            await db.refresh(db_message)
            return Message.model_validate(db_message)

    async def get_message(self, message_id: int) -> Optional[Message]:
        async with self.sessionmaker() as db:
            db_message = await db.get(DBMessage, message_id)
            return Message.model_validate(db_message) if db_message else None

    async def list_messages(self, conversation_id: int) -> List[Message]:
        async with self.sessionmaker() as db:
            result = await db.execute(
                select(DBMessage)
                .where(DBMessage.conversation_id == conversation_id)
                .order_by(DBMessage.created_at.asc(), DBMessage.id.asc())
            )
            return [Message.model_validate(m) for m in result.scalars().all()]
