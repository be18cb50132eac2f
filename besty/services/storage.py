# besty/services/storage.py
"""
Persistence abstraction for users, auth tokens, personas, conversations and messages.

The store does no authorization: callers check conversation ownership before
reading or writing. `MemoryStorage` backs tests and development; `SQLStorage`
(see sql_storage.py) is the persistent implementation.
"""
import abc
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from besty.core.errors import NotFound
from besty.schemas.conversation import Conversation, Message
from besty.schemas.persona import Persona
from besty.schemas.user import AuthToken, User


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonotonicClock:
    """UTC clock whose readings strictly increase, so sequential inserts never tie."""

    def __init__(self, now: Callable[[], datetime] = utcnow):
        self._now = now
        self._last: Optional[datetime] = None

    def __call__(self) -> datetime:
        current = self._now()
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


class Storage(abc.ABC):
    # --- Users ---
    @abc.abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]: ...

    @abc.abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abc.abstractmethod
    async def create_user(self, email: str) -> User: ...

    @abc.abstractmethod
    async def mark_email_verified(self, user_id: int) -> User: ...

    # --- Auth tokens ---
    @abc.abstractmethod
    async def create_auth_token(self, email: str, token: str, expires_at: datetime) -> AuthToken: ...

    @abc.abstractmethod
    async def get_auth_token(self, token: str) -> Optional[AuthToken]: ...

    @abc.abstractmethod
    async def mark_auth_token_used(self, token_id: int) -> bool:
        """Flip an unused token to used. Returns False if it was already used."""

    # --- Personas ---
    @abc.abstractmethod
    async def get_persona(self, persona_id: int) -> Optional[Persona]: ...

    @abc.abstractmethod
    async def get_persona_by_user(self, user_id: int) -> Optional[Persona]: ...

    @abc.abstractmethod
    async def create_persona(
        self,
        user_id: int,
        voice: str,
        mood: str,
        custom_voice_id: Optional[str] = None,
        custom_mood_settings: Optional[Dict[str, Any]] = None,
    ) -> Persona: ...

    @abc.abstractmethod
    async def update_persona(self, persona_id: int, **fields: Any) -> Persona: ...

    # --- Conversations ---
    @abc.abstractmethod
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]: ...

    @abc.abstractmethod
    async def list_conversations(self, user_id: int) -> List[Conversation]:
        """The user's conversations, most recently updated first."""

    @abc.abstractmethod
    async def create_conversation(
        self, user_id: int, persona_id: Optional[int], title: str
    ) -> Conversation: ...

    @abc.abstractmethod
    async def update_conversation_title(self, conversation_id: int, title: str) -> Conversation: ...

    async def most_recent_conversation(self, user_id: int) -> Optional[Conversation]:
        conversations = await self.list_conversations(user_id)
        return conversations[0] if conversations else None

    # --- Messages ---
    @abc.abstractmethod
    async def create_message(
        self,
        conversation_id: int,
        content: str,
        is_user_message: bool,
        audio_url: Optional[str] = None,
    ) -> Message:
        """Insert the message, then bump the parent conversation's updated_at."""

    @abc.abstractmethod
    async def get_message(self, message_id: int) -> Optional[Message]: ...

    @abc.abstractmethod
    async def list_messages(self, conversation_id: int) -> List[Message]:
        """Messages ordered by created_at ascending, ties broken by id."""

    async def close(self) -> None:
        return None


class MemoryStorage(Storage):
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or MonotonicClock()
        self._users: Dict[int, User] = {}
        self._auth_tokens: Dict[str, AuthToken] = {}
        self._personas: Dict[int, Persona] = {}
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, Message] = {}
        self._ids: Dict[str, int] = {}

    def _next_id(self, table: str) -> int:
        self._ids[table] = self._ids.get(table, 0) + 1
        return self._ids[table]

    # --- Users ---
    async def get_user(self, user_id: int) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        for user in self._users.values():
            if user.email == email:
                return user.model_copy()
        return None

    async def create_user(self, email: str) -> User:
        user = User(id=self._next_id("users"), email=email, email_verified=False, created_at=self.clock())
        self._users[user.id] = user
        logger.debug(f"Created user {user.id}")
        return user.model_copy()

    async def mark_email_verified(self, user_id: int) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        user.email_verified = True
        return user.model_copy()

    # --- Auth tokens ---
    async def create_auth_token(self, email: str, token: str, expires_at: datetime) -> AuthToken:
        auth_token = AuthToken(
            id=self._next_id("auth_tokens"),
            email=email,
            token=token,
            expires_at=expires_at,
            used=False,
            created_at=self.clock(),
        )
        self._auth_tokens[token] = auth_token
        return auth_token.model_copy()

    async def get_auth_token(self, token: str) -> Optional[AuthToken]:
        auth_token = self._auth_tokens.get(token)
        return auth_token.model_copy() if auth_token else None

    async def mark_auth_token_used(self, token_id: int) -> bool:
        for auth_token in self._auth_tokens.values():
            if auth_token.id == token_id:
                if auth_token.used:
                    return False
                auth_token.used = True
                return True
        return False

    # --- Personas ---
    async def get_persona(self, persona_id: int) -> Optional[Persona]:
        persona = self._personas.get(persona_id)
        return persona.model_copy() if persona else None

    async def get_persona_by_user(self, user_id: int) -> Optional[Persona]:
        for persona in self._personas.values():
            if persona.user_id == user_id:
                return persona.model_copy()
        return None

    async def create_persona(
        self,
        user_id: int,
        voice: str,
        mood: str,
        custom_voice_id: Optional[str] = None,
        custom_mood_settings: Optional[Dict[str, Any]] = None,
    ) -> Persona:
        now = self.clock()
        persona = Persona(
            id=self._next_id("personas"),
            user_id=user_id,
            voice=voice,
            mood=mood,
            custom_voice_id=custom_voice_id,
            custom_mood_settings=custom_mood_settings,
            created_at=now,
            updated_at=now,
        )
        self._personas[persona.id] = persona
        return persona.model_copy()

    async def update_persona(self, persona_id: int, **fields: Any) -> Persona:
        persona = self._personas.get(persona_id)
        if persona is None:
            raise NotFound("Persona not found")
        updated = Persona.model_validate(
            {**persona.model_dump(), **fields, "updated_at": self.clock()}
        )
        self._personas[persona_id] = updated
        return updated.model_copy()

    # --- Conversations ---
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy() if conversation else None

    async def list_conversations(self, user_id: int) -> List[Conversation]:
        owned = [c for c in self._conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: (c.updated_at, c.id), reverse=True)
        return [c.model_copy() for c in owned]

    async def create_conversation(
        self, user_id: int, persona_id: Optional[int], title: str
    ) -> Conversation:
        now = self.clock()
        conversation = Conversation(
            id=self._next_id("conversations"),
            user_id=user_id,
            persona_id=persona_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        self._conversations[conversation.id] = conversation
        return conversation.model_copy()

    async def update_conversation_title(self, conversation_id: int, title: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        conversation.title = title
        conversation.updated_at = self.clock()
        return conversation.model_copy()

    # --- Messages ---
    async def create_message(
        self,
        conversation_id: int,
        content: str,
        is_user_message: bool,
        audio_url: Optional[str] = None,
    ) -> Message:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        message = Message(
            id=self._next_id("messages"),
            conversation_id=conversation_id,
            content=content,
            audio_url=audio_url,
            is_user_message=is_user_message,
            created_at=self.clock(),
        )
        self._messages[message.id] = message
        conversation.updated_at = max(conversation.updated_at, message.created_at)
        return message.model_copy()

    async def get_message(self, message_id: int) -> Optional[Message]:
        message = self._messages.get(message_id)
        return message.model_copy() if message else None

    async def list_messages(self, conversation_id: int) -> List[Message]:
        messages = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        messages.sort(key=lambda m: (m.created_at, m.id))
        return [m.model_copy() for m in messages]
