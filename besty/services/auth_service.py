# besty/services/auth_service.py
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email
from loguru import logger

from besty.core.errors import InvalidToken, Unauthenticated, ValidationError
from besty.schemas.user import User
from besty.services.mailer import LoggingMailer
from besty.services.session_store import SessionStore
from besty.services.storage import Storage, utcnow

TOKEN_BYTES = 32  # 256-bit magic link tokens


@dataclass
class LoginOutcome:
    user: User
    token: str
    # Set only when login signs the user in without waiting for the magic link
    session_id: Optional[str] = None


@dataclass
class VerifyOutcome:
    user: User
    session_id: str


class AuthService:
    def __init__(
        self,
        storage: Storage,
        sessions: SessionStore,
        mailer: LoggingMailer,
        require_token_verification: bool = True,
        token_ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.sessions = sessions
        self.mailer = mailer
        self.require_token_verification = require_token_verification
        self.token_ttl = token_ttl
        self.clock = clock

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        if not email or not isinstance(email, str):
            raise ValidationError("Email is required")
        try:
            # Addresses are matched case-insensitively
            return validate_email(email.strip(), check_deliverability=False).normalized.lower()
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid email address: {e}")

    async def login(self, email: Optional[str]) -> LoginOutcome:
        """
        Find or create the user, issue a single-use token and send the magic link.
        With verification switched off the user is signed in straight away.
        """
        email = self.normalize_email(email)

        user = await self.storage.get_user_by_email(email)
        if user is None:
            user = await self.storage.create_user(email)
            logger.info(f"Created user {user.id} on first login")

        token = secrets.token_hex(TOKEN_BYTES)
        await self.storage.create_auth_token(email, token, self.clock() + self.token_ttl)

        try:
            await self.mailer.send_magic_link(email, token)
        except Exception as e:
            logger.error(f"Failed to send magic link to user {user.id}: {e}")

        if self.require_token_verification:
            logger.info(f"Magic link issued for user {user.id}; waiting for verification")
            return LoginOutcome(user=user, token=token)

        session_id = await self.sessions.create(user.id)
        logger.info(f"User {user.id} signed in without token verification")
        return LoginOutcome(user=user, token=token, session_id=session_id)

    async def verify(self, token: Optional[str]) -> VerifyOutcome:
        if not token or not isinstance(token, str):
            raise ValidationError("Token is required")

        auth_token = await self.storage.get_auth_token(token)
        if auth_token is None or auth_token.used or self.clock() > auth_token.expires_at:
            raise InvalidToken()
        if not await self.storage.mark_auth_token_used(auth_token.id):
            # Redeemed by a concurrent request
            raise InvalidToken()

        user = await self.storage.get_user_by_email(auth_token.email)
        if user is None:
            user = await self.storage.create_user(auth_token.email)
        user = await self.storage.mark_email_verified(user.id)

        session_id = await self.sessions.create(user.id)
        logger.info(f"User {user.id} verified magic link token")
        return VerifyOutcome(user=user, session_id=session_id)

    async def current_user(self, session_id: Optional[str]) -> User:
        if not session_id:
            raise Unauthenticated()
        user_id = await self.sessions.get(session_id)
        if user_id is None:
            raise Unauthenticated()
        user = await self.storage.get_user(user_id)
        if user is None:
            await self.sessions.destroy(session_id)
            raise Unauthenticated("Invalid session")
        return user

    async def logout(self, session_id: Optional[str]) -> None:
        if session_id:
            await self.sessions.destroy(session_id)
