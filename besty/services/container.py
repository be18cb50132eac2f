# besty/services/container.py
"""Builds the service graph once per application and tears it down on shutdown."""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

import httpx
from loguru import logger

from besty.core.config import Settings
from besty.core.database import dispose_db, init_db
from besty.core.redis_client import close_redis_client, init_redis_client
from besty.services.audio import AudioStore
from besty.services.auth_service import AuthService
from besty.services.conversation_service import ConversationService
from besty.services.gateways.chat_completion import ChatCompletionGateway, build_chat_gateway
from besty.services.gateways.speech_synthesis import SpeechSynthesisGateway, build_speech_gateway
from besty.services.gateways.transcription import TranscriptionGateway, build_transcription_gateway
from besty.services.mailer import LoggingMailer
from besty.services.persona_service import PersonaService
from besty.services.session_store import MemorySessionStore, RedisSessionStore, SessionStore
from besty.services.sql_storage import SQLStorage
from besty.services.storage import MemoryStorage, Storage
from besty.services.turn_orchestrator import TurnOrchestrator


@dataclass
class Services:
    settings: Settings
    storage: Storage
    sessions: SessionStore
    auth: AuthService
    personas: PersonaService
    conversations: ConversationService
    orchestrator: TurnOrchestrator
    audio_store: AudioStore
    http_client: Optional[httpx.AsyncClient] = None
    # Shutdown hooks for the globals opened by create_services
    owns_database: bool = field(default=False, repr=False)
    owns_redis: bool = field(default=False, repr=False)

    async def close(self) -> None:
        await self.orchestrator.aclose()
        await self.storage.close()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.owns_redis:
            await close_redis_client()
        if self.owns_database:
            await dispose_db()
        logger.info("Services shut down")


def build_services(
    settings: Settings,
    storage: Optional[Storage] = None,
    sessions: Optional[SessionStore] = None,
    transcription: Optional[TranscriptionGateway] = None,
    chat: Optional[ChatCompletionGateway] = None,
    speech: Optional[SpeechSynthesisGateway] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    mailer: Optional[LoggingMailer] = None,
) -> Services:
    """
    Wire the services together. Anything not passed in is resolved from settings
    here, once; gateways are never re-selected per call.
    """
    storage = storage or MemoryStorage()
    sessions = sessions or MemorySessionStore(settings.SESSION_TTL_SECONDS)
    if transcription is None or speech is None:
        http_client = http_client or httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS)
    transcription = transcription or build_transcription_gateway(settings, http_client)
    chat = chat or build_chat_gateway(settings)
    speech = speech or build_speech_gateway(settings, http_client)

    audio_store = AudioStore(settings.UPLOADS_DIR)
    conversations = ConversationService(storage, default_title=settings.DEFAULT_CONVERSATION_TITLE)
    auth = AuthService(
        storage,
        sessions,
        mailer or LoggingMailer(settings.BASE_URL),
        require_token_verification=settings.REQUIRE_TOKEN_VERIFICATION,
        token_ttl=timedelta(minutes=settings.AUTH_TOKEN_TTL_MINUTES),
    )
    orchestrator = TurnOrchestrator(
        storage,
        conversations,
        transcription,
        chat,
        speech,
        audio_store,
        gateway_timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        capture_interval=settings.INTERIM_TRANSCRIPT_INTERVAL_SECONDS,
        max_interim_failures=settings.INTERIM_TRANSCRIPT_MAX_FAILURES,
    )
    return Services(
        settings=settings,
        storage=storage,
        sessions=sessions,
        auth=auth,
        personas=PersonaService(storage),
        conversations=conversations,
        orchestrator=orchestrator,
        audio_store=audio_store,
        http_client=http_client,
    )


async def create_services(settings: Settings) -> Services:
    """Open the configured database and Redis connections, then build the services on top."""
    storage: Optional[Storage] = None
    sessions: Optional[SessionStore] = None
    owns_database = owns_redis = False

    if settings.DATABASE_URL:
        sessionmaker = await init_db(settings)
        storage = SQLStorage(sessionmaker)
        owns_database = True
        logger.info("Using SQL storage")
    else:
        logger.warning("DATABASE_URL not set; data is kept in memory and lost on restart")

    if settings.REDIS_HOST:
        try:
            redis_client = await init_redis_client(settings)
        except Exception:
            if owns_database:
                await dispose_db()
            raise
        sessions = RedisSessionStore(redis_client, settings.SESSION_TTL_SECONDS)
        owns_redis = True
        logger.info("Using Redis session store")
    else:
        logger.warning("REDIS_HOST not set; sessions are kept in memory")

    services = build_services(settings, storage=storage, sessions=sessions)
    services.owns_database = owns_database
    services.owns_redis = owns_redis
    return services
