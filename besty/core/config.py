# besty/core/config.py
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_NAME: str = "AI Besty"
    LOG_LEVEL: str = "INFO"

    # Storage. Leaving DATABASE_URL unset keeps everything in memory.
    DATABASE_URL: Optional[str] = None
    DATABASE_ECHO_SQL: bool = False
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_CONNECT_RETRIES: int = 10
    DATABASE_RETRY_DELAY: float = 5.0

    # Sessions. Leaving REDIS_HOST unset keeps sessions in memory.
    REDIS_HOST: Optional[str] = None
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    SESSION_COOKIE_NAME: str = "besty_session"
    SESSION_TTL_SECONDS: int = 24 * 60 * 60
    SESSION_COOKIE_SECURE: bool = False

    # Magic link auth
    REQUIRE_TOKEN_VERIFICATION: bool = True
    AUTH_TOKEN_TTL_MINUTES: int = 30
    BASE_URL: str = "http://localhost:8000"

    # Chat completion
    LLM_PROVIDER: str = "openai"  # "openai" or "gemini"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_CHAT_MODEL: str = "gpt-4o"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_CHAT_MODEL: str = "gemini-1.5-flash"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 500

    # Speech
    DEEPGRAM_API_KEY: Optional[str] = None
    DEEPGRAM_MODEL: str = "nova-2"
    WHISPER_MODEL: str = "whisper-1"
    ELEVENLABS_API_KEY: Optional[str] = None
    ELEVENLABS_MODEL_ID: str = "eleven_monolingual_v1"

    # Every external AI call is bounded by this; a timeout counts as a failure.
    GATEWAY_TIMEOUT_SECONDS: float = 20.0

    UPLOADS_DIR: str = "uploads"
    DEFAULT_CONVERSATION_TITLE: str = "New Conversation"

    # Voice client
    INTERIM_TRANSCRIPT_INTERVAL_SECONDS: float = 2.0
    INTERIM_TRANSCRIPT_MAX_FAILURES: int = 3
    PLAYBACK_RETRY_DELAY_SECONDS: float = 0.5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
