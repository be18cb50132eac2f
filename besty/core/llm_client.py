from typing import Optional
from langchain_core.language_models import BaseChatModel
from besty.core.config import Settings
from loguru import logger

SUPPORTED_PROVIDERS = ("openai", "gemini")


def build_chat_llm(settings: Settings) -> Optional[BaseChatModel]:
    """
    Builds the chat model for the configured provider.
    Returns None when the provider has no API key, which selects the mock gateway.
    """
    provider = settings.LLM_PROVIDER.lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unknown LLM_PROVIDER '{settings.LLM_PROVIDER}'")

    api_key = settings.GEMINI_API_KEY if provider == "gemini" else settings.OPENAI_API_KEY
    if not api_key:
        logger.warning(f"No API key for '{provider}'; chat completion will use the mock gateway.")
        return None

    try:
        if provider == "gemini":
            from langchain_google_genai import ChatGoogleGenerativeAI

            chat_llm = ChatGoogleGenerativeAI(
                model=settings.GEMINI_CHAT_MODEL,
                google_api_key=api_key,
                temperature=settings.LLM_TEMPERATURE,
                max_output_tokens=settings.LLM_MAX_TOKENS,
            )
        else:
            from langchain_openai import ChatOpenAI

            chat_llm = ChatOpenAI(
                model=settings.OPENAI_CHAT_MODEL,
                api_key=api_key,
                temperature=settings.LLM_TEMPERATURE,
                max_tokens=settings.LLM_MAX_TOKENS,
                timeout=settings.GATEWAY_TIMEOUT_SECONDS,
                max_retries=0,
            )
    except Exception as e:
        logger.error(f"Failed to initialize {provider} chat model: {e}")
        return None
    logger.info(f"Chat model initialized for provider '{provider}'")
    return chat_llm
