# besty/services/gateways/chat_completion.py
import abc
from dataclasses import dataclass
from typing import List, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from loguru import logger

from besty.core.config import Settings
from besty.core.errors import UpstreamServiceFailure
from besty.core.llm_client import build_chat_llm
from besty.services.prompts import fallback_reply


@dataclass(frozen=True)
class ChatTurn:
    role: str  # "user" or "assistant"
    content: str


class ChatCompletionGateway(abc.ABC):
    name = "chat-completion"

    @abc.abstractmethod
    async def complete(self, system_prompt: str, turns: Sequence[ChatTurn], user_text: str) -> str:
        """Single attempt. Failures propagate to the caller's fallback logic."""


class MockChatCompletionGateway(ChatCompletionGateway):
    """Used when no chat model credentials are configured; answers with the keyword heuristics."""

    name = "mock-chat"

    async def complete(self, system_prompt: str, turns: Sequence[ChatTurn], user_text: str) -> str:
        return fallback_reply(user_text)


def _content_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    # Some providers return a list of content blocks
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class LangChainChatGateway(ChatCompletionGateway):
    name = "langchain-chat"

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    @staticmethod
    def build_messages(system_prompt: str, turns: Sequence[ChatTurn], user_text: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        for turn in turns:
            if turn.role == "user":
                messages.append(HumanMessage(content=turn.content))
            else:
                messages.append(AIMessage(content=turn.content))
        messages.append(HumanMessage(content=user_text))
        return messages

    async def complete(self, system_prompt: str, turns: Sequence[ChatTurn], user_text: str) -> str:
        messages = self.build_messages(system_prompt, turns, user_text)
        logger.debug(f"Invoking chat model with {len(messages)} messages")
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            raise UpstreamServiceFailure(f"Chat completion failed: {e}") from e
        text = _content_text(response).strip()
        if not text:
            raise UpstreamServiceFailure("Chat completion returned an empty reply")
        return text


def build_chat_gateway(settings: Settings) -> ChatCompletionGateway:
    llm = build_chat_llm(settings)
    gateway = LangChainChatGateway(llm) if llm is not None else MockChatCompletionGateway()
    logger.info(f"Chat completion gateway: {gateway.name}")
    return gateway
