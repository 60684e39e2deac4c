"""
Language response client
Uses LangChain(ChatGroq) to answer the user with the bot's system prompt.
"""
from typing import Iterable, List

from groq import APIError, APIStatusError
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_groq import ChatGroq

from app.config import settings
from app.core.errors import GenerationError
from app.core.logging import get_logger
from app.models.conversation import ConversationTurn

logger = get_logger(__name__)


class ResponseGenerator:
    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = ChatGroq(
                model=settings.GROQ_MODEL,
                groq_api_key=settings.GROQ_API_KEY,
                temperature=settings.GROQ_TEMPERATURE,
                max_tokens=settings.GROQ_MAX_TOKENS,
                timeout=settings.STAGE_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._llm

    def build_messages(
        self,
        user_text: str,
        system_prompt: str = "",
        history: Iterable[ConversationTurn] = (),
    ) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        # A blank prompt means no behavioural guidance
        if system_prompt and system_prompt.strip():
            messages.append(SystemMessage(content=system_prompt))
        for item in history:
            if item.role == "user":
                messages.append(HumanMessage(content=item.content))
            else:
                messages.append(AIMessage(content=item.content))
        messages.append(HumanMessage(content=user_text))
        return messages

    async def generate(
        self,
        user_text: str,
        system_prompt: str = "",
        history: Iterable[ConversationTurn] = (),
    ) -> str:
        if not user_text or not user_text.strip():
            raise GenerationError("User text is empty")

        messages = self.build_messages(user_text, system_prompt, history)
        try:
            response = await self.llm.ainvoke(messages)
        except APIStatusError as e:
            logger.error("llm_upstream_error", model=settings.GROQ_MODEL, status=e.status_code)
            raise GenerationError(
                f"Groq completion failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except APIError as e:
            logger.error("llm_http_error", model=settings.GROQ_MODEL, error=str(e))
            raise GenerationError(f"Groq completion failed: {e}") from e

        text = (response.content or "").strip() if isinstance(response.content, str) else ""
        if not text:
            logger.error("llm_empty_response", model=settings.GROQ_MODEL)
            raise GenerationError("Language model returned an empty response")

        logger.info("llm_complete", prompt_messages=len(messages), response_length=len(text))
        return text


response_generator = ResponseGenerator()
