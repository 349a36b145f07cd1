"""
Base LLM Client
Interface shared by the generation providers
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from permsearch.core.exceptions import LLMException
from permsearch.services.llm.models import LLMOptions, LLMResponse, Message


class BaseLLMClient(ABC):
    """Chat-style text generation"""

    provider: str = "base"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def chat(
        self,
        messages: List[Message],
        options: Optional[LLMOptions] = None,
    ) -> LLMResponse:
        """
        Generate the next assistant message

        Raises:
            LLMException: If the provider fails or is unreachable
        """

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[LLMOptions] = None,
    ) -> LLMResponse:
        """Single-prompt convenience wrapper around chat()"""
        if not prompt or not prompt.strip():
            raise LLMException("Prompt cannot be empty", model=self.model)
        messages = []
        if system_prompt:
            messages.append(Message(role="system", content=system_prompt))
        messages.append(Message(role="user", content=prompt))
        return await self.chat(messages, options)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
