"""
OpenAI-compatible Client
Chat completions through any endpoint speaking the OpenAI API
"""

import time
from typing import List, Optional

from openai import APIConnectionError, APIError, AsyncOpenAI

from permsearch.core.config import settings
from permsearch.core.exceptions import LLMException
from permsearch.core.logging import get_logger
from permsearch.services.llm.base import BaseLLMClient
from permsearch.services.llm.models import LLMOptions, LLMResponse, Message

logger = get_logger(__name__)


class OpenAICompatClient(BaseLLMClient):
    """Chat completions using the standard OpenAI Python SDK"""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
    ):
        super().__init__(model=model or settings.OPENAI_MODEL)
        self.base_url = base_url or settings.OPENAI_BASE_URL
        self._client = AsyncOpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            base_url=self.base_url,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        logger.debug(f"OpenAI-compatible client created: model={self.model}, base_url={self.base_url}")

    async def chat(
        self,
        messages: List[Message],
        options: Optional[LLMOptions] = None,
    ) -> LLMResponse:
        if not messages:
            raise LLMException("Messages list cannot be empty", model=self.model)

        options = options or LLMOptions()
        start_time = time.time()
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=[m.to_dict() for m in messages],
                **options.to_openai_format(),
            )
        except APIConnectionError as e:
            raise LLMException(
                f"Failed to connect to generation endpoint: {e}",
                model=self.model,
                details={"base_url": self.base_url, "error_type": type(e).__name__},
            ) from e
        except APIError as e:
            raise LLMException(
                f"Chat completion failed: {e}",
                model=self.model,
                details={"error_type": type(e).__name__},
            ) from e

        choice = completion.choices[0]
        usage = completion.usage
        return LLMResponse(
            content=choice.message.content or "",
            model=completion.model or self.model,
            finish_reason=choice.finish_reason or "stop",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            processing_time_ms=round((time.time() - start_time) * 1000, 2),
        )

    async def close(self) -> None:
        await self._client.close()
