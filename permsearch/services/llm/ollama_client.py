"""
Ollama Client
HTTP client for the Ollama chat API

API Reference: https://github.com/ollama/ollama/blob/main/docs/api.md
"""

import time
from typing import List, Optional

import aiohttp

from permsearch.core.config import settings
from permsearch.core.exceptions import LLMException
from permsearch.core.logging import get_logger
from permsearch.services.llm.base import BaseLLMClient
from permsearch.services.llm.models import LLMOptions, LLMResponse, Message

logger = get_logger(__name__)


class OllamaClient(BaseLLMClient):
    """
    Ollama HTTP client

    Example:
        ```python
        client = OllamaClient(host="http://localhost:11434")
        response = await client.chat(
            [Message(role="user", content="Hello!")]
        )
        ```
    """

    provider = "ollama"

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        connect_timeout: int = 10,
    ):
        """
        Initialize Ollama client

        Args:
            host: Ollama server host (uses config default if None)
            model: Model name (uses OLLAMA_MODEL if None)
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
        """
        super().__init__(model=model or settings.OLLAMA_MODEL)
        host_str = host or settings.OLLAMA_HOST
        if not host_str.startswith(("http://", "https://")):
            host_str = f"http://{host_str}"
        self.host = host_str.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(
            total=timeout or settings.LLM_TIMEOUT_SECONDS, connect=connect_timeout
        )
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"OllamaClient initialized (host={self.host}, model={self.model})")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("OllamaClient session closed")

    async def chat(
        self,
        messages: List[Message],
        options: Optional[LLMOptions] = None,
    ) -> LLMResponse:
        if not messages:
            raise LLMException("Messages list cannot be empty", model=self.model)

        options = options or LLMOptions(temperature=settings.OLLAMA_TEMPERATURE)
        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
            "options": options.to_ollama_format(),
        }
        start_time = time.time()

        try:
            session = await self._get_session()
            async with session.post(f"{self.host}/api/chat", json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise LLMException(
                        f"Chat failed: HTTP {response.status}",
                        model=self.model,
                        details={"status": response.status, "error": error_text[:500]},
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise LLMException(
                f"Failed to connect to Ollama: {e}",
                model=self.model,
                details={"host": self.host, "error_type": type(e).__name__},
            ) from e

        processing_time = (time.time() - start_time) * 1000
        result = LLMResponse(
            content=data.get("message", {}).get("content", ""),
            model=self.model,
            finish_reason=data.get("done_reason", "stop"),
            prompt_tokens=data.get("prompt_eval_count", 0),
            completion_tokens=data.get("eval_count", 0),
            processing_time_ms=round(processing_time, 2),
        )
        logger.debug(
            f"Chat response: model={self.model}, "
            f"tokens={result.total_tokens}, time={processing_time:.0f}ms"
        )
        return result

    async def health_check(self) -> bool:
        try:
            session = await self._get_session()
            async with session.get(f"{self.host}/api/tags") as response:
                return response.status == 200
        except aiohttp.ClientError as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False
