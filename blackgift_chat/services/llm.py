# blackgift_chat/services/llm.py
import asyncio
import logging
from typing import Optional, Sequence

import httpx

from blackgift_chat.core.errors import CompletionServiceFailure
from blackgift_chat.models.chat import ChatMessage

logger = logging.getLogger(__name__)


class CompletionClient:
    """
    Client for an OpenAI-compatible chat completions API.

    One request per chat turn, no automatic retries: a failed call is
    reported to the caller, who resubmits.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        max_tokens: int = 800,
        temperature: float = 0.7,
        timeout: float = 60,
        default_reply: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.default_reply = default_reply
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def init(self):
        self._get_client()
        logger.info(f"Completion client ready ({self.api_url}, model={self.model})")

    async def health_check(self) -> bool:
        try:
            response = await self._get_client().get("/models", timeout=5)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Completion service health check failed: {e}")
            return False

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(self, messages: Sequence[ChatMessage]) -> str:
        """Returns the assistant reply for an already trimmed message list."""
        payload = {
            "model": self.model,
            "messages": [m.to_completion() for m in messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        logger.debug(f"Sending {len(messages)} messages to {self.api_url} (model={self.model})")

        try:
            # httpx timeouts are per operation; this bounds the whole call
            response = await asyncio.wait_for(
                self._get_client().post("/chat/completions", json=payload),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Completion request timed out after {self.timeout}s")
            raise CompletionServiceFailure(f"Completion request timed out after {self.timeout}s")
        except httpx.RequestError as e:
            logger.error(f"Request error to completion service: {e}")
            raise CompletionServiceFailure(f"Cannot connect to completion service: {e}") from e

        if response.is_error:
            logger.error(f"Completion service returned {response.status_code}: {response.text}")
            raise CompletionServiceFailure(_error_details(response))

        try:
            data = response.json()
            choices = data.get("choices") or []
            content = (choices[0].get("message") or {}).get("content") if choices else None
        except (ValueError, AttributeError, TypeError) as e:
            logger.error(f"Invalid completion response: {e}, Response: {response.text}")
            raise CompletionServiceFailure(f"Invalid response from completion service: {response.text}") from e

        if not content or not content.strip():
            logger.warning("Completion returned no content, using default reply")
            return self.default_reply
        return content.strip()


def _error_details(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return f"Completion service returned {response.status_code}: {response.text}"
