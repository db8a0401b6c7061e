"""Async client for the hosted language-model API.

Wraps the OpenAI SDK (httpx transport) with bounded timeouts and no
automatic retries. Callers get plain text back, or a lazy sequence of text
increments for streaming completions.
"""

import logging
from collections.abc import AsyncIterator

import httpx
import openai

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    """The model API call failed (connection, timeout, quota, auth, empty reply)."""


class LLMClient:
    """Chat-completions client with configurable timeouts."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        config: Settings | None = None,
    ):
        config = config or default_settings
        read_timeout = timeout if timeout is not None else config.LLM_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else config.LLM_CONNECT_TIMEOUT

        self._client = openai.AsyncOpenAI(
            api_key=api_key or config.OPENAI_API_KEY,
            base_url=(base_url or config.OPENAI_BASE_URL) or None,
            max_retries=0,
            timeout=httpx.Timeout(
                connect=float(conn_timeout),
                read=float(read_timeout),
                write=30.0,
                pool=30.0,
            ),
        )

    async def close(self):
        await self._client.close()

    async def generate(
        self,
        messages: list[dict],
        *,
        model: str,
        json_response: bool = False,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Run a single completion and return the reply text.

        With ``json_response`` the API is asked for a single JSON object.
        Raises LLMServiceError on any upstream failure.
        """
        kwargs: dict = {"model": model, "messages": messages}
        if json_response:
            kwargs["response_format"] = {"type": "json_object"}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as e:
            logger.warning("Model API connection failed: %s", e)
            raise LLMServiceError(f"Model API unreachable: {e}") from e
        except openai.APIError as e:
            logger.error("Model API error: %s", e)
            raise LLMServiceError(f"Model API error: {e}") from e

        if not response.choices:
            raise LLMServiceError("Model API returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise LLMServiceError("Model API returned an empty response")
        return content

    async def generate_stream(
        self,
        messages: list[dict],
        *,
        model: str,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Open a streaming completion and return its text increments.

        The upstream request is issued before this coroutine returns, so a
        failure to start surfaces here rather than after the first frame.
        """
        kwargs: dict = {"model": model, "messages": messages, "stream": True}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            stream = await self._client.chat.completions.create(**kwargs)
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as e:
            logger.warning("Model API connection failed: %s", e)
            raise LLMServiceError(f"Model API unreachable: {e}") from e
        except openai.APIError as e:
            logger.error("Model API error: %s", e)
            raise LLMServiceError(f"Model API error: {e}") from e

        return _iter_deltas(stream)

    async def health(self) -> dict:
        """Probe the model API. Returns a status dict, never raises."""
        try:
            await self._client.models.list()
            return {"status": "reachable"}
        except Exception as e:
            logger.warning("Model API health check failed: %s", e)
            return {"status": "unreachable", "error": str(e)}


async def _iter_deltas(stream) -> AsyncIterator[str]:
    """Yield non-empty content deltas, closing the upstream response on exit."""
    try:
        async for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content
    except (openai.APIError, httpx.HTTPError) as e:
        logger.warning("Model API stream broke off: %s", e)
        raise LLMServiceError(f"Model API stream interrupted: {e}") from e
    finally:
        await stream.close()
