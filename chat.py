"""Document-grounded chat: prompt assembly and Server-Sent-Events framing.

The token stream is an async iterator of text increments. On the wire each
increment becomes ``data: {"content": ...}`` and a normal end is marked by
``data: [DONE]``. A failure after the first frame is reported as an
``event: error`` frame and the sentinel is withheld, so clients can tell a
complete answer from a broken one.
"""

import json
import logging
from collections.abc import AsyncIterator

from config import Settings
from errors import ChatFailed, InvalidRequest, SessionNotFound, UpstreamUnavailable
from llm_client import LLMClient, LLMServiceError
from models import ChatMessage, ExtractionResult
from prompts import CHAT_SYSTEM_PROMPT
from store import ExtractionStore

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def build_chat_messages(result: ExtractionResult, message: str) -> list[dict]:
    document = result.model_dump_json(by_alias=True, indent=2)
    messages = [
        ChatMessage(role="system", content=CHAT_SYSTEM_PROMPT.format(document=document)),
        ChatMessage(role="user", content=message),
    ]
    return [m.model_dump() for m in messages]


async def open_chat_stream(
    store: ExtractionStore,
    llm: LLMClient | None,
    doc_id: str,
    message: str,
    config: Settings,
) -> AsyncIterator[str]:
    """Look up the document and start the upstream completion.

    Raises SessionNotFound / ChatFailed before any output is produced.
    """
    if not message or not message.strip():
        raise InvalidRequest("Message must not be empty")

    result = store.get(doc_id)
    if result is None:
        raise SessionNotFound(doc_id)
    if llm is None:
        raise UpstreamUnavailable("OpenAI API key not configured")

    logger.info("Chat request: id=%s message_chars=%d", doc_id, len(message))

    try:
        tokens = await llm.generate_stream(
            build_chat_messages(result, message.strip()),
            model=config.CHAT_MODEL,
            max_tokens=config.CHAT_MAX_TOKENS,
        )
    except LLMServiceError as e:
        raise ChatFailed(f"Chat failed: {e}") from e

    return _translate_errors(tokens)


async def _translate_errors(tokens: AsyncIterator[str]) -> AsyncIterator[str]:
    try:
        async for token in tokens:
            yield token
    except LLMServiceError as e:
        raise ChatFailed(f"Chat failed: {e}") from e
    finally:
        await _close(tokens)


def content_frame(text: str) -> str:
    return f"data: {json.dumps({'content': text})}\n\n"


def done_frame() -> str:
    return f"data: {DONE_SENTINEL}\n\n"


def error_frame(message: str) -> str:
    return f"event: error\ndata: {json.dumps({'error': message})}\n\n"


async def sse_frames(tokens: AsyncIterator[str]) -> AsyncIterator[str]:
    """Frame text increments as SSE, ending with exactly one sentinel.

    If the consumer goes away the generator is closed, which closes
    ``tokens`` and with it the upstream response.
    """
    count = 0
    try:
        async for token in tokens:
            count += 1
            yield content_frame(token)
    except ChatFailed as e:
        logger.warning("Chat stream failed after %d frames: %s", count, e.message)
        yield error_frame(e.message)
        return
    finally:
        await _close(tokens)

    logger.info("Chat stream finished: %d frames", count)
    yield done_frame()


async def _close(tokens: AsyncIterator[str]):
    aclose = getattr(tokens, "aclose", None)
    if aclose is not None:
        await aclose()
