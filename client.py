"""Python client for the extraction API, including the chat stream reader."""

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import httpx

from chat import DONE_SENTINEL
from models import ExtractResponse

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """The API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ChatStreamError(Exception):
    """The server reported an error frame mid-stream."""


class StreamInterrupted(Exception):
    """The chat stream closed before the end-of-stream sentinel arrived."""


@dataclass(frozen=True)
class SSEEvent:
    event: str
    data: str


def iter_sse_events(lines: Iterable[str]) -> Iterator[SSEEvent]:
    """Group ``event:``/``data:`` lines into events separated by blank lines."""
    event = "message"
    data: list[str] = []
    for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data:
                yield SSEEvent(event, "\n".join(data))
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            value = line[len("data:"):]
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield SSEEvent(event, "\n".join(data))


def read_chat_events(events: Iterable[SSEEvent]) -> Iterator[str]:
    """Yield content increments until the sentinel.

    Raises ChatStreamError on an error frame and StreamInterrupted if the
    events run out before the sentinel.
    """
    for ev in events:
        if ev.event == "error":
            try:
                message = json.loads(ev.data).get("error", ev.data)
            except (ValueError, AttributeError):
                message = ev.data
            raise ChatStreamError(message)
        if ev.data == DONE_SENTINEL:
            return
        try:
            payload = json.loads(ev.data)
        except ValueError:
            logger.warning("Skipping malformed chat frame: %s", ev.data[:200])
            continue
        content = payload.get("content") if isinstance(payload, dict) else None
        if content:
            yield content
    raise StreamInterrupted("Chat stream ended without end-of-stream marker")


class DocumentChatClient:
    """Synchronous client: extract a document, chat about it, download fields."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def extract(self, data: bytes, filename: str, media_type: str) -> ExtractResponse:
        resp = self._client.post("/api/extract", files={"file": (filename, data, media_type)})
        _raise_for_error(resp)
        return ExtractResponse.model_validate(resp.json())

    def chat(self, doc_id: str, message: str) -> Iterator[str]:
        """Stream the assistant's answer as text increments."""
        with self._client.stream("POST", "/api/chat", json={"id": doc_id, "message": message}) as resp:
            if resp.status_code >= 400:
                resp.read()
                _raise_for_error(resp)
            yield from read_chat_events(iter_sse_events(resp.iter_lines()))

    def ask(self, doc_id: str, message: str) -> str:
        return "".join(self.chat(doc_id, message))

    def download(self, doc_id: str, fmt: str) -> bytes:
        resp = self._client.get(f"/api/download/{doc_id}/{fmt}")
        _raise_for_error(resp)
        return resp.content


def _raise_for_error(resp: httpx.Response):
    if resp.status_code < 400:
        return
    try:
        message = resp.json().get("error", resp.text)
    except (ValueError, AttributeError):
        message = resp.text
    raise ClientError(resp.status_code, message)
