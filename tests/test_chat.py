"""Tests for document-grounded chat and its SSE framing."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from chat import (
    DONE_SENTINEL,
    build_chat_messages,
    content_frame,
    done_frame,
    open_chat_stream,
    sse_frames,
)
from conftest import token_stream
from errors import ChatFailed, InvalidRequest, SessionNotFound, UpstreamUnavailable
from llm_client import LLMServiceError
from models import ExtractedField, ExtractionResult
from store import ExtractionStore


@pytest.fixture
def store() -> ExtractionStore:
    return ExtractionStore(id_prefix="t")


@pytest.fixture
def stored_id(store: ExtractionStore) -> str:
    return store.put(ExtractionResult(
        document_type="invoice",
        extracted_fields=[ExtractedField(label="Invoice Number", value="INV001", confidence=0.9)],
        content="Invoice Number: INV001",
    ))


async def _collect(frames) -> list[str]:
    return [frame async for frame in frames]


def _data(frame: str) -> str:
    return [line[len("data: "):] for line in frame.splitlines() if line.startswith("data: ")][0]


class TestBuildChatMessages:
    def test_grounded_in_full_result(self):
        result = ExtractionResult(
            document_type="receipt",
            extracted_fields=[ExtractedField(label="Total", value="9.99", confidence=0.8)],
        )
        messages = build_chat_messages(result, "What is the total?")

        assert [m["role"] for m in messages] == ["system", "user"]
        system = messages[0]["content"]
        assert '"documentType": "receipt"' in system
        assert '"label": "Total"' in system
        assert messages[1]["content"] == "What is the total?"


class TestOpenChatStream:
    @pytest.mark.asyncio
    async def test_unknown_id(self, store, mock_llm, config):
        with pytest.raises(SessionNotFound):
            await open_chat_stream(store, mock_llm, "missing", "hi", config)
        mock_llm.generate_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_message(self, store, stored_id, mock_llm, config):
        with pytest.raises(InvalidRequest):
            await open_chat_stream(store, mock_llm, stored_id, "   ", config)

    @pytest.mark.asyncio
    async def test_no_model_configured(self, store, stored_id, config):
        with pytest.raises(UpstreamUnavailable):
            await open_chat_stream(store, None, stored_id, "hi", config)

    @pytest.mark.asyncio
    async def test_streams_tokens(self, store, stored_id, mock_llm, config):
        tokens = await open_chat_stream(store, mock_llm, stored_id, "What is the number?", config)
        assert [t async for t in tokens] == ["Hel", "lo"]

        messages = mock_llm.generate_stream.call_args.args[0]
        assert "INV001" in messages[0]["content"]
        assert mock_llm.generate_stream.call_args.kwargs["model"] == config.CHAT_MODEL

    @pytest.mark.asyncio
    async def test_start_failure(self, store, stored_id, mock_llm, config):
        mock_llm.generate_stream.side_effect = LLMServiceError("auth failed")
        with pytest.raises(ChatFailed, match="auth failed"):
            await open_chat_stream(store, mock_llm, stored_id, "hi", config)

    @pytest.mark.asyncio
    async def test_mid_stream_failure_translated(self, store, stored_id, mock_llm, config):
        async def broken():
            yield "partial"
            raise LLMServiceError("connection reset")

        mock_llm.generate_stream.side_effect = lambda *args, **kwargs: broken()
        tokens = await open_chat_stream(store, mock_llm, stored_id, "hi", config)

        received = []
        with pytest.raises(ChatFailed, match="connection reset"):
            async for token in tokens:
                received.append(token)
        assert received == ["partial"]


class TestSSEFrames:
    @pytest.mark.asyncio
    async def test_concatenation_and_single_sentinel(self):
        frames = await _collect(sse_frames(token_stream(["Hel", "lo"])))

        assert frames[-1] == done_frame()
        assert frames.count(done_frame()) == 1
        content = "".join(json.loads(_data(f))["content"] for f in frames[:-1])
        assert content == "Hello"

    @pytest.mark.asyncio
    async def test_empty_stream_still_terminates(self):
        frames = await _collect(sse_frames(token_stream([])))
        assert frames == [f"data: {DONE_SENTINEL}\n\n"]

    @pytest.mark.asyncio
    async def test_special_characters_are_escaped(self):
        frames = await _collect(sse_frames(token_stream(["line one\nline two", '"quoted"'])))
        assert frames[0] == content_frame("line one\nline two")
        assert "\n" not in frames[0].rstrip("\n")
        assert json.loads(_data(frames[1]))["content"] == '"quoted"'

    @pytest.mark.asyncio
    async def test_failure_emits_error_frame_without_sentinel(self):
        async def broken():
            yield "Hel"
            raise ChatFailed("Chat failed: upstream gone")

        frames = await _collect(sse_frames(broken()))

        assert frames[0] == content_frame("Hel")
        assert frames[1].startswith("event: error\n")
        assert json.loads(_data(frames[1])) == {"error": "Chat failed: upstream gone"}
        assert done_frame() not in frames

    @pytest.mark.asyncio
    async def test_consumer_disconnect_closes_upstream(self):
        closed = False

        async def upstream():
            nonlocal closed
            try:
                for token in ["a", "b", "c"]:
                    yield token
            finally:
                closed = True

        frames = sse_frames(upstream())
        assert await frames.__anext__() == content_frame("a")
        await frames.aclose()

        assert closed is True
