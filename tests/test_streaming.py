import json

import pytest

from fashionai_llm.errors import RateLimitError
from fashionai_llm.messages import ChatCompletionChunk, CompletionChunk, Message
from fashionai_llm.streaming import DONE_EVENT, prime_stream, sse_encode, sse_from_chunks


async def _chunks(items, error=None):
    for item in items:
        yield item
    if error is not None:
        raise error


def _events(frames):
    out = []
    for frame in frames:
        text = frame.decode("utf-8")
        assert text.startswith("data: ") and text.endswith("\n\n")
        out.append(text[len("data: ") : -2])
    return out


def test_sse_encode_frames_a_single_event():
    assert sse_encode("[DONE]") == DONE_EVENT


@pytest.mark.asyncio
async def test_completion_fragments_then_done():
    stream = _chunks([CompletionChunk("Linen "), CompletionChunk("suit"), CompletionChunk("", is_final=True)])
    events = _events([f async for f in sse_from_chunks(stream)])

    assert events[-1] == "[DONE]"
    assert [json.loads(e)["text"] for e in events[:-1]] == ["Linen ", "suit"]


@pytest.mark.asyncio
async def test_chat_events_carry_accumulated_content():
    stream = _chunks(
        [
            ChatCompletionChunk(Message(role="assistant", content="Linen ")),
            ChatCompletionChunk(Message(role="assistant", content="Linen suit")),
            ChatCompletionChunk(Message(role="assistant", content="Linen suit"), is_final=True),
        ]
    )
    events = _events([f async for f in sse_from_chunks(stream)])

    assert [json.loads(e)["text"] for e in events[:-1]] == ["Linen ", "Linen suit"]
    assert events[-1] == "[DONE]"


@pytest.mark.asyncio
async def test_error_mid_stream_becomes_error_event_then_done():
    stream = _chunks([CompletionChunk("Lin")], error=RateLimitError())
    events = _events([f async for f in sse_from_chunks(stream)])

    assert json.loads(events[0]) == {"text": "Lin"}
    assert json.loads(events[1]) == {"error": "Rate limit exceeded, please try again later"}
    assert events[2] == "[DONE]"


class _RecordingLog:
    def __init__(self):
        self.events = []

    def warning(self, event, **fields):
        self.events.append((event, fields))


@pytest.mark.asyncio
async def test_interrupted_stream_logs_error_fields(monkeypatch):
    from fashionai_llm import streaming

    recorder = _RecordingLog()
    monkeypatch.setattr(streaming, "log", recorder)

    error = RateLimitError(retry_after_seconds=3)
    _ = [f async for f in sse_from_chunks(_chunks([], error=error))]

    assert recorder.events == [("stream_interrupted", error.to_dict())]


@pytest.mark.asyncio
async def test_prime_stream_raises_open_failure_eagerly():
    with pytest.raises(RateLimitError):
        await prime_stream(_chunks([], error=RateLimitError()))


@pytest.mark.asyncio
async def test_prime_stream_replays_first_chunk():
    stream = await prime_stream(_chunks([CompletionChunk("a"), CompletionChunk("b")]))
    assert [c.text async for c in stream] == ["a", "b"]

    empty = await prime_stream(_chunks([]))
    assert [c async for c in empty] == []
