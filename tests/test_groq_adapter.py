import asyncio

import httpx
import pytest

from conftest import wait_until
from speech_gateway.core.errors import AuthError, ProviderError, ValidationError
from speech_gateway.models.transcript import (
    ApiKeyAuth,
    AudioChunk,
    ServiceAccountAuth,
    StreamConfig,
    TranscriptEvent,
    TranscriptKind,
)
from speech_gateway.services.adapters.base import AdapterEnd, AdapterFailure
from speech_gateway.services.adapters.groq import GroqStreamingAdapter

WAV_HEADER = b"RIFF\x24\x00\x00\x00WAVEfmt "


class FakeGroq:
    """Mock transport for the Groq endpoint; answers with the buffer size it saw."""

    def __init__(self, status_code=200, body=None):
        self.requests = []
        self.status_code = status_code
        self.body = body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.body is not None:
            return httpx.Response(self.status_code, json=self.body)
        return httpx.Response(self.status_code, json={"text": f" heard {len(self.requests)} "})


def make_adapter(test_settings, groq, config=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(groq))
    return GroqStreamingAdapter(config or StreamConfig(), ApiKeyAuth("gsk-test"), http, test_settings)


async def collect(adapter):
    items = []
    async for item in adapter.events():
        items.append(item)
    return items


def test_requires_api_key(test_settings):
    with pytest.raises(ValidationError):
        GroqStreamingAdapter(StreamConfig(), ServiceAccountAuth(info={}), httpx.AsyncClient(), test_settings)


@pytest.mark.asyncio
async def test_interim_while_streaming_final_on_finish(test_settings):
    groq = FakeGroq()
    adapter = make_adapter(test_settings, groq, StreamConfig(model="whisper-large-v3-turbo", prompt="names"))
    await adapter.open()
    await adapter.submit(AudioChunk(WAV_HEADER + b"one"))
    await wait_until(lambda: len(groq.requests) == 1)

    # Inside the rate-limit window: buffered, not sent
    await adapter.submit(AudioChunk(b"two"))
    await adapter.submit(AudioChunk(b"three"))
    await asyncio.sleep(0.05)
    assert len(groq.requests) == 1

    await adapter.finish()
    items = await collect(adapter)

    assert items == [
        TranscriptEvent(kind=TranscriptKind.INTERIM, text="heard 1"),
        TranscriptEvent(kind=TranscriptKind.FINAL, text="heard 2"),
        AdapterEnd(),
    ]
    final_body = groq.requests[1].content
    assert WAV_HEADER + b"onetwothree" in final_body
    assert b'filename="audio.wav"' in final_body
    assert b"whisper-large-v3-turbo" in final_body
    assert b"names" in final_body
    assert groq.requests[0].headers["authorization"] == "Bearer gsk-test"
    await adapter.close()


@pytest.mark.asyncio
async def test_submissions_respect_min_interval(tmp_path):
    from speech_gateway.core.config import Settings

    settings = Settings(TEMP_DIR=str(tmp_path), GROQ_MIN_INTERVAL_SEC=0.2)
    groq = FakeGroq()
    adapter = make_adapter(settings, groq)
    await adapter.open()

    loop = asyncio.get_running_loop()
    await adapter.submit(AudioChunk(b"ID3a"))
    await wait_until(lambda: len(groq.requests) == 1)
    first = loop.time()
    await adapter.submit(AudioChunk(b"b"))
    await wait_until(lambda: len(groq.requests) == 2)
    assert loop.time() - first >= 0.15
    assert b'filename="audio.mp3"' in groq.requests[1].content
    await adapter.close()


@pytest.mark.asyncio
async def test_client_file_type_hint_wins(test_settings):
    groq = FakeGroq()
    adapter = make_adapter(test_settings, groq, StreamConfig(file_type="audio/webm;codecs=opus"))
    await adapter.open()
    await adapter.submit(AudioChunk(b"\x1a\x45\xdf\xa3webm"))
    await adapter.finish()
    await collect(adapter)
    assert b'filename="audio.webm"' in groq.requests[0].content
    assert b"audio/webm" in groq.requests[0].content


@pytest.mark.asyncio
async def test_finish_without_audio_just_ends(test_settings):
    groq = FakeGroq()
    adapter = make_adapter(test_settings, groq)
    await adapter.open()
    await adapter.finish()
    assert await collect(adapter) == [AdapterEnd()]
    assert groq.requests == []


@pytest.mark.asyncio
async def test_rejected_key_is_auth_failure(test_settings):
    groq = FakeGroq(status_code=401, body={"error": {"message": "Invalid API Key"}})
    adapter = make_adapter(test_settings, groq)
    await adapter.open()
    await adapter.submit(AudioChunk(b"OggS"))
    items = await collect(adapter)
    assert len(items) == 1
    assert isinstance(items[0], AdapterFailure)
    assert isinstance(items[0].error, AuthError)


@pytest.mark.asyncio
async def test_server_error_is_provider_failure_and_stops_events(test_settings):
    groq = FakeGroq(status_code=500, body={"error": {"message": "overloaded"}})
    adapter = make_adapter(test_settings, groq)
    await adapter.open()
    await adapter.submit(AudioChunk(b"fLaC"))
    items = await collect(adapter)
    assert isinstance(items[0].error, ProviderError)
    assert "overloaded" in items[0].error.message

    # Nothing more after the failure
    adapter._end()
    assert adapter._items.empty()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_cancels_worker(test_settings):
    groq = FakeGroq()
    adapter = make_adapter(test_settings, groq)
    await adapter.open()
    await adapter.close()
    await adapter.close()
    assert adapter.closed
    await adapter.submit(AudioChunk(b"late"))
    assert adapter.buffered_bytes == 0
