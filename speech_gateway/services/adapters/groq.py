import asyncio
import logging
import time
from typing import Optional

import httpx

from speech_gateway.core.config import Settings
from speech_gateway.core.errors import ValidationError
from speech_gateway.models.transcript import (
    ApiKeyAuth,
    AudioChunk,
    AuthMethod,
    StreamConfig,
    TranscriptEvent,
    TranscriptKind,
)
from speech_gateway.services.adapters.base import StreamingAdapter
from speech_gateway.services.transcriber import GroqTranscriber

logger = logging.getLogger(__name__)


class GroqStreamingAdapter(StreamingAdapter):
    """
    Pseudo-streaming over Groq's batch endpoint.

    Chunks are appended to one growing buffer. At most once per
    ``GROQ_MIN_INTERVAL_SEC`` the whole buffer is transcribed and the text is
    emitted as an interim event; Groq cannot signal finality mid-stream. When
    the stream is finished the buffer is transcribed one last time and that
    result is the only final event.
    """

    name = "groq"

    def __init__(
        self,
        config: StreamConfig,
        auth: AuthMethod,
        http: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        transcriber: Optional[GroqTranscriber] = None,
    ):
        super().__init__(config, auth, settings)
        if not isinstance(auth, ApiKeyAuth):
            raise ValidationError("Groq requires an API key")
        self._transcriber = transcriber or GroqTranscriber(auth.api_key, http, self.settings)
        self._buffer = bytearray()
        self._file_type = config.file_type
        self._dirty = False
        self._finishing = False
        self._wake = asyncio.Event()

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    async def open(self):
        self._start_worker(self._run())

    async def submit(self, chunk: AudioChunk):
        if self._finishing or self._closed:
            return
        if not self._file_type and chunk.mime:
            self._file_type = chunk.mime
        self._buffer.extend(chunk.data)
        self._dirty = True
        self._wake.set()

    async def finish(self):
        self._finishing = True
        self._wake.set()

    async def _run(self):
        interval = self.settings.GROQ_MIN_INTERVAL_SEC
        last_submit: Optional[float] = None

        while not self._finishing:
            await self._wake.wait()
            self._wake.clear()
            if self._finishing:
                break

            if last_submit is not None:
                remaining = interval - (time.monotonic() - last_submit)
                if remaining > 0:
                    await self._sleep_unless_finishing(remaining)
                    if self._finishing:
                        break

            if not self._dirty:
                continue
            self._dirty = False
            last_submit = time.monotonic()
            text = await self._transcribe(bytes(self._buffer))
            if text:
                self._emit_transcript(TranscriptEvent(kind=TranscriptKind.INTERIM, text=text))

        if self._buffer:
            text = await self._transcribe(bytes(self._buffer))
            if text:
                self._emit_transcript(TranscriptEvent(kind=TranscriptKind.FINAL, text=text))
        self._end()

    async def _sleep_unless_finishing(self, seconds: float):
        deadline = time.monotonic() + seconds
        while not self._finishing:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return
            # New audio only extends the buffer; keep waiting out the interval
            self._wake.clear()

    async def _transcribe(self, audio: bytes) -> str:
        return await self._transcriber.transcribe_bytes(
            audio,
            model=self.config.model,
            language=self.config.language,
            prompt=self.config.prompt,
            file_type=self._file_type,
            file_name=self.config.file_name,
        )

    async def _release(self):
        self._buffer.clear()
