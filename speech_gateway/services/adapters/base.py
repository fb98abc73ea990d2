"""
Provider adapter contract.

An adapter owns one provider channel for one session. Audio goes in through
``submit()``; transcript events, warnings and the terminal end/failure come
out of ``events()`` in the order the provider produced them. One task per
adapter talks to the provider and feeds an internal queue, so cancelling a
session is a matter of calling ``close()``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from speech_gateway.core.config import Settings, settings as default_settings
from speech_gateway.core.errors import GatewayError, ProviderError
from speech_gateway.models.transcript import AudioChunk, AuthMethod, StreamConfig, TranscriptEvent

logger = logging.getLogger(__name__)


@dataclass
class AdapterWarning:
    message: str


@dataclass
class AdapterEnd:
    pass


@dataclass
class AdapterFailure:
    error: GatewayError


AdapterItem = Union[TranscriptEvent, AdapterWarning, AdapterEnd, AdapterFailure]


class StreamingAdapter(ABC):
    name = "adapter"

    def __init__(self, config: StreamConfig, auth: AuthMethod, settings: Optional[Settings] = None):
        self.config = config
        self.auth = auth
        self.settings = settings or default_settings
        self._items: "asyncio.Queue[AdapterItem]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._done = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def open(self):
        """Establish the provider channel. Raises AuthError or ProviderError."""

    @abstractmethod
    async def submit(self, chunk: AudioChunk):
        """Queue audio for the provider. Must not wait for transcripts."""

    @abstractmethod
    async def finish(self):
        """No more audio will be submitted; flush and end the stream."""

    async def events(self) -> AsyncIterator[AdapterItem]:
        while True:
            item = await self._items.get()
            yield item
            if isinstance(item, (AdapterEnd, AdapterFailure)):
                return

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self._done = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._release()

    async def _release(self):
        """Free provider-side resources. Called once from close()."""

    def _start_worker(self, coro):
        if self._closed:
            coro.close()
            return
        self._task = asyncio.create_task(self._guard(coro), name=f"{self.name}-worker")

    async def _guard(self, coro):
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except GatewayError as e:
            self._fail(e)
        except Exception as e:
            logger.exception("%s worker crashed", self.name)
            self._fail(ProviderError(f"{self.name} stream failed: {e}"))

    def _emit(self, item: AdapterItem):
        if self._done:
            return
        if isinstance(item, (AdapterEnd, AdapterFailure)):
            self._done = True
        self._items.put_nowait(item)

    def _emit_transcript(self, event: TranscriptEvent):
        self._emit(event)

    def _warn(self, message: str):
        logger.warning("%s: %s", self.name, message)
        self._emit(AdapterWarning(message))

    def _end(self):
        self._emit(AdapterEnd())

    def _fail(self, error: GatewayError):
        logger.error("%s failed: %s", self.name, error.message)
        self._emit(AdapterFailure(error))
