import asyncio
import base64
from typing import List, Optional

import pytest

from speech_gateway.core.config import Settings
from speech_gateway.core.errors import GatewayError, ProviderError
from speech_gateway.models.transcript import TranscriptEvent, TranscriptKind
from speech_gateway.services.adapters.base import StreamingAdapter


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


class ScriptedAdapter(StreamingAdapter):
    """
    Adapter driven by the audio it receives. Each chunk is decoded as text:
      "interim:<t>"  -> interim event
      "final:<t>"    -> final event
      "warn:<t>"     -> warning
      "fail:<t>"     -> provider failure
    Anything else is recorded only.
    """

    name = "scripted"

    def __init__(self, config, auth, open_error: Optional[GatewayError] = None, open_gate=None):
        super().__init__(config, auth, Settings())
        self.submitted: List[bytes] = []
        self.finished = False
        self.release_calls = 0
        self._open_error = open_error
        self._open_gate = open_gate

    async def open(self):
        if self._open_gate is not None:
            await self._open_gate.wait()
        if self._open_error is not None:
            raise self._open_error

    async def submit(self, chunk):
        self.submitted.append(chunk.data)
        text = chunk.data.decode(errors="replace")
        kind, _, payload = text.partition(":")
        if kind == "interim":
            self._emit_transcript(TranscriptEvent(kind=TranscriptKind.INTERIM, text=payload))
        elif kind == "final":
            self._emit_transcript(TranscriptEvent(kind=TranscriptKind.FINAL, text=payload, confidence=0.9))
        elif kind == "warn":
            self._warn(payload)
        elif kind == "fail":
            self._fail(ProviderError(payload))

    async def finish(self):
        self.finished = True
        self._end()

    async def _release(self):
        self.release_calls += 1


class ScriptedFactory:
    def __init__(self, **adapter_kwargs):
        self.adapter_kwargs = adapter_kwargs
        self.adapters: List[ScriptedAdapter] = []
        self.calls = []

    def __call__(self, provider, config, auth):
        self.calls.append((provider, config, auth))
        adapter = ScriptedAdapter(config, auth, **self.adapter_kwargs)
        self.adapters.append(adapter)
        return adapter


class Collector:
    """Stands in for the client socket."""

    def __init__(self):
        self.messages = []

    async def __call__(self, payload):
        self.messages.append(payload)

    def of_type(self, msg_type):
        return [m for m in self.messages if m["type"] == msg_type]

    @property
    def types(self):
        return [m["type"] for m in self.messages]


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def factory():
    return ScriptedFactory()


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(TEMP_DIR=str(tmp_path), GROQ_MIN_INTERVAL_SEC=5.0, CREDENTIAL_FILE_TTL_SEC=0)
