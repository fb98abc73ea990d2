"""
Streaming transcription session.

A session owns one provider adapter and two tasks:

- the forwarder drains the inbound audio queue into ``adapter.submit()`` in
  arrival order, so receiving a chunk never waits on the provider;
- the pump reads ``adapter.events()``, reconciles final fragments, numbers
  every delivered transcript and writes it to the client.

``end`` and ``error`` are terminal: once either has been sent nothing else is
emitted for the session.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from speech_gateway.core.errors import GatewayError, ProtocolError, ValidationError
from speech_gateway.models.messages import (
    ClientStartStream,
    ServerEnd,
    ServerError,
    ServerStart,
    ServerTranscription,
    ServerWarning,
    dump,
)
from speech_gateway.models.transcript import (
    ApiKeyAuth,
    AudioChunk,
    AuthMethod,
    Provider,
    ServiceAccountAuth,
    SessionState,
    StreamConfig,
    TranscriptEvent,
)
from speech_gateway.services.adapters.base import (
    AdapterEnd,
    AdapterFailure,
    AdapterWarning,
    StreamingAdapter,
)
from speech_gateway.services.audio import decode_content
from speech_gateway.services.reconciler import RunningTranscript, apply_interim, clear_interim, reconcile

logger = logging.getLogger(__name__)

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]
AdapterFactoryFn = Callable[[Provider, StreamConfig, AuthMethod], StreamingAdapter]

_END_OF_AUDIO = object()


def parse_start_request(msg: ClientStartStream) -> Tuple[Provider, AuthMethod, StreamConfig]:
    """Resolve provider, auth and config from a start_stream message. Raises ValidationError."""
    api = (msg.api or "").lower()
    if api == "google":
        provider = Provider.GOOGLE_V2 if msg.version == "v2" else Provider.GOOGLE_V1
    elif api == "groq":
        provider = Provider.GROQ
    else:
        raise ValidationError(f"Unsupported api for streaming: {msg.api}")

    service_account = _load_service_account(msg.serviceAccount)
    if provider.is_google and service_account:
        auth: AuthMethod = ServiceAccountAuth(info=service_account, fallback_api_key=msg.apiKey or None)
    elif msg.apiKey:
        auth = ApiKeyAuth(api_key=msg.apiKey)
    elif provider.is_google:
        raise ValidationError("API key or service account is required")
    else:
        raise ValidationError("API key is required")

    if not msg.content:
        raise ValidationError("Audio content is required")

    config = StreamConfig(
        language_code=msg.languageCode,
        model=msg.model,
        language=msg.language,
        prompt=msg.prompt,
        project_id=msg.projectId,
        region=msg.region,
        file_type=msg.fileType,
        file_name=msg.fileName,
    )
    return provider, auth, config


def _load_service_account(value) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValidationError(f"serviceAccount is not valid JSON: {e.msg}") from e
    if not isinstance(value, dict):
        raise ValidationError("serviceAccount must be a JSON object")
    return value


class StreamingSession:
    def __init__(
        self,
        session_id: str,
        send: SendFn,
        adapter_factory: AdapterFactoryFn,
        on_closed: Optional[Callable[["StreamingSession"], None]] = None,
    ):
        self.session_id = session_id
        self.provider: Optional[Provider] = None
        self.state = SessionState.IDLE
        self.sequence = 0
        self.transcript = RunningTranscript()
        self.last_interim_transcript = ""
        self.last_final_transcript = ""

        self._send = send
        self._adapter_factory = adapter_factory
        self._on_closed = on_closed
        self._adapter: Optional[StreamingAdapter] = None
        self._auth: Optional[AuthMethod] = None
        self._config: Optional[StreamConfig] = None
        self._audio: "asyncio.Queue[Any]" = asyncio.Queue()
        self._forwarder: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None
        self._terminated = False
        self._closing = False
        self._end_requested = False

    @property
    def is_active(self) -> bool:
        """Registered and not yet failed or closed."""
        return self.state not in (SessionState.FAILED, SessionState.CLOSED)

    @property
    def terminated(self) -> bool:
        return self._terminated

    # ------------------------------------------------------------------ lifecycle

    async def start(self, msg: ClientStartStream):
        """Idle → Starting → Streaming. Failures end in Closed after one error event."""
        if self.state != SessionState.IDLE:
            raise ProtocolError(f"Session {self.session_id} already started")
        try:
            self.begin(msg)
        except GatewayError as e:
            await self.fail(e)
            return
        await self.connect()

    def begin(self, msg: ClientStartStream):
        """
        Idle → Starting without suspending: validate the request and queue the
        first chunk, so audio and end requests sent right behind start_stream
        are accepted in order. Raises GatewayError.
        """
        if self.state != SessionState.IDLE:
            raise ProtocolError(f"Session {self.session_id} already started")
        provider, auth, config = parse_start_request(msg)
        first_chunk = AudioChunk(data=decode_content(msg.content), mime=msg.fileType)

        self.provider = provider
        self._auth = auth
        self._config = config
        self.state = SessionState.STARTING
        logger.info("Session %s starting (%s)", self.session_id, provider.value)
        # Chunks that arrive during the handshake queue up behind the first one
        self._audio.put_nowait(first_chunk)
        if msg.endOfStream:
            self._request_end()

    async def connect(self):
        """Starting → Streaming: the provider handshake."""
        if self.state != SessionState.STARTING or self._terminated:
            return
        provider = self.provider
        try:
            self._adapter = self._adapter_factory(provider, self._config, self._auth)
            await self._adapter.open()
        except GatewayError as e:
            await self.fail(e)
            return
        except Exception as e:
            logger.exception("Session %s: adapter setup crashed", self.session_id)
            await self.fail(GatewayError(f"Internal error: {e}"))
            return

        if self._terminated:
            # Aborted while the provider handshake was in flight
            await self._adapter.close()
            return

        self.state = SessionState.STREAMING
        await self._emit(ServerStart(message=f"Streaming recognition started ({provider.value})", sessionId=self.session_id))
        if self._end_requested:
            self.state = SessionState.ENDING

        self._pump = asyncio.create_task(self._pump_events(), name=f"pump-{self.session_id}")
        self._forwarder = asyncio.create_task(self._forward_audio(), name=f"forward-{self.session_id}")

    async def push_audio(self, content: str, mime: Optional[str] = None):
        """Queue a base64 chunk. Returns without waiting for the provider."""
        if self._end_requested:
            await self._emit(ServerWarning(message="Recording already ended; audio chunk dropped", sessionId=self.session_id))
            return
        if self.state not in (SessionState.STARTING, SessionState.STREAMING):
            raise ProtocolError(f"Session {self.session_id} is not streaming")
        try:
            data = decode_content(content)
        except ProtocolError as e:
            await self.fail(e)
            return
        self._audio.put_nowait(AudioChunk(data=data, mime=mime))
        logger.debug("Session %s queued %d bytes", self.session_id, len(data))

    async def end(self):
        """Explicit end of recording. Already-queued audio is still forwarded first."""
        if self.state not in (SessionState.STARTING, SessionState.STREAMING) or self._end_requested:
            return
        self._request_end()
        if self.state == SessionState.STREAMING:
            self.state = SessionState.ENDING

    def _request_end(self):
        self._end_requested = True
        logger.info("Session %s: end of recording requested", self.session_id)
        self._audio.put_nowait(_END_OF_AUDIO)

    async def fail(self, error: GatewayError):
        """Emit a single error event and release provider resources."""
        if self._terminated:
            return
        self._terminated = True
        previous = self.state
        self.state = SessionState.FAILED
        logger.warning("Session %s failed in %s: %s", self.session_id, previous.value, error.message)
        await self._deliver(ServerError(message=error.message, sessionId=self.session_id))
        await self.close()

    async def abort(self):
        """Client went away: release everything without notifying."""
        self._terminated = True
        await self.close()

    async def close(self):
        if self.state == SessionState.CLOSED or self._closing:
            return
        self._closing = True
        current = asyncio.current_task()
        tasks = [t for t in (self._forwarder, self._pump) if t is not None and t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._adapter is not None:
            try:
                await self._adapter.close()
            except Exception:
                logger.exception("Session %s: adapter cleanup failed", self.session_id)

        self._terminated = True
        self.state = SessionState.CLOSED
        logger.info("Session %s closed (%d transcripts emitted)", self.session_id, self.sequence)
        if self._on_closed is not None:
            self._on_closed(self)

    # ------------------------------------------------------------------ tasks

    async def _forward_audio(self):
        try:
            while True:
                item = await self._audio.get()
                if item is _END_OF_AUDIO:
                    await self._adapter.finish()
                    return
                await self._adapter.submit(item)
        except GatewayError as e:
            await self.fail(e)

    async def _pump_events(self):
        try:
            async for item in self._adapter.events():
                if isinstance(item, TranscriptEvent):
                    await self._handle_transcript(item)
                elif isinstance(item, AdapterWarning):
                    await self._emit(ServerWarning(message=item.message, sessionId=self.session_id))
                elif isinstance(item, AdapterFailure):
                    await self.fail(item.error)
                    return
                elif isinstance(item, AdapterEnd):
                    break
        except GatewayError as e:
            await self.fail(e)
            return
        await self._finish()

    async def _finish(self):
        if self._terminated:
            return
        self.state = SessionState.ENDING
        self._terminated = True
        await self._deliver(ServerEnd(message="Streaming recognition ended", sessionId=self.session_id))
        await self.close()

    async def _handle_transcript(self, event: TranscriptEvent):
        if event.is_final:
            clear_interim(self.transcript)
            result = reconcile(self.transcript, event.text)
            if not result.is_new:
                logger.debug("Session %s: duplicate final suppressed", self.session_id)
                return
            self.last_final_transcript = event.text
            text = result.appended_text.strip()
        else:
            apply_interim(self.transcript, event.text)
            self.last_interim_transcript = event.text
            text = event.text

        if self._terminated:
            return
        self.sequence += 1
        event.sequence = self.sequence
        await self._emit(
            ServerTranscription(
                sequence=event.sequence,
                isFinal=event.is_final,
                transcript=text,
                fullTranscript=self.transcript.committed_text,
                confidence=event.confidence,
                sessionId=self.session_id,
            )
        )

    # ------------------------------------------------------------------ output

    async def _emit(self, msg):
        if self._terminated:
            return
        await self._deliver(msg)

    async def _deliver(self, msg):
        try:
            await self._send(dump(msg))
        except Exception as e:
            # Client transport is gone; the gateway will abort the session
            logger.debug("Session %s: send failed: %s", self.session_id, e)
