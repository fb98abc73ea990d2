import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Set

import pydantic
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from speech_gateway.core.errors import GatewayError, ProtocolError, SessionConflictError
from speech_gateway.models.messages import (
    ClientAudioChunk,
    ClientEndStream,
    ClientStartStream,
    ServerConnected,
    ServerError,
    dump,
)
from speech_gateway.services.session import AdapterFactoryFn, StreamingSession
from speech_gateway.services.session_store import SessionRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


class Gateway:
    """
    Routes client messages to streaming sessions. Owns the session registry;
    collaborators are injected at construction.
    """

    def __init__(self, adapter_factory: AdapterFactoryFn, registry: Optional[SessionRegistry] = None):
        self.adapter_factory = adapter_factory
        self.registry = registry or SessionRegistry()

    async def serve(self, websocket: WebSocket):
        await websocket.accept()
        conn = Connection(self, websocket)
        await conn.send(dump(ServerConnected()))
        logger.info("Client %s connected", conn.id)

        try:
            while True:
                raw = await websocket.receive_text()
                await conn.dispatch(raw)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", conn.id)
        except Exception as e:
            logger.exception("Client %s: connection handler crashed", conn.id)
            if websocket.application_state == WebSocketState.CONNECTED:
                await conn.send(dump(ServerError(message=f"Internal error: {e}")))
                await websocket.close()
        finally:
            await conn.shutdown()


class Connection:
    """One client socket and the sessions it started."""

    def __init__(self, gateway: Gateway, websocket: WebSocket):
        self.id = uuid.uuid4().hex[:8]
        self.gateway = gateway
        self.websocket = websocket
        self._send_lock = asyncio.Lock()
        self._starts: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def registry(self) -> SessionRegistry:
        return self.gateway.registry

    async def send(self, payload: Dict[str, Any]):
        if self._closed:
            return
        # Sessions emit concurrently; keep frames whole
        async with self._send_lock:
            # Always send text JSON for compatibility
            await self.websocket.send_text(json.dumps(payload))

    async def dispatch(self, raw: str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            await self.send(dump(ServerError(message="Malformed message: invalid JSON")))
            return
        if not isinstance(data, dict):
            await self.send(dump(ServerError(message="Malformed message: expected a JSON object")))
            return

        msg_type = data.get("type")
        session_id = data.get("sessionId")
        try:
            if msg_type == "start_stream":
                await self._start_stream(ClientStartStream(**data))
            elif msg_type == "audio_chunk":
                msg = ClientAudioChunk(**data)
                await self._owned_session(msg.sessionId).push_audio(msg.content, msg.fileType)
            elif msg_type == "end_stream":
                msg = ClientEndStream(**data)
                await self._owned_session(msg.sessionId).end()
            else:
                raise ProtocolError(f"Unknown message type: {msg_type}")
        except pydantic.ValidationError as e:
            await self._reject(session_id, ProtocolError(f"Malformed {msg_type} message: {_first_error(e)}"))
        except GatewayError as e:
            await self._reject(session_id, e)

    async def _start_stream(self, msg: ClientStartStream):
        session = StreamingSession(
            msg.sessionId,
            send=self.send,
            adapter_factory=self.gateway.adapter_factory,
            on_closed=self.registry.remove,
        )
        owner = self.registry.owner_of(msg.sessionId)
        try:
            self.registry.register(session, self.id)
        except SessionConflictError as e:
            if owner != self.id:
                await self.send(dump(ServerError(message=e.message, sessionId=msg.sessionId)))
                return
            raise

        try:
            session.begin(msg)
        except GatewayError as e:
            await session.fail(e)
            return

        # The provider handshake must not hold up other messages on this socket
        task = asyncio.create_task(session.connect(), name=f"start-{msg.sessionId}")
        self._starts.add(task)
        task.add_done_callback(self._starts.discard)

    def _owned_session(self, session_id: str) -> StreamingSession:
        session = self.registry.get(session_id)
        if session is None or self.registry.owner_of(session_id) != self.id:
            raise ProtocolError(f"Unknown session: {session_id}")
        return session

    async def _reject(self, session_id: Optional[str], error: GatewayError):
        """Fail the addressed session if this client owns it, otherwise just report."""
        session = None
        if isinstance(session_id, str) and self.registry.owner_of(session_id) == self.id:
            session = self.registry.get(session_id)
        if session is not None and session.is_active:
            await session.fail(error)
            return
        logger.info("Client %s: rejected message: %s", self.id, error.message)
        sid = session_id if isinstance(session_id, str) else None
        await self.send(dump(ServerError(message=error.message, sessionId=sid)))

    async def shutdown(self):
        self._closed = True
        starts = list(self._starts)
        for task in starts:
            task.cancel()
        await asyncio.gather(*starts, return_exceptions=True)
        sessions = self.registry.sessions_for(self.id)
        if sessions:
            logger.info("Client %s: closing %d session(s)", self.id, len(sessions))
        await asyncio.gather(*(s.abort() for s in sessions), return_exceptions=True)
        for s in sessions:
            self.registry.remove(s)


def _first_error(e: pydantic.ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid")


@router.websocket("/ws/transcribe")
async def ws_transcribe(websocket: WebSocket):
    await websocket.app.state.gateway.serve(websocket)
