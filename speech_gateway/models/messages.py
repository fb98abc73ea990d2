from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel


# Client → Gateway messages

class ClientStartStream(BaseModel):
    type: Literal["start_stream"] = "start_stream"
    sessionId: str
    api: str  # "google" | "groq"
    version: Literal["v1", "v2"] = "v1"  # Google only
    apiKey: Optional[str] = None
    serviceAccount: Optional[Union[Dict[str, Any], str]] = None
    content: Optional[str] = None  # base64 audio, bare or data URL
    endOfStream: bool = False  # content is the complete recording
    languageCode: Optional[str] = None
    model: Optional[str] = None
    language: Optional[str] = None  # Groq
    prompt: Optional[str] = None  # Groq
    projectId: Optional[str] = None  # Google v2
    region: Optional[str] = None  # Google v2
    fileType: Optional[str] = None
    fileName: Optional[str] = None


class ClientAudioChunk(BaseModel):
    type: Literal["audio_chunk"] = "audio_chunk"
    sessionId: str
    content: str
    fileType: Optional[str] = None


class ClientEndStream(BaseModel):
    type: Literal["end_stream"] = "end_stream"
    sessionId: str


# Gateway → Client messages

class ServerConnected(BaseModel):
    type: Literal["connected"] = "connected"


class ServerStart(BaseModel):
    type: Literal["start"] = "start"
    message: str
    sessionId: str


class ServerTranscription(BaseModel):
    type: Literal["transcription"] = "transcription"
    sequence: int
    isFinal: bool
    transcript: str
    fullTranscript: str
    confidence: Optional[float] = None
    sessionId: str


class ServerWarning(BaseModel):
    type: Literal["warning"] = "warning"
    message: str
    sessionId: str


class ServerEnd(BaseModel):
    type: Literal["end"] = "end"
    message: str
    sessionId: str


class ServerError(BaseModel):
    type: Literal["error"] = "error"
    message: str
    sessionId: Optional[str] = None


def dump(msg: BaseModel) -> Dict[str, Any]:
    """Serialize an outbound message, leaving out unset optional fields."""
    return msg.model_dump(exclude_none=True)
