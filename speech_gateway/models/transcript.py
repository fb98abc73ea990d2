from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


class Provider(str, Enum):
    GOOGLE_V1 = "google_v1"
    GOOGLE_V2 = "google_v2"
    GROQ = "groq"

    @property
    def is_google(self) -> bool:
        return self in (Provider.GOOGLE_V1, Provider.GOOGLE_V2)


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    ENDING = "ending"
    CLOSED = "closed"
    FAILED = "failed"


class TranscriptKind(str, Enum):
    INTERIM = "interim"
    FINAL = "final"


@dataclass
class TranscriptEvent:
    kind: TranscriptKind
    text: str
    confidence: Optional[float] = None
    # Assigned by the session at emission time
    sequence: Optional[int] = None

    @property
    def is_final(self) -> bool:
        return self.kind == TranscriptKind.FINAL


@dataclass
class AudioChunk:
    data: bytes
    mime: Optional[str] = None


@dataclass
class ApiKeyAuth:
    api_key: str


@dataclass
class ServiceAccountAuth:
    info: Dict[str, Any]
    # Used only when the client supplied a key alongside the service account
    fallback_api_key: Optional[str] = None


AuthMethod = Union[ApiKeyAuth, ServiceAccountAuth]


@dataclass
class StreamConfig:
    language_code: Optional[str] = None
    model: Optional[str] = None
    # Groq only
    language: Optional[str] = None
    prompt: Optional[str] = None
    # Google v2 only
    project_id: Optional[str] = None
    region: Optional[str] = None
    # Container hints for providers that need a file name
    file_type: Optional[str] = None
    file_name: Optional[str] = None
