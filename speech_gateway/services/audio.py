import base64
import binascii
from typing import Optional

from speech_gateway.core.errors import ProtocolError

CONTENT_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "webm": "audio/webm",
    "m4a": "audio/mp4",
}

_MIME_ALIASES = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/m4a": "m4a",
}


def decode_content(content: str) -> bytes:
    """
    Decode base64 audio sent by the browser.
    Accepts a bare base64 string or a ``data:<mime>;base64,`` URL.
    """
    if content.startswith("data:") and "," in content:
        content = content.split(",", 1)[1]
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Audio content is not valid base64: {e}") from e


def sniff_audio_format(data: bytes) -> str:
    """Guess the container from magic bytes, defaulting to mp3."""
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if data[:3] == b"ID3":
        return "mp3"
    if len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        return "mp3"
    if data[:4] == b"OggS":
        return "ogg"
    if data[:4] == b"fLaC":
        return "flac"
    return "mp3"


def normalize_format(hint: Optional[str]) -> Optional[str]:
    """Map a client hint ("audio/webm;codecs=opus", ".wav", "WAV", "rec.ogg") to a known format."""
    if not hint:
        return None
    hint = hint.strip().lower()
    mime = hint.split(";", 1)[0]
    if mime in _MIME_ALIASES:
        return _MIME_ALIASES[mime]
    ext = hint.rsplit(".", 1)[-1]
    if ext in CONTENT_TYPES:
        return ext
    if ext == "mpeg":
        return "mp3"
    return None


def resolve_format(data: bytes, file_type: Optional[str] = None, file_name: Optional[str] = None) -> str:
    """Client hints win; magic bytes otherwise."""
    return normalize_format(file_type) or normalize_format(file_name) or sniff_audio_format(data)
