import logging
from typing import Optional

import httpx

from speech_gateway.core.config import Settings, settings as default_settings
from speech_gateway.core.errors import AuthError, ProviderError
from speech_gateway.services.audio import CONTENT_TYPES, resolve_format

logger = logging.getLogger(__name__)


class GroqTranscriber:
    """
    Thin client for Groq's OpenAI-compatible whole-file transcription endpoint.
    Groq needs a file name with a proper extension, so the container is resolved
    from client hints or magic bytes before upload.
    """

    def __init__(self, api_key: str, http: httpx.AsyncClient, settings: Optional[Settings] = None):
        self._api_key = api_key
        self._http = http
        self._settings = settings or default_settings

    async def transcribe_bytes(
        self,
        audio: bytes,
        *,
        model: Optional[str] = None,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        file_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> str:
        """
        Transcribe one complete audio payload and return plain text.
        """
        fmt = resolve_format(audio, file_type=file_type, file_name=file_name)
        upload_name = f"audio.{fmt}"

        data = {
            "model": model or self._settings.GROQ_DEFAULT_MODEL,
            "response_format": "json",
        }
        if language:
            data["language"] = language
        if prompt:
            data["prompt"] = prompt

        try:
            resp = await self._http.post(
                self._settings.GROQ_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                data=data,
                files={"file": (upload_name, audio, CONTENT_TYPES[fmt])},
                timeout=self._settings.HTTP_TIMEOUT_SEC,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Groq request failed: {e}") from e

        if resp.status_code in (401, 403):
            raise AuthError(f"Groq rejected the API key ({resp.status_code})")
        if resp.status_code >= 400:
            raise ProviderError(f"Groq API error {resp.status_code}: {_error_detail(resp)}")

        text = resp.json().get("text", "")
        logger.debug("Groq transcribed %d bytes (%s): %d chars", len(audio), fmt, len(text))
        return text.strip()


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return err.get("message") or str(err)
    return str(body)[:200]
