import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

from google.api_core import exceptions as core_exceptions
from google.api_core.client_options import ClientOptions
from google.cloud import speech_v1, speech_v2
from google.cloud.speech_v2.types import cloud_speech

from speech_gateway.core.config import Settings
from speech_gateway.core.credentials import CredentialIssuer
from speech_gateway.core.errors import AuthError, ProviderError, ValidationError
from speech_gateway.models.transcript import (
    ApiKeyAuth,
    AudioChunk,
    AuthMethod,
    Provider,
    ServiceAccountAuth,
    StreamConfig,
    TranscriptEvent,
    TranscriptKind,
)
from speech_gateway.services.adapters.base import StreamingAdapter

logger = logging.getLogger(__name__)

API_KEY_V2_WARNING = (
    "API key authentication has limited support for Speech-to-Text v2 streaming; "
    "use a service account if recognition fails"
)

ClientFactory = Callable[[Provider, Any, Optional[ClientOptions]], Any]

_END = object()


def default_client_factory(provider: Provider, credentials, options: Optional[ClientOptions]):
    if provider == Provider.GOOGLE_V2:
        return speech_v2.SpeechAsyncClient(credentials=credentials, client_options=options)
    return speech_v1.SpeechAsyncClient(credentials=credentials, client_options=options)


class GoogleStreamingAdapter(StreamingAdapter):
    """
    One long-lived bidirectional ``StreamingRecognize`` call per session.
    Each result maps 1:1 to a TranscriptEvent (first alternative only).
    """

    def __init__(
        self,
        provider: Provider,
        config: StreamConfig,
        auth: AuthMethod,
        issuer: CredentialIssuer,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        super().__init__(config, auth, settings)
        if not provider.is_google:
            raise ValidationError(f"{provider.value} is not a Google provider")
        self.provider = provider
        self.name = provider.value
        self._issuer = issuer
        self._client_factory = client_factory or default_client_factory
        self._client = None
        self._audio: "asyncio.Queue[Any]" = asyncio.Queue()

    async def open(self):
        credentials, api_key = await self._resolve_auth()
        self._client = self._client_factory(self.provider, credentials, self._client_options(api_key))
        if self._closed:
            # Closed while credentials were being exchanged
            await self._release()
            return
        self._start_worker(self._run())
        logger.info("%s streaming channel opened (%s)", self.name, "api key" if api_key else "service account")

    async def submit(self, chunk: AudioChunk):
        if self._closed:
            return
        await self._audio.put(chunk.data)

    async def finish(self):
        await self._audio.put(_END)

    async def _resolve_auth(self):
        """Return (credentials, api_key); exactly one of them is set."""
        if isinstance(self.auth, ServiceAccountAuth):
            try:
                creds = await self._issuer.credentials_for(self.auth.info)
                return creds, None
            except AuthError as e:
                if not self.auth.fallback_api_key:
                    raise
                self._warn(f"{e.message}; falling back to API key")
                api_key = self.auth.fallback_api_key
        else:
            api_key = self.auth.api_key

        if self.provider == Provider.GOOGLE_V2:
            self._warn(API_KEY_V2_WARNING)
        return None, api_key

    def _client_options(self, api_key: Optional[str]) -> Optional[ClientOptions]:
        endpoint = None
        if self.provider == Provider.GOOGLE_V2:
            region = self._region
            if region != "global":
                endpoint = f"{region}-speech.googleapis.com"
        if api_key is None and endpoint is None:
            return None
        return ClientOptions(api_key=api_key, api_endpoint=endpoint)

    @property
    def _region(self) -> str:
        return self.config.region or self.settings.GOOGLE_DEFAULT_REGION

    def config_request(self):
        language = self.config.language_code or self.settings.GOOGLE_DEFAULT_LANGUAGE
        if self.provider == Provider.GOOGLE_V2:
            project = self.config.project_id or self.settings.GOOGLE_DEFAULT_PROJECT
            recognition = cloud_speech.RecognitionConfig(
                auto_decoding_config=cloud_speech.AutoDetectDecodingConfig(),
                language_codes=[code.strip() for code in language.split(",") if code.strip()],
                model=self.config.model or self.settings.GOOGLE_V2_MODEL,
                features=cloud_speech.RecognitionFeatures(enable_automatic_punctuation=True),
            )
            return cloud_speech.StreamingRecognizeRequest(
                recognizer=f"projects/{project}/locations/{self._region}/recognizers/_",
                streaming_config=cloud_speech.StreamingRecognitionConfig(
                    config=recognition,
                    streaming_features=cloud_speech.StreamingRecognitionFeatures(interim_results=True),
                ),
            )

        recognition = speech_v1.RecognitionConfig(
            encoding=speech_v1.RecognitionConfig.AudioEncoding[self.settings.GOOGLE_STREAM_ENCODING],
            sample_rate_hertz=self.settings.GOOGLE_STREAM_SAMPLE_RATE,
            language_code=language,
            model=self.config.model or self.settings.GOOGLE_V1_MODEL,
            enable_automatic_punctuation=True,
        )
        return speech_v1.StreamingRecognizeRequest(
            streaming_config=speech_v1.StreamingRecognitionConfig(config=recognition, interim_results=True)
        )

    def audio_request(self, data: bytes):
        if self.provider == Provider.GOOGLE_V2:
            return cloud_speech.StreamingRecognizeRequest(audio=data)
        return speech_v1.StreamingRecognizeRequest(audio_content=data)

    async def _requests(self) -> AsyncIterator[Any]:
        yield self.config_request()
        while True:
            data = await self._audio.get()
            if data is _END:
                return
            yield self.audio_request(data)

    async def _run(self):
        try:
            stream = await self._client.streaming_recognize(requests=self._requests())
            async for response in stream:
                for result in response.results:
                    event = result_to_event(result)
                    if event is not None:
                        self._emit_transcript(event)
        except (core_exceptions.Unauthenticated, core_exceptions.PermissionDenied) as e:
            raise AuthError(f"Google rejected the credentials: {e.message}") from e
        except core_exceptions.GoogleAPICallError as e:
            raise ProviderError(f"Google streaming error: {e.message}") from e
        self._end()

    async def _release(self):
        client, self._client = self._client, None
        if client is None:
            return
        transport = getattr(client, "transport", None)
        if transport is not None:
            await transport.close()


def result_to_event(result) -> Optional[TranscriptEvent]:
    if not result.alternatives:
        return None
    alternative = result.alternatives[0]
    text = alternative.transcript
    if not text:
        return None
    if result.is_final:
        # Google reports 0.0 when confidence is unknown
        confidence = alternative.confidence or None
        return TranscriptEvent(kind=TranscriptKind.FINAL, text=text, confidence=confidence)
    return TranscriptEvent(kind=TranscriptKind.INTERIM, text=text)
