from typing import Optional

import httpx

from speech_gateway.core.config import Settings, settings as default_settings
from speech_gateway.core.credentials import CredentialIssuer
from speech_gateway.models.transcript import AuthMethod, Provider, StreamConfig
from speech_gateway.services.adapters.base import StreamingAdapter
from speech_gateway.services.adapters.google import ClientFactory, GoogleStreamingAdapter
from speech_gateway.services.adapters.groq import GroqStreamingAdapter


class AdapterFactory:
    """Builds the provider adapter for a session from process-scoped collaborators."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        issuer: CredentialIssuer,
        settings: Optional[Settings] = None,
        google_client_factory: Optional[ClientFactory] = None,
    ):
        self._http = http
        self._issuer = issuer
        self._settings = settings or default_settings
        self._google_client_factory = google_client_factory

    def __call__(self, provider: Provider, config: StreamConfig, auth: AuthMethod) -> StreamingAdapter:
        if provider == Provider.GROQ:
            return GroqStreamingAdapter(config, auth, self._http, self._settings)
        return GoogleStreamingAdapter(
            provider,
            config,
            auth,
            self._issuer,
            self._settings,
            client_factory=self._google_client_factory,
        )
