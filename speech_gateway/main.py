import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from speech_gateway.api.speech import router as speech_router
from speech_gateway.api.ws import Gateway, router as ws_router
from speech_gateway.core.config import Settings, settings as default_settings
from speech_gateway.core.credentials import CredentialIssuer
from speech_gateway.core.logging import configure_logging
from speech_gateway.services.adapters.factory import AdapterFactory
from speech_gateway.services.google_rest import GoogleSpeechProxy
from speech_gateway.services.session import AdapterFactoryFn

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    adapter_factory: Optional[AdapterFactoryFn] = None,
    http: Optional[httpx.AsyncClient] = None,
    issuer: Optional[CredentialIssuer] = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    http = http or httpx.AsyncClient(proxy=settings.PROXY_URL, timeout=settings.HTTP_TIMEOUT_SEC)
    issuer = issuer or CredentialIssuer(settings.TEMP_DIR, settings.CREDENTIAL_FILE_TTL_SEC)
    adapter_factory = adapter_factory or AdapterFactory(http, issuer, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Speech gateway up (proxy: %s)", settings.PROXY_URL or "none")
        yield
        issuer.purge()
        await http.aclose()

    app = FastAPI(title="Speech Transcription Gateway", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = Gateway(adapter_factory)
    app.state.speech_proxy = GoogleSpeechProxy(http, issuer, settings)

    # CORS: adjust allowed origins for the browser client as needed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {
            "ok": True,
            "proxy": settings.PROXY_URL,
            "activeSessions": len(app.state.gateway.registry),
        }

    app.include_router(speech_router)
    # WebSocket router
    app.include_router(ws_router)
    return app


app = create_app()
