"""
Request reshaping for Google's batch ``recognize`` endpoints.

The browser posts either a ready-made v1 body or loosely shaped fields;
v2 needs a strict body, so it is always rebuilt from scratch.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from speech_gateway.core.config import Settings, settings as default_settings
from speech_gateway.core.credentials import CredentialIssuer
from speech_gateway.core.errors import AuthError, ProviderError, ValidationError
from speech_gateway.core.logging import redact

logger = logging.getLogger(__name__)

V1_URL = "https://speech.googleapis.com/v1/speech:recognize"
V2_URL = "https://{region}-speech.googleapis.com/v2/projects/{project}/locations/{region}/recognizers/_:recognize"

AUTH_FIELDS = ("serviceAccount", "apiKey", "projectId", "region")


@dataclass
class ProxyRequest:
    version: str
    body: Dict[str, Any]
    api_key: Optional[str] = None
    service_account: Optional[Dict[str, Any]] = None
    project_id: Optional[str] = None
    region: Optional[str] = None


@dataclass
class UpstreamResponse:
    status_code: int
    content: bytes
    media_type: Optional[str] = None


def recognize_url(version: str, project_id: str, region: str) -> str:
    if version == "v1":
        return V1_URL
    if version == "v2":
        return V2_URL.format(project=project_id, region=region)
    raise ValidationError(f"Unsupported API version: {version}")


def language_codes_from(config: Optional[Dict[str, Any]], language_code: Optional[Any], default: str) -> List[str]:
    if config and isinstance(config.get("language_codes"), list):
        return config["language_codes"]
    if isinstance(language_code, list) and language_code:
        return language_code
    if language_code:
        return [language_code]
    return [default]


def build_v2_body(
    content: str,
    config: Optional[Dict[str, Any]] = None,
    language_code: Optional[Any] = None,
    model: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    settings = settings or default_settings
    return {
        "config": {
            "language_codes": language_codes_from(config, language_code, settings.GOOGLE_DEFAULT_LANGUAGE),
            "model": (config or {}).get("model") or model or settings.GOOGLE_V2_MODEL,
            "features": {"enable_automatic_punctuation": True},
            "auto_decoding_config": {},
        },
        "content": content,
    }


def build_v1_body(
    content: str,
    language_code: Optional[str] = None,
    model: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    settings = settings or default_settings
    return {
        "config": {
            "languageCode": language_code or settings.GOOGLE_DEFAULT_LANGUAGE,
            "model": model or settings.GOOGLE_V1_MODEL,
            "enableAutomaticPunctuation": True,
        },
        "audio": {"content": content},
    }


def reshape_json_body(version: str, body: Dict[str, Any], settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Strip auth fields; v1 passes through, v2 is rebuilt."""
    clean = {k: v for k, v in body.items() if k not in AUTH_FIELDS}
    if version != "v2":
        return clean
    config = clean.get("config") if isinstance(clean.get("config"), dict) else None
    return build_v2_body(
        clean.get("content"),
        config=config,
        language_code=clean.get("languageCode"),
        model=clean.get("model"),
        settings=settings,
    )


class GoogleSpeechProxy:
    """Forwards batch recognize calls and returns Google's answer unchanged."""

    def __init__(self, http: httpx.AsyncClient, issuer: CredentialIssuer, settings: Optional[Settings] = None):
        self._http = http
        self._issuer = issuer
        self._settings = settings or default_settings

    async def forward(self, req: ProxyRequest) -> UpstreamResponse:
        if not req.api_key and not req.service_account:
            raise ValidationError("API key is required")

        project = req.project_id or self._settings.GOOGLE_DEFAULT_PROJECT
        region = req.region or self._settings.GOOGLE_DEFAULT_REGION
        url = recognize_url(req.version, project, region)
        headers = {"Content-Type": "application/json"}
        params: Dict[str, str] = {}

        token = None
        if req.service_account:
            try:
                token = await self._issuer.access_token(req.service_account)
            except AuthError as e:
                if not req.api_key:
                    raise
                logger.warning("%s; falling back to API key authentication", e.message)

        if token:
            headers["Authorization"] = f"Bearer {token}"
            logger.info("Using bearer token %s for %s", redact(token, keep=10), url)
        else:
            params["key"] = req.api_key
            logger.info("Using API key %s for %s", redact(req.api_key), url)

        logger.debug("Request body keys: %s", sorted(k for k in req.body if k != "content"))
        try:
            resp = await self._http.post(
                url,
                params=params,
                json=req.body,
                headers=headers,
                timeout=self._settings.HTTP_TIMEOUT_SEC,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Proxy error: {e}") from e

        logger.info("Google %s responded %s", req.version, resp.status_code)
        if resp.status_code != 200:
            logger.warning("Error response: %s", resp.text[:500])
        return UpstreamResponse(
            status_code=resp.status_code,
            content=resp.content,
            media_type=resp.headers.get("content-type"),
        )
