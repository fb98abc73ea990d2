import base64
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from speech_gateway.core.errors import AuthError, GatewayError, ProviderError
from speech_gateway.services.google_rest import (
    ProxyRequest,
    build_v1_body,
    build_v2_body,
    reshape_json_body,
)

router = APIRouter(prefix="/api/speech")
logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = ("v1", "v2")


def _error(code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=code, content={"error": {"code": code, "message": message}})


def _error_for(e: GatewayError) -> JSONResponse:
    if isinstance(e, ProviderError):
        return _error(500, e.message)
    if isinstance(e, AuthError):
        return _error(401, e.message)
    return _error(400, e.message)


def _parse_json_field(raw: Optional[str], name: str) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring %s: not valid JSON", name)
        return None
    return value if isinstance(value, dict) else None


async def _forward(request: Request, req: ProxyRequest) -> Response:
    proxy = request.app.state.speech_proxy
    try:
        upstream = await proxy.forward(req)
    except GatewayError as e:
        logger.warning("Batch %s request failed: %s", req.version, e.message)
        return _error_for(e)
    return Response(content=upstream.content, status_code=upstream.status_code, media_type=upstream.media_type)


@router.post("/{version}")
async def recognize(version: str, request: Request, key: Optional[str] = None,
                    project: Optional[str] = None, region: Optional[str] = None):
    if version not in SUPPORTED_VERSIONS:
        return _error(400, f"Unsupported API version: {version}")
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Request body must be JSON")
    if not isinstance(body, dict):
        return _error(400, "Request body must be a JSON object")

    service_account = body.get("serviceAccount")
    if isinstance(service_account, str):
        service_account = _parse_json_field(service_account, "serviceAccount")

    req = ProxyRequest(
        version=version,
        body=reshape_json_body(version, body, request.app.state.settings),
        # Query string wins over the body
        api_key=key or body.get("apiKey"),
        service_account=service_account if version == "v2" else None,
        project_id=project or body.get("projectId"),
        region=region or body.get("region"),
    )
    return await _forward(request, req)


@router.post("/{version}/upload")
async def recognize_upload(
    version: str,
    request: Request,
    audio: Optional[UploadFile] = File(None),
    key: Optional[str] = None,
    project: Optional[str] = None,
    region: Optional[str] = None,
    languageCode: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    serviceAccount: Optional[str] = Form(None),
    requestData: Optional[str] = Form(None),
):
    if version not in SUPPORTED_VERSIONS:
        return _error(400, f"Unsupported API version: {version}")
    if audio is None:
        return _error(400, "No audio file uploaded")

    data = await audio.read()
    content = base64.b64encode(data).decode("ascii")
    settings = request.app.state.settings
    form = await request.form()
    logger.info("Upload %s: %s (%d bytes)", version, audio.filename, len(data))

    if version == "v1":
        body = build_v1_body(content, language_code=languageCode, model=model, settings=settings)
    else:
        parsed = _parse_json_field(requestData, "requestData") or {}
        config = parsed.get("config") if isinstance(parsed.get("config"), dict) else None
        language = form.getlist("languageCodes[]") or languageCode
        body = build_v2_body(content, config=config, language_code=language, model=model, settings=settings)

    req = ProxyRequest(
        version=version,
        body=body,
        api_key=key,
        service_account=_parse_json_field(serviceAccount, "serviceAccount") if version == "v2" else None,
        project_id=project or form.get("projectId"),
        region=region or form.get("region"),
    )
    return await _forward(request, req)
