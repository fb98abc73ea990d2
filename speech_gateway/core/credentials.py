import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Set

import google.auth.transport.requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

from speech_gateway.core.config import settings
from speech_gateway.core.errors import AuthError
from speech_gateway.core.logging import redact

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class CredentialIssuer:
    """
    Exchanges service account material for Google credentials.

    The SDK reads service accounts from disk, so the JSON blob is written to a
    temporary file under ``temp_dir``. Each file is deleted after ``ttl`` seconds,
    immediately on failure, and at shutdown via ``purge()``.
    """

    def __init__(self, temp_dir: Optional[str] = None, ttl: Optional[float] = None):
        self._temp_dir = Path(temp_dir or settings.TEMP_DIR)
        self._ttl = settings.CREDENTIAL_FILE_TTL_SEC if ttl is None else ttl
        self._pending: Set[str] = set()

    @property
    def pending_files(self) -> Set[str]:
        return set(self._pending)

    async def credentials_for(self, info: Dict[str, Any]) -> service_account.Credentials:
        """Load and refresh credentials. Raises AuthError when the exchange fails."""
        path = self._write_temp_file(info)
        try:
            creds = service_account.Credentials.from_service_account_file(path, scopes=SCOPES)
            loop = asyncio.get_running_loop()
            # refresh() performs a blocking token request
            await loop.run_in_executor(None, creds.refresh, google.auth.transport.requests.Request())
        except (GoogleAuthError, ValueError, KeyError, OSError) as e:
            self._delete(path)
            raise AuthError(f"Service account authentication failed: {e}") from e
        except asyncio.CancelledError:
            # Client left mid-handshake
            self._delete(path)
            raise

        self._schedule_delete(path)
        logger.info(
            "Issued token for %s: %s",
            info.get("client_email", "<unknown>"),
            redact(creds.token, keep=10),
        )
        return creds

    async def access_token(self, info: Dict[str, Any]) -> str:
        creds = await self.credentials_for(info)
        return creds.token

    def purge(self):
        for path in list(self._pending):
            self._delete(path)

    def _write_temp_file(self, info: Dict[str, Any]) -> str:
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="sa_", suffix=".json", dir=self._temp_dir)
        with os.fdopen(fd, "w") as f:
            json.dump(info, f)
        self._pending.add(path)
        return path

    def _schedule_delete(self, path: str):
        if self._ttl <= 0:
            self._delete(path)
            return
        asyncio.get_running_loop().call_later(self._ttl, self._delete, path)

    def _delete(self, path: str):
        self._pending.discard(path)
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        else:
            logger.debug("Deleted temporary credential file %s", path)
