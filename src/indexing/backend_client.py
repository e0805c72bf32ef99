"""
aiohttp client for the indexing backend.

  POST {base_url}/api/index              {"project_name": ...}   long-running, blocks until the job ends
  GET  {base_url}/api/status?project_id=  cheap, side-effect free
  POST {base_url}/api/cancel?project_id=  best-effort cancel
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import aiohttp

from config.settings import BackendSettings, settings
from src.indexing.errors import LAUNCH_FALLBACK_ERROR, BackendRequestError, LaunchError
from src.indexing.status import StatusSnapshot, parse_status_payload
from src.log import get_logger

logger = get_logger(__name__)


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


class IndexingBackendClient:
    """Holds one ClientSession; call close() when done."""

    def __init__(self, config: Optional[BackendSettings] = None):
        self._config = config or settings.backend
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def base_url(self) -> str:
        return self._config.base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        return headers

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # no session-wide timeout: the start call runs as long as the job does
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def start_indexing(self, project_name: str) -> Dict[str, Any]:
        """Blocking start call. Returns the JSON body on success, raises LaunchError otherwise."""
        session = await self._ensure_session()
        url = f"{self.base_url}{self._config.start_path}"
        try:
            async with session.post(url, json={"project_name": project_name}, headers=self._headers()) as resp:
                text = await resp.text()
                try:
                    body = json.loads(text) if text else {}
                except ValueError:
                    body = {}
                logger.info("[backend] start_indexing project_name=%s -> %s", project_name, resp.status)
                if resp.status >= 400:
                    raise LaunchError(_error_message(body, LAUNCH_FALLBACK_ERROR), status_code=resp.status)
                if isinstance(body, dict) and body.get("status") == "error":
                    raise LaunchError(_error_message(body, LAUNCH_FALLBACK_ERROR), status_code=resp.status)
                return body if isinstance(body, dict) else {"result": body}
        except aiohttp.ClientError as e:
            raise LaunchError(str(e) or LAUNCH_FALLBACK_ERROR) from e

    async def get_status(self, project_id: str) -> StatusSnapshot:
        """One poll. Raises BackendRequestError / StatusParseError / aiohttp errors on failure."""
        session = await self._ensure_session()
        url = f"{self.base_url}{self._config.status_path}"
        timeout = aiohttp.ClientTimeout(total=self._config.status_timeout_seconds)
        async with session.get(url, params={"project_id": project_id}, headers=self._headers(), timeout=timeout) as resp:
            text = await resp.text()
            if resp.status >= 400:
                raise BackendRequestError(f"Status check failed: {resp.status}", status_code=resp.status)
            try:
                payload = json.loads(text)
            except ValueError as e:
                raise BackendRequestError(f"Status response is not JSON: {text[:200]}", status_code=resp.status) from e
        return parse_status_payload(payload)

    async def cancel_indexing(self, project_id: str) -> Dict[str, Any]:
        session = await self._ensure_session()
        url = f"{self.base_url}{self._config.cancel_path}"
        timeout = aiohttp.ClientTimeout(total=self._config.cancel_timeout_seconds)
        async with session.post(url, params={"project_id": project_id}, headers=self._headers(), timeout=timeout) as resp:
            text = await resp.text()
            try:
                body = json.loads(text) if text else {}
            except ValueError:
                body = {}
            if resp.status >= 400:
                raise BackendRequestError(_error_message(body, f"Cancel failed: {resp.status}"), status_code=resp.status)
            return body if isinstance(body, dict) else {}
