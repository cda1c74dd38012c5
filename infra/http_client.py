# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlsplit
import logging

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_USER_AGENT = "RobosatsBot/1.0"


class HttpError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message
        self.payload = payload or {}

    @property
    def short_reason(self) -> str:
        """Compact reason for per-source summaries: "HTTP 502" or the network message."""
        if self.status < 599:
            return f"HTTP {self.status}"
        return self.message


def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/")


def default_host_header(base_url: str, default_port: str = "12596") -> str:
    """
    The coordinator proxy (Django) validates the Host header against
    umbrel.local, even when reached through an internal docker hostname.
    """
    try:
        port = urlsplit(base_url).port
    except ValueError:
        port = None
    return f"umbrel.local:{port or default_port}"


class HttpClient:
    def __init__(self,
                 base_url: str,
                 logger: Optional[logging.Logger] = None,
                 *,
                 timeout_ms: Optional[int] = None,
                 host_header: Optional[str] = None,
                 user_agent: str = DEFAULT_USER_AGENT,
                 session: Optional[aiohttp.ClientSession] = None,
                 ) -> None:
        self.log = logger or logging.getLogger("HttpClient")
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_ms = int(timeout_ms or DEFAULT_TIMEOUT_MS)
        self.session = session
        self._owned_session = session is None

        self.headers: Dict[str, str] = {
            "User-Agent": user_agent,
            "Accept": "application/json",
        }
        if host_header:
            self.headers["Host"] = host_header

        self.log.debug(f"HttpClient init base_url={self.base_url} timeout_ms={self.timeout_ms}")

    def _new_session(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
        return aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            self.session = self._new_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            headers: Optional[Mapping[str, str]] = None,
            timeout_ms: Optional[int] = None,
        ) -> Any:
        """
        Single request, no retries: the polling cycle is the retry mechanism.

        Returns the decoded JSON body, whatever its shape. Every failure
        (status >= 400, network error, timeout, undecodable body) is raised
        as HttpError so callers have one thing to catch.
        """
        if self.session is None or self.session.closed:
            self.session = self._new_session()
        method = method.upper()
        url = self.base_url + path + _build_query(params)
        req_headers = dict(self.headers)
        if headers:
            req_headers.update(headers)

        timeout_ctx = aiohttp.ClientTimeout(total=timeout_ms / 1000.0) if timeout_ms else None

        try:
            async with self.session.request(
                method,
                url,
                headers=req_headers,
                timeout=timeout_ctx,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as e:
            raise HttpError(599, "timeout") from e
        except aiohttp.ClientError as e:
            raise HttpError(599, f"Network error: {e}") from e

        if status >= 400:
            raise HttpError(status, text[:256])
        try:
            return json.loads(text) if text else None
        except json.JSONDecodeError as e:
            raise HttpError(status, f"invalid json: {text[:256]}") from e

    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)
