# infra/__init__.py
from __future__ import annotations

import logging
from typing import Protocol, Mapping, Any, Optional

from infra.http_client import HttpClient, HttpError, default_host_header


# ========== 1) Port: sources depend on this, not on the concrete HttpClient ==========
class HttpPort(Protocol):
    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any: ...


# ========== 2) Light container: create / close ==========
class HttpContainer:
    """
    Owns the HttpClient shared by every coordinator source.
    - The composition root (app entry) holds it.
    - Sources get container.http injected.
    """
    def __init__(self, http: HttpClient) -> None:
        self.http = http

    @classmethod
    async def start(cls,
                    base_url: str,
                    logger: Optional[logging.Logger] = None,
                    *,
                    timeout_ms: Optional[int] = None,
                    host_header: Optional[str] = None,
                    ) -> "HttpContainer":
        if host_header is None:
            host_header = default_host_header(base_url)
        http = HttpClient(base_url, logger=logger, timeout_ms=timeout_ms, host_header=host_header or None)
        await http.__aenter__()
        return cls(http)

    async def stop(self) -> None:
        await self.http.close()


__all__ = ["HttpPort", "HttpContainer", "HttpClient", "HttpError", "default_host_header"]
