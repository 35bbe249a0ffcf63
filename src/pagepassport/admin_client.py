# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Async client for a Shopify-like admin REST API.

Built explicitly from an AdminApiConfig and passed to whoever needs it; there
is no module-level instance. 429 responses wait for the server's Retry-After
(2s when absent) and are retried, as are 5xx and timeouts. Other 4xx raise
ServiceError immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .config import AdminApiConfig
from .errors import ServiceError, TransientServiceError
from .retry import RetryPolicy, error_for_response, retry_async

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"


class AdminApiClient:
    """JSON-in/JSON-out wrapper over httpx.AsyncClient."""

    def __init__(
        self,
        config: AdminApiConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.config = config
        self.policy = RetryPolicy(max_retries=config.max_retries)
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={ACCESS_TOKEN_HEADER: config.access_token, "Content-Type": "application/json"},
            timeout=config.timeout_s,
            transport=transport,
        )
        logger.info("Admin API client initialised for %s", config.base_url)

    async def __aenter__(self) -> AdminApiClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send_once(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientServiceError(f"Admin API {method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise ServiceError(f"Admin API {method} {path} failed: {exc}") from exc

        error = error_for_response(response, f"Admin API {method} {path}", self.policy)
        if error is not None:
            raise error
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceError(f"Admin API {method} {path} returned non-JSON body", status=response.status_code) from exc

    async def request(self, method: str, path: str, **kwargs) -> Any:
        kwargs_sleep = {"sleep": self._sleep} if self._sleep else {}
        return await retry_async(
            lambda: self._send_once(method, path, **kwargs),
            self.policy,
            label=f"Admin API {method} {path}",
            **kwargs_sleep,
        )

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any) -> Any:
        return await self.request("POST", path, json=body)

    async def put(self, path: str, body: Any) -> Any:
        return await self.request("PUT", path, json=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
