# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for AdminApiClient over an httpx mock transport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from pagepassport.admin_client import ACCESS_TOKEN_HEADER, AdminApiClient
from pagepassport.config import AdminApiConfig
from pagepassport.errors import RateLimitError, ServiceError, TransientServiceError

CONFIG = AdminApiConfig(shop="demo-store", access_token="shpat_secret", max_retries=2)


def _client(handler, sleep=None):
    return AdminApiClient(CONFIG, transport=httpx.MockTransport(handler), sleep=sleep or AsyncMock())


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_sends_token_and_params(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"themes": [{"id": 1, "role": "main"}]})

        async with _client(handler) as client:
            data = await client.get("/themes.json", params={"role": "main"})

        assert data == {"themes": [{"id": 1, "role": "main"}]}
        request = seen[0]
        assert request.headers[ACCESS_TOKEN_HEADER] == "shpat_secret"
        assert str(request.url) == "https://demo-store.myshopify.com/admin/api/2024-01/themes.json?role=main"

    @pytest.mark.asyncio
    async def test_put_sends_json_body(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"asset": {"key": "sections/x.liquid"}})

        async with _client(handler) as client:
            await client.put("/themes/1/assets.json", {"asset": {"key": "sections/x.liquid", "value": "<div/>"}})
        assert bodies == [{"asset": {"key": "sections/x.liquid", "value": "<div/>"}}]

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_dict(self):
        async with _client(lambda request: httpx.Response(204)) as client:
            assert await client.delete("/themes/1/assets.json") == {}

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        async with _client(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(ServiceError, match="non-JSON"):
                await client.get("/shop.json")


class TestRetries:
    @pytest.mark.asyncio
    async def test_429_waits_retry_after_then_succeeds(self):
        responses = iter([httpx.Response(429, headers={"Retry-After": "3"}), httpx.Response(200, json={"ok": True})])
        sleep = AsyncMock()
        async with _client(lambda request: next(responses), sleep) as client:
            assert await client.post("/products.json", {"product": {}}) == {"ok": True}
        sleep.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_429_without_header_waits_default(self):
        responses = iter([httpx.Response(429), httpx.Response(200, json={})])
        sleep = AsyncMock()
        async with _client(lambda request: next(responses), sleep) as client:
            await client.get("/shop.json")
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_persistent_429_surfaces_rate_limit(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        async with _client(handler) as client:
            with pytest.raises(RateLimitError):
                await client.get("/shop.json")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_503_exhausts_retries(self):
        async with _client(lambda request: httpx.Response(503, text="busy")) as client:
            with pytest.raises(TransientServiceError, match="503"):
                await client.get("/shop.json")

    @pytest.mark.asyncio
    async def test_404_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"errors": "Not Found"})

        async with _client(handler) as client:
            with pytest.raises(ServiceError) as exc_info:
                await client.get("/themes/999.json")
        assert exc_info.value.status == 404
        assert not isinstance(exc_info.value, TransientServiceError)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientServiceError, match="timed out"):
                await client.get("/shop.json")

    @pytest.mark.asyncio
    async def test_connect_error_is_terminal(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(ServiceError, match="failed"):
                await client.get("/shop.json")
        assert len(calls) == 1


class TestAdminApiConfig:
    @pytest.mark.parametrize(
        "shop",
        ["demo-store", "demo-store.myshopify.com", "https://demo-store.myshopify.com/admin", " http://demo-store "],
    )
    def test_base_url_normalised(self, shop):
        config = AdminApiConfig(shop=shop, access_token="t")
        assert config.base_url == "https://demo-store.myshopify.com/admin/api/2024-01"

    def test_repr_hides_token(self):
        assert "shpat_secret" not in repr(CONFIG)
