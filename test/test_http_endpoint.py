"""Tests for the HTTP sync endpoint adapter."""

import json

import httpx
import pytest

from bizadvisor.shared.exceptions import ConnectivityLostError, SyncError
from bizadvisor.sync.endpoint import HttpSyncEndpoint, SyncEndpoint
from bizadvisor.sync.mock_endpoint import MockSyncEndpoint

from conftest import START


def _endpoint(handler) -> HttpSyncEndpoint:
    return HttpSyncEndpoint(
        "http://sync.test/",
        api_key="token-1",
        device_id="phone-7",
        transport=httpx.MockTransport(handler),
    )


def test_both_endpoints_satisfy_protocol() -> None:
    assert isinstance(MockSyncEndpoint(), SyncEndpoint)
    assert isinstance(_endpoint(lambda request: httpx.Response(200)), SyncEndpoint)


class TestHttpSyncEndpoint:
    @pytest.mark.asyncio
    async def test_upload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "accepted_ids": ["a"],
                    "rejected_ids": ["b"],
                    "session_suffixes": {"loc-1": "srv9"},
                    "errors": {"b": "bad payload"},
                },
            )

        endpoint = _endpoint(handler)
        result = await endpoint.upload([{"id": "a"}, {"id": "b"}])
        await endpoint.close()

        assert result.accepted_ids == ["a"]
        assert result.rejected_ids == ["b"]
        assert result.session_suffixes == {"loc-1": "srv9"}
        assert result.errors == {"b": "bad payload"}

        request = seen[0]
        assert request.url.path == "/sync/upload"
        assert request.headers["authorization"] == "Bearer token-1"
        assert request.headers["x-device-id"] == "phone-7"
        assert json.loads(request.content)["device_id"] == "phone-7"

    @pytest.mark.asyncio
    async def test_server_error_is_sync_error(self) -> None:
        endpoint = _endpoint(lambda request: httpx.Response(503))

        with pytest.raises(SyncError) as exc_info:
            await endpoint.upload([{"id": "a"}])

        assert exc_info.value.status_code == 503
        assert exc_info.value.item_ids == ["a"]
        assert not isinstance(exc_info.value, ConnectivityLostError)

    @pytest.mark.asyncio
    async def test_transport_failure_is_connectivity_loss(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host", request=request)

        endpoint = _endpoint(handler)

        with pytest.raises(ConnectivityLostError):
            await endpoint.upload([{"id": "a"}])
        assert await endpoint.ping() is False

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        endpoint = _endpoint(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(SyncError):
            await endpoint.upload([{"id": "a"}])

    @pytest.mark.asyncio
    async def test_download_updates(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["user_id"] == "user-1"
            assert request.url.params["since"] == "4"
            return httpx.Response(
                200,
                json={
                    "updates": [
                        {
                            "cursor": 5,
                            "user_id": "user-1",
                            "produced_at": START.isoformat(),
                            "snapshot": {"business_type": {"value": "tea"}},
                            "session_id": "loc-1.srv1",
                        }
                    ]
                },
            )

        updates = await _endpoint(handler).download_updates("user-1", 4)

        assert len(updates) == 1
        assert updates[0].cursor == 5
        assert updates[0].produced_at == START
        assert updates[0].session_id == "loc-1.srv1"

    @pytest.mark.asyncio
    async def test_malformed_update(self) -> None:
        endpoint = _endpoint(lambda request: httpx.Response(200, json={"updates": [{"cursor": 1}]}))

        with pytest.raises(SyncError):
            await endpoint.download_updates("user-1", 0)

    @pytest.mark.asyncio
    async def test_ping(self) -> None:
        assert await _endpoint(lambda request: httpx.Response(200)).ping() is True
        assert await _endpoint(lambda request: httpx.Response(500)).ping() is False
