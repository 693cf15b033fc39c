"""
Remote sync endpoint interface and its httpx adapter.
"""

from typing import Any, Protocol, runtime_checkable

import httpx

from bizadvisor.shared.exceptions import ConnectivityLostError, SyncError
from bizadvisor.shared.logging import get_logger
from bizadvisor.sync.models import ServerUpdate, UploadResult

logger = get_logger(__name__)


@runtime_checkable
class SyncEndpoint(Protocol):
    """What the sync coordinator needs from the server."""

    async def ping(self) -> bool:
        """True when the server answered a reachability check."""
        ...

    async def upload(self, batch: list[dict[str, Any]]) -> UploadResult:
        """Upload queued items; the server deduplicates on item id.

        Items are applied in batch order. Once an item of a session is rejected,
        the rest of that session's items in the batch are rejected too.

        Raises:
            ConnectivityLostError: The network went away.
            SyncError: The server failed the whole batch.
        """
        ...

    async def download_updates(self, user_id: str, since_cursor: int) -> list[ServerUpdate]:
        ...


class HttpSyncEndpoint:
    """Sync endpoint over HTTP/JSON.

    Routes: ``GET /health``, ``POST /sync/upload``, ``GET /sync/updates``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        device_id: str = "device-local",
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._device_id = device_id
        headers = {"X-Device-Id": device_id}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def ping(self) -> bool:
        try:
            r = await self._client.get("/health")
        except httpx.HTTPError:
            return False
        return r.is_success

    async def upload(self, batch: list[dict[str, Any]]) -> UploadResult:
        item_ids = [str(item.get("id")) for item in batch]
        data = await self._request(
            "POST",
            "/sync/upload",
            item_ids=item_ids,
            json={"device_id": self._device_id, "items": batch},
        )
        result = UploadResult.from_payload(data)
        logger.debug(
            "Batch uploaded",
            extra={
                "item_count": len(batch),
                "accepted": len(result.accepted_ids),
                "rejected": len(result.rejected_ids),
            },
        )
        return result

    async def download_updates(self, user_id: str, since_cursor: int) -> list[ServerUpdate]:
        data = await self._request(
            "GET",
            "/sync/updates",
            params={"user_id": user_id, "since": since_cursor},
        )
        try:
            return [ServerUpdate.from_payload(u) for u in data.get("updates") or []]
        except (KeyError, TypeError, ValueError) as exc:
            raise SyncError(f"Malformed updates payload: {exc}") from exc

    async def _request(
        self,
        method: str,
        path: str,
        item_ids: list[str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            r = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise ConnectivityLostError(
                f"Sync endpoint unreachable: {exc.__class__.__name__}",
                item_ids=item_ids,
            ) from exc
        except httpx.HTTPError as exc:
            raise SyncError(f"Sync request failed: {exc}", item_ids=item_ids) from exc

        if not r.is_success:
            raise SyncError(
                f"Sync endpoint returned {r.status_code}",
                item_ids=item_ids,
                status_code=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as exc:
            raise SyncError("Sync endpoint returned invalid JSON", item_ids=item_ids) from exc
        if not isinstance(data, dict):
            raise SyncError("Sync endpoint returned an unexpected payload", item_ids=item_ids)
        return data
