"""Broadcast provider capability and its YouTube Data API implementation.

The rest of the backend only talks to :class:`BroadcastProvider`. Every
failure, whether transport, HTTP status or malformed payload, surfaces as a
:class:`BroadcastProviderError` naming the operation and resource involved.
OAuth token refresh is out of scope: the provider is handed an opaque async
callable returning a valid access token.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import YOUTUBE_API_BASE, YOUTUBE_TIMEOUT_SECONDS
from ..time_utils import coerce_utc

logger = logging.getLogger(__name__)

TRANSITION_TARGETS = {"testing", "live", "complete"}


class BroadcastProviderError(Exception):
    """Raised when a call to the broadcast provider fails."""

    def __init__(self, operation: str, message: str, *, resource_id: str | None = None) -> None:
        self.operation = operation
        self.resource_id = resource_id
        self.message = message
        target = f" ({resource_id})" if resource_id else ""
        super().__init__(f"{operation}{target}: {message}")


@dataclass(frozen=True)
class BroadcastData:
    broadcast_id: str
    watch_url: str


@dataclass(frozen=True)
class PhysicalStream:
    external_stream_id: str
    ingest_address: str
    stream_name: str


@dataclass(frozen=True)
class StreamHealth:
    status: str
    health_status: Optional[str] = None


class BroadcastProvider:
    """Interface of the external live-video provider."""

    async def create_broadcast(
        self,
        title: str,
        description: str,
        scheduled_start: datetime,
        privacy: str,
    ) -> BroadcastData:
        raise NotImplementedError

    async def bind_stream(self, broadcast_id: str, external_stream_id: str) -> None:
        raise NotImplementedError

    async def transition_broadcast(self, broadcast_id: str, target_state: str) -> None:
        raise NotImplementedError

    async def delete_broadcast(self, broadcast_id: str) -> None:
        raise NotImplementedError

    async def get_broadcast_status(self, broadcast_id: str) -> str:
        raise NotImplementedError

    async def create_physical_stream(self, title: str) -> PhysicalStream:
        raise NotImplementedError

    async def get_stream_health(self, external_stream_id: str) -> StreamHealth:
        raise NotImplementedError


async def _token_from_env() -> str:
    token = os.getenv("YOUTUBE_ACCESS_TOKEN")
    if not token:
        raise BroadcastProviderError("authorize", "YouTube account is not connected")
    return token


class YouTubeProvider(BroadcastProvider):
    def __init__(
        self,
        token_provider: Callable[[], Awaitable[str]] | None = None,
        *,
        base_url: str = YOUTUBE_API_BASE,
        timeout: float = YOUTUBE_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider or _token_from_env
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        resource_id: str | None = None,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        token = await self._token_provider()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, params=params, json=json, headers=headers
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BroadcastProviderError(
                operation,
                f"HTTP {exc.response.status_code}: {_error_message(exc.response)}",
                resource_id=resource_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise BroadcastProviderError(
                operation, str(exc) or type(exc).__name__, resource_id=resource_id
            ) from exc

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise BroadcastProviderError(
                operation, "invalid JSON in response", resource_id=resource_id
            ) from exc

    async def create_broadcast(self, title, description, scheduled_start, privacy):
        payload = await self._request(
            "create_broadcast",
            "POST",
            "/liveBroadcasts",
            params={"part": "snippet,contentDetails,status"},
            json={
                "snippet": {
                    "title": title,
                    "description": description or "",
                    "scheduledStartTime": coerce_utc(scheduled_start).isoformat(),
                },
                "status": {"privacyStatus": privacy},
                "contentDetails": {"enableAutoStart": False, "enableAutoStop": False},
            },
        )
        broadcast_id = payload.get("id")
        if not broadcast_id:
            raise BroadcastProviderError("create_broadcast", "no broadcast id in response")
        return BroadcastData(
            broadcast_id=broadcast_id,
            watch_url=f"https://youtube.com/watch?v={broadcast_id}",
        )

    async def bind_stream(self, broadcast_id, external_stream_id):
        await self._request(
            "bind_stream",
            "POST",
            "/liveBroadcasts/bind",
            resource_id=broadcast_id,
            params={
                "id": broadcast_id,
                "part": "id,contentDetails",
                "streamId": external_stream_id,
            },
        )

    async def transition_broadcast(self, broadcast_id, target_state):
        if target_state not in TRANSITION_TARGETS:
            raise ValueError(f"unsupported broadcast state: {target_state!r}")
        await self._request(
            "transition_broadcast",
            "POST",
            "/liveBroadcasts/transition",
            resource_id=broadcast_id,
            params={"id": broadcast_id, "broadcastStatus": target_state, "part": "status"},
        )

    async def delete_broadcast(self, broadcast_id):
        await self._request(
            "delete_broadcast",
            "DELETE",
            "/liveBroadcasts",
            resource_id=broadcast_id,
            params={"id": broadcast_id},
        )

    async def get_broadcast_status(self, broadcast_id):
        payload = await self._request(
            "get_broadcast_status",
            "GET",
            "/liveBroadcasts",
            resource_id=broadcast_id,
            params={"id": broadcast_id, "part": "status"},
        )
        item = _first_item(payload, "get_broadcast_status", broadcast_id)
        return (item.get("status") or {}).get("lifeCycleStatus") or "unknown"

    async def create_physical_stream(self, title):
        payload = await self._request(
            "create_physical_stream",
            "POST",
            "/liveStreams",
            params={"part": "snippet,cdn"},
            json={
                "snippet": {"title": title},
                "cdn": {
                    "frameRate": "30fps",
                    "ingestionType": "rtmp",
                    "resolution": "720p",
                },
            },
        )
        ingestion = (payload.get("cdn") or {}).get("ingestionInfo") or {}
        stream_id = payload.get("id")
        if not stream_id or not ingestion.get("ingestionAddress") or not ingestion.get("streamName"):
            raise BroadcastProviderError(
                "create_physical_stream", "response is missing required fields"
            )
        return PhysicalStream(
            external_stream_id=stream_id,
            ingest_address=ingestion["ingestionAddress"],
            stream_name=ingestion["streamName"],
        )

    async def get_stream_health(self, external_stream_id):
        payload = await self._request(
            "get_stream_health",
            "GET",
            "/liveStreams",
            resource_id=external_stream_id,
            params={"id": external_stream_id, "part": "status"},
        )
        item = _first_item(payload, "get_stream_health", external_stream_id)
        status = item.get("status") or {}
        return StreamHealth(
            status=status.get("streamStatus") or "unknown",
            health_status=(status.get("healthStatus") or {}).get("status"),
        )


def _first_item(payload: dict[str, Any], operation: str, resource_id: str) -> dict[str, Any]:
    items = payload.get("items") or []
    if not items:
        raise BroadcastProviderError(operation, "resource not found", resource_id=resource_id)
    return items[0]


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.reason_phrase


_provider: BroadcastProvider | None = None


def get_broadcast_provider() -> BroadcastProvider:
    """FastAPI dependency returning the process-wide provider."""

    global _provider
    if _provider is None:
        _provider = YouTubeProvider()
        logger.debug("Using YouTube broadcast provider at %s", YOUTUBE_API_BASE)
    return _provider
