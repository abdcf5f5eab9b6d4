import json
from datetime import datetime, timezone

import httpx
import pytest

from app.services.youtube import (
    BroadcastProviderError,
    StreamHealth,
    YouTubeProvider,
)


async def _token():
    return "test-token"


def _provider(handler):
    return YouTubeProvider(
        _token,
        base_url="https://yt.test/v3",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_create_broadcast_sends_snippet_and_privacy():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "b123"})

    broadcast = await _provider(handler).create_broadcast(
        "Spring Classic, Falcons vs Hawks, Feb 7, 2026",
        "Court: 3",
        datetime(2026, 2, 7, 18, 0, tzinfo=timezone.utc),
        "unlisted",
    )

    assert broadcast.broadcast_id == "b123"
    assert broadcast.watch_url == "https://youtube.com/watch?v=b123"
    assert seen["method"] == "POST"
    assert seen["path"] == "/v3/liveBroadcasts"
    assert seen["auth"] == "Bearer test-token"
    assert seen["body"]["status"] == {"privacyStatus": "unlisted"}
    assert seen["body"]["snippet"]["scheduledStartTime"] == "2026-02-07T18:00:00+00:00"


@pytest.mark.anyio
async def test_create_physical_stream_reads_ingestion_info():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "id": "s1",
                "cdn": {
                    "ingestionInfo": {
                        "ingestionAddress": "rtmp://a.rtmp.youtube.com/live2",
                        "streamName": "abcd-efgh",
                    }
                },
            },
        )

    stream = await _provider(handler).create_physical_stream("Clubstream Pool #1-1")
    assert stream.external_stream_id == "s1"
    assert stream.stream_name == "abcd-efgh"


@pytest.mark.anyio
async def test_create_physical_stream_requires_ingestion_fields():
    def handler(request):
        return httpx.Response(200, json={"id": "s1", "cdn": {}})

    with pytest.raises(BroadcastProviderError) as exc:
        await _provider(handler).create_physical_stream("x")
    assert exc.value.operation == "create_physical_stream"


@pytest.mark.anyio
async def test_stream_health_and_broadcast_status():
    def handler(request):
        if request.url.path.endswith("/liveStreams"):
            return httpx.Response(
                200,
                json={"items": [{"status": {"streamStatus": "active", "healthStatus": {"status": "good"}}}]},
            )
        return httpx.Response(200, json={"items": [{"status": {"lifeCycleStatus": "testing"}}]})

    provider = _provider(handler)
    assert await provider.get_stream_health("s1") == StreamHealth("active", "good")
    assert await provider.get_broadcast_status("b1") == "testing"


@pytest.mark.anyio
async def test_missing_items_raise_not_found():
    def handler(request):
        return httpx.Response(200, json={"items": []})

    with pytest.raises(BroadcastProviderError) as exc:
        await _provider(handler).get_stream_health("s1")
    assert exc.value.resource_id == "s1"
    assert exc.value.message == "resource not found"


@pytest.mark.anyio
async def test_http_errors_carry_the_api_message():
    def handler(request):
        return httpx.Response(
            403, json={"error": {"code": 403, "message": "Invalid transition"}}
        )

    with pytest.raises(BroadcastProviderError) as exc:
        await _provider(handler).transition_broadcast("b1", "live")
    assert exc.value.operation == "transition_broadcast"
    assert exc.value.message == "HTTP 403: Invalid transition"
    assert str(exc.value) == "transition_broadcast (b1): HTTP 403: Invalid transition"


@pytest.mark.anyio
async def test_transport_errors_are_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BroadcastProviderError) as exc:
        await _provider(handler).delete_broadcast("b1")
    assert "connection refused" in exc.value.message


@pytest.mark.anyio
async def test_delete_accepts_empty_response():
    def handler(request):
        assert request.method == "DELETE"
        assert request.url.params["id"] == "b1"
        return httpx.Response(204)

    await _provider(handler).delete_broadcast("b1")


@pytest.mark.anyio
async def test_unsupported_transition_target():
    provider = _provider(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ValueError):
        await provider.transition_broadcast("b1", "paused")


@pytest.mark.anyio
async def test_missing_token_is_a_provider_error(monkeypatch):
    monkeypatch.delenv("YOUTUBE_ACCESS_TOKEN", raising=False)
    provider = YouTubeProvider(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    )
    with pytest.raises(BroadcastProviderError) as exc:
        await provider.delete_broadcast("b1")
    assert exc.value.operation == "authorize"
