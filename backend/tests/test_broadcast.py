import asyncio
import json
import logging
import os
import sys

import redis.asyncio as redis
import ulid

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.routers import streams


def test_score_channel_is_per_match():
    assert streams.score_channel("abc") == "match:abc:score"


def test_broadcast_publishes_json_to_score_channel(monkeypatch):
    published = []

    async def fake_publish(channel, message):
        published.append((channel, json.loads(message)))

    monkeypatch.setattr(streams.redis_client, "publish", fake_publish)
    mid = str(ulid.new())

    asyncio.run(streams.broadcast(mid, {"match": {"id": mid}}))

    assert published == [(f"match:{mid}:score", {"match": {"id": mid}})]


def test_broadcast_connection_error_is_logged(monkeypatch, caplog):
    async def fake_publish(channel, message):
        raise redis.ConnectionError("unavailable")
    monkeypatch.setattr(streams.redis_client, "publish", fake_publish)

    mid = str(ulid.new())

    async def call():
        await streams.broadcast(mid, {"foo": "bar"})

    with caplog.at_level(logging.WARNING, logger="app.routers.streams"):
        asyncio.run(call())
    assert "Failed to publish score update" in caplog.text
