import asyncio
import json
import logging
import os
from contextlib import suppress

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import redis.asyncio as redis


logger = logging.getLogger(__name__)
router = APIRouter()


REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
redis_client = redis.from_url(REDIS_URL, decode_responses=True)


def score_channel(mid: str) -> str:
    return f"match:{mid}:score"


async def broadcast(mid: str, message: dict) -> None:
    """Publish a score snapshot for a match to all subscribers.

    Delivery is best effort: the score is already committed, so a Redis
    outage only delays overlays until their next poll.
    """
    try:
        await redis_client.publish(score_channel(mid), json.dumps(message))
    except redis.RedisError:
        logger.warning("Failed to publish score update for match %s", mid, exc_info=True)


@router.websocket("/matches/{mid}/score/stream")
async def score_stream(ws: WebSocket, mid: str) -> None:
    """Stream score snapshots for a match via a Redis pub/sub channel."""
    await ws.accept()
    channel = score_channel(mid)
    try:
        async with redis_client.pubsub() as pubsub:
            await pubsub.subscribe(channel)

            async def sender() -> None:
                try:
                    async for msg in pubsub.listen():
                        if msg.get("type") == "message":
                            await ws.send_json(json.loads(msg["data"]))
                except redis.ConnectionError:
                    await ws.close()

            send_task = asyncio.create_task(sender())
            try:
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                send_task.cancel()
                with suppress(asyncio.CancelledError):
                    await send_task
                await pubsub.unsubscribe(channel)
    except redis.ConnectionError:
        await ws.close()
