"""
Realtime booking events over WebSocket.

Each connection subscribes to the party's Redis channel and forwards every
relayed event as JSON. Clients still resync state over REST after a
reconnect; nothing here is authoritative.
"""

import asyncio
import logging
import os

import redis.asyncio as aioredis
from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from ..auth import decode_access_token
from ..rate_limiter import redis_configured
from ..services.notification_service import user_channel

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


def get_async_redis() -> aioredis.Redis:
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        return aioredis.from_url(redis_url, decode_responses=True)
    return aioredis.Redis(
        host=os.getenv("REDIS_HOST", "localhost"),
        port=int(os.getenv("REDIS_PORT", "6379")),
        password=os.getenv("REDIS_PASSWORD"),
        db=int(os.getenv("REDIS_DB", "0")),
        ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
        decode_responses=True,
    )


@router.websocket("/ws/bookings")
async def booking_events(websocket: WebSocket, token: str = ""):
    try:
        party = decode_access_token(token)
    except HTTPException:
        await websocket.close(code=4401)
        return

    if not redis_configured():
        await websocket.close(code=1013)
        return

    await websocket.accept()
    channel = user_channel(party.id)
    client = get_async_redis()
    pubsub = client.pubsub()
    await pubsub.subscribe(channel)
    logger.info(f"🔌 {party.role.capitalize()} {party.id} subscribed to {channel}")

    try:
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message.get("type") == "message":
                await websocket.send_text(message["data"])
            else:
                await asyncio.sleep(0.1)
    except WebSocketDisconnect:
        logger.info(f"🔌 {party.role.capitalize()} {party.id} disconnected from {channel}")
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        await client.aclose()
