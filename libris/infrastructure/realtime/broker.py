"""Redis pub/sub fan-out of newly inserted rows.

A message insert is published on ``messages:<conversation_id>``; every
WebSocket subscribed to that conversation receives it as JSON.
"""

import json
import logging
from typing import AsyncIterator
from uuid import UUID

import redis.asyncio as aioredis

from libris.domain.repositories import IMessageBroker

logger = logging.getLogger(__name__)


def conversation_channel(conversation_id: UUID) -> str:
    return f"messages:{conversation_id}"


class RedisMessageBroker(IMessageBroker):

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def publish(self, channel: str, payload: dict) -> None:
        receivers = await self.client.publish(channel, json.dumps(payload, default=str))
        logger.debug("Published to %s (%d receivers)", channel, receivers)

    async def subscribe(self, channel: str) -> AsyncIterator[dict]:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(channel)
        logger.info("Subscribed to %s", channel)
        try:
            async for event in pubsub.listen():
                if event.get("type") != "message":
                    continue
                yield json.loads(event["data"])
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info("Unsubscribed from %s", channel)
