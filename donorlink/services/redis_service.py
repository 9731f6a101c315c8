"""
Redis Service for the location change feed.

Every location submission is published on a pub/sub channel; the location
watcher tails that channel. Pub/sub has no history, so a subscriber only sees
inserts published while it is connected.
"""
import json
import logging
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis

from ..core.config import settings

logger = logging.getLogger(__name__)

LOCATION_INSERTS_CHANNEL = "location_inserts"


class RedisService:
    """
    Publishes and tails location insert events.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.redis_url
        self.redis_client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        try:
            self.redis_client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            await self.redis_client.ping()
            logger.info(f"✅ Connected to Redis: {self.url}")
        except Exception as e:
            logger.error(f"❌ Error connecting to Redis: {e}")
            raise

    async def disconnect(self):
        """Disconnect from Redis."""
        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None
            logger.info("Redis disconnected")

    async def publish_location_insert(self, payload: Dict) -> bool:
        """
        Publish a location insert on the change feed.

        Args:
            payload: Location document as produced by `Location.to_feed_payload`

        Returns:
            bool: True if the event was handed to Redis
        """
        if self.redis_client is None:
            logger.warning("Redis not connected, location insert not published")
            return False
        try:
            await self.redis_client.publish(LOCATION_INSERTS_CHANNEL, json.dumps(payload, default=str))
            logger.debug(f"📢 Published location insert: {payload.get('id')}")
            return True

        except Exception as e:
            logger.error(f"❌ Error publishing location insert: {e}")
            return False

    async def listen_location_inserts(self) -> AsyncIterator[Dict]:
        """
        Yield location insert payloads as they are published.

        Connection errors propagate to the caller, which decides whether to
        resubscribe.
        """
        if self.redis_client is None:
            await self.connect()

        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(LOCATION_INSERTS_CHANNEL)
        logger.info(f"🔍 Subscribed to {LOCATION_INSERTS_CHANNEL}")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except (TypeError, ValueError) as e:
                    logger.error(f"❌ Malformed location event skipped: {e}")
        finally:
            await pubsub.unsubscribe(LOCATION_INSERTS_CHANNEL)
            await pubsub.close()


# Global Redis service instance
redis_service = RedisService()
