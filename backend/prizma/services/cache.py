"""
Categorization Cache

Redis store of AI categorizations keyed by normalized product name, so a
product is sent to the AI provider once per TTL no matter which retailer
printed it or how. Only answers given without user corrections in the
prompt are cached; those are the same for every user.

When Redis is unreachable the cache reports itself disconnected and the
categorizer runs uncached.
"""
import hashlib
import json
import logging
from datetime import timedelta
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from prizma.config import get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "prizma:categorization:"
DEFAULT_TTL = timedelta(days=7)

# Fields a cached entry must carry to be trusted
_REQUIRED_FIELDS = {"category", "confidence"}


class CategoryCache:
    """Redis-backed cache of AI categorizations with fallback to no-cache."""

    def __init__(self, client: Optional[redis.Redis] = None, ttl: timedelta = DEFAULT_TTL):
        self._client = client
        self._connected = client is not None
        self.ttl = ttl

    async def connect(self, url: Optional[str] = None):
        if self._connected:
            return

        try:
            client = redis.from_url(url or get_settings().redis_url, encoding="utf-8", decode_responses=True)
            await client.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis not available, categorization cache disabled: {e}")
            return

        self._client = client
        self._connected = True
        logger.info("Categorization cache connected")

    async def disconnect(self):
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        self._connected = False

    @staticmethod
    def key_for(normalized_name: str) -> str:
        digest = hashlib.sha1(normalized_name.encode("utf-8")).hexdigest()[:16]
        return f"{KEY_PREFIX}{digest}"

    async def get_category(self, normalized_name: str) -> Optional[dict]:
        """Cached categorization for a product, or None on a miss or a Redis error."""
        if self._client is None:
            return None

        try:
            raw = await self._client.get(self.key_for(normalized_name))
        except RedisError as e:
            logger.error(f"Categorization cache read failed: {e}")
            return None
        if not raw:
            return None

        try:
            entry = json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping unreadable cache entry for '{normalized_name}'")
            return None
        if not isinstance(entry, dict) or not _REQUIRED_FIELDS <= entry.keys():
            return None
        return entry

    async def set_category(self, normalized_name: str, data: dict):
        if self._client is None:
            return

        try:
            await self._client.setex(
                self.key_for(normalized_name),
                int(self.ttl.total_seconds()),
                json.dumps(data, ensure_ascii=False, default=str),
            )
        except RedisError as e:
            logger.error(f"Categorization cache write failed: {e}")

    @property
    def is_connected(self) -> bool:
        return self._connected


# Shared instance, connected in the app lifespan
cache = CategoryCache()
