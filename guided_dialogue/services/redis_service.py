# guided_dialogue/services/redis_service.py
"""
Redis access for session storage.

Connection is lazy: nothing touches the network until initialize() (or
ensure_initialized()) runs. Without a configured URL, or when the first ping
fails, the service stays usable but disconnected: reads return defaults and
check_and_set raises, since a silently skipped write would lose sessions.
"""
import os
import json
import redis.asyncio as redis
from redis.exceptions import WatchError
from typing import Optional, Dict, Any, List, Callable, Tuple
from dataclasses import dataclass
import logging

from guided_dialogue.core.exceptions import RedisServiceError, ServiceError, redis_error

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]


@dataclass
class RedisConfig:
    url: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 5.0
    max_connections: int = 10
    retry_on_timeout: bool = True
    health_check_interval: int = 30


def _resolve_url() -> Tuple[Optional[str], Optional[str]]:
    """Redis URL and where it came from: settings first, then legacy env vars"""
    from guided_dialogue.core.config import settings

    if settings.REDIS_URL:
        return settings.REDIS_URL, "settings"

    for var in RedisService.URL_ENV_VARS:
        url = os.environ.get(var)
        if url:
            return url, var

    return None, None


class RedisService:
    """Async Redis wrapper with JSON values and optimistic check-and-set"""

    URL_ENV_VARS = ("REDIS_URL", "REDIS_DIRECT_URI", "REDIS_DIRECT_URL")

    def __init__(self, config: Optional[RedisConfig] = None):
        self._url_source = "config"
        if config is None:
            url, self._url_source = _resolve_url()
            config = RedisConfig(url=url)
            if url:
                logger.info(f"Using Redis URL from {self._url_source}")

        self.config = config
        self._client: Optional[redis.Redis] = None
        self._initialized = False

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def initialize(self) -> None:
        """
        Connect once; repeated calls are no-ops.

        Raises:
            ServiceError: If the client cannot even be constructed
        """
        if self._initialized:
            return

        if not self.config.url:
            logger.warning("No Redis URL configured - Redis storage disabled. Set REDIS_URL to enable it.")
            self._initialized = True
            return

        try:
            client = redis.from_url(
                self.config.url,
                decode_responses=self.config.decode_responses,
                socket_timeout=self.config.socket_timeout,
                max_connections=self.config.max_connections,
                retry_on_timeout=self.config.retry_on_timeout,
                health_check_interval=self.config.health_check_interval
            )
        except ValueError as e:
            raise ServiceError(
                f"Invalid Redis configuration: {e}",
                service_name="Redis",
                operation="initialize"
            ) from e

        try:
            await client.ping()
            self._client = client
            logger.info("Redis connection successful")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            logger.warning("Redis storage disabled due to connection error")

        self._initialized = True

    async def ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def is_connected(self) -> bool:
        return self._client is not None

    async def shutdown(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis client: {e}")
        self._client = None
        self._initialized = False

    # ===========================================
    # COMMANDS
    # ===========================================

    @staticmethod
    def _decode(raw: Any) -> Any:
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                return raw
        return raw

    @staticmethod
    def _encode(value: Any) -> Any:
        return value if isinstance(value, (str, bytes)) else json.dumps(value)

    async def get(self, key: str, default: Any = None) -> Any:
        """JSON-decoded value of key, or default when missing or unreachable"""
        if self._client is None:
            return default

        try:
            raw = await self._client.get(key)
        except Exception as e:
            logger.warning(f"Redis get failed for key '{key}': {e}")
            return default

        return default if raw is None else self._decode(raw)

    async def delete(self, *keys: str) -> int:
        if self._client is None or not keys:
            return 0

        try:
            return await self._client.delete(*keys)
        except Exception as e:
            logger.error(f"Redis delete failed: {e}")
            return 0

    async def keys(self, pattern: str = "*") -> List[str]:
        if self._client is None:
            return []

        try:
            found = await self._client.keys(pattern)
        except Exception as e:
            logger.warning(f"Redis keys failed: {e}")
            return []

        return [k.decode() if isinstance(k, bytes) else k for k in found]

    async def check_and_set(
        self,
        key: str,
        value: Any,
        predicate: Predicate,
        ttl: Optional[int] = None
    ) -> Tuple[bool, Any]:
        """
        Write value only if predicate(current value) holds and nobody writes
        the key in between.

        Args:
            key: Key to write
            value: Value to store (JSON-encoded unless str/bytes)
            predicate: Receives the current decoded value (None if missing)
            ttl: Optional expiry in seconds

        Returns:
            Tuple of (applied, current value seen before the write)

        Raises:
            RedisServiceError: If Redis is unavailable or the command fails
        """
        if self._client is None:
            raise redis_error("Redis is not connected", key=key, operation="check_and_set")

        payload = self._encode(value)

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = self._decode(await pipe.get(key))

                if not predicate(current):
                    await pipe.unwatch()
                    return False, current

                pipe.multi()
                if ttl:
                    pipe.setex(key, ttl, payload)
                else:
                    pipe.set(key, payload)
                await pipe.execute()
                return True, current

        except WatchError:
            logger.info(f"Concurrent write detected on key '{key}'")
            return False, None
        except Exception as e:
            raise RedisServiceError(
                f"Redis check_and_set failed: {e}",
                key=key,
                operation="check_and_set"
            ) from e

    async def health_check(self) -> Dict[str, Any]:
        if not self.config.url:
            return {"healthy": True, "status": "disabled", "details": {"message": "Redis not configured"}}

        if self._client is None:
            return {
                "healthy": False,
                "status": "not_connected",
                "details": {"url_source": self._url_source}
            }

        try:
            await self._client.ping()
            info = await self._client.info()
        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {"url_source": self._url_source, "error": str(e)}
            }

        return {
            "healthy": True,
            "status": "connected",
            "details": {
                "url_source": self._url_source,
                "redis_version": info.get("redis_version", "unknown"),
                "connected_clients": info.get("connected_clients", 0)
            }
        }


async def create_redis_service(url: Optional[str] = None, **kwargs) -> RedisService:
    """
    Create and initialize a Redis service instance.

    Args:
        url: Redis URL (uses settings/env vars if not provided)
        **kwargs: Additional RedisConfig fields
    """
    service = RedisService(RedisConfig(url=url, **kwargs) if url else None)
    await service.initialize()
    return service
