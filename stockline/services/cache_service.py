"""
Redis cache for stock lookups.
Provides company-isolated caching with graceful degradation.
"""

import logging
import json
from typing import Any, Callable, Dict, Mapping, Optional
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError

logger = logging.getLogger(__name__)

STOCK_MODULE = 'stock'


class CacheService:
    """
    Redis-based caching service with per-company keys.

    Keys pattern: {prefix}:company:{company_id}:{module}:{key}
    """

    def __init__(self, config: Optional[Mapping[str, Any]] = None, client=None):
        """Initialize cache service; `client` replaces the Redis connection when given."""
        self.client = None
        self._enabled: bool = False
        self._prefix: str = 'stockline'
        self._default_ttl: int = 30

        if client is not None:
            self.client = client
            self._enabled = True
            if config:
                self._prefix = config.get('CACHE_KEY_PREFIX', self._prefix)
                self._default_ttl = config.get('CACHE_STOCK_TTL', self._default_ttl)
        elif config is not None:
            self.init_config(config)

    def init_config(self, config: Mapping[str, Any]) -> None:
        """Initialize Redis client from a config mapping."""
        self._enabled = config.get('CACHE_ENABLED', True)
        self._prefix = config.get('CACHE_KEY_PREFIX', 'stockline')
        self._default_ttl = config.get('CACHE_STOCK_TTL', 30)
        redis_url = config.get('REDIS_URL', 'redis://redis:6379/0')

        if not self._enabled:
            logger.info("[CACHE] Cache is DISABLED via config")
            return

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                socket_keepalive=True,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[CACHE] Redis connection failed: {e}. Cache DISABLED.")
            self._enabled = False
            self.client = None

    def is_available(self) -> bool:
        """Check if cache is available and healthy."""
        if not self._enabled or not self.client:
            return False
        try:
            self.client.ping()
            return True
        except (ConnectionError, RedisError):
            return False

    def _build_key(self, company_id: int, module: str, key: str) -> str:
        return f"{self._prefix}:company:{company_id}:{module}:{key}"

    def _serialize(self, value: Any) -> str:
        """Serialize to JSON keeping Decimal precision."""
        def default_handler(obj: Any) -> Any:
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            elif isinstance(obj, Decimal):
                return {"__decimal__": str(obj)}
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
        return json.dumps(value, default=default_handler)

    def _deserialize(self, value: str) -> Any:
        def object_hook(dct: Dict[str, Any]) -> Any:
            if "__decimal__" in dct:
                return Decimal(dct["__decimal__"])
            return dct
        return json.loads(value, object_hook=object_hook)

    def get(self, company_id: int, module: str, key: str) -> Optional[Any]:
        """Get value from cache."""
        if not self.is_available():
            return None
        try:
            value = self.client.get(self._build_key(company_id, module, key))
            if value is None:
                return None
            return self._deserialize(value)
        except (RedisError, json.JSONDecodeError) as e:
            logger.warning(f"[CACHE] Get error: {e}")
            return None

    def set(self, company_id: int, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with TTL."""
        if not self.is_available():
            return False
        try:
            cache_key = self._build_key(company_id, module, key)
            self.client.setex(cache_key, ttl or self._default_ttl, self._serialize(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set error: {e}")
            return False

    def delete_pattern(self, company_id: int, module: str, pattern: str = "*") -> int:
        """Delete all keys matching a pattern for a company/module."""
        if not self.is_available():
            return 0
        try:
            full_pattern = self._build_key(company_id, module, pattern)
            deleted_count = 0
            cursor = 0
            while True:
                cursor, keys = self.client.scan(cursor, match=full_pattern, count=100)
                if keys:
                    pipeline = self.client.pipeline()
                    for key in keys:
                        pipeline.delete(key)
                    pipeline.execute()
                    deleted_count += len(keys)
                if cursor == 0:
                    break
            if deleted_count > 0:
                logger.info(f"[CACHE] INVALIDATE: {full_pattern} ({deleted_count} keys)")
            return deleted_count
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate error: {e}")
            return 0

    def memoize(self, company_id: int, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Cache-aside pattern: get from cache, or load and cache."""
        cached = self.get(company_id, module, key)
        if cached is not None:
            return cached
        try:
            value = loader_fn()
        except Exception as e:
            logger.exception(f"[CACHE] Loader error: {e}")
            raise
        self.set(company_id, module, key, value, ttl)
        return value

    def invalidate_module(self, company_id: int, module: str) -> int:
        """Invalidate all cache for a module."""
        return self.delete_pattern(company_id, module, "*")

    # =====================================================
    # STOCK
    # =====================================================

    def get_stock_cached(self, company_id: int, product_id: str, loader_fn: Callable[[], Decimal]) -> Decimal:
        """Stock in base-unit pieces for a product, served from cache within the stock TTL."""
        return self.memoize(company_id, STOCK_MODULE, str(product_id), loader_fn, self._default_ttl)

    def invalidate_stock(self, company_id: int) -> int:
        """Drop every cached stock figure for a company (after save/update/delete)."""
        return self.invalidate_module(company_id, STOCK_MODULE)


_cache_service: Optional[CacheService] = None


def init_cache(config: Mapping[str, Any], client=None) -> CacheService:
    """Initialize cache service singleton."""
    global _cache_service
    _cache_service = CacheService(config, client=client)
    return _cache_service


def get_cache() -> CacheService:
    """Get cache service instance."""
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
