"""
Cache Module
"""
from .service import CacheManager, CachingService
from .store import (
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    close_redis,
    get_redis,
    init_redis,
)

__all__ = [
    "CacheManager",
    "CachingService",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "close_redis",
    "get_redis",
    "init_redis",
]
