"""Backing stores for the cache and the refresh queue.

Cache backends store one JSON document per ticker:
``get(key) -> dict | None``, ``upsert(key, document)``, ``delete(key)``,
``list_sources() -> set[str]``, ``close()``.

Queue backends store an ordered set of tickers with a numeric score:
``add(key, score)`` (insert or replace), ``remove(key)``,
``peek_max()`` / ``pop_max()`` -> ``(key, score) | None``, ``score(key)``,
``entries()`` (highest first), ``__len__``, ``close()``.

Every operation is atomic per key: a lock for the memory stores, a single SQL
statement for PostgreSQL, a single command for Redis. Driver errors surface as
``CacheUnavailable`` / ``QueueUnavailable``. No backend expires documents on
its own unless a Redis retention is configured explicitly.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Set, Tuple

import psycopg2
import redis
from psycopg2.pool import PoolError

from .config import BackendSettings, get_backend_settings
from .errors import CacheUnavailable, QueueUnavailable
from .fetch_from_db import (
    create_pool,
    delete_quote_cache_row,
    get_quote_cache_row,
    get_refresh_queue_score,
    list_cached_sources,
    list_refresh_queue,
    peek_refresh_queue,
    pop_refresh_queue,
    remove_refresh_queue,
    upsert_quote_cache_row,
    upsert_refresh_queue,
)

logger = logging.getLogger(__name__)

REDIS_CACHE_PREFIX = "quote-cache:quote:"
REDIS_QUEUE_KEY = "quote-cache:refresh-queue"


# --- in-process stores ---

class MemoryCacheBackend:
    """Dict-backed cache store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def upsert(self, key: str, document: Dict[str, Any]) -> None:
        doc = copy.deepcopy(document)
        with self._lock:
            self._docs[key] = doc

    def delete(self, key: str) -> None:
        with self._lock:
            self._docs.pop(key, None)

    def list_sources(self) -> Set[str]:
        with self._lock:
            return {
                (d.get("_metadata") or {}).get("source")
                for d in self._docs.values()
                if (d.get("_metadata") or {}).get("source")
            }

    def close(self) -> None:
        pass


class MemoryQueueBackend:
    """Dict-backed scored set; ties resolve to the earliest inserted key."""

    def __init__(self) -> None:
        self._scores: Dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, key: str, score: float) -> None:
        with self._lock:
            self._scores[key] = float(score)

    def remove(self, key: str) -> None:
        with self._lock:
            self._scores.pop(key, None)

    def _max(self) -> Optional[Tuple[str, float]]:
        if not self._scores:
            return None
        key = max(self._scores, key=self._scores.__getitem__)
        return key, self._scores[key]

    def peek_max(self) -> Optional[Tuple[str, float]]:
        with self._lock:
            return self._max()

    def pop_max(self) -> Optional[Tuple[str, float]]:
        with self._lock:
            top = self._max()
            if top is not None:
                del self._scores[top[0]]
            return top

    def score(self, key: str) -> Optional[float]:
        with self._lock:
            return self._scores.get(key)

    def entries(self) -> List[Tuple[str, float]]:
        with self._lock:
            return sorted(self._scores.items(), key=lambda kv: kv[1], reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._scores)

    def close(self) -> None:
        pass


# --- PostgreSQL ---

class PostgresPool:
    """Lazily created ``ThreadedConnectionPool`` shared by both PG backends.

    Creation is deferred to first use so the service can start (and serve
    direct fetches) while the database is down.
    """

    def __init__(self, maxconn: Optional[int] = None, pool=None) -> None:
        self._maxconn = maxconn
        self._pool = pool
        self._closed = False
        self._lock = threading.Lock()

    def _get(self):
        with self._lock:
            if self._closed:
                raise PoolError("connection pool is closed")
            if self._pool is None:
                self._pool = create_pool(self._maxconn)
            return self._pool

    @contextmanager
    def cursor(self):
        """Yield a cursor in its own transaction; commit on success."""
        pool = self._get()
        conn = pool.getconn()
        try:
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except Exception:
            try:
                conn.rollback()
            except Exception:
                pass
            raise
        finally:
            pool.putconn(conn)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._pool is not None:
                try:
                    self._pool.closeall()
                    logger.info("[db] connection pool closed")
                except psycopg2.Error as e:
                    logger.warning("[db] error closing pool: %s", e)


class PostgresCacheBackend:
    """Cache documents in the ``quote_cache`` table."""

    def __init__(self, pool: Optional[PostgresPool] = None) -> None:
        self._pool = pool or PostgresPool()

    @contextmanager
    def _cursor(self):
        try:
            with self._pool.cursor() as cursor:
                yield cursor
        except psycopg2.Error as e:
            logger.error("[cache] PostgreSQL error: %s", e)
            raise CacheUnavailable(str(e)) from e

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cursor:
            row = get_quote_cache_row(cursor, key)
        if row is None:
            return None
        doc = dict(row["data"] or {})
        doc.setdefault("key", row["symbol"])
        doc.setdefault("fetched_at", row["fetched_at"])
        return doc

    def upsert(self, key: str, document: Dict[str, Any]) -> None:
        with self._cursor() as cursor:
            upsert_quote_cache_row(cursor, key, document)

    def delete(self, key: str) -> None:
        with self._cursor() as cursor:
            delete_quote_cache_row(cursor, key)

    def list_sources(self) -> Set[str]:
        with self._cursor() as cursor:
            return list_cached_sources(cursor)

    def close(self) -> None:
        self._pool.close()


class PostgresQueueBackend:
    """Scored set in the ``refresh_queue`` table."""

    def __init__(self, pool: Optional[PostgresPool] = None) -> None:
        self._pool = pool or PostgresPool()

    @contextmanager
    def _cursor(self):
        try:
            with self._pool.cursor() as cursor:
                yield cursor
        except psycopg2.Error as e:
            logger.error("[queue] PostgreSQL error: %s", e)
            raise QueueUnavailable(str(e)) from e

    def add(self, key: str, score: float) -> None:
        with self._cursor() as cursor:
            upsert_refresh_queue(cursor, key, score)

    def remove(self, key: str) -> None:
        with self._cursor() as cursor:
            remove_refresh_queue(cursor, key)

    def peek_max(self) -> Optional[Tuple[str, float]]:
        with self._cursor() as cursor:
            return peek_refresh_queue(cursor)

    def pop_max(self) -> Optional[Tuple[str, float]]:
        with self._cursor() as cursor:
            return pop_refresh_queue(cursor)

    def score(self, key: str) -> Optional[float]:
        with self._cursor() as cursor:
            return get_refresh_queue_score(cursor, key)

    def entries(self) -> List[Tuple[str, float]]:
        with self._cursor() as cursor:
            return list_refresh_queue(cursor)

    def __len__(self) -> int:
        return len(self.entries())

    def close(self) -> None:
        self._pool.close()


# --- Redis ---

def create_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True)


class RedisCacheBackend:
    """JSON strings under ``quote-cache:quote:<SYMBOL>``.

    ``retention_seconds`` > 0 sets a key expiry purely for storage
    reclamation; staleness never depends on it.
    """

    def __init__(self, client: redis.Redis, retention_seconds: int = 0) -> None:
        self._client = client
        self.retention_seconds = retention_seconds

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._client.get(REDIS_CACHE_PREFIX + key)
        except redis.RedisError as e:
            logger.error("[cache] Redis error reading %s: %s", key, e)
            raise CacheUnavailable(str(e)) from e
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("[cache] corrupt document for %s ignored: %s", key, e)
            return None

    def upsert(self, key: str, document: Dict[str, Any]) -> None:
        try:
            self._client.set(
                REDIS_CACHE_PREFIX + key,
                json.dumps(document),
                ex=self.retention_seconds if self.retention_seconds > 0 else None,
            )
        except redis.RedisError as e:
            logger.error("[cache] Redis error writing %s: %s", key, e)
            raise CacheUnavailable(str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(REDIS_CACHE_PREFIX + key)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e

    def list_sources(self) -> Set[str]:
        sources: Set[str] = set()
        try:
            for name in self._client.scan_iter(match=REDIS_CACHE_PREFIX + "*"):
                doc = self.get(name[len(REDIS_CACHE_PREFIX):])
                source = ((doc or {}).get("_metadata") or {}).get("source")
                if source:
                    sources.add(source)
        except redis.RedisError as e:
            raise CacheUnavailable(str(e)) from e
        return sources

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning("[cache] error closing Redis client: %s", e)


class RedisQueueBackend:
    """Sorted set ``quote-cache:refresh-queue`` scored by cache age."""

    def __init__(self, client: redis.Redis, key: str = REDIS_QUEUE_KEY) -> None:
        self._client = client
        self.key = key

    @contextmanager
    def _guard(self, op: str):
        try:
            yield
        except redis.RedisError as e:
            logger.error("[queue] Redis error during %s: %s", op, e)
            raise QueueUnavailable(str(e)) from e

    def add(self, key: str, score: float) -> None:
        with self._guard("add"):
            self._client.zadd(self.key, {key: score})

    def remove(self, key: str) -> None:
        with self._guard("remove"):
            self._client.zrem(self.key, key)

    def peek_max(self) -> Optional[Tuple[str, float]]:
        with self._guard("peek"):
            top = self._client.zrevrange(self.key, 0, 0, withscores=True)
        return (top[0][0], float(top[0][1])) if top else None

    def pop_max(self) -> Optional[Tuple[str, float]]:
        with self._guard("pop"):
            top = self._client.zpopmax(self.key)
        return (top[0][0], float(top[0][1])) if top else None

    def score(self, key: str) -> Optional[float]:
        with self._guard("score"):
            value = self._client.zscore(self.key, key)
        return float(value) if value is not None else None

    def entries(self) -> List[Tuple[str, float]]:
        with self._guard("entries"):
            rows = self._client.zrevrange(self.key, 0, -1, withscores=True)
        return [(member, float(score)) for member, score in rows]

    def __len__(self) -> int:
        with self._guard("len"):
            return int(self._client.zcard(self.key))

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning("[queue] error closing Redis client: %s", e)


def build_backends(settings: Optional[BackendSettings] = None):
    """Instantiate the configured ``(cache_backend, queue_backend)`` pair.

    PostgreSQL backends share one pool and Redis backends share one client.
    """
    settings = settings or get_backend_settings()
    pg_pool: Optional[PostgresPool] = None
    redis_client: Optional[redis.Redis] = None

    def _pool() -> PostgresPool:
        nonlocal pg_pool
        if pg_pool is None:
            pg_pool = PostgresPool()
        return pg_pool

    def _redis() -> redis.Redis:
        nonlocal redis_client
        if redis_client is None:
            redis_client = create_redis_client(settings.redis_url)
        return redis_client

    if settings.cache_backend == "postgres":
        cache_backend = PostgresCacheBackend(_pool())
    elif settings.cache_backend == "redis":
        cache_backend = RedisCacheBackend(_redis(), settings.cache_retention_seconds)
    else:
        cache_backend = MemoryCacheBackend()

    if settings.queue_backend == "postgres":
        queue_backend = PostgresQueueBackend(_pool())
    elif settings.queue_backend == "redis":
        queue_backend = RedisQueueBackend(_redis())
    else:
        queue_backend = MemoryQueueBackend()

    logger.info("[backends] cache=%s queue=%s", settings.cache_backend, settings.queue_backend)
    return cache_backend, queue_backend
