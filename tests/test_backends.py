import fnmatch
import json
import unittest
from unittest.mock import patch

import psycopg2
import redis

from quote_cache.backends import (
    REDIS_CACHE_PREFIX,
    REDIS_QUEUE_KEY,
    MemoryQueueBackend,
    PostgresCacheBackend,
    PostgresPool,
    PostgresQueueBackend,
    RedisCacheBackend,
    RedisQueueBackend,
    build_backends,
)
from quote_cache.config import BackendSettings
from quote_cache.errors import CacheUnavailable, QueueUnavailable


class FakeRedis:
    """In-memory stand-in for the subset of redis.Redis used by the backends."""

    def __init__(self):
        self.strings = {}
        self.expiry = {}
        self.zsets = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def get(self, name):
        self._check()
        return self.strings.get(name)

    def set(self, name, value, ex=None):
        self._check()
        self.strings[name] = value
        if ex:
            self.expiry[name] = ex
        return True

    def delete(self, name):
        self._check()
        self.strings.pop(name, None)

    def scan_iter(self, match=None):
        self._check()
        names = list(self.strings) + list(self.zsets)
        return iter([n for n in names if match is None or fnmatch.fnmatch(n, match)])

    def zadd(self, key, mapping):
        self._check()
        self.zsets.setdefault(key, {}).update(mapping)

    def zrem(self, key, member):
        self._check()
        self.zsets.get(key, {}).pop(member, None)

    def zrevrange(self, key, start, end, withscores=False):
        self._check()
        items = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        items = items[start:] if end == -1 else items[start:end + 1]
        return items if withscores else [m for m, _ in items]

    def zpopmax(self, key):
        self._check()
        top = self.zrevrange(key, 0, 0, withscores=True)
        if top:
            del self.zsets[key][top[0][0]]
        return top

    def zscore(self, key, member):
        self._check()
        return self.zsets.get(key, {}).get(member)

    def zcard(self, key):
        self._check()
        return len(self.zsets.get(key, {}))

    def close(self):
        pass


class TestMemoryQueueBackend(unittest.TestCase):
    def test_peek_pop_and_entries(self):
        q = MemoryQueueBackend()
        q.add("A", 1)
        q.add("B", 3)
        q.add("C", 2)
        self.assertEqual(q.peek_max(), ("B", 3.0))
        self.assertEqual(q.entries(), [("B", 3.0), ("C", 2.0), ("A", 1.0)])
        self.assertEqual(q.pop_max(), ("B", 3.0))
        self.assertEqual(len(q), 2)


class TestRedisBackends(unittest.TestCase):
    def setUp(self):
        self.client = FakeRedis()

    def test_cache_round_trip_without_expiry(self):
        cache = RedisCacheBackend(self.client)
        doc = {"key": "AAPL", "payload": {"price": 1.0}, "_metadata": {"source": "finnhub"}}
        cache.upsert("AAPL", doc)
        self.assertEqual(cache.get("AAPL"), doc)
        self.assertIn(REDIS_CACHE_PREFIX + "AAPL", self.client.strings)
        self.assertEqual(self.client.expiry, {})
        cache.delete("AAPL")
        self.assertIsNone(cache.get("AAPL"))

    def test_retention_sets_key_expiry(self):
        cache = RedisCacheBackend(self.client, retention_seconds=86400)
        cache.upsert("AAPL", {"key": "AAPL"})
        self.assertEqual(self.client.expiry[REDIS_CACHE_PREFIX + "AAPL"], 86400)

    def test_corrupt_document_ignored(self):
        self.client.strings[REDIS_CACHE_PREFIX + "AAPL"] = "{not json"
        self.assertIsNone(RedisCacheBackend(self.client).get("AAPL"))

    def test_list_sources_skips_queue_key(self):
        cache = RedisCacheBackend(self.client)
        queue = RedisQueueBackend(self.client)
        cache.upsert("AAPL", {"_metadata": {"source": "finnhub"}})
        cache.upsert("FXAIX", {"_metadata": {"source": "alpha-vantage"}})
        queue.add("MSFT", 10)
        self.assertEqual(cache.list_sources(), {"finnhub", "alpha-vantage"})

    def test_queue_operations(self):
        queue = RedisQueueBackend(self.client)
        queue.add("AAPL", 400)
        queue.add("MSFT", 10000)
        queue.add("AAPL", 500)
        self.assertEqual(len(queue), 2)
        self.assertEqual(queue.score("AAPL"), 500.0)
        self.assertEqual(queue.peek_max(), ("MSFT", 10000.0))
        self.assertEqual(queue.entries(), [("MSFT", 10000.0), ("AAPL", 500.0)])
        self.assertEqual(queue.pop_max(), ("MSFT", 10000.0))
        queue.remove("AAPL")
        queue.remove("AAPL")
        self.assertIsNone(queue.peek_max())
        self.assertIsNone(queue.pop_max())
        self.assertIn(REDIS_QUEUE_KEY, self.client.zsets)

    def test_redis_errors_translated(self):
        self.client.fail = True
        with self.assertRaises(CacheUnavailable):
            RedisCacheBackend(self.client).get("AAPL")
        with self.assertRaises(CacheUnavailable):
            RedisCacheBackend(self.client).upsert("AAPL", {})
        with self.assertRaises(QueueUnavailable):
            RedisQueueBackend(self.client).add("AAPL", 1)
        with self.assertRaises(QueueUnavailable):
            RedisQueueBackend(self.client).peek_max()


class DummyCursor:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class DummyConn:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return DummyCursor()

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class DummyPool:
    def __init__(self):
        self.conn = DummyConn()
        self.put_back = 0
        self.closed = 0

    def getconn(self):
        return self.conn

    def putconn(self, conn):
        self.put_back += 1

    def closeall(self):
        self.closed += 1


class TestPostgresBackends(unittest.TestCase):
    def setUp(self):
        self.raw_pool = DummyPool()
        self.pool = PostgresPool(pool=self.raw_pool)

    @patch("quote_cache.backends.get_quote_cache_row")
    def test_cache_get_commits_and_returns_document(self, mock_get_row):
        mock_get_row.return_value = {
            "symbol": "AAPL",
            "data": {"payload": {"price": 1.0}, "_metadata": {"source": "finnhub"}},
            "source": "finnhub",
            "fetched_at": 1700000000.0,
        }
        doc = PostgresCacheBackend(self.pool).get("AAPL")
        self.assertEqual(doc["key"], "AAPL")
        self.assertEqual(doc["fetched_at"], 1700000000.0)
        self.assertEqual(self.raw_pool.conn.commits, 1)
        self.assertEqual(self.raw_pool.put_back, 1)

    @patch("quote_cache.backends.upsert_quote_cache_row", side_effect=psycopg2.OperationalError("server closed the connection"))
    def test_cache_error_rolls_back_and_translates(self, _upsert):
        with self.assertRaises(CacheUnavailable):
            PostgresCacheBackend(self.pool).upsert("AAPL", {"fetched_at": 1.0})
        self.assertEqual(self.raw_pool.conn.rollbacks, 1)
        self.assertEqual(self.raw_pool.put_back, 1)

    @patch("quote_cache.backends.pop_refresh_queue", return_value=("MSFT", 10000.0))
    @patch("quote_cache.backends.upsert_refresh_queue")
    def test_queue_delegates_to_row_helpers(self, mock_upsert, _pop):
        queue = PostgresQueueBackend(self.pool)
        queue.add("MSFT", 10000.0)
        mock_upsert.assert_called_once()
        self.assertEqual(mock_upsert.call_args[0][1:], ("MSFT", 10000.0))
        self.assertEqual(queue.pop_max(), ("MSFT", 10000.0))

    @patch("quote_cache.backends.peek_refresh_queue", side_effect=psycopg2.InterfaceError("connection already closed"))
    def test_queue_error_translates(self, _peek):
        with self.assertRaises(QueueUnavailable):
            PostgresQueueBackend(self.pool).peek_max()

    def test_shared_pool_closed_once(self):
        cache = PostgresCacheBackend(self.pool)
        queue = PostgresQueueBackend(self.pool)
        cache.close()
        queue.close()
        self.assertEqual(self.raw_pool.closed, 1)

    @patch("quote_cache.backends.create_pool", side_effect=psycopg2.OperationalError("could not connect"))
    def test_unreachable_database_raises_store_error_lazily(self, _create):
        cache = PostgresCacheBackend(PostgresPool())
        with self.assertRaises(CacheUnavailable):
            cache.get("AAPL")


class TestBuildBackends(unittest.TestCase):
    def test_memory_default(self):
        cache, queue = build_backends(BackendSettings("memory", "memory", "redis://localhost:6379/0", 0))
        self.assertEqual(type(cache).__name__, "MemoryCacheBackend")
        self.assertEqual(type(queue).__name__, "MemoryQueueBackend")

    @patch("quote_cache.backends.create_redis_client")
    def test_redis_shares_one_client(self, mock_client):
        mock_client.return_value = FakeRedis()
        cache, queue = build_backends(BackendSettings("redis", "redis", "redis://r:6379/1", 60))
        mock_client.assert_called_once_with("redis://r:6379/1")
        self.assertIsInstance(cache, RedisCacheBackend)
        self.assertIsInstance(queue, RedisQueueBackend)
        self.assertEqual(cache.retention_seconds, 60)

    def test_postgres_cache_with_memory_queue(self):
        cache, queue = build_backends(BackendSettings("postgres", "memory", "redis://localhost:6379/0", 0))
        self.assertIsInstance(cache, PostgresCacheBackend)
        self.assertIsInstance(queue, MemoryQueueBackend)


class TestRedisDocumentEncoding(unittest.TestCase):
    def test_documents_stored_as_json_strings(self):
        client = FakeRedis()
        RedisCacheBackend(client).upsert("AAPL", {"price": 1.5})
        self.assertEqual(json.loads(client.strings[REDIS_CACHE_PREFIX + "AAPL"]), {"price": 1.5})


if __name__ == "__main__":
    unittest.main()
