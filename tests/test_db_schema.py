import unittest
from quote_cache.db_schema import (
    create_quote_cache_table,
    create_refresh_queue_table,
)
from quote_cache.fetch_from_db import connect_to_db


class TestDBSchema(unittest.TestCase):
    def setUp(self):
        self.conn = connect_to_db()
        if self.conn is None:
            self.skipTest("PostgreSQL not available; skipping schema tests")

    def tearDown(self):
        if self.conn:
            self.conn.close()

    def test_schema_creation_idempotent(self):
        with self.conn.cursor() as cursor:
            create_quote_cache_table(cursor)
            create_refresh_queue_table(cursor)
        self.conn.commit()
        # Run again to ensure idempotency
        with self.conn.cursor() as cursor:
            create_quote_cache_table(cursor)
            create_refresh_queue_table(cursor)
        self.conn.commit()


if __name__ == "__main__":
    unittest.main()
