"""Database schema creation helpers.

This module contains idempotent functions that ensure the quote cache and
refresh queue tables exist. These functions accept a live psycopg2 cursor and
perform DDL statements. They are safe to call repeatedly and on every startup.
"""

import logging
import psycopg2

logger = logging.getLogger(__name__)


def create_quote_cache_table(cursor) -> None:
    """Ensure the ``quote_cache`` table exists.

    One row per ticker; ``data`` holds the whole cache document (payload plus
    ``_metadata``). ``source`` and ``fetched_at`` are denormalized for queries.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active connection/transaction.
    """
    query = """
    CREATE TABLE IF NOT EXISTS quote_cache (
        symbol VARCHAR(50) PRIMARY KEY,
        data JSONB NOT NULL,
        source VARCHAR(50),
        fetched_at TIMESTAMPTZ NOT NULL
    );
    """
    try:
        cursor.execute(query)
        logger.info("[db-schema] ensured table quote_cache")
    except psycopg2.Error as e:
        logger.error("[db-schema] error creating quote_cache table: %s", e)


def create_refresh_queue_table(cursor) -> None:
    """Ensure the ``refresh_queue`` table and its score index exist.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active connection/transaction.
    """
    try:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS refresh_queue (
                symbol VARCHAR(50) PRIMARY KEY,
                score DOUBLE PRECISION NOT NULL,
                queued_at TIMESTAMPTZ DEFAULT NOW()
            );
            """
        )
    except psycopg2.Error as e:
        logger.error("[db-schema] error creating refresh_queue table: %s", e)

    try:
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS refresh_queue_score_idx ON refresh_queue (score DESC);"
        )
    except psycopg2.Error as e:
        logger.error("[db-schema] error creating index on refresh_queue.score: %s", e)

    logger.info("[db-schema] ensured table refresh_queue")
