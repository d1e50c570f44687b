"""Database initialization entry point.

Ensures the quote cache and refresh queue tables exist. Intended to be called
at service startup when a PostgreSQL backend is selected.
"""

import logging
from .fetch_from_db import connect_to_db
from .db_schema import (
    create_quote_cache_table,
    create_refresh_queue_table,
)

logger = logging.getLogger(__name__)


def init_database() -> bool:
    """Initialize database schema.

    Returns
    -------
    bool
        True if initialization ran without fatal errors, else False.

    Notes
    -----
    - Safe to call multiple times (DDL is idempotent).
    - Requires a working PostgreSQL connection.
    """
    conn = connect_to_db()
    if not conn:
        logger.warning("[db_init] DB connection unavailable; skipping initialization")
        return False
    try:
        with conn.cursor() as cursor:
            create_quote_cache_table(cursor)
            create_refresh_queue_table(cursor)
        conn.commit()
        logger.info("[db_init] schema ensured")
        return True
    except Exception as e:
        logger.error("[db_init] initialization error: %s", e)
        try:
            conn.rollback()
        except Exception:
            pass
        return False
    finally:
        try:
            conn.close()
        except Exception:
            pass
