import psycopg2
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from .config import get_db_settings
import psycopg2.extras as extras
from psycopg2.pool import ThreadedConnectionPool

"""Database access helpers (data operations only).

This module encapsulates PostgreSQL connectivity and the row-level operations
behind the PostgreSQL cache and queue backends. It intentionally excludes any
schema creation concerns (see ``quote_cache.db_schema``).

Conventions
- All functions assume required tables already exist.
- Row helpers accept a live DB cursor so callers control commits/rollbacks.
- Row helpers let ``psycopg2.Error`` propagate; the backends translate it into
  ``CacheUnavailable`` / ``QueueUnavailable``.
- ``fetched_at`` is stored as TIMESTAMPTZ and returned to callers as epoch
  seconds (the document in ``data`` carries the same value).
"""

logger = logging.getLogger(__name__)


def _connect_kwargs() -> Dict[str, Any]:
    db = get_db_settings()
    return {
        "dbname": db.name,
        "user": db.user,
        "password": db.password,
        "host": db.host,
        "port": db.port,
    }


def connect_to_db():
    """Open a new PostgreSQL connection.

    Returns
    -------
    psycopg2.extensions.connection | None
        A new connection if the operation succeeds, otherwise ``None``.

    Notes
    -----
    - The caller is responsible for closing the connection.
    - Connection parameters come from environment variables via
      :func:`quote_cache.config.get_db_settings`.
    """
    try:
        conn = psycopg2.connect(**_connect_kwargs())
        logger.info("[db] connected to PostgreSQL")
        return conn
    except psycopg2.OperationalError as e:
        logger.error("[db] connection failed: %s", e)
        return None


def create_pool(maxconn: Optional[int] = None) -> ThreadedConnectionPool:
    """Create a thread-safe connection pool for the long-lived backends.

    Raises
    ------
    psycopg2.OperationalError
        If the first connection cannot be opened.
    """
    db = get_db_settings()
    pool = ThreadedConnectionPool(1, maxconn or db.pool_max, **_connect_kwargs())
    logger.info("[db] connection pool ready (max=%d)", maxconn or db.pool_max)
    return pool


# --- quote_cache data helpers ---

def get_quote_cache_row(cursor, symbol: str) -> Optional[Dict[str, Any]]:
    """Read the cache row for ``symbol``.

    Returns
    -------
    Optional[Dict[str, Any]]
        Mapping with ``symbol``, ``data`` (the stored document), ``source`` and
        ``fetched_at`` (epoch seconds); ``None`` if the symbol is not cached.
    """
    cursor.execute(
        "SELECT symbol, data, source, fetched_at FROM quote_cache WHERE symbol=%s;",
        (symbol,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    fetched_at = row[3]
    if isinstance(fetched_at, datetime):
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        fetched_at = fetched_at.timestamp()
    return {"symbol": row[0], "data": row[1], "source": row[2], "fetched_at": fetched_at}


def upsert_quote_cache_row(cursor, symbol: str, document: Dict[str, Any]) -> None:
    """Insert or replace the cache document for ``symbol``.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active transaction.
    symbol : str
        Canonical ticker.
    document : dict
        Whole cache document; ``_metadata.source`` and ``fetched_at`` are
        copied into their own columns.
    """
    meta = document.get("_metadata") or {}
    fetched_at = datetime.fromtimestamp(float(document["fetched_at"]), tz=timezone.utc)
    cursor.execute(
        "INSERT INTO quote_cache(symbol, data, source, fetched_at) VALUES(%s, %s, %s, %s) "
        "ON CONFLICT (symbol) DO UPDATE SET data=EXCLUDED.data, source=EXCLUDED.source, fetched_at=EXCLUDED.fetched_at;",
        (symbol, extras.Json(document), meta.get("source"), fetched_at),
    )
    logger.debug("[db] quote_cache upserted symbol=%s", symbol)


def delete_quote_cache_row(cursor, symbol: str) -> bool:
    cursor.execute("DELETE FROM quote_cache WHERE symbol=%s;", (symbol,))
    return bool(getattr(cursor, "rowcount", 0))


def list_cached_sources(cursor) -> Set[str]:
    """Distinct provider names present in ``quote_cache``."""
    cursor.execute("SELECT DISTINCT source FROM quote_cache WHERE source IS NOT NULL;")
    return {r[0] for r in cursor.fetchall() or [] if r and r[0]}


# --- refresh_queue data helpers ---

def upsert_refresh_queue(cursor, symbol: str, score: float) -> None:
    """Add ``symbol`` to the queue or replace its score (never duplicates)."""
    cursor.execute(
        "INSERT INTO refresh_queue(symbol, score) VALUES(%s, %s) "
        "ON CONFLICT (symbol) DO UPDATE SET score=EXCLUDED.score;",
        (symbol, score),
    )


def remove_refresh_queue(cursor, symbol: str) -> bool:
    cursor.execute("DELETE FROM refresh_queue WHERE symbol=%s;", (symbol,))
    return bool(getattr(cursor, "rowcount", 0))


def peek_refresh_queue(cursor) -> Optional[Tuple[str, float]]:
    """Return ``(symbol, score)`` with the highest score without removing it."""
    cursor.execute(
        "SELECT symbol, score FROM refresh_queue ORDER BY score DESC, queued_at ASC LIMIT 1;"
    )
    row = cursor.fetchone()
    return (row[0], float(row[1])) if row else None


def pop_refresh_queue(cursor) -> Optional[Tuple[str, float]]:
    """Atomically remove and return the highest-score entry.

    ``FOR UPDATE SKIP LOCKED`` keeps two concurrent consumers from claiming
    the same row.
    """
    cursor.execute(
        """
        DELETE FROM refresh_queue
        WHERE symbol = (
            SELECT symbol FROM refresh_queue
            ORDER BY score DESC, queued_at ASC
            LIMIT 1
            FOR UPDATE SKIP LOCKED
        )
        RETURNING symbol, score;
        """
    )
    row = cursor.fetchone()
    return (row[0], float(row[1])) if row else None


def get_refresh_queue_score(cursor, symbol: str) -> Optional[float]:
    cursor.execute("SELECT score FROM refresh_queue WHERE symbol=%s;", (symbol,))
    row = cursor.fetchone()
    return float(row[0]) if row else None


def list_refresh_queue(cursor) -> List[Tuple[str, float]]:
    """All queue entries ordered highest score first."""
    cursor.execute("SELECT symbol, score FROM refresh_queue ORDER BY score DESC, queued_at ASC;")
    return [(r[0], float(r[1])) for r in cursor.fetchall() or []]
