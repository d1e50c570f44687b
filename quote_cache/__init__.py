"""Quote cache package.

Caches stock quotes from several providers, refreshes stale entries in the
background under a global rate limit, and serves them through a resolver and a
small FastAPI app.
"""

__all__ = [
    "cache_store",
    "refresh_queue",
    "resolver",
    "service",
    "worker",
]
