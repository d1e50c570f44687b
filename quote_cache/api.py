"""FastAPI application exposing cached quotes and the refresh queue.

Endpoints
- GET /: health check.
- GET /quote: one quote (cache-first; stale entries are served and queued).
- GET /quotes: several quotes at once, partitioned into succeeded/failed.
- GET /refresh-queue: tickers waiting for the background worker.
- POST /refresh-queue/{symbol}: queue a ticker for refresh.
- GET /sources: provider names known to the service.

Startup/shutdown use FastAPI lifespan to configure logging, initialize the
PostgreSQL schema when a PostgreSQL backend is selected, and start/stop the
refresh worker.
"""

from typing import Any, Dict, List, Optional
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel
import time
import logging
import sys
from contextlib import asynccontextmanager
import asyncio

from .config import get_backend_settings
from .db_init import init_database
from .errors import StoreUnavailable
from .models import normalize_ticker
from .service import get_service, shutdown_service

logger = logging.getLogger(__name__)


def setup_app_logging():
    """Configure root and package loggers for the API process."""
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    # Ensure a stream handler to stdout exists
    has_stream = any(isinstance(h, logging.StreamHandler) for h in root.handlers)
    if not has_stream:
        sh = logging.StreamHandler(stream=sys.stdout)
        sh.setLevel(logging.INFO)
        sh.setFormatter(fmt)
        root.addHandler(sh)
    for name in (
        "quote_cache",
        "quote_cache.worker",
        "quote_cache.resolver",
        __name__,
    ):
        logging.getLogger(name).setLevel(logging.INFO)


def _get_client_id(request: Request) -> str:
    """Return a client identifier for logs.

    Prefers X-Client-Id or X-Request-Id header, else falls back to client IP.
    """
    hdr = request.headers.get("X-Client-Id") or request.headers.get("X-Request-Id")
    if hdr:
        return hdr
    return getattr(request.client, "host", None) or "unknown"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, ensure schema, start the refresh worker."""
    setup_app_logging()
    logger.info("[api] logging configured")
    backends = get_backend_settings()
    if "postgres" in (backends.cache_backend, backends.queue_backend):
        ok = await run_in_thread(init_database)
        logger.info("[api] database init ok=%s", ok)
    service = get_service()
    service.start()
    try:
        yield
    finally:
        await run_in_thread(shutdown_service)


app = FastAPI(title="Quote Cache API", lifespan=lifespan)


class QuoteResponse(BaseModel):
    """Response model for /quote."""
    symbol: str
    data: Dict[str, Any]


class QuotesResponse(BaseModel):
    succeeded: List[Dict[str, Any]]
    failed: List[str]


class QueueEntry(BaseModel):
    symbol: str
    priority: float


class QueueResponse(BaseModel):
    count: int
    entries: List[QueueEntry]


async def run_in_thread(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def _canonical(symbol: Optional[str]) -> str:
    try:
        return normalize_ticker(symbol)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid symbol")


@app.get("/")
async def health(request: Request):
    """Health endpoint that also logs a client id for traceability."""
    logger.info("[api] GET / healthcheck cid=%s", _get_client_id(request))
    return {"status": "ok"}


@app.get("/quote", response_model=QuoteResponse)
async def get_quote(
    request: Request,
    symbol: str = Query(..., description="Single symbol, e.g. AAPL"),
):
    """Return one quote; 404 when no provider can produce it."""
    t0 = time.time()
    cid = _get_client_id(request)
    sym = _canonical(symbol)
    logger.info("[api] GET /quote start cid=%s symbol=%s", cid, sym)
    result = await run_in_thread(get_service().resolver.resolve_one, sym)
    logger.info("[api] GET /quote end cid=%s symbol=%s found=%s duration=%.3fs", cid, sym, result is not None, (time.time()-t0))
    if result is None:
        raise HTTPException(status_code=404, detail=f"No quote available for {sym}")
    return {"symbol": sym, "data": result}


@app.get("/quotes", response_model=QuotesResponse)
async def get_quotes(
    request: Request,
    symbols: str = Query(..., description="Comma separated symbols"),
):
    """Resolve several symbols concurrently."""
    t0 = time.time()
    cid = _get_client_id(request)
    syms = [s.strip().upper() for s in symbols.split(",") if s.strip()]
    if not syms:
        raise HTTPException(status_code=400, detail="No symbols provided")
    logger.info("[api] GET /quotes start cid=%s symbols=%s", cid, syms)
    out = await run_in_thread(get_service().resolver.resolve_many, syms)
    logger.info("[api] GET /quotes end cid=%s ok=%d failed=%s duration=%.3fs", cid, len(out["succeeded"]), out["failed"], (time.time()-t0))
    return out


@app.get("/refresh-queue", response_model=QueueResponse)
async def get_refresh_queue(request: Request):
    """List queued tickers, most stale first."""
    logger.info("[api] GET /refresh-queue cid=%s", _get_client_id(request))
    try:
        entries = await run_in_thread(get_service().queue.entries)
    except StoreUnavailable as e:
        logger.error("[api] refresh queue unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Refresh queue unavailable")
    return {
        "count": len(entries),
        "entries": [{"symbol": sym, "priority": score} for sym, score in entries],
    }


@app.post("/refresh-queue/{symbol}", response_model=QueueEntry)
async def enqueue_refresh(request: Request, symbol: str):
    """Queue ``symbol`` with its current cache age (or top priority if uncached)."""
    sym = _canonical(symbol)
    service = get_service()
    if service.router.is_derived(sym):
        raise HTTPException(status_code=400, detail=f"{sym} is derived and never refreshed directly")
    logger.info("[api] POST /refresh-queue cid=%s symbol=%s", _get_client_id(request), sym)

    def _enqueue():
        try:
            age = service.cache.age(sym)
        except StoreUnavailable:
            age = None
        return service.queue.enqueue(sym, age)

    try:
        priority = await run_in_thread(_enqueue)
    except StoreUnavailable as e:
        logger.error("[api] refresh queue unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Refresh queue unavailable")
    return {"symbol": sym, "priority": priority}


@app.get("/sources")
async def get_sources(request: Request):
    """Known provider names, including any discovered in the cache."""
    logger.info("[api] GET /sources cid=%s", _get_client_id(request))
    service = get_service()
    await run_in_thread(service.discover_sources)
    return {"sources": list(service.registry.sources)}
