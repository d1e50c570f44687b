"""Provider fetchers that turn one ticker into a ``NormalizedQuote``.

Every fetcher exposes ``fetch(ticker, options=None)`` and either returns a
quote or raises a ``FetchError`` subclass:

- ``RateLimited``: provider said "too many requests" (HTTP 429, Alpha Vantage
  ``Note``, yfinance rate-limit error).
- ``NotFound``: unknown symbol or an all-zero/empty quote.
- ``Transient``: network errors, 5xx, bodies that are not JSON or have an
  unexpected shape.
- ``ConfigError``: missing or rejected API key.

``options`` is the ticker's routing record (see ``quote_cache.routing``);
only the scraper fetcher reads it today.

Notes
- API keys are passed as query parameters and never logged.
- Network calls are made with ``requests`` (yfinance for Yahoo); tests mock
  ``requests.get`` and ``yfinance.Ticker``.
"""

import logging
import math
from typing import Any, Dict, Optional

import requests
import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from .config import get_provider_settings
from .errors import ConfigError, NotFound, RateLimited, Transient
from .models import NormalizedQuote, normalize_ticker

logger = logging.getLogger(__name__)

FINNHUB_QUOTE_URL = "https://finnhub.io/api/v1/quote"
ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        f = float(str(value).replace(",", "").replace("%", "").strip())
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f


def _retry_after(resp) -> Optional[float]:
    try:
        return float(resp.headers.get("Retry-After"))
    except (AttributeError, TypeError, ValueError):
        return None


def _get_json(provider: str, ticker: str, url: str, params: Dict[str, Any], timeout: int) -> Any:
    """GET ``url`` and decode JSON, classifying every failure mode."""
    try:
        resp = requests.get(url, params=params, timeout=timeout)
    except requests.RequestException as e:
        raise Transient(ticker, provider, f"request failed: {e.__class__.__name__}") from e

    status = getattr(resp, "status_code", 200)
    logger.info("[%s] GET %s status=%s", provider, ticker, status)
    if status == 429:
        raise RateLimited(ticker, provider, "HTTP 429 Too Many Requests", retry_after=_retry_after(resp))
    if status in (401, 403):
        raise ConfigError(ticker, provider, f"HTTP {status}: API key rejected")
    if status == 404:
        raise NotFound(ticker, provider, "HTTP 404")
    if status >= 400:
        raise Transient(ticker, provider, f"HTTP {status}")
    try:
        return resp.json()
    except ValueError as e:
        raise Transient(ticker, provider, "response body is not JSON") from e


class FinnhubFetcher:
    """``/quote`` endpoint; FAST class (free tier allows 60 calls/min)."""

    name = "finnhub"

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self._api_key = api_key
        self._timeout = timeout

    def fetch(self, ticker: str, options: Optional[Dict[str, Any]] = None) -> NormalizedQuote:
        sym = normalize_ticker(ticker)
        settings = get_provider_settings()
        api_key = self._api_key or settings.finnhub_api_key
        if not api_key:
            logger.error("[finnhub] FINNHUB_API_KEY is not set")
            raise ConfigError(sym, self.name, "FINNHUB_API_KEY is not set")

        data = _get_json(
            self.name,
            sym,
            FINNHUB_QUOTE_URL,
            {"symbol": sym, "token": api_key},
            self._timeout or settings.http_timeout_seconds,
        )
        if not isinstance(data, dict):
            raise Transient(sym, self.name, "unexpected response shape")
        if data.get("error"):
            raise NotFound(sym, self.name, str(data.get("error")))

        price = _to_float(data.get("c"))
        if price is None:
            raise Transient(sym, self.name, "response has no current price")
        # Finnhub answers unknown symbols with an all-zero quote
        if price == 0 and not _to_float(data.get("d")) and not _to_float(data.get("dp")):
            raise NotFound(sym, self.name, "no data for symbol")

        metadata: Dict[str, Any] = {"source": self.name}
        if data.get("t") is not None:
            metadata["timestamp"] = data.get("t")
        return NormalizedQuote(
            price=price,
            change=_to_float(data.get("d")),
            percent_change=_to_float(data.get("dp")),
            high_price=_to_float(data.get("h")),
            low_price=_to_float(data.get("l")),
            open_price=_to_float(data.get("o")),
            previous_close=_to_float(data.get("pc")),
            api_metadata=metadata,
        )


class AlphaVantageFetcher:
    """``GLOBAL_QUOTE`` function; SLOW class (free tier: 25 calls/day)."""

    name = "alpha-vantage"

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self._api_key = api_key
        self._timeout = timeout

    def fetch(self, ticker: str, options: Optional[Dict[str, Any]] = None) -> NormalizedQuote:
        sym = normalize_ticker(ticker)
        settings = get_provider_settings()
        api_key = self._api_key or settings.alpha_vantage_api_key
        if not api_key:
            logger.error("[alpha-vantage] ALPHA_VANTAGE_API_KEY is not set")
            raise ConfigError(sym, self.name, "ALPHA_VANTAGE_API_KEY is not set")

        data = _get_json(
            self.name,
            sym,
            ALPHA_VANTAGE_URL,
            {"function": "GLOBAL_QUOTE", "symbol": sym, "apikey": api_key},
            self._timeout or settings.http_timeout_seconds,
        )
        if not isinstance(data, dict):
            raise Transient(sym, self.name, "unexpected response shape")

        # Alpha Vantage reports errors with HTTP 200 and a message field
        if "Error Message" in data:
            raise NotFound(sym, self.name, str(data["Error Message"]))
        if "Note" in data:
            raise RateLimited(sym, self.name, f"rate limit: {data['Note']}")
        if "Information" in data:
            info = str(data["Information"])
            if "rate limit" in info.lower() or "requests per day" in info.lower():
                raise RateLimited(sym, self.name, f"rate limit: {info}")
            raise Transient(sym, self.name, info)

        quote = data.get("Global Quote")
        if not isinstance(quote, dict):
            raise Transient(sym, self.name, "response has no Global Quote")
        price = _to_float(quote.get("05. price"))
        if not price:
            raise NotFound(sym, self.name, "no data for symbol (price is 0 or empty)")

        return NormalizedQuote(
            price=price,
            change=_to_float(quote.get("09. change")),
            percent_change=_to_float(quote.get("10. change percent")),
            high_price=_to_float(quote.get("03. high")),
            low_price=_to_float(quote.get("04. low")),
            open_price=_to_float(quote.get("02. open")),
            previous_close=_to_float(quote.get("08. previous close")),
            api_metadata={
                "source": self.name,
                "volume": quote.get("06. volume"),
                "latest_trading_day": quote.get("07. latest trading day"),
                "symbol": quote.get("01. symbol"),
            },
        )


class YahooFetcher:
    """Yahoo Finance through ``yfinance.Ticker(...).fast_info``."""

    name = "yahoo"

    def fetch(self, ticker: str, options: Optional[Dict[str, Any]] = None) -> NormalizedQuote:
        sym = normalize_ticker(ticker)
        try:
            info = yf.Ticker(sym).fast_info
            price = _to_float(getattr(info, "last_price", None))
            previous_close = _to_float(getattr(info, "previous_close", None))
            open_price = _to_float(getattr(info, "open", None))
            high = _to_float(getattr(info, "day_high", None))
            low = _to_float(getattr(info, "day_low", None))
            volume = getattr(info, "last_volume", None)
            currency = getattr(info, "currency", None)
        except YFRateLimitError as e:
            raise RateLimited(sym, self.name, "Too Many Requests") from e
        except Exception as e:
            if "too many requests" in str(e).lower() or "429" in str(e):
                raise RateLimited(sym, self.name, str(e)) from e
            raise Transient(sym, self.name, f"{e.__class__.__name__}: {e}") from e

        if not price:
            raise NotFound(sym, self.name, "no price for symbol")

        change = percent_change = None
        if previous_close:
            change = price - previous_close
            percent_change = change / previous_close * 100.0
        logger.info("[yahoo] %s price=%s", sym, price)
        return NormalizedQuote(
            price=price,
            change=change,
            percent_change=percent_change,
            high_price=high,
            low_price=low,
            open_price=open_price,
            previous_close=previous_close,
            api_metadata={"source": self.name, "volume": volume, "currency": currency},
        )


class ScraperFetcher:
    """Adapter exposing a named page scraper through the fetcher interface."""

    def __init__(self, scraper) -> None:
        self.scraper = scraper
        self.name = scraper.name

    def fetch(self, ticker: str, options: Optional[Dict[str, Any]] = None) -> NormalizedQuote:
        sym = normalize_ticker(ticker)
        url = (options or {}).get("url")
        price, page_url = self.scraper.scrape(sym, url=url)
        return NormalizedQuote(
            price=price,
            api_metadata={"source": self.name, "url": page_url, "symbol": sym},
        )
