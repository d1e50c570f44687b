"""Ticker -> provider routing and the registry of known sources.

Routing is static: the ticker sources file maps a ticker to a provider (and
optionally a source class and page URL). Tickers not in the file go to the
primary provider. A record with ``derived_from`` and ``divisor`` describes a
derived ticker whose quote is computed from another ticker's quote; such a
ticker is never routed to a fetcher.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Set, Tuple

from .config import get_provider_settings, load_ticker_sources
from .errors import ConfigError
from .fetchers import AlphaVantageFetcher, FinnhubFetcher, ScraperFetcher, YahooFetcher
from .models import NormalizedQuote, SourceClass, normalize_ticker
from .scrapers import get_scraper

logger = logging.getLogger(__name__)

# Default refresh class of each provider when the ticker record names none
PROVIDER_SOURCE_CLASSES: Dict[str, SourceClass] = {
    "finnhub": SourceClass.FAST,
    "yahoo": SourceClass.FAST,
    "alpha-vantage": SourceClass.SLOW,
    "fidelity": SourceClass.SLOW,
}

KNOWN_SOURCES = tuple(PROVIDER_SOURCE_CLASSES)


@dataclass(frozen=True)
class TickerConfig:
    provider: Optional[str] = None
    source_class: Optional[SourceClass] = None
    url: Optional[str] = None
    derived_from: Optional[str] = None
    divisor: Optional[float] = None

    @property
    def is_derived(self) -> bool:
        return self.derived_from is not None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TickerConfig":
        """Build from one JSON record; raises ValueError on a bad record.

        ``source`` and ``sourceClass`` are accepted as aliases of
        ``provider`` and ``source_class``.
        """
        provider = record.get("provider") or record.get("source")
        raw_class = record.get("source_class") or record.get("sourceClass")
        derived_from = record.get("derived_from")
        divisor = record.get("divisor")
        if derived_from is not None:
            derived_from = normalize_ticker(derived_from)
            try:
                divisor = float(divisor)
            except (TypeError, ValueError):
                raise ValueError(f"derived ticker needs a numeric divisor, got {divisor!r}")
            if divisor == 0:
                raise ValueError("divisor must not be zero")
        return cls(
            provider=str(provider).strip().lower() if provider else None,
            source_class=SourceClass.parse(raw_class) if raw_class else None,
            url=record.get("url") or None,
            derived_from=derived_from,
            divisor=divisor if derived_from is not None else None,
        )


@dataclass(frozen=True)
class Route:
    """Where and how a ticker is fetched."""
    ticker: str
    provider: str
    source_class: SourceClass
    options: Dict[str, Any] = field(default_factory=dict)


class SourceRouter:
    def __init__(
        self,
        ticker_sources: Optional[Mapping[str, Mapping[str, Any]]] = None,
        fetchers: Optional[Mapping[str, Any]] = None,
        primary_provider: str = "finnhub",
    ) -> None:
        self.primary_provider = primary_provider
        self.configs: Dict[str, TickerConfig] = {}
        for ticker, record in (ticker_sources or {}).items():
            try:
                self.configs[normalize_ticker(ticker)] = TickerConfig.from_record(record)
            except ValueError as e:
                logger.error("[routing] ignoring ticker config %s: %s", ticker, e)
        if fetchers is None:
            fetchers = {
                "finnhub": FinnhubFetcher(),
                "alpha-vantage": AlphaVantageFetcher(),
                "yahoo": YahooFetcher(),
            }
        self.fetchers: Dict[str, Any] = dict(fetchers)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, path: Optional[str] = None) -> "SourceRouter":
        return cls(
            ticker_sources=load_ticker_sources(path),
            primary_provider=get_provider_settings().primary_provider,
        )

    def config_for(self, ticker: str) -> Optional[TickerConfig]:
        return self.configs.get(normalize_ticker(ticker))

    def is_derived(self, ticker: str) -> bool:
        config = self.config_for(ticker)
        return bool(config and config.is_derived)

    def derived(self, ticker: str) -> Optional[Tuple[str, float]]:
        """``(base_ticker, divisor)`` for a derived ticker, else None."""
        config = self.config_for(ticker)
        if config is None or not config.is_derived:
            return None
        return config.derived_from, config.divisor

    def route(self, ticker: str) -> Route:
        sym = normalize_ticker(ticker)
        config = self.configs.get(sym) or TickerConfig()
        if config.is_derived:
            raise ValueError(f"{sym} is derived from {config.derived_from} and is never fetched")
        provider = config.provider or self.primary_provider
        source_class = config.source_class or PROVIDER_SOURCE_CLASSES.get(provider, SourceClass.FAST)
        options: Dict[str, Any] = {}
        if config.url:
            options["url"] = config.url
        return Route(ticker=sym, provider=provider, source_class=source_class, options=options)

    def fetcher_for(self, provider: str):
        """Return the fetcher for ``provider``, building scraper fetchers on demand."""
        with self._lock:
            fetcher = self.fetchers.get(provider)
            if fetcher is None:
                scraper = get_scraper(provider)
                if scraper is not None:
                    fetcher = ScraperFetcher(scraper)
                    self.fetchers[provider] = fetcher
            return fetcher

    def fetch(self, ticker: str) -> Tuple[NormalizedQuote, Route]:
        """Fetch ``ticker`` from its routed provider."""
        route = self.route(ticker)
        fetcher = self.fetcher_for(route.provider)
        if fetcher is None:
            raise ConfigError(route.ticker, route.provider, "no fetcher registered for provider")
        quote = fetcher.fetch(route.ticker, route.options)
        return quote, route


class SourceRegistry:
    """Known provider names; ``discover`` only ever adds to the set."""

    def __init__(self, known: Iterable[str] = KNOWN_SOURCES) -> None:
        self._sources: Set[str] = {s for s in known if s}
        self._lock = threading.Lock()

    @property
    def sources(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._sources))

    def discover(self, names: Iterable[str]) -> Set[str]:
        """Add ``names``; returns the ones that were not known before."""
        added: Set[str] = set()
        with self._lock:
            for name in names:
                if name and name not in self._sources:
                    self._sources.add(name)
                    added.add(name)
        if added:
            logger.info("[routing] discovered sources: %s", sorted(added))
        return added

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._sources
