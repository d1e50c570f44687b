"""HTML page scrapers for instruments no quote API covers (e.g. 529 plan funds).

A scraper downloads one page with ``requests`` and pulls the price text out of
it with a CSS selector via BeautifulSoup. Scrapers are registered by name so
the ticker configuration can say ``"provider": "fidelity"``.
"""

import logging
import re
from typing import Optional, Tuple

import requests
from bs4 import BeautifulSoup

from .config import get_provider_settings
from .errors import NotFound, RateLimited, Transient

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse a displayed price such as ``"$1,234.56"``; None when unparseable."""
    if not text:
        return None
    cleaned = re.sub(r"[^\d.\-]", "", text.replace(",", ""))
    try:
        return float(cleaned)
    except ValueError:
        return None


class PageScraper:
    """Fetch ``url_template.format(symbol=...)`` and read ``selector``."""

    def __init__(self, name: str, url_template: str, selector: str, timeout: Optional[int] = None) -> None:
        self.name = name
        self.url_template = url_template
        self.selector = selector
        self._timeout = timeout

    def scrape(self, symbol: str, url: Optional[str] = None) -> Tuple[float, str]:
        """Return ``(price, page_url)`` for ``symbol``."""
        page_url = url or self.url_template.format(symbol=symbol)
        timeout = self._timeout or get_provider_settings().http_timeout_seconds
        try:
            resp = requests.get(page_url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
        except requests.RequestException as e:
            raise Transient(symbol, self.name, f"request failed: {e.__class__.__name__}") from e

        status = getattr(resp, "status_code", 200)
        if status == 429:
            raise RateLimited(symbol, self.name, "HTTP 429 Too Many Requests")
        if status == 404:
            raise NotFound(symbol, self.name, "page not found")
        if status >= 400:
            raise Transient(symbol, self.name, f"HTTP {status}")

        soup = BeautifulSoup(resp.text, "html.parser")
        el = soup.select_one(self.selector)
        if el is None:
            logger.warning("[scraper] %s: price element missing for %s", self.name, symbol)
            raise NotFound(symbol, self.name, "price element not found on page")
        text = el.get_text(strip=True)
        price = parse_price(text)
        if price is None:
            raise Transient(symbol, self.name, f"could not parse price {text!r}")
        logger.info("[scraper] %s %s price=%s", self.name, symbol, price)
        return price, page_url


def fidelity_scraper() -> PageScraper:
    return PageScraper(
        name="fidelity",
        url_template="https://fundresearch.fidelity.com/mutual-funds/summary/{symbol}?appcode=529",
        selector=".mfl-daily-info-snapshot .value-column.font-xxl.label",
    )


SCRAPER_REGISTRY = {
    "fidelity": fidelity_scraper,
}


def get_scraper(name: str) -> Optional[PageScraper]:
    """Build the scraper registered under ``name`` (case-insensitive)."""
    factory = SCRAPER_REGISTRY.get((name or "").strip().lower())
    return factory() if factory else None


def register_scraper(name: str, factory) -> None:
    SCRAPER_REGISTRY[name.strip().lower()] = factory
