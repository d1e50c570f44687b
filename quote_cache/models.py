"""Domain types shared by the cache, queue, fetchers and resolver."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Priority assigned to tickers that have never been cached (2**53 - 1); keeps
# them ahead of any real cache age while staying exact in every backend.
NEVER_CACHED_PRIORITY = float(2 ** 53 - 1)

QUOTE_FIELDS = (
    "price",
    "change",
    "percent_change",
    "high_price",
    "low_price",
    "open_price",
    "previous_close",
)


def normalize_ticker(ticker: str) -> str:
    """Canonicalize a ticker symbol (trimmed, uppercase).

    Raises
    ------
    ValueError
        If the symbol is not a string or is empty after trimming.
    """
    if not isinstance(ticker, str):
        raise ValueError(f"ticker must be a string, got {type(ticker).__name__}")
    sym = ticker.strip().upper()
    if not sym:
        raise ValueError("ticker must not be empty")
    return sym


class SourceClass(str, enum.Enum):
    """Refresh cadence class of a provider."""

    FAST = "fast"
    SLOW = "slow"

    @classmethod
    def parse(cls, value: Any, default: Optional["SourceClass"] = None) -> "SourceClass":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            v = value.strip().lower()
            for member in cls:
                if member.value == v or member.name.lower() == v:
                    return member
        if default is not None:
            return default
        raise ValueError(f"unknown source class: {value!r}")


@dataclass(frozen=True)
class NormalizedQuote:
    """Provider-agnostic quote.

    Common fields live at the top level; anything provider specific (volume,
    timestamps, the scraped URL) goes into ``api_metadata`` which always
    carries the ``source`` name.
    """
    price: float
    change: Optional[float] = None
    percent_change: Optional[float] = None
    high_price: Optional[float] = None
    low_price: Optional[float] = None
    open_price: Optional[float] = None
    previous_close: Optional[float] = None
    api_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> Optional[str]:
        return self.api_metadata.get("source")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {name: getattr(self, name) for name in QUOTE_FIELDS}
        data["api_metadata"] = dict(self.api_metadata)
        return data


@dataclass(frozen=True)
class CacheEntry:
    """One cached quote document. Replaced whole on every write."""
    key: str
    payload: Dict[str, Any]
    fetched_at: float
    source_class: SourceClass
    ttl_seconds: int
    source: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Flat document stored by the backends, plus a ``_metadata`` block."""
        return {
            "key": self.key,
            "payload": self.payload,
            "fetched_at": self.fetched_at,
            "source_class": self.source_class.value,
            "ttl_seconds": self.ttl_seconds,
            "_metadata": {
                "fetched_at": self.fetched_at,
                "source": self.source,
                "source_class": self.source_class.value,
            },
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "CacheEntry":
        meta = doc.get("_metadata") or {}
        fetched_at = doc.get("fetched_at", meta.get("fetched_at"))
        if fetched_at is None:
            raise ValueError("cache document has no fetched_at")
        source_class = SourceClass.parse(
            doc.get("source_class", meta.get("source_class")), default=SourceClass.FAST
        )
        return cls(
            key=normalize_ticker(doc["key"]),
            payload=dict(doc.get("payload") or {}),
            fetched_at=float(fetched_at),
            source_class=source_class,
            ttl_seconds=int(doc.get("ttl_seconds") or 0),
            source=meta.get("source"),
        )


@dataclass
class BackoffState:
    """Per-ticker rate-limit backoff; volatile, process lifetime only."""
    attempts: int = 0
    backoff_until: float = 0.0
