"""
Pricing Models.

Data structures for cached price snapshots and cache statistics.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from core.constants import CURRENCY_EUR, CURRENCY_USD, PRICE_KINDS


def price_kind(currency: str = CURRENCY_EUR, foil: bool = False) -> str:
    """
    Map a currency and finish to a snapshot key.

    Anything other than "eur" reads the USD prices, e.g.
    price_kind("eur", foil=True) -> "eur_foil", price_kind("usd") -> "usd".
    """
    base = CURRENCY_EUR if str(currency).lower() == CURRENCY_EUR else CURRENCY_USD
    return f"{base}_foil" if foil else base


@dataclass(frozen=True)
class PriceSnapshot:
    """
    All prices of one card at one point in time.

    captured_at is None only for the empty snapshot handed out when nothing
    has been fetched yet. A snapshot whose amounts are all zero records a
    fetch that was attempted but produced no usable price.
    """
    captured_at: Optional[float] = None
    values: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def empty(cls) -> "PriceSnapshot":
        return cls()

    @classmethod
    def failed(cls, captured_at: Optional[float] = None) -> "PriceSnapshot":
        """Zero amounts for every kind, stamped now."""
        return cls(
            captured_at=time.time() if captured_at is None else captured_at,
            values={kind: 0.0 for kind in PRICE_KINDS},
        )

    @classmethod
    def from_amounts(
        cls,
        amounts: Mapping[str, float],
        captured_at: Optional[float] = None,
    ) -> "PriceSnapshot":
        return cls(
            captured_at=time.time() if captured_at is None else captured_at,
            values=dict(amounts),
        )

    @property
    def is_empty(self) -> bool:
        return self.captured_at is None

    @property
    def has_price(self) -> bool:
        """True when at least one amount is non-zero."""
        return any(v != 0 for v in self.values.values())

    def value(self, kind: str) -> float:
        return float(self.values.get(kind, 0.0))

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since capture (infinite for the empty snapshot)."""
        if self.captured_at is None:
            return float("inf")
        return (time.time() if now is None else now) - self.captured_at

    def to_dict(self) -> Dict[str, Any]:
        return {"captured_at": self.captured_at, "values": dict(self.values)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PriceSnapshot":
        return cls(
            captured_at=data.get("captured_at"),
            values={str(k): float(v) for k, v in (data.get("values") or {}).items()},
        )


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""
    hits: int = 0
    misses: int = 0
    fetches: int = 0
    failures: int = 0
    joined: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def total_requests(self) -> int:
        """Total number of cache requests."""
        return self.hits + self.misses

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "fetches": self.fetches,
            "failures": self.failures,
            "joined": self.joined,
            "hit_rate": round(self.hit_rate, 3),
        }

    def reset(self) -> None:
        """Reset all statistics."""
        self.hits = 0
        self.misses = 0
        self.fetches = 0
        self.failures = 0
        self.joined = 0
