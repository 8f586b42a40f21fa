"""
Price Cache - authoritative in-memory price snapshots.

Holds the latest PriceSnapshot per card and the set of cards whose fetch is
outstanding. Both live behind one lock so the freshness check, the in-flight
check and the claim happen atomically.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from typing import Dict, Mapping, Optional, Tuple

from core.constants import CACHE_TTL_FAILED, CACHE_TTL_PRICED
from core.pricing.models import CacheStats, PriceSnapshot

logger = logging.getLogger(__name__)


class PriceCache:
    """
    Thread-safe snapshot store with in-flight tracking.

    Features:
    - Two staleness windows: a long one for snapshots with a price and a
      short one for failed / zero snapshots
    - One completion future per outstanding fetch, shared by every caller
      that joins it
    - Performance statistics

    Usage:
        cache = PriceCache(priced_ttl=86400, failed_ttl=300)

        pending, claimed, current = cache.claim(card_id)
        if claimed:
            ...schedule the fetch, then later:
            cache.resolve(card_id, snapshot)
    """

    def __init__(
        self,
        priced_ttl: float = CACHE_TTL_PRICED,
        failed_ttl: float = CACHE_TTL_FAILED,
    ):
        """
        Initialize the cache.

        Args:
            priced_ttl: Seconds a snapshot with a real price stays fresh.
            failed_ttl: Seconds a failed / zero snapshot stays fresh.
        """
        self.priced_ttl = priced_ttl
        self.failed_ttl = failed_ttl
        self._entries: Dict[str, PriceSnapshot] = {}
        self._in_flight: Dict[str, "Future[PriceSnapshot]"] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats

    def is_fresh(self, snapshot: Optional[PriceSnapshot], now: Optional[float] = None) -> bool:
        """
        Apply the staleness rule to a snapshot.

        A zero snapshot and a missing price fall into the same short window;
        that is what lets a failed lookup be retried after a few minutes.
        """
        if snapshot is None or snapshot.is_empty:
            return False
        ttl = self.priced_ttl if snapshot.has_price else self.failed_ttl
        return snapshot.age(now) < ttl

    def get(self, card_id: str) -> Optional[PriceSnapshot]:
        """Latest snapshot for card_id, fresh or not."""
        with self._lock:
            return self._entries.get(card_id)

    def lookup(self, card_id: str) -> Tuple[Optional[PriceSnapshot], bool]:
        """
        Get the cached snapshot and whether it is fresh.

        Counts a hit for fresh entries and a miss otherwise.
        """
        with self._lock:
            snapshot = self._entries.get(card_id)
            fresh = self.is_fresh(snapshot)
            if fresh:
                self._stats.hits += 1
            else:
                self._stats.misses += 1

        if fresh:
            logger.debug(f"Cache hit for '{card_id}' (age: {snapshot.age():.1f}s)")
        return snapshot, fresh

    def claim(
        self, card_id: str
    ) -> Tuple[Optional["Future[PriceSnapshot]"], bool, Optional[PriceSnapshot]]:
        """
        Try to become the one fetcher for card_id.

        Returns (pending, claimed, current):
        - entry became fresh meanwhile: (None, False, fresh snapshot)
        - fetch already outstanding:    (its future, False, cached snapshot)
        - claimed by this call:         (new future, True, cached snapshot)
        """
        with self._lock:
            current = self._entries.get(card_id)
            if self.is_fresh(current):
                return None, False, current

            pending = self._in_flight.get(card_id)
            if pending is not None:
                self._stats.joined += 1
                return pending, False, current

            pending = Future()
            self._in_flight[card_id] = pending
            self._stats.fetches += 1
            return pending, True, current

    def resolve(self, card_id: str, snapshot: PriceSnapshot) -> None:
        """
        Store the outcome of a claimed fetch and release every waiter.

        The entry is replaced wholesale and the in-flight marker removed in
        the same critical section.
        """
        with self._lock:
            self._entries[card_id] = snapshot
            pending = self._in_flight.pop(card_id, None)
            if not snapshot.has_price:
                self._stats.failures += 1

        if pending is None:
            logger.warning(f"Resolved '{card_id}' without an outstanding fetch")
            return
        pending.set_result(snapshot)

    def seed(self, snapshots: Mapping[str, PriceSnapshot]) -> int:
        """
        Load snapshots kept by the caller (e.g. from its own database).

        Empty snapshots are skipped. Returns the number of entries stored.
        """
        count = 0
        with self._lock:
            for card_id, snapshot in snapshots.items():
                if snapshot is None or snapshot.is_empty:
                    continue
                self._entries[card_id] = snapshot
                count += 1
        logger.info(f"Seeded price cache with {count} snapshots")
        return count

    def export(self) -> Dict[str, PriceSnapshot]:
        """Copy of every cached snapshot."""
        with self._lock:
            return dict(self._entries)

    def freshness_summary(self) -> Dict[str, int]:
        """Count fresh, stale and in-flight entries."""
        now = time.time()
        with self._lock:
            fresh = sum(1 for s in self._entries.values() if self.is_fresh(s, now))
            return {
                "fresh": fresh,
                "stale": len(self._entries) - fresh,
                "in_flight": len(self._in_flight),
            }
