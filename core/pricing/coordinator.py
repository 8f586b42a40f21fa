"""
Price Coordinator - the public entry point for card prices.

Callers ask for a card's price; the coordinator answers from the cache when
the snapshot is fresh, and otherwise makes sure exactly one fetch for that
card is outstanding, batching it with other lookups through the
BatchScheduler.

Example:
    with PriceCoordinator(ScryfallAPI()) as prices:
        amount, fresh = prices.get_price(card_id)          # never blocks
        snapshot = prices.get_full_price(card_id, wait=True)
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, TimeoutError as FutureTimeout
from functools import partial
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from core.constants import (
    BATCH_DEBOUNCE,
    BATCH_TICK_INTERVAL,
    CACHE_TTL_FAILED,
    CACHE_TTL_PRICED,
    CURRENCY_EUR,
    MAX_PER_COLLECTION,
)
from core.pricing.batcher import BatchScheduler, SchedulerClosed
from core.pricing.cache import PriceCache
from core.pricing.models import CacheStats, PriceSnapshot, price_kind
from data_sources.base_api import RateLimitExceeded
from data_sources.scryfall import Card, ScryfallAPI

logger = logging.getLogger(__name__)

# Maps the caller's card key to the id the remote service knows it by
IdResolver = Callable[[str], Optional[str]]


class PriceCoordinator:
    """
    Deduplicating, batching, stale-while-revalidate price lookups.

    Methods:
    - get_price(): one amount plus a freshness flag, never blocks
    - get_full_price(): the full snapshot, optionally waiting for a fetch
    - refresh(): force a fetch and report old and new snapshots
    - prefetch(): start fetches for many cards without waiting
    - seed() / export(): hand snapshots in from / out to the caller's store
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        *,
        currency: str = CURRENCY_EUR,
        priced_ttl: float = CACHE_TTL_PRICED,
        failed_ttl: float = CACHE_TTL_FAILED,
        max_batch: int = MAX_PER_COLLECTION,
        debounce: float = BATCH_DEBOUNCE,
        tick_interval: float = BATCH_TICK_INTERVAL,
        id_resolver: Optional[IdResolver] = None,
        scheduler: Optional[BatchScheduler] = None,
    ) -> None:
        """
        Args:
            client: Object with a ScryfallAPI-compatible collection() method.
                    A default ScryfallAPI is created when omitted.
            currency: "eur" or "usd"; selects the default price kind.
            priced_ttl: Freshness window for snapshots with a price.
            failed_ttl: Freshness window for failed / zero snapshots.
            max_batch, debounce, tick_interval: BatchScheduler settings.
            id_resolver: Optional key -> remote id mapping. A falsy result
                         means the card cannot be priced.
            scheduler: Pre-built scheduler (overrides client and batching args).
        """
        self.client = client if client is not None else ScryfallAPI()
        self.currency = currency
        self.cache = PriceCache(priced_ttl=priced_ttl, failed_ttl=failed_ttl)
        self.scheduler = scheduler or BatchScheduler(
            self.client.collection,
            max_batch=max_batch,
            debounce=debounce,
            tick_interval=tick_interval,
        )
        self._id_resolver = id_resolver
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config, client: Optional[Any] = None, **kwargs) -> "PriceCoordinator":
        """Build a coordinator (and, unless given, its client) from a Config."""
        owns_client = client is None
        if owns_client:
            client = ScryfallAPI(
                base_url=config.api_base_url,
                timeout=config.request_timeout,
                min_interval=config.request_cooldown,
                max_per_collection=config.max_batch_size,
                user_agent=config.user_agent,
            )
        coordinator = cls(
            client,
            currency=config.currency,
            priced_ttl=config.priced_ttl_seconds,
            failed_ttl=config.failed_ttl_seconds,
            max_batch=config.max_batch_size,
            debounce=config.batch_debounce,
            tick_interval=config.batch_tick_interval,
            **kwargs,
        )
        coordinator._owns_client = owns_client
        return coordinator

    @property
    def stats(self) -> CacheStats:
        return self.cache.stats

    @property
    def default_kind(self) -> str:
        return price_kind(self.currency, foil=False)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def price_value(self, snapshot: PriceSnapshot, foil: bool = False,
                    currency: Optional[str] = None) -> float:
        """Project a snapshot onto one currency and finish."""
        return snapshot.value(price_kind(currency or self.currency, foil))

    def get_price(self, card_id: str, kind: Optional[str] = None,
                  allow_fetch: bool = True) -> Tuple[float, bool]:
        """
        Best known amount for one price kind, and whether it is fresh.

        Triggers a background fetch when the snapshot is stale and
        allow_fetch is set, but always returns immediately.
        """
        snapshot = self.get_full_price(card_id, allow_fetch=allow_fetch)
        amount = snapshot.value(kind or self.default_kind)
        fresh = amount != 0 and snapshot.age() <= self.cache.priced_ttl
        return amount, fresh

    def get_full_price(
        self,
        card_id: str,
        allow_fetch: bool = True,
        force_fetch: bool = False,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> PriceSnapshot:
        """
        Get the full price snapshot for a card.

        Args:
            card_id: Caller's key for the card.
            allow_fetch: Start a fetch when the snapshot is not fresh.
            force_fetch: Skip the fast cache path and go straight to claiming
                         a fetch (a snapshot that is fresh at claim time is
                         still returned as is).
            wait: Block until the outstanding fetch completes.
            timeout: Upper bound for wait; on expiry the pre-fetch snapshot
                     is returned.

        Returns:
            The fresh snapshot, the fetched snapshot (wait=True), or the
            pre-fetch snapshot, which is empty for never-fetched cards.
        """
        snapshot, pending, _ = self._request(card_id, allow_fetch, force_fetch)
        if pending is None or not wait:
            return snapshot
        try:
            return pending.result(timeout=timeout)
        except FutureTimeout:
            logger.warning(f"Timed out after {timeout}s waiting for '{card_id}'")
            return snapshot

    def _request(
        self, card_id: str, allow_fetch: bool = True, force_fetch: bool = False
    ) -> Tuple[PriceSnapshot, Optional["Future[PriceSnapshot]"], bool]:
        """
        Answer from the cache or make sure a fetch is outstanding.

        Returns (snapshot, pending, claimed). pending is None when the
        snapshot is the answer; otherwise the snapshot is the pre-fetch
        value and claimed tells whether this call started the fetch.
        """
        if not force_fetch:
            cached, fresh = self.cache.lookup(card_id)
            if fresh or not allow_fetch:
                return cached or PriceSnapshot.empty(), None, False

        remote_id = self._resolve(card_id)
        if not remote_id:
            logger.debug(f"No remote id for '{card_id}'; not fetching")
            return PriceSnapshot.empty(), None, False

        pending, claimed, current = self.cache.claim(card_id)
        if pending is None:
            return current, None, False
        if claimed:
            self._dispatch(card_id, remote_id)
        return current or PriceSnapshot.empty(), pending, claimed

    def refresh(self, card_id: str, timeout: Optional[float] = None) -> Tuple[PriceSnapshot, PriceSnapshot]:
        """
        Force a fetch and wait for it.

        Returns (old, new); equal capture times mean the price was already
        up to date and no fetch was made.
        """
        old = self.cache.get(card_id) or PriceSnapshot.empty()
        new = self.get_full_price(card_id, force_fetch=True, wait=True, timeout=timeout)
        return old, new

    def prefetch(self, card_ids: Iterable[str]) -> int:
        """Start fetches for every stale card without waiting. Returns claims made."""
        claimed = 0
        for card_id in card_ids:
            _, _, started = self._request(card_id)
            claimed += started
        logger.info(f"Prefetch queued {claimed} price fetches")
        return claimed

    # ------------------------------------------------------------------
    # Caller-owned persistence
    # ------------------------------------------------------------------

    def seed(self, snapshots: Mapping[str, PriceSnapshot]) -> int:
        return self.cache.seed(snapshots)

    def export(self) -> Dict[str, PriceSnapshot]:
        return self.cache.export()

    # ------------------------------------------------------------------
    # Fetch path
    # ------------------------------------------------------------------

    def _resolve(self, card_id: str) -> Optional[str]:
        if self._id_resolver is None:
            return card_id
        return self._id_resolver(card_id)

    def _dispatch(self, card_id: str, remote_id: str) -> None:
        """Hand a claimed fetch to the scheduler; the claim is always resolved."""
        try:
            fetch = self.scheduler.submit(remote_id)
        except SchedulerClosed as e:
            logger.warning(f"Cannot fetch '{card_id}': {e}")
            self.cache.resolve(card_id, PriceSnapshot.failed())
            return
        fetch.add_done_callback(partial(self._on_fetched, card_id))

    def _on_fetched(self, card_id: str, fetch: "Future[Card]") -> None:
        error = fetch.exception()
        if error is None:
            card = fetch.result()
            snapshot = PriceSnapshot.from_amounts(card.prices.amounts())
            logger.debug(f"Fetched price for '{card_id}': {dict(snapshot.values)}")
        else:
            if isinstance(error, RateLimitExceeded):
                logger.warning(f"Rate limited while fetching '{card_id}' (retry after {error.retry_after}s)")
            else:
                logger.warning(f"Price fetch failed for '{card_id}': {error}")
            snapshot = PriceSnapshot.failed()
        self.cache.resolve(card_id, snapshot)

    def close(self) -> None:
        """Stop the background scheduler; pending fetches are flushed first."""
        self.scheduler.stop()
        if self._owns_client:
            self.client.close()
        logger.debug(
            f"Price coordinator closed: {self.stats.as_dict()} "
            f"entries: {self.cache.freshness_summary()}"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
