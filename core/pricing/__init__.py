"""
Pricing Package.

Keeps card prices fetched from Scryfall in memory and coordinates refreshes.

Public API:
- PriceCoordinator: Main entry point for price lookups
- PriceSnapshot: Immutable prices of one card at one point in time
- PriceCache: Snapshot store with in-flight tracking
- BatchScheduler: Merges lookups into collection calls
- price_kind: Currency/finish to snapshot key

Example:
    from core.pricing import PriceCoordinator
    prices = PriceCoordinator.from_config(config)
    amount, fresh = prices.get_price(card_id)
"""
from core.pricing.models import CacheStats, PriceSnapshot, price_kind
from core.pricing.cache import PriceCache
from core.pricing.batcher import BatchScheduler, SchedulerClosed
from core.pricing.coordinator import PriceCoordinator

__all__ = [
    "PriceCoordinator",
    "PriceSnapshot",
    "PriceCache",
    "CacheStats",
    "BatchScheduler",
    "SchedulerClosed",
    "price_kind",
]
