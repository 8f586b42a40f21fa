"""
Command-line interface for card prices.

Provides print utilities and CLI entry point.
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from core.config import Config
from core.logging_setup import setup_logging
from core.pricing import PriceCoordinator, PriceSnapshot

logger = logging.getLogger(__name__)


def format_price(amount: float, currency: str) -> str:
    """Format an amount for display, or a dash when there is no price."""
    if amount == 0:
        return "-"
    symbol = "€" if currency == "eur" else "$"
    return f"{amount:.2f}{symbol}"


def print_prices(
    coordinator: PriceCoordinator,
    results: Dict[str, PriceSnapshot],
    foil: bool = False,
) -> int:
    """Pretty-print one line per card. Returns the number without a price."""
    failures = 0
    total = 0.0
    width = max((len(card_id) for card_id in results), default=0)
    for card_id, snapshot in results.items():
        amount = coordinator.price_value(snapshot, foil=foil)
        if amount == 0:
            failures += 1
        total += amount
        print(f"  {card_id:<{width}}  {format_price(amount, coordinator.currency):>10}")

    print(f"  {'total':<{width}}  {format_price(total, coordinator.currency):>10}")
    if failures:
        print(f"  ({failures} card(s) without a price)")
    return failures


def load_snapshots(path: Path) -> Dict[str, PriceSnapshot]:
    """Read snapshots previously written by save_snapshots()."""
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        return {card_id: PriceSnapshot.from_dict(data) for card_id, data in raw.items()}
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.error(f"Failed to load price cache {path}: {exc}. Starting empty.")
        return {}


def save_snapshots(path: Path, snapshots: Dict[str, PriceSnapshot]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump({card_id: s.to_dict() for card_id, s in snapshots.items()}, f, indent=2)


def fetch_prices(
    coordinator: PriceCoordinator,
    card_ids: Sequence[str],
    force: bool = False,
) -> Dict[str, PriceSnapshot]:
    """
    Look up many cards, waiting for all of them.

    Everything is queued before the first wait so the lookups share
    collection calls.
    """
    if force:
        results = {}
        for card_id in card_ids:
            old, new = coordinator.refresh(card_id)
            state = "already up to date" if old.captured_at == new.captured_at else "price updated"
            logger.info(f"{card_id}: {state}")
            results[card_id] = new
        return results

    coordinator.prefetch(card_ids)
    return {card_id: coordinator.get_full_price(card_id, wait=True) for card_id in card_ids}


def cli_main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface for card prices."""
    parser = argparse.ArgumentParser(
        description="Card Price Sync - look up card prices on Scryfall",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  card-prices <scryfall-id>                  # Price of one card
  card-prices <id> <id> <id>                 # Several cards, one request
  card-prices --foil --currency usd <id>     # Foil price in USD
  card-prices --cache prices.json <id>       # Reuse and update saved prices
  card-prices --force <id>                   # Refresh even if recent
        """
    )

    parser.add_argument("card_ids", nargs="+", metavar="ID", help="Scryfall card IDs")
    parser.add_argument("--currency", choices=["eur", "usd"], help="Currency (default: from config)")
    parser.add_argument("--foil", action="store_true", help="Show foil prices")
    parser.add_argument("--force", action="store_true", help="Force a fetch even for recent prices")
    parser.add_argument("--cache", type=Path, metavar="FILE", help="JSON file to seed from and save to")
    parser.add_argument("--config", type=Path, metavar="FILE", help="Config file path")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    setup_logging(debug=args.debug)
    config = Config(config_file=args.config)

    with PriceCoordinator.from_config(config) as coordinator:
        if args.currency:
            coordinator.currency = args.currency
        if args.cache:
            coordinator.seed(load_snapshots(args.cache))

        results = fetch_prices(coordinator, args.card_ids, force=args.force)

        print(f"\n{'='*40}")
        print(f" Prices ({coordinator.currency}{', foil' if args.foil else ''})")
        print(f"{'='*40}")
        failures = print_prices(coordinator, results, foil=args.foil)

        if args.cache:
            save_snapshots(args.cache, coordinator.export())

    return 1 if failures == len(results) else 0


if __name__ == "__main__":
    raise SystemExit(cli_main())
