"""
Scryfall API Client.

Provides per-card pricing data:
- Single card lookup (GET /cards/{id})
- Bulk lookup of up to 75 cards per call (POST /cards/collection)

Reference: https://scryfall.com/docs/api

Both calls go through the same rate limiter, so at most one request is in
flight at a time and consecutive requests are spaced by the cooldown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.constants import (
    API_TIMEOUT_DEFAULT,
    MAX_PER_COLLECTION,
    PRICE_KINDS,
    RATE_LIMIT_COOLDOWN,
    SCRYFALL_BASE_URL,
)
from data_sources.base_api import APIError, BaseAPIClient, RateLimitExceeded

logger = logging.getLogger(__name__)


class CardNotFound(APIError):
    """Raised for an identifier the remote service returned nothing for."""

    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"card not found: {card_id}")


def parse_amount(raw: Any) -> float:
    """
    Convert a Scryfall price string to a float.

    Scryfall sends prices as decimal strings and uses null for "no listed
    price". Anything that does not parse counts as 0.0.
    """
    if raw is None:
        return 0.0
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class Prices:
    """Raw price strings as returned in a card's "prices" object."""
    raw: Dict[str, Any] = field(default_factory=dict)

    def amount(self, kind: str) -> float:
        return parse_amount(self.raw.get(kind))

    def amounts(self) -> Dict[str, float]:
        """All known price kinds as floats (missing kinds are 0.0)."""
        return {kind: self.amount(kind) for kind in PRICE_KINDS}

    @property
    def eur(self) -> float:
        return self.amount("eur")

    @property
    def eur_foil(self) -> float:
        return self.amount("eur_foil")

    @property
    def usd(self) -> float:
        return self.amount("usd")

    @property
    def usd_foil(self) -> float:
        return self.amount("usd_foil")


@dataclass
class Card:
    """The subset of a Scryfall card object this application uses."""
    id: str
    name: str = ""
    set_code: str = ""
    set_name: str = ""
    scryfall_uri: str = ""
    prices: Prices = field(default_factory=Prices)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Card":
        if not isinstance(data, dict) or not data.get("id"):
            raise APIError(f"Malformed card object: {str(data)[:200]}")
        prices = data.get("prices") or {}
        if not isinstance(prices, dict):
            raise APIError(f"Malformed card object {data['id']}: prices is {type(prices).__name__}")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            set_code=data.get("set", ""),
            set_name=data.get("set_name", ""),
            scryfall_uri=data.get("scryfall_uri", ""),
            prices=Prices(raw=dict(prices)),
        )


class ScryfallAPI(BaseAPIClient):
    """
    Client for the Scryfall card API.

    Usage:
        api = ScryfallAPI(timeout=10)
        card = api.card("0000579f-7b35-4ed3-b44c-db2a538066fe")
        cards, err = api.collection(ids)
    """

    def __init__(
        self,
        base_url: str = SCRYFALL_BASE_URL,
        timeout: float = API_TIMEOUT_DEFAULT,
        min_interval: float = RATE_LIMIT_COOLDOWN,
        max_per_collection: int = MAX_PER_COLLECTION,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize Scryfall API client.

        Args:
            base_url: Service root (overridable for tests and mirrors)
            timeout: Per-request timeout in seconds
            min_interval: Cooldown between consecutive requests
            max_per_collection: Batch cap for /cards/collection
            user_agent: Custom User-Agent header
        """
        super().__init__(
            base_url=base_url,
            min_interval=min_interval,
            user_agent=user_agent,
            timeout=timeout,
        )
        self.max_per_collection = max(1, int(max_per_collection))
        self.request_count = 0  # Track number of API requests

    def card(self, card_id: str) -> Card:
        """
        Fetch a single card.

        Raises:
            RateLimitExceeded: On HTTP 429
            APIError: On any other failure
        """
        self.request_count += 1
        data = self.get(f"cards/{card_id}")
        return Card.from_json(data)

    def _collection_chunk(self, ids: Sequence[str]) -> Dict[str, Card]:
        self.request_count += 1
        body = {"identifiers": [{"id": card_id} for card_id in ids]}
        data = self.post("cards/collection", data=body)
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise APIError("Malformed collection response: missing 'data' list")

        cards: Dict[str, Card] = {}
        for raw in data["data"]:
            card = Card.from_json(raw)
            cards[card.id] = card

        not_found = data.get("not_found") or []
        if not_found:
            logger.debug(f"[scryfall] {len(not_found)} identifiers not found")
        return cards

    def collection(self, ids: Sequence[str]) -> Tuple[Dict[str, Card], Optional[Exception]]:
        """
        Fetch many cards, max_per_collection per request.

        Chunks are requested one after another. A failing chunk does not stop
        the remaining ones; the cards obtained so far are returned together
        with the first error seen. Identifiers missing from the result were
        either not found or part of a failed chunk.

        Returns:
            (cards by id, first error or None)
        """
        cards: Dict[str, Card] = {}
        first_error: Optional[Exception] = None
        chunks: List[Sequence[str]] = [
            ids[i:i + self.max_per_collection]
            for i in range(0, len(ids), self.max_per_collection)
        ]

        for chunk in chunks:
            try:
                cards.update(self._collection_chunk(chunk))
            except (APIError, RateLimitExceeded) as e:
                logger.warning(f"[scryfall] collection chunk of {len(chunk)} failed: {e}")
                if first_error is None:
                    first_error = e

        logger.info(
            f"[scryfall] collection: {len(cards)}/{len(ids)} cards in {len(chunks)} request(s)"
        )
        return cards, first_error
