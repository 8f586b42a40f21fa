import faulthandler
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from core.config import Config
from data_sources.scryfall import Card, Prices


# =============================================================================
# Fake remote service
# =============================================================================

def make_card(card_id: str, eur: Optional[str] = "1.00", usd: Optional[str] = "1.10",
              eur_foil: Optional[str] = None, usd_foil: Optional[str] = None) -> Card:
    return Card(
        id=card_id,
        name=f"Card {card_id}",
        prices=Prices(raw={"eur": eur, "usd": usd, "eur_foil": eur_foil, "usd_foil": usd_foil}),
    )


class FakeScryfall:
    """
    Stand-in for ScryfallAPI.collection().

    Every call is recorded. Cards are served from `prices` (id -> eur
    string); ids in `missing` are left out of the response and `error`,
    when set, is paired with the (partial) result.
    """

    def __init__(self, prices: Optional[Dict[str, str]] = None, delay: float = 0.0,
                 default_price: Optional[str] = "1.00") -> None:
        self.prices: Dict[str, str] = dict(prices or {})
        self.default_price = default_price
        self.delay = delay
        self.missing: Set[str] = set()
        self.error: Optional[Exception] = None
        self.raise_error: Optional[Exception] = None
        self.calls: List[List[str]] = []
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def requested_ids(self) -> List[str]:
        with self._lock:
            return [card_id for call in self.calls for card_id in call]

    def collection(self, ids: Sequence[str]) -> Tuple[Dict[str, Card], Optional[Exception]]:
        with self._lock:
            self.calls.append(list(ids))
        if self.delay:
            time.sleep(self.delay)
        if self.raise_error is not None:
            raise self.raise_error
        cards = {}
        for card_id in ids:
            if card_id in self.missing:
                continue
            cards[card_id] = make_card(card_id, eur=self.prices.get(card_id, self.default_price))
        return cards, self.error


@pytest.fixture
def fake_scryfall():
    return FakeScryfall()


@pytest.fixture
def scryfall_factory():
    """The FakeScryfall class, for tests that need custom prices or delays."""
    return FakeScryfall


@pytest.fixture
def card_factory():
    return make_card


@pytest.fixture
def temp_config(tmp_path):
    """
    Provide a fresh Config with validation.

    This fixture GUARANTEES a clean config or fails loudly.
    """
    config_path = tmp_path / f"config_{id(tmp_path)}_{time.time_ns()}.json"
    config = Config(config_file=config_path)

    assert config.currency == "eur", \
        f"FIXTURE CONTAMINATED! currency={config.currency}, file={config.config_file}"
    assert config.max_batch_size == 75, \
        f"FIXTURE CONTAMINATED! max_batch={config.max_batch_size}, file={config.config_file}"

    return config


def pytest_collection_modifyitems(config, items):
    """Assign tier markers based on test location."""
    slow_files = {
        "test_batch_scheduler.py",
        "test_price_coordinator_concurrency.py",
    }

    for item in items:
        path = Path(str(item.fspath)).as_posix()
        filename = Path(path).name

        if "/tests/unit/" in path:
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)

        if filename in slow_files:
            item.add_marker(pytest.mark.slow)


def pytest_sessionstart(session):  # pragma: no cover - test harness init
    """Enable faulthandler for the entire test run to aid diagnosing hangs.

    Python will dump stack traces of all threads to stderr when a test
    hangs on one of the background batch threads.
    """
    try:
        faulthandler.enable(file=sys.stderr, all_threads=True)
    except (AttributeError, ValueError, OSError):
        pass
