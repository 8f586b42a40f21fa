"""
Tests for core/pricing/coordinator.py - PriceCoordinator read paths,
staleness handling and the fetch path.
"""
import logging
import threading
import time
from unittest.mock import patch

import pytest

from core.pricing import PriceCoordinator, PriceSnapshot
from data_sources.base_api import RateLimitExceeded
from data_sources.scryfall import ScryfallAPI

WAIT = 5.0
PRICED_TTL = 86400
FAILED_TTL = 300


def snapshot(eur: float, age: float, usd: float = 0.0) -> PriceSnapshot:
    return PriceSnapshot.from_amounts(
        {"eur": eur, "usd": usd, "eur_foil": 0.0, "usd_foil": 0.0},
        captured_at=time.time() - age,
    )


@pytest.fixture
def make_coordinator(fake_scryfall):
    created = []

    def factory(client=None, **kwargs):
        kwargs.setdefault("debounce", 0.01)
        kwargs.setdefault("tick_interval", 0.1)
        coordinator = PriceCoordinator(client or fake_scryfall, **kwargs)
        created.append(coordinator)
        return coordinator

    yield factory
    for coordinator in created:
        coordinator.close()


class TestFreshReads:

    def test_fresh_snapshot_needs_no_remote_call(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=3.5, age=3600)})

        assert coordinator.get_price("a") == (3.5, True)
        assert coordinator.get_full_price("a", wait=True).value("eur") == 3.5
        assert fake_scryfall.call_count == 0
        assert coordinator.stats.hits == 2

    def test_never_fetched_card_returns_empty_immediately(self, make_coordinator, fake_scryfall):
        fake_scryfall.delay = 0.2
        coordinator = make_coordinator()

        amount, fresh = coordinator.get_price("new")

        assert (amount, fresh) == (0.0, False)
        assert coordinator.cache.freshness_summary()["in_flight"] == 1

    def test_priced_fetch_then_cache_hit(self, make_coordinator, fake_scryfall):
        fake_scryfall.prices["c"] = "3.50"
        coordinator = make_coordinator()

        snap = coordinator.get_full_price("c", wait=True)

        assert snap.value("eur") == 3.5
        assert snap.has_price
        assert coordinator.get_price("c") == (3.5, True)
        assert fake_scryfall.call_count == 1

    def test_stale_snapshot_returned_while_refetching(self, make_coordinator, fake_scryfall):
        fake_scryfall.prices["a"] = "9.00"
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=2.0, age=PRICED_TTL + 60)})

        assert coordinator.get_price("a") == (2.0, False)

        updated = coordinator.get_full_price("a", wait=True)
        assert updated.value("eur") == 9.0

    def test_zero_amount_is_never_fresh(self, make_coordinator):
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=0.0, usd=1.0, age=10)})

        amount, fresh = coordinator.get_price("a", allow_fetch=False)

        assert amount == 0.0
        assert not fresh

    def test_allow_fetch_false_never_calls_remote(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator()

        snap = coordinator.get_full_price("a", allow_fetch=False)

        assert snap.is_empty
        assert coordinator.cache.freshness_summary()["in_flight"] == 0
        coordinator.scheduler.flush()
        assert fake_scryfall.call_count == 0


class TestFailures:

    def test_missing_card_is_stored_as_failed(self, make_coordinator, fake_scryfall):
        fake_scryfall.missing.add("m")
        coordinator = make_coordinator()

        snap = coordinator.get_full_price("m", wait=True)

        assert not snap.has_price
        assert snap.captured_at is not None
        assert coordinator.stats.failures == 1

    def test_failure_is_not_retried_inside_short_window(self, make_coordinator, fake_scryfall):
        fake_scryfall.missing.add("m")
        coordinator = make_coordinator()
        coordinator.get_full_price("m", wait=True)

        coordinator.get_full_price("m", wait=True)

        assert fake_scryfall.call_count == 1

    def test_failure_is_retried_after_short_window(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator()
        coordinator.seed({"m": PriceSnapshot.failed(captured_at=time.time() - FAILED_TTL - 1)})

        snap = coordinator.get_full_price("m", wait=True)

        assert snap.value("eur") == 1.0
        assert fake_scryfall.call_count == 1

    def test_partial_batch_failure(self, make_coordinator, fake_scryfall):
        fake_scryfall.missing.add("b")
        coordinator = make_coordinator(debounce=0.2)

        assert coordinator.prefetch(["a", "b", "c"]) == 3
        results = {card_id: coordinator.get_full_price(card_id, wait=True) for card_id in "abc"}

        assert fake_scryfall.call_count == 1
        assert results["a"].has_price
        assert not results["b"].has_price
        assert results["c"].has_price

    def test_rate_limited_batch_becomes_failed_snapshots(self, make_coordinator, fake_scryfall):
        fake_scryfall.raise_error = RateLimitExceeded(30)
        coordinator = make_coordinator()

        snap = coordinator.get_full_price("a", wait=True)

        assert not snap.has_price
        assert coordinator.cache.freshness_summary()["in_flight"] == 0

    def test_closed_scheduler_resolves_claim_as_failed(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator()
        coordinator.scheduler.stop()

        snap = coordinator.get_full_price("a", wait=True, timeout=WAIT)

        assert not snap.has_price
        assert snap.captured_at is not None
        assert coordinator.cache.freshness_summary()["in_flight"] == 0
        assert fake_scryfall.call_count == 0


class TestWaiting:

    def test_wait_timeout_returns_previous_snapshot(self, make_coordinator, fake_scryfall):
        fake_scryfall.delay = 0.5
        coordinator = make_coordinator()
        old = snapshot(eur=2.0, age=PRICED_TTL + 60)
        coordinator.seed({"a": old})

        snap = coordinator.get_full_price("a", wait=True, timeout=0.01)

        assert snap == old

    def test_joined_waiters_get_the_same_snapshot(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator(debounce=0.2)

        coordinator.get_full_price("a")
        coordinator.get_full_price("a")
        snap = coordinator.get_full_price("a", wait=True)

        assert coordinator.stats.fetches == 1
        assert coordinator.stats.joined == 2
        assert coordinator.cache.get("a") is snap
        assert fake_scryfall.calls == [["a"]]


class TestRefreshAndPrefetch:

    def test_refresh_of_fresh_card_makes_no_call(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=3.5, age=60)})

        old, new = coordinator.refresh("a", timeout=WAIT)

        assert old.captured_at == new.captured_at
        assert fake_scryfall.call_count == 0

    def test_refresh_of_stale_card_fetches(self, make_coordinator, fake_scryfall):
        fake_scryfall.prices["a"] = "4.00"
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=3.5, age=PRICED_TTL + 60)})

        old, new = coordinator.refresh("a", timeout=WAIT)

        assert old.value("eur") == 3.5
        assert new.value("eur") == 4.0
        assert new.captured_at > old.captured_at

    def test_refresh_reads_old_snapshot_without_touching_stats(self, make_coordinator):
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=3.5, age=60)})

        coordinator.refresh("a", timeout=WAIT)

        assert coordinator.stats.hits == 0
        assert coordinator.stats.misses == 0

    def test_prefetch_skips_fresh_and_in_flight(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator(debounce=0.2)
        coordinator.seed({"fresh": snapshot(eur=1.0, age=10)})

        claimed = coordinator.prefetch(["fresh", "x", "y", "x"])

        assert claimed == 2

    def test_prefetch_counts_only_its_own_claims(self, make_coordinator):
        coordinator = None

        def resolver(key):
            if key == "x":
                # Another caller claims "y" while this prefetch is running
                other = threading.Thread(target=coordinator.get_price, args=("y",))
                other.start()
                other.join(timeout=WAIT)
            return key

        coordinator = make_coordinator(debounce=30.0, tick_interval=30.0, id_resolver=resolver)

        claimed = coordinator.prefetch(["x"])

        assert claimed == 1
        assert coordinator.stats.fetches == 2
        assert coordinator.cache.freshness_summary()["in_flight"] == 2

    def test_export_contains_fetched_snapshots(self, make_coordinator):
        coordinator = make_coordinator()
        coordinator.get_full_price("a", wait=True)

        exported = coordinator.export()

        assert set(exported) == {"a"}
        assert exported["a"].value("eur") == 1.0


class TestIdResolver:

    def test_resolver_maps_key_to_remote_id(self, make_coordinator, fake_scryfall):
        fake_scryfall.prices["remote-1"] = "7.25"
        coordinator = make_coordinator(id_resolver={"local-1": "remote-1"}.get)

        snap = coordinator.get_full_price("local-1", wait=True)

        assert snap.value("eur") == 7.25
        assert fake_scryfall.calls == [["remote-1"]]
        assert coordinator.cache.get("local-1") is snap

    def test_unresolvable_key_is_not_fetched(self, make_coordinator, fake_scryfall):
        coordinator = make_coordinator(id_resolver=lambda key: None)

        snap = coordinator.get_full_price("local-1", wait=True, timeout=WAIT)

        assert snap.is_empty
        assert coordinator.cache.freshness_summary()["in_flight"] == 0
        assert fake_scryfall.call_count == 0


class TestProjection:

    def test_price_value_by_currency_and_finish(self, make_coordinator):
        coordinator = make_coordinator()
        snap = PriceSnapshot.from_amounts({"eur": 1.0, "eur_foil": 2.0, "usd": 3.0, "usd_foil": 4.0})

        assert coordinator.price_value(snap) == 1.0
        assert coordinator.price_value(snap, foil=True) == 2.0
        assert coordinator.price_value(snap, currency="usd") == 3.0
        assert coordinator.price_value(snap, foil=True, currency="usd") == 4.0

    def test_usd_coordinator_reads_usd_by_default(self, make_coordinator):
        coordinator = make_coordinator(currency="usd")
        coordinator.seed({"a": snapshot(eur=1.0, usd=1.5, age=10)})

        assert coordinator.default_kind == "usd"
        assert coordinator.get_price("a") == (1.5, True)
        assert coordinator.get_price("a", kind="eur") == (1.0, True)


class TestConstruction:

    def test_from_config_uses_config_values(self, temp_config, fake_scryfall):
        temp_config.currency = "usd"
        temp_config.failed_ttl_seconds = 120

        coordinator = PriceCoordinator.from_config(temp_config, client=fake_scryfall)
        try:
            assert coordinator.currency == "usd"
            assert coordinator.cache.failed_ttl == 120
            assert coordinator.cache.priced_ttl == temp_config.priced_ttl_seconds
            assert coordinator.scheduler.max_batch == 75
            assert coordinator._owns_client is False
        finally:
            coordinator.close()

    def test_from_config_builds_client(self, temp_config):
        temp_config.request_timeout = 5

        coordinator = PriceCoordinator.from_config(temp_config)

        assert isinstance(coordinator.client, ScryfallAPI)
        assert coordinator.client.timeout == 5
        with patch.object(coordinator.client, "close") as close:
            coordinator.close()
        close.assert_called_once()

    def test_close_leaves_borrowed_client_open(self, fake_scryfall):
        fake_scryfall.close = lambda: pytest.fail("borrowed client was closed")

        with PriceCoordinator(fake_scryfall):
            pass

    def test_close_logs_entry_summary(self, make_coordinator, caplog):
        coordinator = make_coordinator()
        coordinator.seed({"a": snapshot(eur=3.5, age=60)})

        with caplog.at_level(logging.DEBUG, logger="core.pricing.coordinator"):
            coordinator.close()

        assert "'fresh': 1" in caplog.text
        assert "'in_flight': 0" in caplog.text
