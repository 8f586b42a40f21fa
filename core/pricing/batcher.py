"""
Batch Scheduler - merges individual card lookups into collection calls.

Producers call submit() from any thread and get a Future back. A single
daemon thread, started on the first submit, flushes the pending list when

- it reaches the batch cap,
- the periodic tick fires, or
- no new request arrived for the debounce interval,

whichever happens first.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.constants import (
    BATCH_DEBOUNCE,
    BATCH_TICK_INTERVAL,
    MAX_PER_COLLECTION,
    THREAD_JOIN_TIMEOUT,
)
from data_sources.scryfall import Card, CardNotFound

logger = logging.getLogger(__name__)

# Signature of ScryfallAPI.collection
BatchFetcher = Callable[[Sequence[str]], Tuple[Dict[str, Card], Optional[Exception]]]


class SchedulerClosed(RuntimeError):
    """Raised by submit() once stopped or when the worker thread cannot start."""


class BatchScheduler:
    """
    Collects card ids and fetches them in batches on a background thread.

    Methods:
    - submit(card_id): enqueue, returns Future[Card]
    - flush(): send the current pending list now, from the caller's thread
    - stop(): flush what is left and join the thread
    """

    def __init__(
        self,
        fetch_batch: BatchFetcher,
        max_batch: int = MAX_PER_COLLECTION,
        debounce: float = BATCH_DEBOUNCE,
        tick_interval: float = BATCH_TICK_INTERVAL,
    ) -> None:
        self._fetch_batch = fetch_batch
        self.max_batch = max(1, int(max_batch))
        self.debounce = debounce
        self.tick_interval = tick_interval

        self._pending: List[Tuple[str, "Future[Card]"]] = []
        self._cond = threading.Condition()
        self._last_enqueue = 0.0
        self._next_tick = 0.0
        self._running = False
        self._stopped = False
        self._thread: Optional[threading.Thread] = None
        self.batches_sent = 0

    @property
    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def submit(self, card_id: str) -> "Future[Card]":
        """
        Queue one card id for the next batch.

        Raises SchedulerClosed once stopped, or when the worker thread cannot
        be started (the id is not left queued in that case).
        """
        future: "Future[Card]" = Future()
        with self._cond:
            if self._stopped:
                raise SchedulerClosed("batch scheduler is stopped")
            self._pending.append((card_id, future))
            self._last_enqueue = time.monotonic()
            self._cond.notify()
        try:
            self._ensure_running()
        except RuntimeError as e:
            with self._cond:
                if (card_id, future) in self._pending:
                    self._pending.remove((card_id, future))
            raise SchedulerClosed(f"batch scheduler thread unavailable: {e}") from e
        return future

    def _ensure_running(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
            self._next_tick = time.monotonic() + self.tick_interval
            thread = threading.Thread(
                target=self._run_loop, name="price-batcher", daemon=True
            )
            self._thread = thread
        try:
            thread.start()
        except RuntimeError:
            with self._cond:
                self._running = False
                self._thread = None
            logger.error("Could not start batch scheduler thread")
            raise
        logger.debug("Batch scheduler thread started")

    def flush(self) -> int:
        """Send the current pending list immediately. Returns its size."""
        with self._cond:
            batch = self._take_batch()
        self._send(batch)
        return len(batch)

    def stop(self) -> None:
        """Refuse new work, drain what is pending and join the thread."""
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
            self._cond.notify_all()
        if self._thread:
            self._thread.join(timeout=THREAD_JOIN_TIMEOUT)
        # Anything the thread did not get to (or no thread at all)
        while self.flush():
            pass
        logger.debug(f"Batch scheduler stopped after {self.batches_sent} batches")

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def _take_batch(self) -> List[Tuple[str, "Future[Card]"]]:
        """Detach up to max_batch pending requests. Caller holds the lock."""
        batch = self._pending[:self.max_batch]
        del self._pending[:self.max_batch]
        return batch

    def _wait_for_batch(self) -> List[Tuple[str, "Future[Card]"]]:
        """Block until a flush trigger fires; return the batch to send."""
        with self._cond:
            while not self._pending and not self._stopped:
                self._cond.wait()

            # Ticks that passed while the list was empty flushed nothing
            now = time.monotonic()
            if now >= self._next_tick:
                self._next_tick = now + self.tick_interval

            while self._pending and len(self._pending) < self.max_batch and not self._stopped:
                now = time.monotonic()
                if now >= self._next_tick:
                    break
                deadline = min(self._last_enqueue + self.debounce, self._next_tick)
                if now >= deadline:
                    break
                self._cond.wait(deadline - now)

            now = time.monotonic()
            if now >= self._next_tick:
                self._next_tick = now + self.tick_interval
            return self._take_batch()

    def _run_loop(self) -> None:
        while True:
            batch = self._wait_for_batch()
            if batch:
                try:
                    self._send(batch)
                except Exception:
                    logger.exception("Batch flush failed")
            with self._cond:
                if self._stopped and not self._pending:
                    return

    def _send(self, batch: List[Tuple[str, "Future[Card]"]]) -> None:
        """Fetch one batch and resolve every future in it exactly once."""
        if not batch:
            return

        waiting: Dict[str, List["Future[Card]"]] = {}
        for card_id, future in batch:
            waiting.setdefault(card_id, []).append(future)
        ids = list(waiting)

        self.batches_sent += 1
        logger.debug(f"Flushing batch #{self.batches_sent}: {len(ids)} ids")
        try:
            cards, error = self._fetch_batch(ids)
        except Exception as e:
            logger.warning(f"Batch of {len(ids)} failed: {e}")
            cards, error = {}, e

        for card_id, futures in waiting.items():
            card = cards.get(card_id)
            for future in futures:
                if card is not None:
                    future.set_result(card)
                else:
                    future.set_exception(error or CardNotFound(card_id))
