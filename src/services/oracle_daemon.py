from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from db.store import OracleBackend
from domain.exchange_rate import CANONICAL_PAIRS, CurrencyPair
from errors import BackendError

from .alpha_vantage_client import VendorRequestError
from .compaction import compact
from .rate_sources import ExchangeRateSource

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_minute(now: datetime) -> int:
    return 60 - now.second


class OracleDaemon:
    """Polls the vendor once a minute and keeps the store pruned.

    Every tick fetches all pairs concurrently, one task per pair. A failing
    fetch is retried `max_retries` more times straight away, then the pair is
    skipped until the next tick. Each successful fetch is committed in its own
    batch. Once per retention window the history older than the window is
    compacted away.
    """

    def __init__(
        self,
        backend: OracleBackend,
        client: ExchangeRateSource,
        *,
        pairs: Iterable[CurrencyPair] = CANONICAL_PAIRS,
        retention: timedelta = timedelta(minutes=60),
        max_retries: int = 3,
        batch_wait: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.backend = backend
        self.client = client
        self.pairs = tuple(pairs)
        if not self.pairs:
            msg = "pairs must contain at least one entry"
            raise ValueError(msg)
        self.retention = retention
        self.max_retries = max_retries
        self.batch_wait = batch_wait
        self._clock = clock
        self._last_compaction = clock() - retention
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def query_once(self, pair: CurrencyPair) -> bool:
        """Fetch and store one pair. Returns False when nothing was written."""
        logger.debug("Querying %s", pair.pair_id)
        for attempt in range(self.max_retries + 1):
            try:
                rate = self.client.get_exchange_rate(pair.from_currency, pair.to_currency)
                break
            except VendorRequestError as exc:
                logger.error("Query failed on %s, retries=%d: %s", pair.pair_id, attempt, exc)
        else:
            return False

        try:
            with self.backend.batch(wait=self.batch_wait) as batch:
                batch.save(rate)
                batch.commit()
        except BackendError:
            logger.exception("Saving %s failed, skipping it this tick", pair.pair_id)
            return False
        return True

    def tick(self) -> int:
        """Run one polling round; returns the number of pairs stored."""
        with ThreadPoolExecutor(max_workers=len(self.pairs), thread_name_prefix="oracle-query") as pool:
            futures = {pool.submit(self.query_once, pair): pair for pair in self.pairs}

        saved = 0
        for future, pair in futures.items():
            try:
                saved += int(future.result())
            except Exception:  # noqa: BLE001 - one broken pair must not stop the daemon
                logger.exception("Unexpected failure while querying %s", pair.pair_id)
        logger.debug("Tick stored %d of %d pairs", saved, len(self.pairs))

        self.compact_if_due()
        return saved

    def compact_if_due(self) -> int | None:
        now = self._clock()
        if now - self._last_compaction <= self.retention:
            return None

        self._last_compaction = now
        try:
            cleaned = compact(self.backend, now - self.retention, wait=self.batch_wait)
        except BackendError:
            logger.exception("Compaction failed")
            return None
        logger.info("Compaction cleaned %d items", cleaned)
        return cleaned

    def run_forever(self) -> None:
        logger.info("Oracle daemon polling %s", ", ".join(str(pair) for pair in self.pairs))
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(seconds_until_next_minute(self._clock()))
        logger.info("Oracle daemon stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            msg = "daemon already running"
            raise RuntimeError(msg)
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="oracle-daemon", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


__all__ = ["OracleDaemon", "seconds_until_next_minute"]
