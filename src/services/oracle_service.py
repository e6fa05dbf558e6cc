from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from db.store import OracleBackend
from domain.exchange_rate import CANONICAL_PAIRS, CurrencyPair, ExchangeRateObservation

from .compaction import compact
from .rate_sources import ExchangeRateSource

logger = logging.getLogger(__name__)


class OracleService:
    """Read views over the store, plus on-demand fetch and compaction."""

    def __init__(
        self,
        backend: OracleBackend,
        client: ExchangeRateSource,
        *,
        aggregated_pairs: Iterable[CurrencyPair] = CANONICAL_PAIRS,
        batch_wait: float = 30.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.backend = backend
        self.client = client
        self.aggregated_pairs = tuple(aggregated_pairs)
        self.batch_wait = batch_wait
        self._clock = clock

    def get(self, pair_id: str) -> ExchangeRateObservation:
        return self.backend.get(pair_id)

    def get_rate(self, from_currency: str, to_currency: str) -> ExchangeRateObservation:
        """Fetch a fresh rate from the vendor and keep it for aggregation."""
        rate = self.client.get_exchange_rate(from_currency, to_currency)
        with self.backend.batch(wait=self.batch_wait) as batch:
            batch.save(rate)
            batch.commit()
        return rate

    def recent(self, prefix: str = "", limit: int = 10) -> list[ExchangeRateObservation]:
        """Newest-first observations, optionally restricted to pair ids starting with `prefix`."""
        if limit < 0:
            msg = "limit must be >= 0"
            raise ValueError(msg)
        rates = list(self.backend.iter_prefix(prefix) if prefix else self.backend.iter_all())
        rates.sort(key=lambda rate: rate.timestamp, reverse=True)
        return rates[:limit]

    def aggregated(self) -> list[ExchangeRateObservation]:
        """Latest observation of every aggregated pair, newest first.

        Raises NotFoundError when any pair has no observation at all.
        """
        rates = [self.backend.get(pair.pair_id) for pair in self.aggregated_pairs]
        rates.sort(key=lambda rate: rate.timestamp, reverse=True)
        return rates

    def compact_now(self, minutes: int) -> int:
        if minutes < 0:
            msg = "minutes must be >= 0"
            raise ValueError(msg)
        cutoff = self._clock() - timedelta(minutes=minutes)
        cleaned = compact(self.backend, cutoff, wait=self.batch_wait)
        logger.info("On-demand compaction older than %d minutes cleaned %d items", minutes, cleaned)
        return cleaned


__all__ = ["OracleService"]
