from __future__ import annotations

from typing import Protocol

from domain.exchange_rate import ExchangeRateObservation


class ExchangeRateSource(Protocol):
    """Anything that can fetch the current rate of one currency pair.

    Implementations raise `VendorRequestError` for failures worth retrying.
    """

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRateObservation: ...


__all__ = ["ExchangeRateSource"]
