from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PairId = NewType("PairId", str)

PAIR_SEPARATOR = "2"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def pair_id(from_currency: str, to_currency: str) -> PairId:
    return PairId(f"{from_currency}{PAIR_SEPARATOR}{to_currency}")


def to_unix_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class CurrencyPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_currency: str
    to_currency: str

    @property
    def pair_id(self) -> PairId:
        return pair_id(self.from_currency, self.to_currency)

    @classmethod
    def parse(cls, raw: str) -> CurrencyPair:
        """Parse "FROM/TO" (e.g. "EUR/USD") into a pair."""
        from_currency, sep, to_currency = raw.partition("/")
        if not sep:
            raise ValueError(f"currency pair must look like FROM/TO, got {raw!r}")
        from_currency, to_currency = from_currency.strip().upper(), to_currency.strip().upper()
        if not from_currency or not to_currency:
            raise ValueError(f"currency pair needs both codes, got {raw!r}")
        if from_currency == to_currency:
            raise ValueError(f"currency pair needs two different codes, got {raw!r}")
        return cls(from_currency=from_currency, to_currency=to_currency)

    def __str__(self) -> str:
        return f"{self.from_currency}/{self.to_currency}"


class ExchangeRateObservation(BaseModel):
    """One observed rate: the price of one unit of `from` in `to`.

    Timestamps are UTC with second resolution; that is all the on-disk
    record keeps, so anything finer is dropped on construction.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_currency: str = Field(alias="from")
    to_currency: str = Field(alias="to")
    rate: float
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(microsecond=0)

    @model_validator(mode="after")
    def _validate_fields(self) -> ExchangeRateObservation:
        if not self.from_currency or not self.to_currency:
            raise ValueError("currency codes must be non-empty")
        if self.from_currency == self.to_currency:
            raise ValueError("from and to currencies must differ")
        if not math.isfinite(self.rate) or self.rate < 0:
            raise ValueError("rate must be finite and >= 0")
        # Keys carry the timestamp as signed big-endian, which only sorts
        # chronologically for non-negative values.
        if self.timestamp < EPOCH:
            raise ValueError("timestamp must not precede the Unix epoch")
        return self

    @property
    def pair_id(self) -> PairId:
        return pair_id(self.from_currency, self.to_currency)

    @property
    def unix_timestamp(self) -> int:
        return to_unix_seconds(self.timestamp)


# Pairs served by the aggregation view and polled by default.
CANONICAL_PAIRS: tuple[CurrencyPair, ...] = (
    *(CurrencyPair(from_currency=code, to_currency="USD") for code in ("EUR", "GBP", "BTC", "ETH")),
    *(CurrencyPair(from_currency="USD", to_currency=code) for code in ("CNY", "JPY", "CAD")),
)


__all__ = [
    "CANONICAL_PAIRS",
    "CurrencyPair",
    "ExchangeRateObservation",
    "PairId",
    "pair_id",
    "to_unix_seconds",
]
