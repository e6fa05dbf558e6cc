"""Domain models for the exchange rate oracle.

Observations are in-memory (Pydantic) models, independent of how the store
lays them out on disk, so the codec and key scheme can be tested without a
database.
"""

__all__ = [
    "exchange_rate",
]
