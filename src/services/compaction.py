from __future__ import annotations

import logging
from datetime import datetime

from db.store import OracleBackend

logger = logging.getLogger(__name__)


def compact(backend: OracleBackend, cutoff: datetime, *, wait: float = 0.0) -> int:
    """Delete every observation older than `cutoff` in one batch; return how many went."""
    with backend.batch(wait=wait) as batch:
        stale = [rate for rate in batch.iter_all() if rate.timestamp < cutoff]
        for rate in stale:
            batch.delete(rate.pair_id, rate.timestamp)
        batch.commit()

    logger.debug("Compaction before %s cleaned %d items", cutoff.isoformat(), len(stale))
    return len(stale)


__all__ = ["compact"]
