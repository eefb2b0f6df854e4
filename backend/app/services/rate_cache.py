"""
Exchange rate cache store.

One row per (base currency, target currency, source). Expiry is logical:
rows are never deleted here, readers compare ``expires_at`` with the clock.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.core.exceptions import CacheWriteRace
from app.core.utils import utcnow
from app.models.exchange_rate import CachedRate, RateSource

logger = logging.getLogger(__name__)


class RateCacheStore:
    """Read and upsert cached rates through a database session."""

    MAX_WRITE_ATTEMPTS = 3

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def get(self, base: str, target: str, source: RateSource) -> Optional[CachedRate]:
        """
        Return the cached row for the key, or None.

        The row may be expired; use ``get_valid`` or ``CachedRate.is_valid``
        to decide whether it can be served.
        """
        return self.db.query(CachedRate).filter(
            CachedRate.base_currency == base,
            CachedRate.target_currency == target,
            CachedRate.source == RateSource(source)
        ).first()

    def get_valid(self, base: str, target: str, source: RateSource) -> Optional[CachedRate]:
        """Return the cached row only if it has not expired."""
        row = self.get(base, target, source)
        if row is not None and row.is_valid(self.clock()):
            return row
        return None

    def put(self, base: str, target: str, source: RateSource, rate: float, ttl: timedelta) -> Optional[CachedRate]:
        """
        Insert or overwrite the row for the key.

        Sets ``fetched_at`` to now and ``expires_at`` to now + ttl. A
        concurrent insert of the same key is resolved by re-reading and
        updating the winner's row (last write wins). If writers keep
        colliding past MAX_WRITE_ATTEMPTS, the row another writer stored is
        returned instead.
        """
        if rate is None or not math.isfinite(rate) or rate <= 0:
            raise ValueError(f"Cached rate must be positive, got {rate}")
        if ttl.total_seconds() <= 0:
            raise ValueError("Cache TTL must be positive")

        source = RateSource(source)
        for attempt in range(1, self.MAX_WRITE_ATTEMPTS + 1):
            try:
                return self._upsert(base, target, source, rate, ttl)
            except CacheWriteRace:
                logger.warning(
                    f"Concurrent cache write for {base}->{target} ({source.value}), "
                    f"attempt {attempt}/{self.MAX_WRITE_ATTEMPTS}"
                )

        logger.warning(f"Keeping the other writer's cached rate for {base}->{target} ({source.value})")
        return self.get(base, target, source)

    def _upsert(self, base: str, target: str, source: RateSource, rate: float, ttl: timedelta) -> CachedRate:
        now = self.clock()
        row = self.get(base, target, source)
        if row:
            row.rate = float(rate)
            row.fetched_at = now
            row.expires_at = now + ttl
        else:
            row = CachedRate(
                base_currency=base,
                target_currency=target,
                source=source,
                rate=float(rate),
                fetched_at=now,
                expires_at=now + ttl
            )
            self.db.add(row)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise CacheWriteRace(str(e)) from e

        self.db.refresh(row)
        return row
