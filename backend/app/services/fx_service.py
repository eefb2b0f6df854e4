"""
Foreign exchange service for currency conversion.

Resolution order for a pair (base -> target):
1. identical currencies: rate 1
2. the user's custom override rate (only for pairs from the user's default currency)
3. cached rates: direct, inverted, then triangulated through a pivot currency
4. live sources in the user's fallback order, one in-flight fetch per key
5. the global default table, reported as stale

A past ``as_of`` date is looked up in sources with history after step 2,
falling back to the latest rate when none has it.
"""
import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.exceptions import RateUnavailable, SourceUnavailable
from app.core.utils import normalize_currency_code, utcnow
from app.models.exchange_rate import RateSource
from app.schemas.currency_preference import CurrencyPreferenceResponse
from app.schemas.exchange_rate import ConversionResponse, Provenance, RateResolution
from app.services.currency_preference_service import get_preferences
from app.services.default_rates import DefaultRateTable, default_rate_table
from app.services.rate_cache import RateCacheStore
from app.services.rate_sources import RateSourceAdapter, build_default_sources
from app.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)

# Shared by every resolver in the process so concurrent requests dedupe fetches
live_fetches = SingleFlight()
_rate_sources: Optional[Dict[RateSource, RateSourceAdapter]] = None


def get_rate_sources() -> Dict[RateSource, RateSourceAdapter]:
    """Process-wide live source adapters, created on first use."""
    global _rate_sources
    if _rate_sources is None:
        _rate_sources = build_default_sources()
    return _rate_sources


class RateResolver:
    """Resolves exchange rates for one database session."""

    def __init__(
        self,
        db: Session,
        sources: Optional[Dict[RateSource, RateSourceAdapter]] = None,
        coordinator: Optional[SingleFlight] = None,
        default_table: Optional[DefaultRateTable] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.sources = sources if sources is not None else get_rate_sources()
        self.coordinator = coordinator or live_fetches
        self.default_table = default_table or default_rate_table
        self.clock = clock
        self.cache = RateCacheStore(db, clock=clock)

    async def resolve(
        self,
        user_id: int,
        base: str,
        target: str,
        force_refresh: bool = False,
        as_of: Optional[date] = None
    ) -> RateResolution:
        """
        Get the rate to convert 1 unit of ``base`` into ``target``.

        Args:
            user_id: Id of the authenticated user
            base: Currency code to convert FROM
            target: Currency code to convert TO
            force_refresh: Skip cached rates and go to live sources first
            as_of: Date of the rate. Past dates are looked up in sources with
                history and never served from or written to the cache; when
                no historical rate exists the latest rate is used. Today,
                future dates and None mean the latest rate.

        Raises:
            ValueError: If a currency code is malformed
            RateUnavailable: If no mechanism can produce a rate
        """
        base = normalize_currency_code(base)
        target = normalize_currency_code(target)

        if base == target:
            return RateResolution(base=base, target=target, rate=1.0, provenance=Provenance.IDENTITY)

        prefs = get_preferences(user_id, self.db)

        override = prefs.custom_rates.get(target)
        if override and base == prefs.default_currency:
            logger.debug(f"Using custom rate for user {user_id}: {base}->{target} = {override}")
            return RateResolution(base=base, target=target, rate=override, provenance=Provenance.OVERRIDE)

        order = prefs.effective_order()
        pivots = self._pivots(prefs, base, target)

        if as_of is not None and as_of < self.clock().date():
            historical = await self._fetch_historical(base, target, order, as_of)
            if historical:
                return historical
            logger.warning(f"No historical rate for {base}->{target} on {as_of}, using latest rate")

        if not force_refresh:
            cached = self._from_cache(base, target, order, pivots)
            if cached:
                return cached

        live = await self._fetch_live(base, target, order)
        if live:
            return live

        return self._from_defaults(base, target, pivots)

    async def convert(
        self,
        user_id: int,
        amount: Decimal,
        base: str,
        target: str,
        as_of: Optional[date] = None
    ) -> ConversionResponse:
        """
        Convert an amount from base to target currency.

        Returns:
            The converted amount together with the rate resolution used
        """
        resolution = await self.resolve(user_id, base, target, as_of=as_of)
        amount = Decimal(str(amount))
        converted = amount * Decimal(str(resolution.rate))
        return ConversionResponse(amount=amount, converted_amount=converted, resolution=resolution)

    def _pivots(self, prefs: CurrencyPreferenceResponse, base: str, target: str) -> List[str]:
        # The user's default currency first, then the fixed reference currency
        pivots = []
        for candidate in (prefs.default_currency, normalize_currency_code(settings.FX_PIVOT_CURRENCY)):
            if candidate not in (base, target) and candidate not in pivots:
                pivots.append(candidate)
        return pivots

    def _cached_leg(self, base: str, target: str, source: RateSource) -> Optional[float]:
        """Valid cached rate for the pair from one source, direct or inverted."""
        row = self.cache.get_valid(base, target, source)
        if row:
            return row.rate
        row = self.cache.get_valid(target, base, source)
        if row:
            return 1 / row.rate
        return None

    def _from_cache(self, base: str, target: str, order: List[RateSource], pivots: List[str]) -> Optional[RateResolution]:
        for source in order:
            row = self.cache.get_valid(base, target, source)
            if row:
                return RateResolution(
                    base=base, target=target, rate=row.rate, provenance=Provenance.CACHE, source=source.value
                )

        for source in order:
            row = self.cache.get_valid(target, base, source)
            if row:
                return RateResolution(
                    base=base, target=target, rate=1 / row.rate,
                    provenance=Provenance.CACHE_INVERTED, source=source.value
                )

        for pivot in pivots:
            for source in order:
                first = self._cached_leg(base, pivot, source)
                if first is None:
                    continue
                second = self._cached_leg(pivot, target, source)
                if second is None:
                    continue
                logger.debug(f"Triangulated {base}->{target} via {pivot} from {source.value} cache")
                return RateResolution(
                    base=base, target=target, rate=first * second,
                    provenance=Provenance.CACHE_TRIANGULATED, source=source.value
                )
        return None

    async def _fetch_live(self, base: str, target: str, order: List[RateSource]) -> Optional[RateResolution]:
        for source in order:
            adapter = self.sources.get(source)
            if adapter is None:
                continue

            try:
                rate = await self.coordinator.run(
                    (base, target, source.value),
                    lambda adapter=adapter, source=source: self._fetch_and_store(adapter, source, base, target)
                )
            except SourceUnavailable as e:
                logger.warning(f"Rate source {source.value} failed for {base}->{target}: {e}")
                continue
            except asyncio.TimeoutError:
                logger.warning(f"Rate source {source.value} timed out for {base}->{target}")
                continue

            return RateResolution(
                base=base, target=target, rate=rate, provenance=Provenance.live(source.value), source=source.value
            )
        return None

    async def _fetch_and_store(self, adapter: RateSourceAdapter, source: RateSource, base: str, target: str) -> float:
        rate = await asyncio.wait_for(adapter.fetch(base, target), timeout=adapter.timeout)
        logger.info(f"Fetched {base}->{target} = {rate} from {source.value}")
        try:
            self.cache.put(base, target, source, rate, adapter.ttl)
        except SQLAlchemyError as e:
            # The rate is still good; the next request just fetches again
            self.db.rollback()
            logger.error(f"Could not cache {base}->{target} from {source.value}: {e}", exc_info=True)
        return rate

    async def _fetch_historical(
        self, base: str, target: str, order: List[RateSource], as_of: date
    ) -> Optional[RateResolution]:
        for source in order:
            adapter = self.sources.get(source)
            if adapter is None or not adapter.supports_history:
                continue

            try:
                rate = await self.coordinator.run(
                    (base, target, source.value, as_of.isoformat()),
                    lambda adapter=adapter: asyncio.wait_for(
                        adapter.fetch_historical(base, target, as_of), timeout=adapter.timeout
                    )
                )
            except SourceUnavailable as e:
                logger.warning(f"Historical rate from {source.value} failed for {base}->{target} on {as_of}: {e}")
                continue
            except asyncio.TimeoutError:
                logger.warning(f"Historical rate from {source.value} timed out for {base}->{target} on {as_of}")
                continue

            return RateResolution(
                base=base, target=target, rate=rate, provenance=Provenance.HISTORICAL,
                source=source.value, as_of=as_of
            )
        return None

    def _from_defaults(self, base: str, target: str, pivots: List[str]) -> RateResolution:
        rate = self.default_table.lookup(base, target)
        if rate is None:
            for pivot in pivots:
                rate = self.default_table.triangulate(base, target, pivot)
                if rate is not None:
                    break

        if rate is None:
            logger.error(f"No exchange rate available for {base}->{target}")
            raise RateUnavailable(base, target)

        logger.error(f"All rate sources failed for {base}->{target}, using default rate {rate}")
        return RateResolution(base=base, target=target, rate=rate, provenance=Provenance.DEFAULT, stale=True)


async def resolve(
    user_id: int,
    base: str,
    target: str,
    db: Session,
    force_refresh: bool = False,
    as_of: Optional[date] = None
) -> RateResolution:
    """Resolve a rate with the process-wide sources and default table."""
    return await RateResolver(db).resolve(user_id, base, target, force_refresh=force_refresh, as_of=as_of)


async def convert(
    user_id: int,
    amount: Decimal,
    base: str,
    target: str,
    db: Session,
    as_of: Optional[date] = None
) -> ConversionResponse:
    """Convert an amount with the process-wide sources and default table."""
    return await RateResolver(db).convert(user_id, amount, base, target, as_of=as_of)
