"""
Global default exchange rates.

Approximate rates used only when no cache entry and no live source can
serve a pair. The table lives in the ``app_settings`` row keyed by
``settings.FX_DEFAULT_RATES_KEY``; it is loaded at startup and re-read on
explicit refresh. Any rate served from it must be reported as stale.
"""
import logging
from typing import Dict, Optional
from sqlalchemy.orm import Session
from app.core.config import settings
from app.models.app_setting import AppSetting
from app.schemas.exchange_rate import DefaultRates

logger = logging.getLogger(__name__)

# Seed values, 1 base = rate target
BUILTIN_DEFAULT_RATES: Dict[str, Dict[str, float]] = {
    "USD": {"IDR": 16850, "EUR": 0.93, "GBP": 0.79, "SGD": 1.35, "JPY": 157, "CNY": 7.25},
    "EUR": {"IDR": 18150, "USD": 1.08, "GBP": 0.85, "SGD": 1.46, "JPY": 169},
    "GBP": {"IDR": 21350, "USD": 1.27, "EUR": 1.18, "SGD": 1.72},
    "SGD": {"IDR": 12470, "USD": 0.74, "EUR": 0.68, "GBP": 0.58},
    "JPY": {"IDR": 107, "USD": 0.0064, "EUR": 0.0059},
    "CNY": {"IDR": 2325, "USD": 0.14, "EUR": 0.13},
    "IDR": {
        "USD": 1 / 16850,
        "EUR": 1 / 18150,
        "GBP": 1 / 21350,
        "SGD": 1 / 12470,
        "JPY": 1 / 107,
        "CNY": 1 / 2325,
    },
}


class DefaultRateTable:
    """Validated in-memory copy of the global default rate matrix."""

    def __init__(self, rates: Optional[Dict[str, Dict[str, float]]] = None):
        self._rates = DefaultRates(rates=rates or {}).rates

    @property
    def rates(self) -> Dict[str, Dict[str, float]]:
        return {base: dict(targets) for base, targets in self._rates.items()}

    def load(self, db: Session) -> Dict[str, Dict[str, float]]:
        """Load the table from the database, seeding it on first run."""
        setting = db.query(AppSetting).filter(AppSetting.key == settings.FX_DEFAULT_RATES_KEY).first()
        if not setting:
            logger.info("Seeding global default exchange rates")
            setting = AppSetting(key=settings.FX_DEFAULT_RATES_KEY, value=BUILTIN_DEFAULT_RATES)
            db.add(setting)
            db.commit()

        self._rates = DefaultRates(rates=setting.value).rates
        logger.info(f"Loaded default exchange rates for {len(self._rates)} base currencies")
        return self.rates

    def refresh(self, db: Session) -> Dict[str, Dict[str, float]]:
        """Re-read the table after an administrative change."""
        return self.load(db)

    def update(self, db: Session, rates: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        """
        Validate and persist a replacement table.

        Raises:
            pydantic.ValidationError: If a code is malformed or a rate is not positive
        """
        validated = DefaultRates(rates=rates).rates
        setting = db.query(AppSetting).filter(AppSetting.key == settings.FX_DEFAULT_RATES_KEY).first()
        if setting:
            setting.value = validated
        else:
            db.add(AppSetting(key=settings.FX_DEFAULT_RATES_KEY, value=validated))
        db.commit()
        self._rates = validated
        logger.info("Global default exchange rates updated")
        return self.rates

    def lookup(self, base: str, target: str) -> Optional[float]:
        """Direct rate, else the inverse of the reverse entry."""
        direct = self._rates.get(base, {}).get(target)
        if direct:
            return direct
        inverse = self._rates.get(target, {}).get(base)
        if inverse:
            return 1 / inverse
        return None

    def triangulate(self, base: str, target: str, pivot: str) -> Optional[float]:
        """Compose base -> pivot -> target from two lookups."""
        if pivot in (base, target):
            return None
        first = self.lookup(base, pivot)
        second = self.lookup(pivot, target)
        if first is None or second is None:
            return None
        return first * second


# Process-wide table, loaded on application startup
default_rate_table = DefaultRateTable(BUILTIN_DEFAULT_RATES)
