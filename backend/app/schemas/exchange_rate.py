"""
Pydantic schemas for exchange rate resolution.
"""
from pydantic import BaseModel, field_validator
from typing import Dict, Optional
from datetime import date
from decimal import Decimal
import enum
import math
from app.core.utils import normalize_currency_code


class Provenance(str, enum.Enum):
    """How a resolved rate was obtained."""
    IDENTITY = "identity"
    OVERRIDE = "override"
    CACHE = "cache"
    CACHE_INVERTED = "cache-inverted"
    CACHE_TRIANGULATED = "cache-triangulated"
    LIVE_API = "live:api"
    LIVE_LLM = "live:llm"
    HISTORICAL = "historical"
    DEFAULT = "default"

    @classmethod
    def live(cls, source: str) -> "Provenance":
        """Provenance tag for a live fetch from ``source``."""
        return cls(f"live:{source}")


class RateResolution(BaseModel):
    """A resolved rate: 1 base = rate target."""
    base: str
    target: str
    rate: float
    provenance: Provenance
    source: Optional[str] = None  # Rate source for cache/live results
    stale: bool = False  # True for default-table rates, callers should warn
    as_of: Optional[date] = None  # Set for historical rates


class ConversionResponse(BaseModel):
    """Schema for converted amount response."""
    amount: Decimal
    converted_amount: Decimal
    resolution: RateResolution


class DefaultRates(BaseModel):
    """Global fallback matrix: base currency -> {target currency -> rate}."""
    rates: Dict[str, Dict[str, float]]

    @field_validator("rates")
    @classmethod
    def validate_rates(cls, v):
        """Normalize currency codes and require positive rates."""
        normalized = {}
        for base, targets in v.items():
            base_code = normalize_currency_code(base)
            row = normalized.setdefault(base_code, {})
            for target, rate in targets.items():
                if rate is None or not math.isfinite(rate) or rate <= 0:
                    raise ValueError(f"Rate for {base_code} -> {target} must be positive")
                row[normalize_currency_code(target)] = float(rate)
        return normalized
