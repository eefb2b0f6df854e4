"""
Pydantic schemas for user currency preferences.
"""
from pydantic import BaseModel, field_validator
from typing import Dict, List, Optional
from datetime import datetime
import math
from app.core.utils import normalize_currency_code
from app.models.exchange_rate import RateSource


class CurrencyPreferenceUpdate(BaseModel):
    """Partial update; fields left as None keep their stored value."""
    fallback_order: Optional[List[RateSource]] = None
    enabled_methods: Optional[List[RateSource]] = None
    custom_rates: Optional[Dict[str, float]] = None

    @field_validator("custom_rates")
    @classmethod
    def validate_custom_rates(cls, v):
        """Normalize currency codes and require positive rates."""
        if v is None:
            return v
        normalized = {}
        for currency, rate in v.items():
            if rate is None or not math.isfinite(rate) or rate <= 0:
                raise ValueError(f"Custom rate for {currency} must be positive")
            normalized[normalize_currency_code(currency)] = float(rate)
        return normalized


class CurrencyPreferenceResponse(BaseModel):
    """Effective preferences for a user (stored or synthesized defaults)."""
    user_id: int
    default_currency: str
    fallback_order: List[RateSource]
    enabled_methods: List[RateSource]
    custom_rates: Dict[str, float]
    updated_at: Optional[datetime] = None
    is_default: bool = False  # True when no record exists yet

    def effective_order(self) -> List[RateSource]:
        """Fallback order restricted to enabled sources."""
        enabled = set(self.enabled_methods)
        return [source for source in self.fallback_order if source in enabled]
