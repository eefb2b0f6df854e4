"""Models package - Import all models for SQLAlchemy registration."""
from app.models.user import User
from app.models.exchange_rate import CachedRate, RateSource
from app.models.currency_preference import CurrencyPreference
from app.models.app_setting import AppSetting

__all__ = [
    "User",
    "CachedRate",
    "RateSource",
    "CurrencyPreference",
    "AppSetting",
]
