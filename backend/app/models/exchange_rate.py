"""
Exchange rate cache model.
"""
from sqlalchemy import Column, String, Float, DateTime, Enum as SQLEnum, Index, UniqueConstraint
from app.db.base import BaseModel
import enum


class RateSource(str, enum.Enum):
    """Live rate source identifiers."""
    API = "api"
    LLM = "llm"


class CachedRate(BaseModel):
    """One source's rate for a currency pair. Shared by all users."""
    __tablename__ = "exchange_rate_cache"

    base_currency = Column(String(3), nullable=False)
    target_currency = Column(String(3), nullable=False)
    rate = Column(Float, nullable=False)  # 1 base_currency = rate target_currency
    source = Column(SQLEnum(RateSource, values_callable=lambda e: [m.value for m in e]), nullable=False)
    fetched_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    # At most one row per pair and source; refreshes overwrite it
    __table_args__ = (
        UniqueConstraint('base_currency', 'target_currency', 'source', name='uq_rate_cache_pair_source'),
        Index('idx_rate_cache_lookup', 'base_currency', 'target_currency', 'source', 'expires_at'),
    )

    def is_valid(self, now) -> bool:
        """Whether the row can still be served at ``now``."""
        return self.expires_at > now
