"""
Per-user currency conversion preferences.
"""
from sqlalchemy import Column, ForeignKey, Integer, JSON
from sqlalchemy.orm import relationship
from app.db.base import BaseModel


class CurrencyPreference(BaseModel):
    """Source fallback order, enabled sources and custom override rates for one user."""
    __tablename__ = "currency_preferences"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    fallback_order = Column(JSON, nullable=False)  # ["api", "llm"]
    enabled_methods = Column(JSON, nullable=False)  # ["api", "llm"]
    custom_rates = Column(JSON, nullable=True)  # {"EUR": 0.9}, base is the user's default currency

    # Relationships
    user = relationship("User", back_populates="currency_preference")
