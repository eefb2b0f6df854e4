"""
User model. Accounts are managed by the authentication service; this backend
reads the id and the user's default currency.
"""
from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship
from app.db.base import BaseModel


class User(BaseModel):
    """User model with immutable username."""
    __tablename__ = "users"

    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    default_currency = Column(String(3), nullable=True)  # Falls back to settings.DEFAULT_CURRENCY
    is_admin = Column(Boolean, default=False, nullable=False)  # May edit global settings

    # Relationships
    currency_preference = relationship(
        "CurrencyPreference",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
