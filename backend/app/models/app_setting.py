"""
Key/value application settings stored in the database.
"""
from sqlalchemy import Column, String, JSON
from app.db.base import BaseModel


class AppSetting(BaseModel):
    """Process-wide setting identified by a well-known key."""
    __tablename__ = "app_settings"

    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(JSON, nullable=False)
