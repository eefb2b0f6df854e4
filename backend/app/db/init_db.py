"""
Database initialization script.
"""
from app.db.session import init_db

# Import all models so SQLAlchemy can register them
from app.models import User, CachedRate, CurrencyPreference, AppSetting  # noqa: F401

if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Database initialized successfully!")
