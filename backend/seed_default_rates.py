"""
Create the currency tables and seed the global default exchange rates.

Safe to run repeatedly: existing tables and an existing default table are
left as they are unless --reset is given.
"""
import argparse
import sys
import os

# Add the backend directory to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.db.session import SessionLocal, init_db
from app.models import AppSetting  # noqa: F401  (registers all models)
from app.services.default_rates import BUILTIN_DEFAULT_RATES, DefaultRateTable


def seed(reset: bool = False):
    """Create missing tables and seed (or reset) the default rate table."""
    init_db()
    print("Tables created")

    db = SessionLocal()
    try:
        table = DefaultRateTable()
        if reset:
            rates = table.update(db, BUILTIN_DEFAULT_RATES)
            print("Default exchange rates reset to built-in values")
        else:
            rates = table.load(db)
        print(f"Default exchange rates available for: {', '.join(sorted(rates))}")
    except Exception as e:
        db.rollback()
        print(f"Seeding failed: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="overwrite the stored table with built-in rates")
    args = parser.parse_args()
    seed(reset=args.reset)
