# scripts/setup/init_db.py
"""
Initialize database — creates the counter_logs and counter_events tables.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from app import database
from app.database import create_tables
from app.config import settings
from sqlalchemy import inspect, text


def main():
    print("🗄️  People Counter DB Initialization")
    print("=" * 40)

    if not settings.PERSISTENCE_ENABLED:
        print("❌ DATABASE_URL is not set — nothing to initialize.")
        print("   The backend will run memory-only without it.")
        sys.exit(1)

    print(f"📡 Database: {settings.DATABASE_URL}")

    # Test connection
    try:
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    print("✅ Tables created")

    tables = inspect(database.engine).get_table_names()
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in sorted(tables):
        print(f"   ✓ {t}")

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn app.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
