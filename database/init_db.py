"""
Initialize database tables.

Run this script to create the BloomFundr settlement tables.
"""

from dotenv import load_dotenv

load_dotenv()

from database.db import create_tables  # noqa: E402
from database.models import Base  # noqa: E402
import logging  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    print("Creating database tables...")
    try:
        create_tables()
        print("\n✅ Tables created successfully!")

        print("\nTables:")
        for table_name in Base.metadata.tables.keys():
            print(f"  - {table_name}")
    except Exception as e:
        print(f"\n❌ Error creating tables: {e}")
        raise
