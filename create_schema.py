import asyncio
import asyncpg
import os
import sys
from dotenv import load_dotenv
from birthday_worker.database.schema import ensure_schema

load_dotenv()

async def create_schema(include_dashboard_tables: bool):
    conn = await asyncpg.connect(os.getenv('DATABASE_URL'))
    try:
        await ensure_schema(conn, include_dashboard_tables=include_dashboard_tables)
        print("✅ Schema created")
    finally:
        await conn.close()

if __name__ == "__main__":
    # Pass --with-dashboard-tables on a fresh local database
    asyncio.run(create_schema("--with-dashboard-tables" in sys.argv))
