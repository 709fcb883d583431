#!/usr/bin/env python3
"""
Create the documents table backing the bakery document store
"""
import asyncio
import asyncpg
from bakery_api.config import settings
from bakery_api.database import DOCUMENTS_TABLE_DDL

async def run_migration():
    """Create the documents table and its JSONB index if they are missing"""

    conn = await asyncpg.connect(**settings.db_connection_params)

    try:
        print("🔧 Running migration: create documents table...")

        await conn.execute(DOCUMENTS_TABLE_DDL)

        print("✅ Table ready")

        # Verify
        result = await conn.fetch("""
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_name = 'documents'
            ORDER BY ordinal_position
        """)

        print("\n✅ Verification:")
        for row in result:
            print(f"  - {row['column_name']}: {row['data_type']}")

        if len(result) == 5:
            print("\n✅ Migration completed successfully!")
        else:
            print("\n❌ Migration may have failed - expected 5 columns")

    except Exception as e:
        print(f"❌ Error running migration: {e}")
        raise
    finally:
        await conn.close()

if __name__ == "__main__":
    asyncio.run(run_migration())
