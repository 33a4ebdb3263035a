"""
Create the lnpay tables in DATABASE_URL and list what exists afterwards.
Use alembic for managed environments; this is for local setups.
"""
import asyncio
import os
import sys

from dotenv import load_dotenv

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
load_dotenv()

from sqlalchemy import inspect

from lnpay.database import engine, init_db


async def main():
    if engine is None:
        print("ERROR: DATABASE_URL is not set")
        sys.exit(1)

    await init_db()

    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    print(f"Found tables: {tables}")

    await engine.dispose()


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
