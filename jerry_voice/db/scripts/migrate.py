"""
Create the Jerry call-log schema (students + call_logs).
Usage: python -m jerry_voice.db.scripts.migrate
The SQL is idempotent, so re-running against an existing database is safe.
"""

import sys
from pathlib import Path

import psycopg2
from loguru import logger

from jerry_voice.core.config import config

SCHEMA_PATH = Path(__file__).parent / "init_schema.sql"
EXPECTED_TABLES = ("students", "call_logs")

LIST_TABLES_SQL = (
    "SELECT table_name FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_name = ANY(%s)"
)


def apply_schema(dsn: str) -> list:
    """Run init_schema.sql; returns the expected tables that now exist"""
    conn = psycopg2.connect(dsn)
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_PATH.read_text())
            cur.execute(LIST_TABLES_SQL, (list(EXPECTED_TABLES),))
            return sorted(row[0] for row in cur.fetchall())
    finally:
        conn.close()


def main() -> int:
    if not config.database_url:
        logger.error("DATABASE_URL not set in environment or .env")
        return 1

    logger.info(f"Applying {SCHEMA_PATH.name} to {config.database_url.split('@')[-1]}")
    try:
        tables = apply_schema(config.database_url)
    except psycopg2.Error as e:
        logger.error(f"Migration failed: {e}")
        return 1

    missing = sorted(set(EXPECTED_TABLES) - set(tables))
    if missing:
        logger.error(f"Schema applied but tables are missing: {', '.join(missing)}")
        return 1
    logger.info(f"Schema ready: {', '.join(tables)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
