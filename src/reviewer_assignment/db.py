from contextlib import contextmanager
from pathlib import Path

import psycopg2
from psycopg2.extras import RealDictCursor

from .config import get_settings

SQL_DIR = Path(__file__).resolve().parent / "sql"


def get_database_url() -> str:
    database_url = get_settings().database_url
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Provide a production database URL.")
    return database_url


@contextmanager
def db_cursor(database_url: str | None = None):
    conn = psycopg2.connect(database_url or get_database_url())
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def load_sql(name: str, schema: str) -> str:
    return (SQL_DIR / name).read_text(encoding="utf-8").replace("{schema}", schema)
