from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

METADATA_TABLES = ("part_metadata", "figure_metadata")


def connect(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # shared with the refresh worker threads; MetadataStore serializes access
    con = sqlite3.connect(db_path, check_same_thread=False)
    if db_path != ":memory:":
        con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA synchronous=NORMAL;")
    return con


def migrate(con: sqlite3.Connection) -> None:
    con.execute("""
    CREATE TABLE IF NOT EXISTS schema_version(
        version INTEGER NOT NULL,
        applied_ts TEXT NOT NULL
    );
    """)

    for table in METADATA_TABLES:
        con.execute(f"""
        CREATE TABLE IF NOT EXISTS {table}(
            primary_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            image_url TEXT,
            invalid INTEGER NOT NULL DEFAULT 0,
            secondary_id TEXT,
            available_colors_json TEXT NOT NULL DEFAULT '[]',
            updated_ts TEXT NOT NULL
        );
        """)

    con.execute("""
    CREATE TABLE IF NOT EXISTS price_metadata(
        primary_id TEXT PRIMARY KEY,
        secondary_id TEXT,
        min_price_new TEXT,
        max_price_new TEXT,
        avg_price_new TEXT,
        min_price_used TEXT,
        max_price_used TEXT,
        avg_price_used TEXT,
        currency_code TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        is_expired INTEGER NOT NULL DEFAULT 0,
        updated_ts TEXT NOT NULL
    );
    """)
    con.execute("CREATE INDEX IF NOT EXISTS idx_price_metadata_expiry ON price_metadata(expires_at);")

    con.execute("DELETE FROM schema_version;")
    con.execute("INSERT INTO schema_version(version, applied_ts) VALUES(?, datetime('now'));", (SCHEMA_VERSION,))
    con.commit()
