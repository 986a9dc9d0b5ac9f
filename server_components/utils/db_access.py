import sqlite3
import json
import time
from pathlib import Path
from typing import Optional, Dict, Any, List

# Blocking helpers, one connection per call. The async stores run these in
# worker threads. sqlite3.Error and serialization errors are left to the caller.

_initialized: set = set()


def get_db_connection(db_path: str):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row  # Allows accessing columns by name
    return conn


def init_db(db_path: str):
    """Create the card state tables if they do not exist yet."""
    if db_path in _initialized:
        return

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = get_db_connection(db_path)
    try:
        cursor = conn.cursor()

        # One row per card instance key. value is the JSON-encoded state blob.
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS CardState (
            card_key TEXT NOT NULL PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at REAL NOT NULL
        );
        """)

        # At most one API key per card instance key.
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS APIKeys (
            card_key TEXT NOT NULL PRIMARY KEY,
            api_key TEXT NOT NULL,
            issued_at REAL NOT NULL
        );
        """)

        # Append-only.
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS AnalyticsEvents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_key TEXT NOT NULL,
            data TEXT,
            created_at REAL NOT NULL
        );
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_analytics_event_key ON AnalyticsEvents (event_key);")

        conn.commit()
    finally:
        conn.close()

    _initialized.add(db_path)


def save_card_state(db_path: str, card_key: str, value: Any) -> None:
    encoded = json.dumps(value)
    conn = get_db_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO CardState (card_key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(card_key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """, (card_key, encoded, time.time()))
        conn.commit()
    finally:
        conn.close()


def load_card_state(db_path: str, card_key: str) -> Optional[Any]:
    conn = get_db_connection(db_path)
    try:
        row = conn.execute("SELECT value FROM CardState WHERE card_key = ?", (card_key,)).fetchone()
    finally:
        conn.close()
    if row:
        return json.loads(row["value"])
    return None


def load_api_key(db_path: str, card_key: str) -> Optional[Dict[str, Any]]:
    conn = get_db_connection(db_path)
    try:
        row = conn.execute(
            "SELECT card_key, api_key, issued_at FROM APIKeys WHERE card_key = ?", (card_key,)
        ).fetchone()
    finally:
        conn.close()
    if row:
        return dict(row)
    return None


def save_api_key(db_path: str, card_key: str, api_key: str, issued_at: float) -> None:
    """Insert or replace the single API key for a card instance."""
    conn = get_db_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO APIKeys (card_key, api_key, issued_at) VALUES (?, ?, ?)
            ON CONFLICT(card_key) DO UPDATE SET api_key = excluded.api_key, issued_at = excluded.issued_at
        """, (card_key, api_key, issued_at))
        conn.commit()
    finally:
        conn.close()


def insert_analytics_event(db_path: str, event_key: str, data: Any, created_at: float) -> int:
    conn = get_db_connection(db_path)
    try:
        cursor = conn.execute("""
            INSERT INTO AnalyticsEvents (event_key, data, created_at) VALUES (?, ?, ?)
        """, (event_key, json.dumps(data), created_at))
        conn.commit()
        return cursor.lastrowid
    finally:
        conn.close()


def list_analytics_events(db_path: str, prefix: str = "", limit: int = 200) -> List[Dict[str, Any]]:
    """Events whose key starts with `prefix`, oldest first."""
    conn = get_db_connection(db_path)
    try:
        rows = conn.execute("""
            SELECT event_key, data, created_at FROM AnalyticsEvents
            WHERE substr(event_key, 1, ?) = ?
            ORDER BY id ASC LIMIT ?
        """, (len(prefix), prefix, limit)).fetchall()
    finally:
        conn.close()
    return [
        {"event_key": row["event_key"], "data": json.loads(row["data"]) if row["data"] is not None else None,
         "created_at": row["created_at"]}
        for row in rows
    ]
