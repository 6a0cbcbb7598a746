"""
SQLite-based credential storage.

Keeps the OAuth credential (including refreshed access tokens) across
application restarts.
"""

import sqlite3
import json
from datetime import datetime, UTC
from typing import Optional
from .token_store_base import TokenStoreBase


class SQLiteTokenStore(TokenStoreBase):
    """
    SQLite-backed credential store.

    One row per provider; the credential itself is stored as JSON so the
    schema does not change when the token shape does.
    """

    def __init__(self, db_path: str = "credentials.db"):
        """
        Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (default: credentials.db)
        """
        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Create credentials table if it doesn't exist"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS credentials (
                provider TEXT PRIMARY KEY,
                token_data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def get(self, provider: str) -> Optional[dict]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            SELECT token_data FROM credentials WHERE provider = ?
        """, (provider,))

        row = cursor.fetchone()
        conn.close()

        if row is None:
            return None
        return json.loads(row["token_data"])

    def save(self, provider: str, token_data: dict) -> None:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO credentials (provider, token_data, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(provider) DO UPDATE SET
                token_data = excluded.token_data,
                updated_at = excluded.updated_at
        """, (provider, json.dumps(token_data), datetime.now(UTC).isoformat()))

        conn.commit()
        conn.close()

    def delete(self, provider: str) -> bool:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("DELETE FROM credentials WHERE provider = ?", (provider,))

        rows_affected = cursor.rowcount
        conn.commit()
        conn.close()

        return rows_affected > 0
